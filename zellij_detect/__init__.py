"""Completion detection for terminal-multiplexer workflows."""

__version__ = "0.1.0"
