#!/usr/bin/env python3
"""
MCP connector for zellij-detect

Exposes the completion-detection tools of the Zellij integration:

- zellij_watch_pipe(pipe_path, patterns, timeout_ms)
- zellij_watch_file(file_path, patterns, timeout_ms)
- zellij_create_named_pipe(pipe_name, mode)
- zellij_pipe_with_timeout(command, target_pipe, timeout_ms)
- zellij_poll_process(pid, interval_ms)
- zellij_create_llm_wrapper(wrapper_name, llm_command, detect_marker, timeout_ms)
- zellij_cleanup_detection()
- zellij_detection_status()

Usage:
  python -m zellij_detect.mcp.zellij_detect_mcp

Requires the 'mcp' package (fastmcp server). Install with:
  pip install 'mcp>=1.0'
"""
from typing import List, Optional, Union

try:
    from mcp.server.fastmcp import FastMCP
except Exception as e:  # pragma: no cover
    raise SystemExit("Missing dependency: install with `pip install mcp` to run the MCP connector") from e

from ..config import load_config
from ..errors import DetectionError
from ..service import DetectionService


def _error(e: DetectionError) -> dict:
    return {"ok": False, **e.to_dict()}


def build_server(service: Optional[DetectionService] = None) -> FastMCP:
    """Create the MCP server with every tool bound to one detection service."""
    svc = service or DetectionService(config=load_config())
    mcp = FastMCP("zellij-detect-mcp")

    @mcp.tool()
    async def zellij_watch_pipe(pipe_path: str, patterns: Optional[List[str]] = None,
                                timeout_ms: int = 30000) -> dict:
        """Watch a pipe for specific patterns or EOF with timeout."""
        outcome = await svc.watch_pipe(pipe_path, patterns, timeout_ms)
        return outcome.to_dict()

    @mcp.tool()
    async def zellij_watch_file(file_path: str, patterns: Optional[List[str]] = None,
                                timeout_ms: int = 30000) -> dict:
        """Watch file for changes with pattern matching."""
        outcome = await svc.watch_file(file_path, patterns, timeout_ms)
        return outcome.to_dict()

    @mcp.tool()
    async def zellij_create_named_pipe(pipe_name: str, mode: str = "0666") -> dict:
        """Create a named pipe (prefixed with zellij-pipe- in the temp directory)."""
        try:
            path = svc.create_named_pipe(pipe_name, mode)
        except DetectionError as e:
            return _error(e)
        return {"ok": True, "path": str(path), "mode": mode,
                "message": f"Named pipe created: {path} with mode {mode}"}

    @mcp.tool()
    async def zellij_pipe_with_timeout(command: str, target_pipe: str, timeout_ms: int = 30000) -> dict:
        """Pipe command output into a target pipe with automatic timeout completion."""
        try:
            result = await svc.pipe_with_timeout(command, target_pipe, timeout_ms)
        except DetectionError as e:
            return _error(e)
        return result.to_dict()

    @mcp.tool()
    async def zellij_poll_process(pid: Union[int, str], interval_ms: int = 1000) -> dict:
        """Poll process status by PID."""
        try:
            status = svc.poll_process(pid, interval_ms)
        except DetectionError as e:
            return _error(e)
        return status.to_dict()

    @mcp.tool()
    async def zellij_create_llm_wrapper(wrapper_name: str, llm_command: str,
                                        detect_marker: Optional[str] = None,
                                        timeout_ms: int = 60000) -> dict:
        """Create LLM completion detector wrapper script."""
        try:
            artifacts = svc.create_llm_wrapper(wrapper_name, llm_command, detect_marker, timeout_ms)
        except DetectionError as e:
            return _error(e)
        return artifacts.to_dict()

    @mcp.tool()
    async def zellij_cleanup_detection() -> dict:
        """Clean up detection resources (watchers, processes, temp files)."""
        return svc.cleanup().to_dict()

    @mcp.tool()
    async def zellij_detection_status() -> dict:
        """List watches and piped commands that are still running."""
        active = svc.active()
        return {"ok": True, "count": len(active), "active": active}

    return mcp


def main():
    build_server().run()


if __name__ == "__main__":
    main()
