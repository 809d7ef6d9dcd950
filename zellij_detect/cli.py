import asyncio
import json
import logging
from pathlib import Path
from typing import List, Optional

import typer

from .config import load_config
from .errors import DetectionError, NotFound, SourceReadError


app = typer.Typer(help="zellij-detect: detect completion of long-running commands via files, pipes and processes")


def _service():
    from .service import DetectionService
    return DetectionService(config=load_config())


def _emit(payload: dict, code: int = 0):
    typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))
    if code:
        raise typer.Exit(code=code)


def _fail(e: DetectionError):
    _emit({"ok": False, **e.to_dict()}, code=1)


def _emit_outcome(outcome):
    if outcome.ok:
        _emit(outcome.to_dict())
    elif outcome.timed_out:
        _emit(outcome.to_dict(), code=2)
    else:
        _emit(outcome.to_dict(), code=1)


@app.callback()
def main_options(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log lifecycle events to stderr"),
):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )


@app.command("watch-file")
def watch_file(
    path: str,
    pattern: Optional[List[str]] = typer.Option(None, "--pattern", "-p", help="Pattern to wait for (repeatable, first listed wins)"),
    timeout_ms: int = typer.Option(30000, "--timeout-ms", help="Deadline in milliseconds (100-300000)"),
):
    """Wait until a file contains one of the patterns (or exists, with no patterns)."""
    outcome = asyncio.run(_service().watch_file(path, pattern or [], timeout_ms))
    _emit_outcome(outcome)


@app.command("watch-pipe")
def watch_pipe(
    path: str,
    pattern: Optional[List[str]] = typer.Option(None, "--pattern", "-p", help="Pattern to wait for (repeatable, first listed wins)"),
    timeout_ms: int = typer.Option(30000, "--timeout-ms", help="Deadline in milliseconds (100-300000)"),
):
    """Wait until a named pipe carries one of the patterns or reaches EOF."""
    outcome = asyncio.run(_service().watch_pipe(path, pattern or [], timeout_ms))
    _emit_outcome(outcome)


@app.command("mkfifo")
def mkfifo(
    name: str,
    mode: str = typer.Option("0666", help='Octal permissions, e.g. "0666"'),
):
    """Create a named pipe zellij-pipe-<NAME> in the temp directory."""
    try:
        path = _service().create_named_pipe(name, mode)
    except DetectionError as e:
        _fail(e)
    _emit({"ok": True, "path": str(path), "mode": mode})


@app.command("pipe")
def pipe(
    command: str,
    target: str,
    timeout_ms: int = typer.Option(30000, "--timeout-ms", help="Deadline in milliseconds (1000-600000)"),
):
    """Run COMMAND with stdout redirected into TARGET, terminating it at the deadline."""
    try:
        result = asyncio.run(_service().pipe_with_timeout(command, target, timeout_ms))
    except DetectionError as e:
        _fail(e)
    _emit(result.to_dict())


@app.command()
def poll(
    pid: str,
    interval_ms: int = typer.Option(1000, "--interval-ms", help="Polling interval hint for your own retry loop"),
):
    """Report whether PID is alive, with its parent, state and name."""
    try:
        status = _service().poll_process(pid, interval_ms)
    except DetectionError as e:
        _fail(e)
    _emit(status.to_dict())


@app.command()
def wrapper(
    name: str,
    command: str,
    marker: Optional[str] = typer.Option(None, "--marker", help="Completion marker (default <<<LLM_COMPLETE>>>)"),
    timeout_ms: int = typer.Option(60000, "--timeout-ms", help="Wrapper's own deadline in milliseconds"),
    emit_marker: bool = typer.Option(True, "--emit-marker/--no-emit-marker", help="Print the marker line on exit"),
):
    """Generate a self-reporting wrapper script for COMMAND."""
    try:
        artifacts = _service().create_llm_wrapper(name, command, marker, timeout_ms, emit_marker)
    except DetectionError as e:
        _fail(e)
    _emit(artifacts.to_dict())


@app.command()
def status(path: str):
    """Parse the canonical state of a wrapper status file."""
    from .wrapper import parse_status
    try:
        text = Path(path).read_text(encoding="utf-8")
    except FileNotFoundError:
        _fail(NotFound(f"Status file does not exist: {path}", "path"))
    except (OSError, UnicodeDecodeError) as e:
        _fail(SourceReadError(f"Cannot read status file {path}: {e}", "path"))
    try:
        value = parse_status(text)
    except DetectionError as e:
        _fail(e)
    _emit({"ok": True, "path": path, "state": value.state, "exit_code": value.exit_code,
           "terminal": value.terminal, "status": str(value)})


@app.command()
def cleanup():
    """Delete aged wrapper, status, output and pipe artifacts from the temp directory."""
    report = _service().cleanup()
    _emit(report.to_dict())


@app.command()
def stats():
    """Show per-operation outcome counters."""
    from .metrics import get_usage
    _emit(get_usage())


@app.command()
def mcp():
    """Serve the detection tools over MCP (stdio)."""
    from .mcp.zellij_detect_mcp import build_server
    build_server().run()


def main():
    """Entry point for console_scripts."""
    app()


if __name__ == "__main__":
    main()
