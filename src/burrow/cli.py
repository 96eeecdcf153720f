"""Burrow CLI."""

from __future__ import annotations

import asyncio
import contextlib
import signal
from pathlib import Path

import typer

from burrow.config import get_settings
from burrow.logging_utils import configure_logging
from burrow.process.executor import BinaryDetectedEvent, OutputEvent, ProcessExecutor, ProcessResult

app = typer.Typer(name="burrow", help="Run shell commands and planning sub-agents", add_completion=False)


def _print_event(event: OutputEvent) -> None:
    if isinstance(event, BinaryDetectedEvent):
        typer.echo("[binary output detected]", err=True)
        return
    typer.echo(event.chunk, nl=False, err=event.stream == "stderr")


def _exit_code(result: ProcessResult) -> int:
    if result.error is not None:
        return 127
    if result.aborted:
        return 130
    if result.signal is not None:
        with contextlib.suppress(KeyError):
            return 128 + signal.Signals[result.signal].value
        return 1
    return result.exit_code or 0


async def _run_command(command: str, cwd: Path, use_pty: bool, kill_grace_seconds: float) -> ProcessResult:
    cancel = asyncio.Event()
    loop = asyncio.get_running_loop()
    with contextlib.suppress(NotImplementedError, RuntimeError, ValueError):
        loop.add_signal_handler(signal.SIGINT, cancel.set)
    try:
        executor = ProcessExecutor(kill_grace_seconds=kill_grace_seconds)
        handle = await executor.execute(command, cwd, _print_event, cancel, use_pty)
        return await handle.result
    finally:
        with contextlib.suppress(NotImplementedError, RuntimeError, ValueError):
            loop.remove_signal_handler(signal.SIGINT)


@app.command("exec")
def exec_command(
    command: str = typer.Argument(..., help="Shell command to run"),
    cwd: Path | None = typer.Option(None, "--cwd", help="Working directory"),  # noqa: B008
    pty: bool | None = typer.Option(None, "--pty/--no-pty", help="Run inside a pseudo-terminal"),
) -> None:
    """Run one command and mirror its exit status."""
    settings = get_settings()
    configure_logging(level=settings.log_level)
    working_dir = (cwd or settings.resolve_workspace()).resolve()
    use_pty = settings.use_pty if pty is None else pty

    result = asyncio.run(_run_command(command, working_dir, use_pty, settings.kill_grace_seconds))
    if result.error is not None:
        typer.secho(f"Failed to start command: {result.error}", err=True, fg=typer.colors.RED)
    elif result.aborted:
        typer.secho("Command cancelled.", err=True, fg=typer.colors.YELLOW)
    raise typer.Exit(_exit_code(result))


@app.command("plan")
def plan_command(
    request: str = typer.Argument(..., help="High-level request to break down"),
    model: str | None = typer.Option(None, "--model", help="Override the configured model"),
) -> None:
    """Ask the planning sub-agent for a step-by-step plan."""
    from burrow.runtime import RuntimeContext
    from burrow.tools.planning import PLANNING_TOOL_NAME, create_planning_tool

    overrides = {"model": model} if model else {}
    settings = get_settings(**overrides)
    configure_logging(profile="chat", level=settings.log_level)
    context = RuntimeContext.from_settings(settings)
    planning_tool = create_planning_tool(context, on_message=lambda text: typer.echo(text, err=True))
    context.tool_registry.register(planning_tool, label="Planning Tool")

    result = asyncio.run(context.tool_registry.execute(PLANNING_TOOL_NAME, kwargs={"user_request": request}))
    typer.echo(result.return_display)
    content = result.llm_content
    if isinstance(content, dict) and not content.get("success", False):
        raise typer.Exit(1)
