"""Shell tool backed by the process executor."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field
from republic import Tool, ToolContext, tool_from_model

from burrow.process.executor import OutputListener, ProcessExecutor, ProcessResult
from burrow.tools.registry import ToolResult, abort_signal

SHELL_TOOL_NAME = "run_shell_command"
SHELL_TOOL_DESCRIPTION = (
    "Executes a shell command in the workspace. The command runs inside a fresh shell; "
    "its output, error, exit code and terminating signal are returned."
)


class ShellInput(BaseModel):
    command: str = Field(..., description="Exact shell command to execute")
    directory: str | None = Field(
        default=None, description="Directory to run the command in, relative to the workspace root"
    )
    description: str | None = Field(default=None, description="Brief description of the command for the user")


def _resolve_directory(workspace: Path, raw: str | None) -> Path | str:
    """Return the working directory, or an error message when it is not usable."""
    if not raw:
        return workspace
    candidate = Path(raw).expanduser()
    if not candidate.is_absolute():
        candidate = workspace / candidate
    candidate = candidate.resolve()
    if not candidate.is_relative_to(workspace):
        return f"Directory {raw} is outside the workspace"
    if not candidate.exists():
        return f"Directory {raw} does not exist"
    if not candidate.is_dir():
        return f"Directory {raw} is not a directory"
    return candidate


def format_shell_result(command: str, directory: str | None, result: ProcessResult) -> ToolResult:
    if result.aborted:
        content = "Command was cancelled by user before it could complete."
        if result.output.strip():
            content += f" Below is the output before it was cancelled:\n{result.output}"
        return ToolResult(llm_content=content, return_display="Command cancelled by user.")

    llm_content = "\n".join([
        f"Command: {command}",
        f"Directory: {directory or '(root)'}",
        f"Output: {result.output or '(empty)'}",
        f"Error: {result.error or '(none)'}",
        f"Exit Code: {result.exit_code if result.exit_code is not None else '(none)'}",
        f"Signal: {result.signal or '(none)'}",
    ])

    if result.output.strip():
        display = result.output
    elif result.error is not None:
        display = f"Command failed: {result.error}"
    elif result.binary_detected:
        display = "[Binary output detected]"
    elif result.signal is not None:
        display = f"Command terminated by signal: {result.signal}"
    elif result.exit_code not in (0, None):
        display = f"Command exited with code: {result.exit_code}"
    else:
        display = "(empty)"
    return ToolResult(llm_content=llm_content, return_display=display)


def create_shell_tool(
    executor: ProcessExecutor,
    workspace: Path,
    *,
    use_pty: bool = False,
    on_output_event: OutputListener | None = None,
) -> Tool:
    """Create the shell tool bound to one workspace."""
    root = workspace.resolve()

    async def _handler(params: ShellInput, context: ToolContext | None = None) -> ToolResult:
        if not params.command.strip():
            return ToolResult(llm_content="Error: empty command", return_display="Empty command")
        working_dir = _resolve_directory(root, params.directory)
        if isinstance(working_dir, str):
            return ToolResult(llm_content=f"Error: {working_dir}", return_display=working_dir)

        handle = await executor.execute(
            params.command,
            working_dir,
            on_output_event,
            abort_signal(context),
            use_pty,
        )
        result = await handle.result
        return format_shell_result(params.command, params.directory, result)

    return tool_from_model(
        ShellInput,
        _handler,
        name=SHELL_TOOL_NAME,
        description=SHELL_TOOL_DESCRIPTION,
        context=True,
    )
