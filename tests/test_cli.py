import sys
from pathlib import Path

import pytest
from typer.testing import CliRunner

from burrow.cli import app
from burrow.runtime import RuntimeContext
from burrow.subagent import EMIT_VALUE_MODEL_NAME
from tests.support import FakeContentGenerator, call_response, make_runtime, make_settings, text_response

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="requires a POSIX shell")


@posix_only
def test_exec_streams_output_and_succeeds(tmp_path: Path) -> None:
    runner = CliRunner()

    result = runner.invoke(app, ["exec", "echo from-cli", "--cwd", str(tmp_path), "--no-pty"])

    assert result.exit_code == 0
    assert "from-cli" in result.output


@posix_only
def test_exec_mirrors_exit_code(tmp_path: Path) -> None:
    runner = CliRunner()

    result = runner.invoke(app, ["exec", "exit 4", "--cwd", str(tmp_path), "--no-pty"])

    assert result.exit_code == 4


def test_exec_reports_spawn_failure(tmp_path: Path) -> None:
    runner = CliRunner()

    result = runner.invoke(app, ["exec", "echo never", "--cwd", str(tmp_path / "missing"), "--no-pty"])

    assert result.exit_code == 127


def test_plan_prints_the_emitted_plan(monkeypatch, tmp_path: Path) -> None:
    plan = '{"tasks": [{"description": "write the docs"}]}'
    emit = call_response(EMIT_VALUE_MODEL_NAME, {"emit_variable_name": "execution_plan", "emit_variable_value": plan})
    generator = FakeContentGenerator(
        streams=[
            [emit],
            [text_response("Done.")],
        ]
    )
    monkeypatch.setattr("burrow.cli.configure_logging", lambda **kwargs: None)
    monkeypatch.setattr(
        RuntimeContext,
        "from_settings",
        classmethod(lambda cls, settings: make_runtime(make_settings(tmp_path), generator)),
    )
    runner = CliRunner()

    result = runner.invoke(app, ["plan", "document the project"])

    assert result.exit_code == 0
    assert '"write the docs"' in result.output
    assert "document the project" in generator.requests[0].config.system_instruction
