import sys

from rich.logging import RichHandler

from burrow import logging_utils


class FakeLogger:
    def __init__(self) -> None:
        self.sinks: list[tuple[object, dict]] = []
        self.removed = 0

    def remove(self) -> None:
        self.removed += 1

    def add(self, sink, **kwargs) -> None:
        self.sinks.append((sink, kwargs))


def test_default_profile_logs_to_stderr_once(monkeypatch) -> None:
    fake = FakeLogger()
    monkeypatch.setattr(logging_utils, "logger", fake)
    monkeypatch.setattr(logging_utils, "_CONFIGURED_PROFILE", None)

    logging_utils.configure_logging(level="debug")
    logging_utils.configure_logging(level="debug")

    assert len(fake.sinks) == 1
    sink, options = fake.sinks[0]
    assert sink is sys.stderr
    assert options["level"] == "DEBUG"
    assert "{name}:{function}:{line}" in options["format"]


def test_chat_profile_switches_to_rich_handler(monkeypatch) -> None:
    fake = FakeLogger()
    monkeypatch.setattr(logging_utils, "logger", fake)
    monkeypatch.setattr(logging_utils, "_CONFIGURED_PROFILE", "default")

    logging_utils.configure_logging(profile="chat")

    sink, options = fake.sinks[-1]
    assert isinstance(sink, RichHandler)
    assert options["format"] == "{message}"
    assert fake.removed == 1
