"""Process execution service."""

from burrow.process.executor import (
    BinaryDetectedEvent,
    OutputChunkEvent,
    OutputEvent,
    OutputListener,
    ProcessExecutor,
    ProcessHandle,
    ProcessResult,
    pty_available,
)

__all__ = [
    "BinaryDetectedEvent",
    "OutputChunkEvent",
    "OutputEvent",
    "OutputListener",
    "ProcessExecutor",
    "ProcessHandle",
    "ProcessResult",
    "pty_available",
]
