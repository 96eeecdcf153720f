"""Application-level exception types for Burrow."""

from __future__ import annotations


class BurrowError(Exception):
    """Base exception for Burrow."""


class ConfigurationError(BurrowError):
    """Base exception for configuration and startup validation errors."""


class HistoryValidationError(BurrowError):
    """Raised when a history contains a turn with an unsupported role."""


class EmptyStreamError(BurrowError):
    """Raised when a model stream completed without valid content."""


class ChatAbortedError(BurrowError):
    """Raised when a streamed exchange is cancelled between chunks."""


class SchemaDepthError(BurrowError):
    """Raised when the backend rejects tool schemas for exceeding its depth limit."""

    def __init__(self, message: str, tool_names: list[str] | None = None) -> None:
        super().__init__(message)
        self.tool_names = list(tool_names or [])


class TemplateError(BurrowError):
    """Raised when a prompt template references an unknown variable."""


class SubagentError(BurrowError):
    """Raised when a sub-agent is misused, for example run twice."""


class ToolNotFoundError(BurrowError, KeyError):
    """Raised when a tool name is not registered."""
