"""Conversation data model: parts, turns, requests and responses."""

from __future__ import annotations

import enum
from collections.abc import Sequence
from dataclasses import dataclass, field, fields, replace
from typing import Any, Literal, TypeAlias

USER_ROLE = "user"
MODEL_ROLE = "model"
Role: TypeAlias = Literal["user", "model"]


class AuthType(enum.StrEnum):
    """How the current session authenticated against the backend."""

    LOGIN_WITH_OAUTH = "oauth-personal"
    USE_API_KEY = "api-key"
    USE_VERTEX_AI = "vertex-ai"
    CLOUD_SHELL = "cloud-shell"


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class ThoughtPart:
    """Model reasoning marker; never resent as answer text."""

    text: str = ""


@dataclass(frozen=True)
class FunctionCallPart:
    name: str
    args: dict[str, Any] = field(default_factory=dict)
    id: str | None = None


@dataclass(frozen=True)
class FunctionResponsePart:
    name: str
    response: dict[str, Any] = field(default_factory=dict)
    id: str | None = None


@dataclass(frozen=True)
class EmptyPart:
    """A part the backend returned without any populated variant."""


Part: TypeAlias = TextPart | ThoughtPart | FunctionCallPart | FunctionResponsePart | EmptyPart
PartLike: TypeAlias = str | Part


def is_empty_part(part: object) -> bool:
    return part is None or isinstance(part, EmptyPart)


@dataclass
class Turn:
    """One role-tagged message unit."""

    role: str
    parts: list[Part] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "".join(part.text for part in self.parts if isinstance(part, TextPart))


@dataclass(frozen=True)
class FunctionDeclaration:
    name: str
    description: str
    parameters: dict[str, Any] = field(default_factory=dict)

    def schema(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {"name": self.name, "description": self.description, "parameters": self.parameters},
        }


@dataclass(frozen=True)
class GenerationConfig:
    system_instruction: str | None = None
    temperature: float | None = None
    top_p: float | None = None
    max_output_tokens: int | None = None
    tools: tuple[FunctionDeclaration, ...] | None = None

    def merged(self, overrides: GenerationConfig | None) -> GenerationConfig:
        """Return a copy where every field set on ``overrides`` wins."""
        if overrides is None:
            return self
        changes = {
            item.name: getattr(overrides, item.name)
            for item in fields(overrides)
            if getattr(overrides, item.name) is not None
        }
        return replace(self, **changes)


@dataclass(frozen=True)
class GenerateContentRequest:
    model: str
    contents: list[Turn]
    config: GenerationConfig = field(default_factory=GenerationConfig)


@dataclass
class GenerateContentResponse:
    """One response, or one chunk of a streamed response."""

    content: Turn | None = None
    automatic_function_calling_history: list[Turn] | None = None
    finish_reason: str | None = None
    usage: dict[str, int] | None = None

    @property
    def text(self) -> str:
        if self.content is None:
            return ""
        return self.content.text

    @property
    def function_calls(self) -> list[FunctionCallPart]:
        if self.content is None:
            return []
        return [part for part in self.content.parts if isinstance(part, FunctionCallPart)]


def _to_part(item: PartLike) -> Part:
    if isinstance(item, str):
        return TextPart(item)
    return item


def create_user_turn(message: PartLike | Sequence[PartLike]) -> Turn:
    if isinstance(message, str | TextPart | ThoughtPart | FunctionCallPart | FunctionResponsePart | EmptyPart):
        return Turn(role=USER_ROLE, parts=[_to_part(message)])
    return Turn(role=USER_ROLE, parts=[_to_part(item) for item in message])


def is_function_response(turn: Turn) -> bool:
    return (
        turn.role == USER_ROLE
        and bool(turn.parts)
        and all(isinstance(part, FunctionResponsePart) for part in turn.parts)
    )
