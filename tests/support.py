"""Fakes and builders shared by the test suite."""

from __future__ import annotations

import copy
from collections.abc import AsyncIterator, Sequence
from pathlib import Path

from burrow.chat.retry import RetryOptions
from burrow.chat.session import ChatConfig
from burrow.chat.types import (
    MODEL_ROLE,
    FunctionCallPart,
    GenerateContentRequest,
    GenerateContentResponse,
    Part,
    TextPart,
    Turn,
)
from burrow.config import Settings
from burrow.runtime import RuntimeContext
from burrow.tools.registry import ToolRegistry

StreamScript = Sequence[GenerateContentResponse | BaseException]


def text_response(text: str) -> GenerateContentResponse:
    return GenerateContentResponse(content=Turn(role=MODEL_ROLE, parts=[TextPart(text)]))


def parts_response(*parts: Part) -> GenerateContentResponse:
    return GenerateContentResponse(content=Turn(role=MODEL_ROLE, parts=list(parts)))


def call_response(name: str, args: dict | None = None, call_id: str | None = None) -> GenerateContentResponse:
    return parts_response(FunctionCallPart(name=name, args=args or {}, id=call_id))


class FakeContentGenerator:
    """Scripted content generator that records every request it receives."""

    def __init__(
        self,
        responses: Sequence[GenerateContentResponse | BaseException] = (),
        streams: Sequence[StreamScript | BaseException] = (),
    ) -> None:
        self.responses = list(responses)
        self.streams = list(streams)
        self.requests: list[GenerateContentRequest] = []
        self.prompt_ids: list[str] = []

    def _record(self, request: GenerateContentRequest, prompt_id: str) -> None:
        self.requests.append(copy.deepcopy(request))
        self.prompt_ids.append(prompt_id)

    async def generate_content(self, request: GenerateContentRequest, prompt_id: str) -> GenerateContentResponse:
        self._record(request, prompt_id)
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def generate_content_stream(
        self, request: GenerateContentRequest, prompt_id: str
    ) -> AsyncIterator[GenerateContentResponse]:
        self._record(request, prompt_id)
        script = self.streams.pop(0)
        if isinstance(script, BaseException):
            raise script

        async def _iterate() -> AsyncIterator[GenerateContentResponse]:
            for chunk in script:
                if isinstance(chunk, BaseException):
                    raise chunk
                yield chunk

        return _iterate()


def fast_chat_config(**overrides: object) -> ChatConfig:
    values: dict[str, object] = {
        "model": "test-model",
        "fallback_model": "test-fallback",
        "retry": RetryOptions(max_attempts=3, initial_delay=0, max_delay=0),
        "stream_retry_delay": 0,
    }
    values.update(overrides)
    return ChatConfig(**values)  # type: ignore[arg-type]


def make_settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        model="test-model",
        workspace=tmp_path,
        retry_initial_delay=0,
        retry_max_delay=0,
        stream_retry_delay=0,
    )


def make_runtime(
    settings: Settings,
    generator: FakeContentGenerator,
    registry: ToolRegistry | None = None,
) -> RuntimeContext:
    return RuntimeContext(
        settings=settings,
        content_generator=generator,
        tool_registry=registry or ToolRegistry(),
        workspace=settings.resolve_workspace(),
    )
