"""Content generator boundary and the Republic-backed implementation."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from typing import Any, Protocol

from loguru import logger
from republic import LLM

from burrow.chat.types import (
    MODEL_ROLE,
    FunctionCallPart,
    FunctionResponsePart,
    GenerateContentRequest,
    GenerateContentResponse,
    Part,
    TextPart,
    Turn,
)


class ContentGenerator(Protocol):
    """The remote model call."""

    async def generate_content(
        self, request: GenerateContentRequest, prompt_id: str
    ) -> GenerateContentResponse: ...

    async def generate_content_stream(
        self, request: GenerateContentRequest, prompt_id: str
    ) -> AsyncIterator[GenerateContentResponse]: ...


def turns_to_messages(contents: list[Turn], system_instruction: str | None = None) -> list[dict[str, Any]]:
    """Convert turns into chat-completion style messages."""
    messages: list[dict[str, Any]] = []
    if system_instruction:
        messages.append({"role": "system", "content": system_instruction})

    for turn in contents:
        texts = [part.text for part in turn.parts if isinstance(part, TextPart)]
        calls = [part for part in turn.parts if isinstance(part, FunctionCallPart)]
        responses = [part for part in turn.parts if isinstance(part, FunctionResponsePart)]
        if turn.role == MODEL_ROLE:
            message: dict[str, Any] = {"role": "assistant", "content": "".join(texts) or None}
            if calls:
                message["tool_calls"] = [
                    {
                        "id": call.id or call.name,
                        "type": "function",
                        "function": {"name": call.name, "arguments": json.dumps(call.args, ensure_ascii=False)},
                    }
                    for call in calls
                ]
            messages.append(message)
            continue

        for response in responses:
            messages.append({
                "role": "tool",
                "tool_call_id": response.id or response.name,
                "content": json.dumps(response.response, ensure_ascii=False),
            })
        if texts:
            messages.append({"role": "user", "content": "".join(texts)})
    return messages


def _parse_arguments(raw: object) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not isinstance(raw, str) or not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return {"raw": raw}
    return parsed if isinstance(parsed, dict) else {"value": parsed}


def response_from_completion(completion: Any) -> GenerateContentResponse:
    """Convert a chat-completion payload into a response with one model turn."""
    if isinstance(completion, str):
        return GenerateContentResponse(content=Turn(role=MODEL_ROLE, parts=[TextPart(completion)]))
    choices = getattr(completion, "choices", None)
    if not choices:
        return GenerateContentResponse()
    choice = choices[0]
    message = getattr(choice, "message", None)
    if message is None:
        return GenerateContentResponse(finish_reason=getattr(choice, "finish_reason", None))

    parts: list[Part] = []
    content = getattr(message, "content", None)
    if isinstance(content, str) and content:
        parts.append(TextPart(content))
    for idx, tool_call in enumerate(getattr(message, "tool_calls", None) or []):
        function = getattr(tool_call, "function", None)
        if function is None:
            continue
        parts.append(
            FunctionCallPart(
                name=getattr(function, "name", ""),
                args=_parse_arguments(getattr(function, "arguments", "")),
                id=getattr(tool_call, "id", None) or str(idx),
            )
        )

    usage = getattr(completion, "usage", None)
    usage_payload = None
    if usage is not None:
        usage_payload = {
            "prompt_tokens": getattr(usage, "prompt_tokens", 0) or 0,
            "completion_tokens": getattr(usage, "completion_tokens", 0) or 0,
        }
    return GenerateContentResponse(
        content=Turn(role=MODEL_ROLE, parts=parts),
        finish_reason=getattr(choice, "finish_reason", None),
        usage=usage_payload,
    )


class RepublicContentGenerator:
    """Content generator backed by a Republic ``LLM`` client."""

    def __init__(
        self,
        *,
        provider: str,
        api_key: str | None = None,
        api_base: str | None = None,
        max_output_tokens: int = 4096,
    ) -> None:
        self._provider = provider
        self._api_key = api_key
        self._api_base = api_base
        self._max_output_tokens = max_output_tokens
        self._clients: dict[str, LLM] = {}

    def _client(self, model: str) -> LLM:
        resolved = model if ":" in model else f"{self._provider}:{model}"
        client = self._clients.get(resolved)
        if client is None:
            client = LLM(resolved, api_key=self._api_key, api_base=self._api_base)
            self._clients[resolved] = client
        return client

    async def generate_content(self, request: GenerateContentRequest, prompt_id: str) -> GenerateContentResponse:
        config = request.config
        kwargs: dict[str, Any] = {
            "messages": turns_to_messages(request.contents, config.system_instruction),
            "tools": [item.schema() for item in config.tools or ()],
            "max_tokens": config.max_output_tokens or self._max_output_tokens,
        }
        if config.temperature is not None:
            kwargs["temperature"] = config.temperature
        if config.top_p is not None:
            kwargs["top_p"] = config.top_p

        logger.debug("chat.generate prompt_id={} model={} turns={}", prompt_id, request.model, len(request.contents))
        client = self._client(request.model)
        completion = await asyncio.to_thread(client.chat.raw, **kwargs)
        return response_from_completion(completion)

    async def generate_content_stream(
        self, request: GenerateContentRequest, prompt_id: str
    ) -> AsyncIterator[GenerateContentResponse]:
        response = await self.generate_content(request, prompt_id)

        async def _single_chunk() -> AsyncIterator[GenerateContentResponse]:
            yield response

        return _single_chunk()
