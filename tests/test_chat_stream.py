import asyncio
import contextlib

import pytest

from burrow.chat.session import ChatSession
from burrow.chat.types import GenerateContentResponse, TextPart, ThoughtPart, Turn
from burrow.errors import ChatAbortedError, EmptyStreamError
from tests.support import FakeContentGenerator, fast_chat_config, parts_response, text_response


async def _drain(chat: ChatSession, message: str, prompt_id: str, **kwargs) -> list[str]:
    return [chunk.text async for chunk in chat.send_message_stream(message, prompt_id, **kwargs)]


@pytest.mark.asyncio
async def test_stream_commits_model_turn_after_full_drain() -> None:
    generator = FakeContentGenerator(streams=[[text_response("Hel"), text_response("lo")]])
    chat = ChatSession(generator, fast_chat_config())

    chunks = await _drain(chat, "hi", "p1")

    assert chunks == ["Hel", "lo"]
    assert [(turn.role, turn.text) for turn in chat.get_history()] == [("user", "hi"), ("model", "Hello")]
    assert [turn.text for turn in generator.requests[0].contents] == ["hi"]


@pytest.mark.asyncio
async def test_user_turn_is_visible_while_streaming() -> None:
    generator = FakeContentGenerator(streams=[[text_response("partial"), text_response(" rest")]])
    chat = ChatSession(generator, fast_chat_config())

    stream = chat.send_message_stream("question", "p1")
    first = await anext(stream)
    in_flight = chat.get_history()
    async for _ in stream:
        pass

    assert first.text == "partial"
    assert [(turn.role, turn.text) for turn in in_flight] == [("user", "question")]


@pytest.mark.asyncio
async def test_invalid_stream_is_retried_and_chunks_are_forwarded() -> None:
    generator = FakeContentGenerator(
        streams=[
            [text_response("draft"), text_response("")],
            [text_response("final")],
        ]
    )
    chat = ChatSession(generator, fast_chat_config())

    chunks = await _drain(chat, "hi", "p1")

    assert chunks == ["draft", "", "final"]
    assert [(turn.role, turn.text) for turn in chat.get_history()] == [("user", "hi"), ("model", "final")]
    assert len(generator.requests) == 2


@pytest.mark.asyncio
async def test_exhausted_invalid_stream_rolls_back_user_turn() -> None:
    invalid_attempt = [text_response("almost"), GenerateContentResponse(content=Turn(role="model", parts=[]))]
    generator = FakeContentGenerator(streams=[invalid_attempt, invalid_attempt, invalid_attempt])
    chat = ChatSession(generator, fast_chat_config())

    with pytest.raises(EmptyStreamError):
        await _drain(chat, "hi", "p1")

    assert chat.get_history() == []
    assert len(generator.requests) == 3


@pytest.mark.asyncio
async def test_thought_chunks_count_as_valid() -> None:
    generator = FakeContentGenerator(streams=[[parts_response(ThoughtPart("thinking")), text_response("done")]])
    chat = ChatSession(generator, fast_chat_config())

    await _drain(chat, "hi", "p1")

    assert chat.get_history()[-1].parts == [TextPart("done")]


@pytest.mark.asyncio
async def test_non_retryable_stream_error_rolls_back() -> None:
    generator = FakeContentGenerator(streams=[ValueError("400 bad request")])
    chat = ChatSession(generator, fast_chat_config())

    with pytest.raises(ValueError):
        await _drain(chat, "hi", "p1")

    assert chat.get_history() == []
    assert len(generator.requests) == 1


@pytest.mark.asyncio
async def test_abort_between_chunks_stops_stream_and_rolls_back() -> None:
    signal = asyncio.Event()
    generator = FakeContentGenerator(streams=[[text_response("one"), text_response("two"), text_response("three")]])
    chat = ChatSession(generator, fast_chat_config())

    received: list[str] = []
    with pytest.raises(ChatAbortedError):
        async for chunk in chat.send_message_stream("hi", "p1", signal=signal):
            received.append(chunk.text)
            signal.set()

    assert received == ["one"]
    assert chat.get_history() == []


@pytest.mark.asyncio
async def test_stream_after_rollback_starts_from_clean_history() -> None:
    generator = FakeContentGenerator(streams=[ValueError("400 bad request"), [text_response("fine")]])
    chat = ChatSession(generator, fast_chat_config())

    with pytest.raises(ValueError):
        await _drain(chat, "broken", "p1")
    await _drain(chat, "again", "p2")

    assert [turn.text for turn in generator.requests[1].contents] == ["again"]
    assert [(turn.role, turn.text) for turn in chat.get_history()] == [("user", "again"), ("model", "fine")]


@pytest.mark.asyncio
async def test_transient_stream_errors_retry_with_linear_backoff(monkeypatch) -> None:
    retries: list[tuple[int, float]] = []

    def _capture(message: str, *args: object) -> None:
        if message.startswith("chat.stream.retry"):
            retries.append((args[1], args[2]))

    monkeypatch.setattr("burrow.chat.session.logger.warning", _capture)
    generator = FakeContentGenerator(
        streams=[RuntimeError("429 busy"), RuntimeError("503 unavailable"), [text_response("ok")]]
    )
    chat = ChatSession(generator, fast_chat_config(stream_retry_delay=0.01))

    chunks = await _drain(chat, "hi", "p1")

    assert chunks == ["ok"]
    assert len(generator.requests) == 3
    assert retries == [(1, 0.01), (2, 0.02)]
    assert [(turn.role, turn.text) for turn in chat.get_history()] == [("user", "hi"), ("model", "ok")]


@pytest.mark.asyncio
async def test_single_transient_stream_error_is_retried() -> None:
    generator = FakeContentGenerator(streams=[RuntimeError("429 busy"), [text_response("ok")]])
    chat = ChatSession(generator, fast_chat_config())

    assert await _drain(chat, "hi", "p1") == ["ok"]
    assert len(generator.requests) == 2


@pytest.mark.asyncio
async def test_closing_a_stream_early_releases_the_session() -> None:
    generator = FakeContentGenerator(
        streams=[[text_response("first"), text_response(" never read")]],
        responses=[text_response("second answer")],
    )
    chat = ChatSession(generator, fast_chat_config())

    async with contextlib.aclosing(chat.send_message_stream("hi", "p1")) as stream:
        async for _ in stream:
            break

    response = await asyncio.wait_for(chat.send_message("again", "p2"), 1.0)

    assert response.text == "second answer"
    assert [(turn.role, turn.text) for turn in chat.get_history()] == [("user", "again"), ("model", "second answer")]
    assert [turn.text for turn in generator.requests[1].contents] == ["again"]
