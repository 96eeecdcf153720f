"""Conversation engine: serialized sends over an owned history."""

from __future__ import annotations

import asyncio
import contextlib
import copy
import inspect
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from dataclasses import dataclass, field, replace

from loguru import logger

from burrow.chat.generator import ContentGenerator
from burrow.chat.history import (
    consolidate_model_output,
    extract_curated_history,
    is_text_turn,
    is_valid_response,
    merge_text_turn,
    validate_history,
)
from burrow.chat.retry import (
    RetryOptions,
    default_should_retry,
    is_invalid_argument_error,
    is_schema_depth_error,
    retry_with_backoff,
)
from burrow.chat.schema import has_cycle_in_schema
from burrow.chat.types import (
    MODEL_ROLE,
    AuthType,
    FunctionDeclaration,
    GenerateContentRequest,
    GenerateContentResponse,
    GenerationConfig,
    Part,
    PartLike,
    ThoughtPart,
    Turn,
    create_user_turn,
    is_function_response,
)
from burrow.errors import ChatAbortedError, EmptyStreamError, SchemaDepthError

FallbackResult = str | bool | None
FallbackHandler = Callable[[str, str, BaseException | None], Awaitable[FallbackResult] | FallbackResult]
Message = PartLike | Sequence[PartLike]

CYCLIC_SCHEMA_HINT = (
    "\n\nThis error was probably caused by cyclic schema references in one of the following tools, "
    "try disabling them:\n\n - "
)


@dataclass(frozen=True)
class ChatConfig:
    """Explicit per-session configuration."""

    model: str
    fallback_model: str | None = None
    auth_type: AuthType | None = None
    retry: RetryOptions = field(default_factory=RetryOptions)
    stream_max_retries: int = 2
    stream_retry_delay: float = 0.5


class ChatSession:
    """Chat session that sends messages to the model with previous conversation context.

    The session keeps the comprehensive history, every turn including invalid
    or empty model outputs. Requests carry the curated view of it. At most one
    send is in flight at a time: later calls wait on the session lock, which
    is released whether the earlier send succeeded or failed.
    """

    def __init__(
        self,
        content_generator: ContentGenerator,
        config: ChatConfig,
        generation_config: GenerationConfig | None = None,
        history: Sequence[Turn] | None = None,
        *,
        fallback_handler: FallbackHandler | None = None,
    ) -> None:
        history = list(history or [])
        validate_history(history)
        self._generator = content_generator
        self._config = config
        self._generation_config = generation_config or GenerationConfig()
        self._history: list[Turn] = copy.deepcopy(history)
        self._fallback_handler = fallback_handler
        self._model = config.model
        self._fallback_used = False
        self._send_lock = asyncio.Lock()

    @property
    def model(self) -> str:
        return self._model

    @property
    def fallback_mode(self) -> bool:
        return self._fallback_used

    @property
    def generation_config(self) -> GenerationConfig:
        return self._generation_config

    def set_system_instruction(self, instruction: str) -> None:
        self._generation_config = replace(self._generation_config, system_instruction=instruction)

    def set_tools(self, tools: Sequence[FunctionDeclaration]) -> None:
        self._generation_config = replace(self._generation_config, tools=tuple(tools))

    def get_history(self, curated: bool = False) -> list[Turn]:
        """Return a deep copy of the comprehensive or curated history."""
        history = extract_curated_history(self._history) if curated else self._history
        return copy.deepcopy(history)

    def clear_history(self) -> None:
        self._history = []

    def add_history(self, turn: Turn) -> None:
        self._history.append(copy.deepcopy(turn))

    def set_history(self, history: Sequence[Turn]) -> None:
        self._history = copy.deepcopy(list(history))

    async def send_message(
        self,
        message: Message,
        prompt_id: str,
        *,
        config: GenerationConfig | None = None,
    ) -> GenerateContentResponse:
        """Send one message and record the exchange once the response arrives."""
        async with self._send_lock:
            user_turn = create_user_turn(message)
            curated = self.get_history(curated=True)
            request_contents = [*curated, user_turn]

            async def api_call() -> GenerateContentResponse:
                request = GenerateContentRequest(
                    model=self._model,
                    contents=request_contents,
                    config=self._generation_config.merged(config),
                )
                return await self._generator.generate_content(request, prompt_id)

            logger.info("chat.send.start prompt_id={} model={} turns={}", prompt_id, self._model, len(request_contents))
            try:
                response = await retry_with_backoff(
                    api_call,
                    self._config.retry,
                    should_retry=default_should_retry,
                    on_persistent_429=self._handle_fallback,
                    auth_type=self._config.auth_type,
                )
            except Exception as exc:
                logger.warning("chat.send.error prompt_id={} error={}", prompt_id, exc)
                annotated = self.annotate_schema_depth_error(exc)
                if annotated is not None:
                    raise annotated from exc
                raise

            # The side-channel trace repeats the curated history we sent; keep only the new tail.
            afc_history = response.automatic_function_calling_history or []
            afc_tail = copy.deepcopy(afc_history[len(curated) :])
            model_output = [copy.deepcopy(response.content)] if response.content is not None else []
            self._record_history(user_turn, model_output, afc_tail)
            logger.info("chat.send.finish prompt_id={} model={}", prompt_id, self._model)
            return response

    async def send_message_stream(
        self,
        message: Message,
        prompt_id: str,
        *,
        config: GenerationConfig | None = None,
        signal: asyncio.Event | None = None,
    ) -> AsyncIterator[GenerateContentResponse]:
        """Send one message and yield response chunks as they arrive.

        The user turn is appended before the request so it is visible while the
        stream is in flight. Chunks are forwarded immediately, and only a fully
        drained, valid stream commits the model turn. Invalid streams and
        transient errors are retried; when attempts run out, or ``signal`` is
        set between chunks, the optimistic user turn is rolled back.

        The session lock is held until the generator finishes. Consumers that
        may stop early must close it, e.g. with :func:`contextlib.aclosing`,
        so the lock is released and the user turn rolled back.
        """
        async with self._send_lock:
            user_turn = create_user_turn(message)
            self._history.append(user_turn)
            request_contents = self.get_history(curated=True)
            max_retries = self._config.stream_max_retries
            last_error: BaseException = EmptyStreamError("Request failed after all retries.")
            committed = False
            try:
                for attempt in range(max_retries + 1):
                    try:
                        attempt_stream = self._stream_attempt(request_contents, prompt_id, config, user_turn, signal)
                        async with contextlib.aclosing(attempt_stream) as chunks:
                            async for chunk in chunks:
                                yield chunk
                        committed = True
                        return
                    except ChatAbortedError:
                        raise
                    except Exception as exc:
                        last_error = exc
                        retryable = isinstance(exc, EmptyStreamError) or default_should_retry(exc)
                        if not retryable or attempt >= max_retries:
                            break
                        delay = self._config.stream_retry_delay * (attempt + 1)
                        logger.warning(
                            "chat.stream.retry prompt_id={} attempt={} delay={:.2f}s error={}",
                            prompt_id,
                            attempt + 1,
                            delay,
                            exc,
                        )
                        await asyncio.sleep(delay)

                logger.warning("chat.stream.error prompt_id={} error={}", prompt_id, last_error)
                annotated = self.annotate_schema_depth_error(last_error)
                if annotated is not None:
                    raise annotated from last_error
                raise last_error
            finally:
                if not committed:
                    self._rollback(user_turn)

    async def _stream_attempt(
        self,
        contents: list[Turn],
        prompt_id: str,
        config: GenerationConfig | None,
        user_turn: Turn,
        signal: asyncio.Event | None,
    ) -> AsyncIterator[GenerateContentResponse]:
        _raise_if_aborted(signal, prompt_id)
        request = GenerateContentRequest(
            model=self._model,
            contents=contents,
            config=self._generation_config.merged(config),
        )
        stream = await self._generator.generate_content_stream(request, prompt_id)
        parts: list[Part] = []
        invalid = False
        try:
            async for chunk in stream:
                if is_valid_response(chunk) and chunk.content is not None:
                    parts.extend(copy.deepcopy(chunk.content.parts))
                else:
                    invalid = True
                yield chunk
                _raise_if_aborted(signal, prompt_id)
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        if invalid:
            raise EmptyStreamError("Model stream had invalid chunks")
        model_output = [Turn(role=MODEL_ROLE, parts=parts)] if parts else []
        self._append_model_output(user_turn, model_output, can_merge=True)
        logger.info("chat.stream.finish prompt_id={} model={} parts={}", prompt_id, self._model, len(parts))

    def _rollback(self, user_turn: Turn) -> None:
        if self._history and self._history[-1] is user_turn:
            self._history.pop()
            logger.debug("chat.history.rollback turns={}", len(self._history))

    def _record_history(self, user_turn: Turn, model_output: list[Turn], afc_tail: list[Turn]) -> None:
        if afc_tail:
            self._history.extend(extract_curated_history(afc_tail))
        else:
            self._history.append(user_turn)
        self._append_model_output(user_turn, model_output, can_merge=not afc_tail)

    def _append_model_output(self, user_turn: Turn, model_output: list[Turn], *, can_merge: bool) -> None:
        outputs: list[Turn] = []
        for turn in model_output:
            parts = consolidate_model_output(turn.parts)
            if parts:
                outputs.append(Turn(role=MODEL_ROLE, parts=parts))

        if not outputs:
            only_thoughts = any(isinstance(part, ThoughtPart) for turn in model_output for part in turn.parts)
            # Empty placeholder keeps user/model alternation intact.
            if not only_thoughts and not is_function_response(user_turn):
                self._history.append(Turn(role=MODEL_ROLE, parts=[]))
            return

        consolidated: list[Turn] = []
        for turn in outputs:
            if consolidated and is_text_turn(consolidated[-1]) and is_text_turn(turn):
                merge_text_turn(consolidated[-1], turn)
            else:
                consolidated.append(turn)

        last_entry = self._history[-1] if self._history else None
        if can_merge and last_entry is not None and is_text_turn(last_entry) and is_text_turn(consolidated[0]):
            merge_text_turn(last_entry, consolidated.pop(0))
        self._history.extend(consolidated)

    async def _handle_fallback(self, auth_type: AuthType | None, error: BaseException) -> str | None:
        if auth_type != AuthType.LOGIN_WITH_OAUTH:
            return None
        fallback_model = self._config.fallback_model
        if not fallback_model or self._fallback_used or self._model == fallback_model:
            return None
        if self._fallback_handler is None:
            return None

        try:
            accepted = self._fallback_handler(self._model, fallback_model, error)
            if inspect.isawaitable(accepted):
                accepted = await accepted
        except Exception:
            logger.exception("chat.fallback.handler_error model={}", self._model)
            return None

        if accepted is False or accepted is None:
            logger.info("chat.fallback.declined model={}", self._model)
            return None

        previous = self._model
        self._model = accepted if isinstance(accepted, str) and accepted else fallback_model
        self._fallback_used = True
        logger.warning("chat.fallback.accepted from={} to={}", previous, self._model)
        return self._model

    def annotate_schema_depth_error(self, error: BaseException) -> SchemaDepthError | None:
        """Name the registered tools with cyclic schemas when the backend rejects their depth."""
        message = str(error)
        if not (is_schema_depth_error(message) or is_invalid_argument_error(message)):
            return None
        cyclic = [
            declaration.name
            for declaration in self._generation_config.tools or ()
            if has_cycle_in_schema(declaration.parameters)
        ]
        if not cyclic:
            return None
        return SchemaDepthError(message + CYCLIC_SCHEMA_HINT + "\n - ".join(cyclic) + "\n", cyclic)


def _raise_if_aborted(signal: asyncio.Event | None, prompt_id: str) -> None:
    if signal is not None and signal.is_set():
        raise ChatAbortedError(f"Stream for prompt {prompt_id} was aborted")
