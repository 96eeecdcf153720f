"""Bounded, non-interactive sub-agent runs."""

from __future__ import annotations

import asyncio
import contextlib
import enum
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from loguru import logger
from pydantic import BaseModel, Field
from republic import Tool, tool_from_model

from burrow.chat.session import ChatSession
from burrow.chat.types import FunctionCallPart, FunctionResponsePart, GenerationConfig, Part, TextPart
from burrow.errors import ChatAbortedError, ConfigurationError, SubagentError
from burrow.subagent.context import ContextState, template_string
from burrow.tools.registry import ToolRegistry, ToolResult

if TYPE_CHECKING:
    from burrow.runtime import RuntimeContext

EMIT_VALUE_TOOL_NAME = "self.emitvalue"
EMIT_VALUE_MODEL_NAME = ToolRegistry.to_model_name(EMIT_VALUE_TOOL_NAME)
INITIAL_MESSAGE = "Get Started!"

NON_INTERACTIVE_RULES = """

Important Rules:
 * You are running in a non-interactive mode. You CANNOT ask the user for input or clarification. Work with the information and tools you have.
 * Once you are done, stop calling tools other than the ones needed to report your results."""


class SubagentTerminateMode(enum.StrEnum):
    GOAL = "GOAL"
    MAX_TURNS = "MAX_TURNS"
    TIMEOUT = "TIMEOUT"
    ERROR = "ERROR"
    ABORTED = "ABORTED"


@dataclass(frozen=True)
class PromptConfig:
    system_prompt: str


@dataclass(frozen=True)
class ModelConfig:
    model: str
    temp: float | None = None
    top_p: float | None = None


@dataclass(frozen=True)
class RunConfig:
    max_time_minutes: float
    max_turns: int | None = None


@dataclass(frozen=True)
class ToolConfig:
    tools: tuple[str, ...] = ()


@dataclass(frozen=True)
class OutputConfig:
    outputs: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class SubagentExtras:
    tool_config: ToolConfig | None = None
    output_config: OutputConfig | None = None
    on_message: Callable[[str], None] | None = None


@dataclass
class SubagentOutput:
    terminate_reason: SubagentTerminateMode = SubagentTerminateMode.ERROR
    emitted_vars: dict[str, str] = field(default_factory=dict)


class EmitValueInput(BaseModel):
    emit_variable_name: str = Field(..., description="Name of the output variable to emit")
    emit_variable_value: str = Field(..., description="Value of the output variable")


class SubagentScope:
    """One sub-agent: a private chat session bounded by time and turns.

    Build with :meth:`create`, run once with :meth:`run_non_interactive`,
    then read :attr:`output`.
    """

    def __init__(
        self,
        name: str,
        host_context: RuntimeContext,
        prompt_config: PromptConfig,
        model_config: ModelConfig,
        run_config: RunConfig,
        extras: SubagentExtras,
        tools: list[Tool],
    ) -> None:
        self.name = name
        self.subagent_id = f"{name}-{uuid.uuid4().hex[:6]}"
        self.output = SubagentOutput()
        self._host = host_context
        self._prompt_config = prompt_config
        self._model_config = model_config
        self._run_config = run_config
        self._output_config = extras.output_config or OutputConfig()
        self._on_message = extras.on_message
        self._registry = ToolRegistry(tools)
        if self._output_config.outputs:
            self._registry.register(self._emit_value_tool(), label="Emit Value")
        self._started = False

    @classmethod
    async def create(
        cls,
        name: str,
        host_context: RuntimeContext,
        prompt_config: PromptConfig,
        model_config: ModelConfig,
        run_config: RunConfig,
        extras: SubagentExtras | None = None,
    ) -> SubagentScope:
        """Build a sub-agent after checking its tool allowlist against the host registry."""
        extras = extras or SubagentExtras()
        tool_names = extras.tool_config.tools if extras.tool_config else ()
        tools: list[Tool] = []
        for tool_name in tool_names:
            tool = host_context.tool_registry.get(tool_name)
            if tool is None:
                raise ConfigurationError(f"Sub-agent {name} references unknown tool: {tool_name}")
            tools.append(tool)
        return cls(name, host_context, prompt_config, model_config, run_config, extras, tools)

    def _emit_value_tool(self) -> Tool:
        def _handler(params: EmitValueInput) -> ToolResult:
            self.output.emitted_vars[params.emit_variable_name] = params.emit_variable_value
            message = f"Emitted variable {params.emit_variable_name} successfully"
            return ToolResult(llm_content=message, return_display=message)

        return tool_from_model(
            EmitValueInput,
            _handler,
            name=EMIT_VALUE_TOOL_NAME,
            description=(
                "Emits a single named output value. Call it once for each required output, "
                "as soon as the value is known."
            ),
        )

    def _build_system_prompt(self, context: ContextState) -> str:
        prompt = template_string(self._prompt_config.system_prompt, context)
        outputs = self._output_config.outputs
        if outputs:
            prompt += (
                f"\nWhen you have the results, you MUST emit these outputs with the '{EMIT_VALUE_MODEL_NAME}' tool:\n"
            )
            prompt += "\n".join(f"* {key}: {description}" for key, description in outputs.items())
        return prompt + NON_INTERACTIVE_RULES

    def _create_chat(self, context: ContextState) -> ChatSession:
        generation_config = GenerationConfig(
            system_instruction=self._build_system_prompt(context),
            temperature=self._model_config.temp,
            top_p=self._model_config.top_p,
            tools=tuple(self._registry.function_declarations()),
        )
        return ChatSession(
            self._host.content_generator,
            self._host.build_chat_config(self._model_config.model),
            generation_config,
            fallback_handler=self._host.fallback_handler,
        )

    def _missing_outputs(self) -> list[str]:
        return [key for key in self._output_config.outputs if key not in self.output.emitted_vars]

    def _budget_exhausted(self, started: float, turns: int) -> SubagentTerminateMode | None:
        max_turns = self._run_config.max_turns
        if max_turns is not None and turns >= max_turns:
            return SubagentTerminateMode.MAX_TURNS
        if (time.monotonic() - started) / 60 >= self._run_config.max_time_minutes:
            return SubagentTerminateMode.TIMEOUT
        return None

    async def run_non_interactive(
        self,
        context: ContextState,
        signal: asyncio.Event | None = None,
    ) -> SubagentOutput:
        """Drive the sub-agent until it reaches its goal or a budget stops it."""
        if self._started:
            raise SubagentError(f"Sub-agent {self.subagent_id} has already run")
        self._started = True

        chat = self._create_chat(context)
        started = time.monotonic()
        turns = 0
        message: list[Part] = [TextPart(INITIAL_MESSAGE)]
        logger.info("subagent.start id={} model={}", self.subagent_id, self._model_config.model)
        try:
            while True:
                if signal is not None and signal.is_set():
                    self.output.terminate_reason = SubagentTerminateMode.ABORTED
                    break
                exhausted = self._budget_exhausted(started, turns)
                if exhausted is not None:
                    self.output.terminate_reason = exhausted
                    break

                prompt_id = f"{self.subagent_id}#{turns}"
                turns += 1
                function_calls: list[FunctionCallPart] = []
                async with contextlib.aclosing(chat.send_message_stream(message, prompt_id, signal=signal)) as stream:
                    async for chunk in stream:
                        function_calls.extend(chunk.function_calls)
                        if chunk.text and self._on_message is not None:
                            self._on_message(chunk.text)

                if function_calls:
                    message = await self._process_function_calls(function_calls, signal)
                    continue

                missing = self._missing_outputs()
                if not missing:
                    self.output.terminate_reason = SubagentTerminateMode.GOAL
                    break
                logger.info("subagent.nudge id={} missing={}", self.subagent_id, ",".join(missing))
                message = [
                    TextPart(
                        "You have stopped calling tools but have not emitted the following required "
                        f"variables: {', '.join(missing)}. Use the '{EMIT_VALUE_MODEL_NAME}' tool to emit "
                        "them now, or continue working if necessary."
                    )
                ]
        except ChatAbortedError:
            self.output.terminate_reason = SubagentTerminateMode.ABORTED
        except Exception:
            logger.exception("subagent.error id={}", self.subagent_id)
            self.output.terminate_reason = SubagentTerminateMode.ERROR

        logger.info(
            "subagent.finish id={} reason={} turns={} emitted={}",
            self.subagent_id,
            self.output.terminate_reason,
            turns,
            ",".join(self.output.emitted_vars),
        )
        return self.output

    async def _process_function_calls(
        self,
        calls: list[FunctionCallPart],
        signal: asyncio.Event | None,
    ) -> list[Part]:
        responses: list[Part] = []
        for idx, call in enumerate(calls):
            call_id = call.id or f"{call.name}-{idx}"
            tool_name = self._registry.resolve_model_name(call.name)
            if tool_name is None:
                payload: dict[str, Any] = {"error": f"Tool {call.name} is not available to this agent"}
            else:
                try:
                    result = await self._registry.execute(
                        tool_name, kwargs=call.args, signal=signal, run_id=f"{self.subagent_id}:{call_id}"
                    )
                except Exception as exc:
                    # Tool failures are reported back to the model rather than ending the run.
                    payload = {"error": f"{exc!s}"}
                else:
                    content = result.llm_content
                    payload = content if isinstance(content, dict) else {"output": content}
            responses.append(FunctionResponsePart(name=call.name, response=payload, id=call_id))
        return responses
