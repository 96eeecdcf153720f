"""Tool registry layered on Republic tools."""

from __future__ import annotations

import asyncio
import builtins
import inspect
import json
import time
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from loguru import logger
from republic import Tool, ToolContext

from burrow.chat.types import FunctionDeclaration
from burrow.errors import ToolNotFoundError

SIGNAL_STATE_KEY = "signal"


def _shorten_text(text: str, width: int = 30, placeholder: str = "...") -> str:
    """Shorten text to width characters, cutting in the middle of words if needed."""
    if len(text) <= width:
        return text

    available = width - len(placeholder)
    if available <= 0:
        return placeholder

    return text[:available] + placeholder


@dataclass(frozen=True)
class ToolResult:
    """What a tool hands back: content for the model and text for display."""

    llm_content: str | dict[str, Any]
    return_display: str


def abort_signal(context: ToolContext | None) -> asyncio.Event | None:
    """Return the abort signal carried by a tool context, if any."""
    if context is None:
        return None
    signal = context.state.get(SIGNAL_STATE_KEY)
    return signal if isinstance(signal, asyncio.Event) else None


def to_tool_result(value: Any) -> ToolResult:
    if isinstance(value, ToolResult):
        return value
    if isinstance(value, dict):
        return ToolResult(llm_content=value, return_display=json.dumps(value, ensure_ascii=False))
    text = "" if value is None else str(value)
    return ToolResult(llm_content=text, return_display=text)


@dataclass(frozen=True)
class ToolDescriptor:
    """Tool metadata and runtime handle."""

    name: str
    label: str
    tool: Tool


class ToolRegistry:
    """Registry of tools the model may call."""

    def __init__(self, tools: Iterable[Tool] = ()) -> None:
        self._tools: dict[str, ToolDescriptor] = {}
        self._runners: dict[str, Tool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: Tool, *, label: str | None = None) -> None:
        if tool.name in self._tools:
            logger.warning("tool.register.replace name={}", tool.name)
        self._tools[tool.name] = ToolDescriptor(name=tool.name, label=label or tool.name, tool=tool)
        self._runners[tool.name] = self._wrap_tool(tool)

    def has(self, name: str) -> bool:
        return name in self._tools

    def get(self, name: str) -> Tool | None:
        descriptor = self._tools.get(name)
        return descriptor.tool if descriptor is not None else None

    def names(self) -> builtins.list[str]:
        return sorted(self._tools)

    def tools(self) -> builtins.list[Tool]:
        return [self._tools[name].tool for name in self.names()]

    def descriptors(self) -> builtins.list[ToolDescriptor]:
        return [self._tools[name] for name in self.names()]

    @staticmethod
    def to_model_name(name: str) -> str:
        return name.replace(".", "_")

    def resolve_model_name(self, model_name: str) -> str | None:
        """Map a name the model used back to the registered tool name."""
        if model_name in self._tools:
            return model_name
        for name in self._tools:
            if self.to_model_name(name) == model_name:
                return name
        return None

    def function_declarations(self, names: Iterable[str] | None = None) -> builtins.list[FunctionDeclaration]:
        selected = self.names() if names is None else list(names)
        declarations: builtins.list[FunctionDeclaration] = []
        seen_names: set[str] = set()
        for name in selected:
            tool = self.get(name)
            if tool is None:
                raise ToolNotFoundError(name)
            model_name = self.to_model_name(name)
            if model_name in seen_names:
                raise ValueError(f"Duplicate model tool name after conversion: {model_name}")
            seen_names.add(model_name)
            function = tool.schema()["function"]
            declarations.append(
                FunctionDeclaration(
                    name=model_name,
                    description=function["description"],
                    parameters=function["parameters"],
                )
            )
        return declarations

    def _log_tool_call(self, name: str, kwargs: Mapping[str, Any], context: ToolContext | None) -> None:
        params: builtins.list[str] = []
        for key, value in kwargs.items():
            try:
                rendered = json.dumps(value, ensure_ascii=False)
            except TypeError:
                rendered = repr(value)
            params.append(f"{key}={_shorten_text(rendered)}")
        run_id = context.run_id if context is not None else "-"
        logger.info("tool.call.start name={} run_id={} {{ {} }}", name, run_id, ", ".join(params))

    def _wrap_tool(self, tool: Tool) -> Tool:
        if tool.handler is None:
            return tool

        original_tool = tool

        async def _handler(*args: Any, **kwargs: Any) -> ToolResult:
            context = kwargs.get("context") if original_tool.context else None
            call_kwargs = {f"arg{idx}": value for idx, value in enumerate(args)}
            call_kwargs.update({key: value for key, value in kwargs.items() if key != "context"})
            self._log_tool_call(original_tool.name, call_kwargs, context)

            start = time.monotonic()
            try:
                result = original_tool.run(*args, **kwargs)
                if inspect.isawaitable(result):
                    result = await result
                return to_tool_result(result)
            except Exception:
                logger.exception("tool.call.error name={}", original_tool.name)
                raise
            finally:
                duration = time.monotonic() - start
                logger.info("tool.call.end name={} duration={:.3f}ms", original_tool.name, duration * 1000)

        return Tool(
            name=original_tool.name,
            description=original_tool.description,
            parameters=original_tool.parameters,
            handler=_handler,
            context=original_tool.context,
        )

    async def execute(
        self,
        name: str,
        *,
        kwargs: Mapping[str, Any],
        signal: asyncio.Event | None = None,
        run_id: str | None = None,
    ) -> ToolResult:
        tool = self._runners.get(name)
        if tool is None:
            raise ToolNotFoundError(name)

        if tool.context:
            context = ToolContext(
                tape=None,
                run_id=run_id or uuid.uuid4().hex,
                state={SIGNAL_STATE_KEY: signal},
            )
            result = tool.run(context=context, **kwargs)
        else:
            result = tool.run(**kwargs)
        if inspect.isawaitable(result):
            result = await result
        return to_tool_result(result)
