"""Host context shared by the engine, tools and sub-agents."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from republic import Tool

from burrow.chat.generator import ContentGenerator, RepublicContentGenerator
from burrow.chat.session import ChatConfig, FallbackHandler
from burrow.config import Settings
from burrow.process.executor import ProcessExecutor
from burrow.tools.registry import ToolRegistry


@dataclass
class RuntimeContext:
    """Explicit collaborators handed to everything that talks to the model."""

    settings: Settings
    content_generator: ContentGenerator
    tool_registry: ToolRegistry = field(default_factory=ToolRegistry)
    fallback_handler: FallbackHandler | None = None
    workspace: Path | None = None

    def __post_init__(self) -> None:
        if self.workspace is None:
            self.workspace = self.settings.resolve_workspace()

    def build_chat_config(self, model: str | None = None) -> ChatConfig:
        return self.settings.chat_config(model)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        provider: str = "gemini",
        tools: Iterable[Tool] = (),
        fallback_handler: FallbackHandler | None = None,
    ) -> RuntimeContext:
        """Build a context with the Republic generator and the default tools."""
        from burrow.tools.shell import create_shell_tool

        generator = RepublicContentGenerator(
            provider=provider,
            api_key=settings.api_key,
            api_base=settings.api_base,
            max_output_tokens=settings.max_output_tokens,
        )
        workspace = settings.resolve_workspace()
        registry = ToolRegistry(tools)
        if not registry.has("run_shell_command"):
            executor = ProcessExecutor(kill_grace_seconds=settings.kill_grace_seconds)
            registry.register(create_shell_tool(executor, workspace, use_pty=settings.use_pty), label="Shell")
        return cls(
            settings=settings,
            content_generator=generator,
            tool_registry=registry,
            fallback_handler=fallback_handler,
            workspace=workspace,
        )
