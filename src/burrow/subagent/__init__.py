"""Sub-agent orchestrator."""

from burrow.subagent.context import ContextState, template_string
from burrow.subagent.scope import (
    EMIT_VALUE_MODEL_NAME,
    EMIT_VALUE_TOOL_NAME,
    ModelConfig,
    OutputConfig,
    PromptConfig,
    RunConfig,
    SubagentExtras,
    SubagentOutput,
    SubagentScope,
    SubagentTerminateMode,
    ToolConfig,
)

__all__ = [
    "EMIT_VALUE_MODEL_NAME",
    "EMIT_VALUE_TOOL_NAME",
    "ContextState",
    "ModelConfig",
    "OutputConfig",
    "PromptConfig",
    "RunConfig",
    "SubagentExtras",
    "SubagentOutput",
    "SubagentScope",
    "SubagentTerminateMode",
    "ToolConfig",
    "template_string",
]
