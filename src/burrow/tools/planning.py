"""Planning tool that delegates to a planning sub-agent."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import TYPE_CHECKING

from loguru import logger
from pydantic import BaseModel, Field
from republic import Tool, ToolContext, tool_from_model

from burrow.subagent import (
    ContextState,
    ModelConfig,
    OutputConfig,
    PromptConfig,
    RunConfig,
    SubagentExtras,
    SubagentScope,
    SubagentTerminateMode,
)
from burrow.tools.registry import ToolResult, abort_signal

if TYPE_CHECKING:
    from burrow.runtime import RuntimeContext

PLANNING_TOOL_NAME = "planning_tool"
PLAN_FAILURE_MESSAGE = "Failed to create a plan."

PLANNING_SYSTEM_PROMPT = """
You are an expert planning assistant. Your purpose is to take a user's request and decompose it into a detailed, \
step-by-step execution plan. Another agent will execute the plan, so it must be precise and unambiguous.

Analyze the request carefully and create the plan as a JSON object holding a list of discrete, actionable tasks. \
Give each task a clear and concise description of what needs to be done.

Here is the user's request:
${user_request}
"""

PLANNING_RUN_CONFIG = RunConfig(max_time_minutes=3, max_turns=8)
PLANNING_OUTPUT_CONFIG = OutputConfig(
    outputs={"execution_plan": "A JSON string representing the detailed, step-by-step execution plan."}
)


class PlanningInput(BaseModel):
    user_request: str = Field(..., description="The high-level user request to be planned.")


async def _create_plan(
    context: RuntimeContext,
    user_request: str,
    signal: asyncio.Event | None,
    on_message: Callable[[str], None] | None = None,
) -> str | None:
    try:
        planner = await SubagentScope.create(
            "planning-subagent",
            context,
            PromptConfig(system_prompt=PLANNING_SYSTEM_PROMPT),
            ModelConfig(model=context.settings.model, temp=0.1, top_p=0.95),
            PLANNING_RUN_CONFIG,
            SubagentExtras(output_config=PLANNING_OUTPUT_CONFIG, on_message=on_message),
        )
        state = ContextState()
        state.set("user_request", user_request)
        output = await planner.run_non_interactive(state, signal)
    except Exception:
        logger.exception("planning.error")
        return None

    if output.terminate_reason != SubagentTerminateMode.GOAL:
        logger.warning("planning.unfinished reason={}", output.terminate_reason)
        return None
    return output.emitted_vars.get("execution_plan") or None


def create_planning_tool(
    host_context: RuntimeContext,
    *,
    on_message: Callable[[str], None] | None = None,
) -> Tool:
    """Create the planning tool bound to a host context.

    ``on_message`` receives the planner's text as it streams in.
    """

    async def _handler(params: PlanningInput, context: ToolContext | None = None) -> ToolResult:
        plan = await _create_plan(host_context, params.user_request, abort_signal(context), on_message)
        if plan is None:
            return ToolResult(
                llm_content={"success": False, "error": PLAN_FAILURE_MESSAGE},
                return_display=PLAN_FAILURE_MESSAGE,
            )
        try:
            parsed = json.loads(plan)
        except json.JSONDecodeError as exc:
            logger.warning("planning.invalid_json error={}", exc)
            return ToolResult(
                llm_content={"success": False, "error": "Invalid JSON response"},
                return_display=plan,
            )
        return ToolResult(
            llm_content={"success": True, "plan": parsed},
            return_display=json.dumps(parsed, indent=2, ensure_ascii=False),
        )

    return tool_from_model(
        PlanningInput,
        _handler,
        name=PLANNING_TOOL_NAME,
        description=(
            "Generates a detailed, step-by-step execution plan from a high-level user request. "
            "Use it to break complex tasks down into smaller, manageable steps."
        ),
        context=True,
    )
