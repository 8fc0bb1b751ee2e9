"""Background sub-agent tool."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable

from littleclaw.models import ToolContext, ToolResult
from littleclaw.tools.base import Tool

if TYPE_CHECKING:
    from littleclaw.agent_runtime import BackgroundTask


class SpawnTool(Tool):
    """Hand a long-running task to a background run of the agent."""

    name = "spawn"
    description = (
        "Spawns a detached, asynchronous sub-agent to handle a long-running task in the "
        "background. Does not block the main conversation; the sub-agent messages the user "
        "when it is done."
    )
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "task": {"type": "string", "description": "A highly detailed instruction for the sub-agent."},
        },
        "required": ["task"],
        "additionalProperties": False,
    }

    def __init__(self, spawner: Callable[[str, ToolContext], BackgroundTask]) -> None:
        self._spawner = spawner

    async def run(self, context: ToolContext, **kwargs: Any) -> ToolResult:
        handle = self._spawner(kwargs["task"], context)
        return ToolResult(
            for_llm=(
                f"Sub-agent {handle.task_id} successfully spawned in the background. "
                "It will message the user when complete."
            ),
            for_user="Spawned a background agent to handle that task! It will report back shortly.",
        )
