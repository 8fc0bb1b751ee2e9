"""Tool contracts."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from littleclaw.models import ToolContext, ToolResult


class Tool(ABC):
    """Base class for all agent tools."""

    name: str
    description: str
    parameters_schema: dict[str, Any]
    # When False, ``for_user`` text is sent to the human as-is instead of being
    # labelled with the tool name.
    announce_as_tool: bool = True

    @abstractmethod
    async def run(self, context: ToolContext, **kwargs: Any) -> ToolResult:
        """Execute tool with validated arguments."""
