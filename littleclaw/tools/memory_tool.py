"""Tools that read and write the memory store.

These are the only way the model can touch MEMORY.md and ENTITIES/; the file
tools refuse those paths.
"""

from __future__ import annotations

from typing import Any

from littleclaw.memory import MemoryStore
from littleclaw.models import ToolContext, ToolResult
from littleclaw.tools.base import Tool


class _MemoryTool(Tool):
    def __init__(self, memory: MemoryStore) -> None:
        self._memory = memory


class UpdateCoreMemoryTool(_MemoryTool):
    name = "update_core_memory"
    description = (
        "Updates the long-term core memory profile (MEMORY.md). This permanently overrides "
        "the user's profile and preferences, so always pass the complete consolidated text."
    )
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "content": {
                "type": "string",
                "description": "The full, unstructured textual content representing the user's core memory facts.",
            },
        },
        "required": ["content"],
        "additionalProperties": False,
    }

    async def run(self, context: ToolContext, **kwargs: Any) -> ToolResult:
        try:
            self._memory.write_long_term(kwargs["content"])
        except OSError as exc:
            return ToolResult(for_llm=f"Error updating core memory: {exc}")
        return ToolResult(for_llm="Successfully updated core memory (MEMORY.md).")


class ReadEntityTool(_MemoryTool):
    name = "read_entity"
    description = "Reads the deep contextual file for a specific entity (a person, place, project, or topic)."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "entity_name": {
                "type": "string",
                "description": "The name of the entity to look up (e.g., 'Alice Smith', 'Project Phoenix').",
            },
        },
        "required": ["entity_name"],
        "additionalProperties": False,
    }

    async def run(self, context: ToolContext, **kwargs: Any) -> ToolResult:
        name: str = kwargs["entity_name"]
        try:
            data = self._memory.read_entity(name)
        except (ValueError, OSError) as exc:
            return ToolResult(for_llm=f"Error reading entity: {exc}")
        if not data:
            return ToolResult(for_llm=f"No existing record found for entity: {name}")
        return ToolResult(for_llm=data)


class WriteEntityTool(_MemoryTool):
    name = "write_entity"
    description = (
        "Creates or fully replaces the knowledge record for a specific entity. "
        "Read the existing record first and pass the merged, complete content."
    )
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "entity_name": {"type": "string", "description": "The name of the entity."},
            "content": {
                "type": "string",
                "description": "The structured or unstructured information to save about the entity.",
            },
        },
        "required": ["entity_name", "content"],
        "additionalProperties": False,
    }

    async def run(self, context: ToolContext, **kwargs: Any) -> ToolResult:
        name: str = kwargs["entity_name"]
        try:
            self._memory.write_entity(name, kwargs["content"])
        except (ValueError, OSError) as exc:
            return ToolResult(for_llm=f"Error writing entity: {exc}")
        return ToolResult(for_llm=f"Successfully saved record for entity: {name}")


class ListEntitiesTool(_MemoryTool):
    name = "list_entities"
    description = (
        "Lists all currently known entity topics in the memory system. "
        "Use this to avoid creating duplicate entities."
    )
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {},
        "additionalProperties": False,
    }

    async def run(self, context: ToolContext, **kwargs: Any) -> ToolResult:
        try:
            entities = self._memory.list_entities()
        except OSError as exc:
            return ToolResult(for_llm=f"Error reading entities: {exc}")
        if not entities:
            return ToolResult(for_llm="No entities found in memory.")
        return ToolResult(for_llm=f"Known entities: {', '.join(entities)}")
