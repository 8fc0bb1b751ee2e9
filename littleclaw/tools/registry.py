"""Registry for tool registration and sandboxed execution."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError, create_model

from littleclaw.models import ToolContext, ToolResult
from littleclaw.tools.base import Tool

LOGGER = logging.getLogger(__name__)


class ToolRegistry:
    """Explicit registry of tools, keyed by name.

    Registering a name that already exists replaces its handler; each name maps
    to exactly one tool and one definition.
    """

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            LOGGER.debug("Replacing tool %s", tool.name)
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def list_tool_specs(self) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters_schema,
                },
            }
            for tool in self._tools.values()
        ]

    async def execute(self, tool_name: str, arguments: dict[str, Any], context: ToolContext) -> ToolResult:
        """Run a tool. Never raises: every failure becomes text for the model."""

        tool = self._tools.get(tool_name)
        if tool is None:
            return ToolResult(for_llm=f"Error: Tool '{tool_name}' not found")

        try:
            validated = _validate_json_schema(tool.parameters_schema, arguments)
        except ValueError as exc:
            return ToolResult(for_llm=f"Error: invalid arguments for tool '{tool_name}': {exc}")

        LOGGER.info("Executing tool %s", tool_name)
        try:
            return await tool.run(context, **validated)
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Tool %s failed", tool_name)
            return ToolResult(for_llm=f"Error: tool '{tool_name}' failed: {exc}")


def _validate_json_schema(schema: dict[str, Any], payload: dict[str, Any]) -> dict[str, Any]:
    props = schema.get("properties", {})
    required = set(schema.get("required", []))
    fields: dict[str, tuple[Any, Any]] = {}
    for name, config in props.items():
        typ = _python_type(config.get("type", "string"))
        if name in required:
            fields[name] = (typ, ...)
        else:
            fields[name] = (typ | None, None)

    model = create_model("ToolInputModel", **fields)
    try:
        value = model(**payload)
    except ValidationError as exc:
        errors = "; ".join(
            f"{'.'.join(str(loc) for loc in err['loc']) or 'arguments'}: {err['msg']}" for err in exc.errors()
        )
        raise ValueError(errors) from exc
    return value.model_dump(exclude_none=True)


def _python_type(schema_type: str) -> type[Any]:
    mapping: dict[str, type[Any]] = {
        "string": str,
        "integer": int,
        "number": float,
        "boolean": bool,
        "object": dict,
        "array": list,
    }
    return mapping.get(schema_type, str)
