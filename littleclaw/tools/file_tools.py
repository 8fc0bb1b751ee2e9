"""Workspace file tools: read, write, append and send to the user."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from littleclaw.models import ToolContext, ToolResult
from littleclaw.tools.base import Tool
from littleclaw.tools.sandbox import SandboxViolation, resolve_workspace_path

_PATH_PROPERTY = {"type": "string", "description": "Relative path to the file within the workspace."}


class _WorkspaceFileTool(Tool):
    def __init__(self, workspace: Path) -> None:
        self._workspace = workspace


class ReadFileTool(_WorkspaceFileTool):
    name = "read_file"
    description = "Reads the content of a file within the sandbox workspace."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {"path": _PATH_PROPERTY},
        "required": ["path"],
        "additionalProperties": False,
    }

    async def run(self, context: ToolContext, **kwargs: Any) -> ToolResult:
        try:
            path = resolve_workspace_path(self._workspace, kwargs["path"])
        except SandboxViolation as exc:
            return ToolResult(for_llm=str(exc))

        try:
            content = path.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            return ToolResult(for_llm=f"Error reading file: {exc}")
        return ToolResult(for_llm=content or f"(file {kwargs['path']} is empty)")


class WriteFileTool(_WorkspaceFileTool):
    name = "write_file"
    description = "Writes content to a file within the sandbox workspace, completely overwriting it."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "path": _PATH_PROPERTY,
            "content": {"type": "string", "description": "The full textual content to write to the file."},
        },
        "required": ["path", "content"],
        "additionalProperties": False,
    }

    async def run(self, context: ToolContext, **kwargs: Any) -> ToolResult:
        try:
            path = resolve_workspace_path(self._workspace, kwargs["path"])
        except SandboxViolation as exc:
            return ToolResult(for_llm=str(exc))

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(kwargs["content"], encoding="utf-8")
        except OSError as exc:
            return ToolResult(for_llm=f"Error writing file: {exc}")
        return ToolResult(for_llm=f"Successfully wrote to {kwargs['path']}")


class AppendFileTool(_WorkspaceFileTool):
    name = "append_file"
    description = "Appends text to the end of a file within the sandbox workspace."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "path": _PATH_PROPERTY,
            "content": {"type": "string", "description": "The text to append to the file."},
        },
        "required": ["path", "content"],
        "additionalProperties": False,
    }

    async def run(self, context: ToolContext, **kwargs: Any) -> ToolResult:
        try:
            path = resolve_workspace_path(self._workspace, kwargs["path"])
        except SandboxViolation as exc:
            return ToolResult(for_llm=str(exc))

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "a", encoding="utf-8") as f:
                f.write(kwargs["content"])
        except OSError as exc:
            return ToolResult(for_llm=f"Error appending to file: {exc}")
        return ToolResult(for_llm=f"Successfully appended to {kwargs['path']}")


class SendFileTool(_WorkspaceFileTool):
    """Attach a workspace file to the reply sent to the user."""

    name = "send_file"
    description = "Attaches and sends a specific local file from the workspace to the user."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Relative path to the file within the workspace to send."},
            "caption": {"type": "string", "description": "Optional textual message to send alongside the file."},
        },
        "required": ["path"],
        "additionalProperties": False,
    }
    announce_as_tool = False

    async def run(self, context: ToolContext, **kwargs: Any) -> ToolResult:
        try:
            path = resolve_workspace_path(self._workspace, kwargs["path"])
        except SandboxViolation as exc:
            return ToolResult(for_llm=str(exc))

        if not path.exists():
            return ToolResult(for_llm=f"Cannot find file to send: {kwargs['path']}")
        if path.is_dir():
            return ToolResult(for_llm="Error: Cannot send entire directories. Specify a file.")

        return ToolResult(
            for_llm=f"Successfully queued {kwargs['path']} for sending to the user.",
            for_user=kwargs.get("caption", ""),
            files=[str(path)],
        )
