"""User-dropped scripts in ``<workspace>/skills`` exposed as tools."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import Any

from littleclaw.models import ToolContext, ToolResult
from littleclaw.tools.base import Tool
from littleclaw.tools.registry import ToolRegistry
from littleclaw.tools.shell_tool import collect_output, truncate_output

LOGGER = logging.getLogger(__name__)

INTERPRETERS: dict[str, str] = {
    ".sh": "sh",
    ".py": sys.executable or "python3",
}


class SkillTool(Tool):
    """Runs one script with whitespace-split arguments, in the workspace."""

    def __init__(self, script: Path, workspace: Path, timeout_seconds: float) -> None:
        self.script = script
        self.name = script.stem
        self.description = (
            f"Dynamic skill: executes the {script.name} script. Ensure to pass required arguments."
        )
        self.parameters_schema: dict[str, Any] = {
            "type": "object",
            "properties": {
                "args": {"type": "string", "description": "Arguments to pass to the script, separated by spaces."},
            },
            "additionalProperties": False,
        }
        self._interpreter = INTERPRETERS[script.suffix]
        self._workspace = workspace
        self._timeout_seconds = timeout_seconds

    async def run(self, context: ToolContext, **kwargs: Any) -> ToolResult:
        args = (kwargs.get("args") or "").split()
        proc = await asyncio.create_subprocess_exec(
            self._interpreter,
            str(self.script),
            *args,
            cwd=str(self._workspace),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            start_new_session=True,
        )
        stdout_bytes = await collect_output(proc, self._timeout_seconds)
        if stdout_bytes is None:
            return ToolResult(for_llm=f"Skill {self.name} timed out after {self._timeout_seconds:.0f}s")

        output = truncate_output(stdout_bytes.decode(errors="replace"))
        if proc.returncode != 0:
            return ToolResult(for_llm=f"Skill failed (exit code {proc.returncode})\nOutput: {output}")
        return ToolResult(for_llm=output or "(no output)")


class SkillLoader:
    """Maps a snapshot of the skills directory to tool descriptors."""

    def __init__(self, skills_dir: Path, workspace: Path, timeout_seconds: float = 120.0) -> None:
        self._skills_dir = skills_dir
        self._workspace = workspace
        self._timeout_seconds = timeout_seconds

    def scan(self) -> list[SkillTool]:
        self._skills_dir.mkdir(parents=True, exist_ok=True)
        return [
            SkillTool(entry, self._workspace, self._timeout_seconds)
            for entry in sorted(self._skills_dir.iterdir())
            if entry.is_file() and entry.suffix in INTERPRETERS
        ]


class SkillManager:
    """Keeps the registry in sync with the skills directory."""

    def __init__(self, loader: SkillLoader, registry: ToolRegistry) -> None:
        self._loader = loader
        self._registry = registry
        self._loaded: set[str] = set()

    def reload(self) -> list[str]:
        """Rescan and re-register skills. Returns the names now registered."""

        found: set[str] = set()
        for skill in self._loader.scan():
            existing = self._registry.get(skill.name)
            if existing is not None and not isinstance(existing, SkillTool):
                LOGGER.warning("Skipping skill %s: name collides with a built-in tool", skill.script.name)
                continue
            self._registry.register(skill)
            found.add(skill.name)
            LOGGER.info("Registered dynamic skill: %s", skill.name)

        for name in self._loaded - found:
            self._registry.unregister(name)
            LOGGER.info("Unregistered removed skill: %s", name)
        self._loaded = found
        return sorted(found)


class ReloadSkillsTool(Tool):
    name = "reload_skills"
    description = (
        "Reloads dynamic executable skills from the skills/ directory. Use this after writing "
        "a new .sh or .py script there to make it available as a tool."
    )
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {},
        "additionalProperties": False,
    }

    def __init__(self, manager: SkillManager) -> None:
        self._manager = manager

    async def run(self, context: ToolContext, **kwargs: Any) -> ToolResult:
        try:
            names = self._manager.reload()
        except OSError as exc:
            return ToolResult(for_llm=f"Error reloading skills: {exc}")
        if not names:
            return ToolResult(for_llm="Dynamic skills reloaded. No skills found in skills/.")
        return ToolResult(for_llm=f"Dynamic skills reloaded successfully: {', '.join(names)}")
