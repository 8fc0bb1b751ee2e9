"""Shell execution inside the workspace."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from pathlib import Path
from typing import Any

from littleclaw.models import ToolContext, ToolResult
from littleclaw.tools.base import Tool
from littleclaw.tools.sandbox import is_banned_command

LOGGER = logging.getLogger(__name__)

_MAX_OUTPUT_CHARS = 30_000
_DEFAULT_TIMEOUT = 120.0


async def collect_output(proc: asyncio.subprocess.Process, timeout: float) -> bytes | None:
    """Wait for ``proc`` and return its stdout, or None if it timed out.

    The process runs in its own session; on timeout or cancellation the whole
    process group is killed and reaped before returning or re-raising.
    """

    try:
        stdout_bytes, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        await _kill_group(proc)
        return None
    except asyncio.CancelledError:
        await _kill_group(proc)
        raise
    return stdout_bytes


async def _kill_group(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
    await proc.wait()


async def run_shell(command: str, cwd: Path, timeout: float) -> tuple[int, str]:
    """Run ``command`` via ``sh -c`` and return (returncode, combined output)."""

    proc = await asyncio.create_subprocess_shell(
        command,
        cwd=str(cwd),
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
        start_new_session=True,
    )
    stdout_bytes = await collect_output(proc, timeout)
    if stdout_bytes is None:
        return -1, f"command timed out after {timeout:.0f}s"
    return proc.returncode, stdout_bytes.decode(errors="replace")


def truncate_output(output: str) -> str:
    if len(output) <= _MAX_OUTPUT_CHARS:
        return output
    return output[:_MAX_OUTPUT_CHARS] + f"\n... (truncated, {len(output) - _MAX_OUTPUT_CHARS} more characters)"


class ExecTool(Tool):
    """Run a shell command with the workspace as working directory."""

    name = "exec"
    description = (
        "Executes a shell command inside the workspace directory. Use it for network "
        "access (e.g. curl) and any scripting. Destructive patterns are blocked."
    )
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "command": {"type": "string", "description": "The shell command to run."},
        },
        "required": ["command"],
        "additionalProperties": False,
    }

    def __init__(self, workspace: Path, timeout_seconds: float = _DEFAULT_TIMEOUT) -> None:
        self._workspace = workspace
        self._timeout_seconds = timeout_seconds

    async def run(self, context: ToolContext, **kwargs: Any) -> ToolResult:
        command: str = kwargs["command"]
        if is_banned_command(command):
            LOGGER.warning("Blocked command: %r", command)
            return ToolResult(for_llm="Command blocked by safety guard (dangerous pattern detected)")

        returncode, output = await run_shell(command, self._workspace, self._timeout_seconds)
        output = truncate_output(output)
        if returncode != 0:
            return ToolResult(for_llm=f"Command failed (exit code {returncode})\nOutput: {output}")
        return ToolResult(for_llm=output or "(no output)")
