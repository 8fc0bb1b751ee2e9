"""Workspace path guard and shell command blocklist."""

from __future__ import annotations

import os
from pathlib import Path

from littleclaw.memory import (
    ENTITIES_DIRNAME,
    HISTORY_ARCHIVE_PREFIX,
    HISTORY_FILENAME,
    INTERNAL_FILENAME,
    MEMORY_FILENAME,
)

BANNED_COMMAND_PATTERNS = ("rm -rf", "mkfs", "dd if=")

_PROTECTED_FILENAMES = {MEMORY_FILENAME, HISTORY_FILENAME, INTERNAL_FILENAME, ENTITIES_DIRNAME}


class SandboxViolation(ValueError):
    """Raised when a path escapes the workspace or targets memory-owned files."""


def resolve_workspace_path(workspace: Path, user_path: str) -> Path:
    """Resolve ``user_path`` against the workspace root.

    Accepts relative paths and absolute paths already inside the workspace.
    Rejects anything that normalizes outside the root, and anything owned by
    the memory store.
    """

    root = os.path.normpath(os.path.abspath(workspace))
    candidate = user_path.strip()
    if os.path.isabs(candidate):
        resolved = os.path.normpath(candidate)
    else:
        resolved = os.path.normpath(os.path.join(root, candidate))

    if os.path.commonpath([root, resolved]) != root:
        raise SandboxViolation(f"Error: Path {user_path} escapes workspace boundaries")

    path = Path(resolved)
    relative_parts = path.relative_to(root).parts
    if (
        path.name in _PROTECTED_FILENAMES
        or path.name.startswith(HISTORY_ARCHIVE_PREFIX)
        or ENTITIES_DIRNAME in relative_parts
    ):
        raise SandboxViolation(
            "Error: Direct file access to memory files is prohibited. You MUST use "
            "'update_core_memory', 'write_entity', 'list_entities', or 'read_entity' instead."
        )
    return path


def is_banned_command(command: str) -> bool:
    return any(pattern in command for pattern in BANNED_COMMAND_PATTERNS)
