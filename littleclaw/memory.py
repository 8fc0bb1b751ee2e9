"""File-backed two-tier memory: long-term profile, history logs and entities."""

from __future__ import annotations

import logging
import os
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator

LOGGER = logging.getLogger(__name__)

MEMORY_FILENAME = "MEMORY.md"
HISTORY_FILENAME = "HISTORY.md"
INTERNAL_FILENAME = "INTERNAL.md"
ENTITIES_DIRNAME = "ENTITIES"
HISTORY_ARCHIVE_PREFIX = "HISTORY_ARCHIVE_"

DEFAULT_ROTATE_BYTES = 1024 * 1024
EMPTY_MEMORY_SENTINEL = "No deeply personalized memory found yet."


class MemoryStore:
    """Owns every read and write of the memory files under ``<workspace>/memory``.

    Writes to the same file are serialized through a per-file lock; distinct
    files never block each other.
    """

    def __init__(self, workspace: Path, rotate_bytes: int = DEFAULT_ROTATE_BYTES) -> None:
        self._memory_dir = workspace / "memory"
        self._entities_dir = self._memory_dir / ENTITIES_DIRNAME
        self._memory_file = self._memory_dir / MEMORY_FILENAME
        self._history_file = self._memory_dir / HISTORY_FILENAME
        self._internal_file = self._memory_dir / INTERNAL_FILENAME
        self._rotate_bytes = rotate_bytes
        self._locks: dict[Path, threading.Lock] = {}
        self._locks_guard = threading.Lock()

        self._entities_dir.mkdir(parents=True, exist_ok=True)

    @property
    def memory_dir(self) -> Path:
        return self._memory_dir

    @contextmanager
    def _locked(self, path: Path) -> Iterator[None]:
        with self._locks_guard:
            lock = self._locks.setdefault(path, threading.Lock())
        with lock:
            yield

    # Long-term profile

    def read_long_term(self) -> str:
        with self._locked(self._memory_file):
            return _read_text_or_empty(self._memory_file)

    def write_long_term(self, content: str) -> None:
        """Replace the long-term profile. No merging: last writer wins."""

        with self._locked(self._memory_file):
            self._memory_file.write_text(content, encoding="utf-8")

    # Chronological logs

    def append_history(self, role: str, content: str) -> None:
        """Append an entry to HISTORY.md, rotating the file first when it is too large."""

        with self._locked(self._history_file):
            self._maybe_rotate_history()
            _append_entry(self._history_file, role, content)

    def append_internal(self, role: str, content: str) -> None:
        """Append an entry to INTERNAL.md. This log is never rotated."""

        with self._locked(self._internal_file):
            _append_entry(self._internal_file, role, content)

    def _maybe_rotate_history(self) -> None:
        try:
            size = self._history_file.stat().st_size
        except FileNotFoundError:
            return
        if size <= self._rotate_bytes:
            return

        stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        archive = self._memory_dir / f"{HISTORY_ARCHIVE_PREFIX}{stamp}.md"
        suffix = 1
        while archive.exists():
            archive = self._memory_dir / f"{HISTORY_ARCHIVE_PREFIX}{stamp}_{suffix}.md"
            suffix += 1
        try:
            os.replace(self._history_file, archive)
        except OSError as exc:
            # Appending still works against the oversized file.
            LOGGER.warning("History rotation failed: %s", exc)
            return
        LOGGER.info("Rotated history to %s", archive.name)

    def read_recent_history(self, max_bytes: int) -> str:
        """Return the tail of HISTORY.md, at most ``max_bytes`` long.

        When the read starts mid-file the text is snapped forward to the next
        line boundary so no partial line is returned.
        """

        with self._locked(self._history_file):
            try:
                size = self._history_file.stat().st_size
            except FileNotFoundError:
                return ""
            if size == 0:
                return ""

            start = max(0, size - max_bytes)
            with open(self._history_file, "rb") as f:
                f.seek(start)
                data = f.read()

        text = data.decode("utf-8", errors="ignore")
        if start > 0:
            newline = text.find("\n")
            if newline < 0:
                return ""
            text = text[newline + 1 :]
        return text.strip()

    # Entities

    def read_entity(self, name: str) -> str:
        path = self._entity_path(name)
        with self._locked(path):
            return _read_text_or_empty(path)

    def write_entity(self, name: str, content: str) -> None:
        """Create or fully overwrite the record for one entity."""

        path = self._entity_path(name)
        with self._locked(path):
            path.write_text(content, encoding="utf-8")

    def list_entities(self) -> list[str]:
        names = [
            entry.stem.replace("_", " ")
            for entry in self._entities_dir.iterdir()
            if entry.is_file() and entry.suffix == ".md"
        ]
        return sorted(names)

    def _entity_path(self, name: str) -> Path:
        name = name.strip()
        if not name or "/" in name or "\\" in name or ".." in name:
            raise ValueError(f"Invalid entity name: {name!r}")
        return self._entities_dir / f"{name.replace(' ', '_')}.md"

    def build_context(self) -> str:
        """Render memory for injection into the system prompt."""

        long_term = self.read_long_term().strip()
        entities = self.list_entities()
        if not long_term and not entities:
            return EMPTY_MEMORY_SENTINEL

        sections = []
        if long_term:
            sections.append(f"## Personal Context & Memory\n\n{long_term}")
        else:
            sections.append(EMPTY_MEMORY_SENTINEL)
        if entities:
            sections.append(
                "## Known Entities\n\n"
                + "\n".join(f"- {name}" for name in entities)
                + "\n\nUse read_entity to load the full record for any of these."
            )
        return "\n\n".join(sections)


def _read_text_or_empty(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return ""


def _append_entry(path: Path, role: str, content: str) -> None:
    timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    with open(path, "a", encoding="utf-8") as f:
        f.write(f"[{timestamp}] {role.upper()}: {content}\n\n")
