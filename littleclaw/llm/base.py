"""LLM provider interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from littleclaw.models import LLMResponse


class LLMProvider(ABC):
    """Abstract model provider used by the agent runtime."""

    # Upper bound for one generate() call, retries included. None means unbounded.
    call_deadline_seconds: float | None = None

    @abstractmethod
    async def generate(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        temperature: float | None = None,
    ) -> LLMResponse:
        """Generate a model response."""
