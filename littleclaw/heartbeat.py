"""Periodic, userless agent turns for memory consolidation."""

from __future__ import annotations

import asyncio
import logging

from littleclaw.agent_runtime import AgentRuntime
from littleclaw.models import INTERNAL_CHANNEL, InboundMessage

LOGGER = logging.getLogger(__name__)

CONSOLIDATION_REQUEST = """[SYSTEM CONSOLIDATION REQUEST]
Review the recent conversational history included above.
Extract any core facts, user preferences, projects, or entity relationships.
Call list_entities first to avoid duplicates, then update the long-term profile with
update_core_memory (always pass the complete profile) and the relevant records with write_entity.
You MUST be concise. Do not chat. Only use tools to read and write."""


class Heartbeat:
    """Triggers a consolidation turn immediately and then on every interval."""

    def __init__(self, runtime: AgentRuntime, interval_seconds: float) -> None:
        self._runtime = runtime
        self._interval_seconds = interval_seconds
        self._stop_event = asyncio.Event()

    async def run_forever(self) -> None:
        while not self._stop_event.is_set():
            await self.trigger()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval_seconds)
            except asyncio.TimeoutError:
                continue
        LOGGER.info("Heartbeat stopped")

    async def trigger(self) -> None:
        LOGGER.info("Heartbeat triggered: initiating memory consolidation")
        message = InboundMessage(
            channel=INTERNAL_CHANNEL,
            sender_id="system",
            chat_id="internal_memory",
            content=CONSOLIDATION_REQUEST,
        )
        try:
            await self._runtime.handle_message(message)
        except Exception:  # noqa: BLE001
            LOGGER.exception("Consolidation turn failed")

    def stop(self) -> None:
        self._stop_event.set()
