"""Bounded message bus between channel adapters and the agent runtime."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Protocol

from littleclaw.models import InboundMessage, OutboundMessage

LOGGER = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 100


class ChannelSink(Protocol):
    """Anything that can deliver outbound messages for one channel."""

    async def send(self, message: OutboundMessage) -> None: ...


class MessageBus:
    """Two ordered hand-off queues. Producers block when a queue is full."""

    def __init__(self, maxsize: int = DEFAULT_QUEUE_SIZE) -> None:
        self._inbound: asyncio.Queue[InboundMessage] = asyncio.Queue(maxsize=maxsize)
        self._outbound: asyncio.Queue[OutboundMessage] = asyncio.Queue(maxsize=maxsize)
        self._sinks: dict[str, ChannelSink] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    def register_channel(self, channel: str, sink: ChannelSink) -> None:
        self._sinks[channel] = sink

    async def send_inbound(self, message: InboundMessage) -> None:
        await self._inbound.put(message)

    async def send_outbound(self, message: OutboundMessage) -> None:
        await self._outbound.put(message)

    async def consume_inbound(self) -> InboundMessage:
        return await self._inbound.get()

    async def consume_outbound(self) -> OutboundMessage:
        return await self._outbound.get()

    async def dispatch(self, handler: Callable[[InboundMessage], Awaitable[None]]) -> None:
        """Route messages until cancelled.

        Each inbound message starts its own task; the loop never waits for a
        conversation to finish before taking the next message.
        """

        try:
            await asyncio.gather(self._dispatch_inbound(handler), self._dispatch_outbound())
        finally:
            for task in list(self._tasks):
                task.cancel()

    async def _dispatch_inbound(self, handler: Callable[[InboundMessage], Awaitable[None]]) -> None:
        while True:
            message = await self.consume_inbound()
            LOGGER.info(
                "Received message from %s (chat %s on %s)", message.sender_id, message.chat_id, message.channel
            )
            task = asyncio.create_task(handler(message), name=f"conversation-{message.chat_id}")
            self._tasks.add(task)
            task.add_done_callback(self._on_conversation_done)

    async def _dispatch_outbound(self) -> None:
        while True:
            message = await self.consume_outbound()
            sink = self._sinks.get(message.channel)
            if sink is None:
                LOGGER.debug("No adapter for channel %r, dropping outbound message", message.channel)
                continue
            try:
                await sink.send(message)
            except Exception:  # noqa: BLE001
                LOGGER.exception("Failed to deliver message to %s:%s", message.channel, message.chat_id)

    def _on_conversation_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error("Conversation task %s failed", task.get_name(), exc_info=exc)
