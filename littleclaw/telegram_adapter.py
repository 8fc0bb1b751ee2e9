"""Telegram Bot API adapter."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

import httpx

from littleclaw.bus import MessageBus
from littleclaw.models import InboundMessage, OutboundMessage

LOGGER = logging.getLogger(__name__)

CHANNEL = "telegram"
TELEGRAM_API_URL = "https://api.telegram.org"

_MAX_MESSAGE_CHARS = 4096
_TYPING_INTERVAL_SECONDS = 4.0
_TYPING_MAX_SECONDS = 600.0
_RETRY_DELAY_SECONDS = 5.0


class TelegramAdapter:
    """Long-polls getUpdates, forwards permitted messages to the bus and delivers replies."""

    def __init__(
        self,
        token: str,
        bus: MessageBus,
        allowed_user_ids: frozenset[str],
        download_dir: Path,
        poll_timeout_seconds: int = 50,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_base = f"{TELEGRAM_API_URL}/bot{token}"
        self._file_base = f"{TELEGRAM_API_URL}/file/bot{token}"
        self._bus = bus
        self._allowed_user_ids = allowed_user_ids
        self._download_dir = download_dir
        self._poll_timeout_seconds = poll_timeout_seconds
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(poll_timeout_seconds + 10))
        self._offset = 0
        self._typing: dict[str, asyncio.Task[None]] = {}

    async def poll_forever(self) -> None:
        """Receive updates until cancelled."""

        LOGGER.info("Telegram channel started, listening for messages")
        while True:
            try:
                updates = await self._api(
                    "getUpdates",
                    offset=self._offset,
                    timeout=self._poll_timeout_seconds,
                    allowed_updates=["message"],
                )
            except (httpx.HTTPError, RuntimeError) as exc:
                LOGGER.warning("Telegram getUpdates failed: %s", exc)
                await asyncio.sleep(_RETRY_DELAY_SECONDS)
                continue

            for update in updates:
                self._offset = max(self._offset, int(update["update_id"]) + 1)
                try:
                    await self.handle_update(update)
                except (httpx.HTTPError, RuntimeError, KeyError, TypeError, ValueError):
                    LOGGER.exception("Failed to handle Telegram update %s", update.get("update_id"))

    async def handle_update(self, update: dict[str, Any]) -> InboundMessage | None:
        """Normalize one update and forward it to the bus if the sender is allowed."""

        message = update.get("message")
        if not isinstance(message, dict) or not isinstance(message.get("from"), dict):
            return None

        user_id = str(message["from"]["id"])
        chat_id = str(message["chat"]["id"])
        if self._allowed_user_ids and user_id not in self._allowed_user_ids:
            LOGGER.warning("Dropping message from unauthorized Telegram user %s", user_id)
            return None

        text = (message.get("caption") or message.get("text") or "").strip()
        media = await self._download_media(message)
        if not text and not media:
            return None

        message_id = str(message["message_id"])
        self._start_typing(chat_id, message_id)
        await self._set_reaction(chat_id, message_id, "\N{THUMBS UP SIGN}")

        inbound = InboundMessage(
            channel=CHANNEL,
            sender_id=user_id,
            chat_id=chat_id,
            content=text,
            message_id=message_id,
            reply_to=_reply_context(message.get("reply_to_message")),
            media=media,
        )
        await self._bus.send_inbound(inbound)
        return inbound

    async def send(self, message: OutboundMessage) -> None:
        """Deliver files first, then text, splitting text that exceeds Telegram's limit."""

        if message.reply_to_message_id:
            self._stop_typing(message.reply_to_message_id)
            await self._set_reaction(message.chat_id, message.reply_to_message_id, None)

        for file_path in message.files:
            path = Path(file_path)
            with open(path, "rb") as f:
                await self._api_multipart(
                    "sendDocument",
                    data={"chat_id": message.chat_id},
                    files={"document": (path.name, f.read())},
                )

        for chunk in _split_text(message.content):
            await self._api("sendMessage", chat_id=message.chat_id, text=chunk)

    async def close(self) -> None:
        for task in self._typing.values():
            task.cancel()
        self._typing.clear()
        await self._client.aclose()

    async def _download_media(self, message: dict[str, Any]) -> list[str]:
        file_refs: list[tuple[str, str]] = []
        photos = message.get("photo")
        if isinstance(photos, list) and photos:
            largest = photos[-1]
            file_refs.append((largest["file_id"], f"photo_{largest.get('file_unique_id', 'image')}.jpg"))
        document = message.get("document")
        if isinstance(document, dict):
            name = document.get("file_name") or f"document_{document.get('file_unique_id', 'file')}"
            file_refs.append((document["file_id"], Path(name).name))

        paths: list[str] = []
        for file_id, filename in file_refs:
            try:
                paths.append(str(await self._download_file(file_id, filename)))
            except (httpx.HTTPError, RuntimeError, OSError) as exc:
                LOGGER.warning("Could not download Telegram file %s: %s", file_id, exc)
        return paths

    async def _download_file(self, file_id: str, filename: str) -> Path:
        info = await self._api("getFile", file_id=file_id)
        response = await self._client.get(f"{self._file_base}/{info['file_path']}")
        response.raise_for_status()
        self._download_dir.mkdir(parents=True, exist_ok=True)
        target = self._download_dir / filename
        target.write_bytes(response.content)
        return target

    def _start_typing(self, chat_id: str, message_id: str) -> None:
        self._stop_typing(message_id)
        self._typing[message_id] = asyncio.create_task(self._keep_typing(chat_id), name=f"typing-{message_id}")

    def _stop_typing(self, message_id: str) -> None:
        task = self._typing.pop(message_id, None)
        if task is not None:
            task.cancel()

    async def _keep_typing(self, chat_id: str) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + _TYPING_MAX_SECONDS
        while loop.time() < deadline:
            try:
                await self._api("sendChatAction", chat_id=chat_id, action="typing")
            except (httpx.HTTPError, RuntimeError) as exc:
                LOGGER.debug("sendChatAction failed: %s", exc)
            await asyncio.sleep(_TYPING_INTERVAL_SECONDS)

    async def _set_reaction(self, chat_id: str, message_id: str, emoji: str | None) -> None:
        reaction = [{"type": "emoji", "emoji": emoji}] if emoji else []
        try:
            await self._api("setMessageReaction", chat_id=chat_id, message_id=int(message_id), reaction=reaction)
        except (httpx.HTTPError, RuntimeError, ValueError) as exc:
            LOGGER.debug("setMessageReaction failed: %s", exc)

    async def _api(self, method: str, **params: Any) -> Any:
        response = await self._client.post(f"{self._api_base}/{method}", json=params)
        return _unwrap(method, response)

    async def _api_multipart(self, method: str, data: dict[str, str], files: dict[str, Any]) -> Any:
        response = await self._client.post(f"{self._api_base}/{method}", data=data, files=files)
        return _unwrap(method, response)


def _unwrap(method: str, response: httpx.Response) -> Any:
    try:
        payload = response.json()
    except json.JSONDecodeError as exc:
        raise RuntimeError(f"Telegram {method} returned non-JSON (HTTP {response.status_code})") from exc
    if not payload.get("ok"):
        raise RuntimeError(f"Telegram {method} failed: {payload.get('description', response.status_code)}")
    return payload.get("result")


def _reply_context(reply: Any) -> str | None:
    if not isinstance(reply, dict):
        return None
    context = reply.get("text") or reply.get("caption") or ""
    document = reply.get("document")
    if isinstance(document, dict):
        if context:
            context += "\n"
        context += f"[Document: {document.get('file_name', 'unnamed')}]"
    return context or None


def _split_text(text: str) -> list[str]:
    if not text:
        return []
    return [text[i : i + _MAX_MESSAGE_CHARS] for i in range(0, len(text), _MAX_MESSAGE_CHARS)]
