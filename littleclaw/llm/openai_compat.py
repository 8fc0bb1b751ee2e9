"""OpenAI-compatible chat-completions provider (OpenRouter, OpenAI, Ollama)."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import httpx

from littleclaw.config import Settings
from littleclaw.llm.base import LLMProvider
from littleclaw.models import LLMResponse, LLMToolCall, TokenUsage

_LOGGER = logging.getLogger(__name__)

_MAX_RETRIES = 3
_RETRY_BACKOFF_SECONDS = [5, 15, 45]


class OpenAICompatibleProvider(LLMProvider):
    """LLM provider using an OpenAI-compatible ``/chat/completions`` endpoint."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    @property
    def call_deadline_seconds(self) -> float:
        attempts = _MAX_RETRIES + 1
        return attempts * self._settings.request_timeout_seconds + sum(_RETRY_BACKOFF_SECONDS[:_MAX_RETRIES])

    async def generate(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        temperature: float | None = None,
    ) -> LLMResponse:
        payload: dict[str, Any] = {
            "model": self._settings.llm_model,
            "messages": messages,
            "temperature": self._settings.llm_temperature if temperature is None else temperature,
        }
        if tools:
            payload["tools"] = tools

        headers = {"Content-Type": "application/json"}
        if self._settings.llm_api_key:
            headers["Authorization"] = f"Bearer {self._settings.llm_api_key}"

        timeout = httpx.Timeout(self._settings.request_timeout_seconds)
        async with httpx.AsyncClient(base_url=self._settings.llm_base_url, timeout=timeout) as client:
            for attempt in range(_MAX_RETRIES + 1):
                response = await client.post("/chat/completions", headers=headers, json=payload)
                if response.status_code == 429 and attempt < _MAX_RETRIES:
                    wait = _RETRY_BACKOFF_SECONDS[attempt]
                    _LOGGER.warning(
                        "LLM endpoint rate limited (429), retrying in %ds (attempt %d/%d)",
                        wait,
                        attempt + 1,
                        _MAX_RETRIES,
                    )
                    await asyncio.sleep(wait)
                    continue
                response.raise_for_status()
                break
            data = response.json()

        choice = data["choices"][0]["message"]
        finish_reason = data["choices"][0].get("finish_reason")
        content = choice.get("content") or ""
        _LOGGER.info(
            "LLM response: finish_reason=%r content=%r tool_calls=%d",
            finish_reason,
            content[:200],
            len(choice.get("tool_calls") or []),
        )

        tool_calls = [
            LLMToolCall(
                name=tool_call.get("function", {}).get("name", ""),
                arguments=_arguments_json(tool_call.get("function", {}).get("arguments")),
                call_id=tool_call.get("id"),
            )
            for tool_call in choice.get("tool_calls") or []
        ]

        usage_data = data.get("usage") or {}
        usage = TokenUsage(
            prompt_tokens=int(usage_data.get("prompt_tokens", 0)),
            completion_tokens=int(usage_data.get("completion_tokens", 0)),
            total_tokens=int(usage_data.get("total_tokens", 0)),
        )
        return LLMResponse(content=content, tool_calls=tool_calls, usage=usage, raw=data)


def _arguments_json(raw: Any) -> str:
    # Some OpenAI-compatible servers return already-decoded arguments.
    if isinstance(raw, dict):
        return json.dumps(raw)
    return raw or "{}"
