"""Tests for OpenAICompatibleProvider."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from littleclaw.agent_runtime import AgentRuntime
from littleclaw.bus import MessageBus
from littleclaw.config import Settings
from littleclaw.llm.openai_compat import OpenAICompatibleProvider
from littleclaw.memory import MemoryStore
from littleclaw.models import InboundMessage
from littleclaw.tools.registry import ToolRegistry


def _settings(**overrides) -> Settings:
    values = {"TELEGRAM_BOT_TOKEN": "token", "LLM_API_KEY": "sk-test", "LLM_MODEL": "test-model"}
    values.update(overrides)
    return Settings(**values)


def _mock_response(data: dict, status_code: int = 200) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = data
    return resp


def _mock_client(*responses: MagicMock) -> AsyncMock:
    mock_client = AsyncMock()
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    mock_client.post = AsyncMock(side_effect=list(responses))
    return mock_client


@pytest.mark.asyncio
async def test_generate_parses_content_tool_calls_and_usage():
    payload = {
        "choices": [
            {
                "finish_reason": "tool_calls",
                "message": {
                    "content": None,
                    "tool_calls": [
                        {
                            "id": "call_abc",
                            "type": "function",
                            "function": {"name": "read_file", "arguments": '{"path": "a.txt"}'},
                        }
                    ],
                },
            }
        ],
        "usage": {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
    }
    mock_client = _mock_client(_mock_response(payload))

    with patch("littleclaw.llm.openai_compat.httpx.AsyncClient", return_value=mock_client):
        response = await OpenAICompatibleProvider(_settings()).generate(
            [{"role": "user", "content": "hi"}],
            tools=[{"type": "function", "function": {"name": "read_file"}}],
        )

    assert response.content == ""
    [call] = response.tool_calls
    assert (call.name, call.arguments, call.call_id) == ("read_file", '{"path": "a.txt"}', "call_abc")
    assert response.usage.total_tokens == 15

    kwargs = mock_client.post.await_args.kwargs
    assert kwargs["json"]["model"] == "test-model"
    assert kwargs["json"]["tools"][0]["function"]["name"] == "read_file"
    assert kwargs["headers"]["Authorization"] == "Bearer sk-test"


@pytest.mark.asyncio
async def test_generate_accepts_decoded_arguments_and_omits_empty_tools():
    payload = {
        "choices": [
            {
                "message": {
                    "content": "ok",
                    "tool_calls": [{"id": "c1", "function": {"name": "exec", "arguments": {"command": "ls"}}}],
                }
            }
        ]
    }
    mock_client = _mock_client(_mock_response(payload))

    with patch("littleclaw.llm.openai_compat.httpx.AsyncClient", return_value=mock_client):
        response = await OpenAICompatibleProvider(_settings()).generate([], tools=[])

    assert response.tool_calls[0].arguments == '{"command": "ls"}'
    assert "tools" not in mock_client.post.await_args.kwargs["json"]


@pytest.mark.asyncio
async def test_local_endpoint_without_key_sends_no_auth_header():
    mock_client = _mock_client(_mock_response({"choices": [{"message": {"content": "hi"}}]}))
    settings = _settings(LLM_API_KEY="", LLM_BASE_URL="http://localhost:11434/v1")

    with patch("littleclaw.llm.openai_compat.httpx.AsyncClient", return_value=mock_client):
        response = await OpenAICompatibleProvider(settings).generate([])

    assert response.content == "hi"
    assert "Authorization" not in mock_client.post.await_args.kwargs["headers"]


@pytest.mark.asyncio
async def test_generate_retries_on_rate_limit():
    mock_client = _mock_client(
        _mock_response({}, status_code=429),
        _mock_response({}, status_code=429),
        _mock_response({"choices": [{"message": {"content": "finally"}}]}),
    )

    with (
        patch("littleclaw.llm.openai_compat.httpx.AsyncClient", return_value=mock_client),
        patch("littleclaw.llm.openai_compat.asyncio.sleep", new=AsyncMock()) as mock_sleep,
    ):
        response = await OpenAICompatibleProvider(_settings()).generate([])

    assert response.content == "finally"
    assert [c.args[0] for c in mock_sleep.await_args_list] == [5, 15]
    assert mock_client.post.await_count == 3


@pytest.mark.asyncio
async def test_generate_raises_on_http_error():
    error_response = _mock_response({}, status_code=500)
    error_response.raise_for_status.side_effect = RuntimeError("500 Server Error")
    mock_client = _mock_client(error_response)

    with patch("littleclaw.llm.openai_compat.httpx.AsyncClient", return_value=mock_client):
        with pytest.raises(RuntimeError, match="500"):
            await OpenAICompatibleProvider(_settings()).generate([])


def test_call_deadline_covers_every_retry_and_backoff():
    provider = OpenAICompatibleProvider(_settings(REQUEST_TIMEOUT_SECONDS="60"))
    assert provider.call_deadline_seconds == 4 * 60 + 5 + 15 + 45


@pytest.mark.asyncio
async def test_rate_limit_backoff_fits_inside_runtime_deadline(tmp_path):
    mock_client = _mock_client(
        _mock_response({}, status_code=429),
        _mock_response({}, status_code=429),
        _mock_response({}, status_code=429),
        _mock_response({"choices": [{"message": {"content": "recovered"}}]}),
    )
    real_sleep = asyncio.sleep

    async def short_sleep(_seconds: float) -> None:
        await real_sleep(0.03)

    bus = MessageBus()
    runtime = AgentRuntime(
        llm=OpenAICompatibleProvider(_settings(REQUEST_TIMEOUT_SECONDS="0.05")),
        tool_registry=ToolRegistry(),
        memory=MemoryStore(tmp_path),
        bus=bus,
    )

    with (
        patch("littleclaw.llm.openai_compat.httpx.AsyncClient", return_value=mock_client),
        patch("littleclaw.llm.openai_compat.asyncio.sleep", new=short_sleep),
    ):
        await runtime.handle_message(InboundMessage(channel="chat", sender_id="u", chat_id="1", content="hi"))

    assert mock_client.post.await_count == 4
    assert (await bus.consume_outbound()).content == "recovered"
