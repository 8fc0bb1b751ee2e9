import asyncio
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from littleclaw.agent_runtime import (
    BACKEND_ERROR_REPLY,
    MAX_ITERATIONS_REPLY,
    REFLECTION_PROMPT,
    AgentRuntime,
)
from littleclaw.bus import MessageBus
from littleclaw.memory import MemoryStore
from littleclaw.models import (
    INTERNAL_CHANNEL,
    ConversationRef,
    InboundMessage,
    LLMResponse,
    LLMToolCall,
    OutboundMessage,
    ToolContext,
    ToolResult,
)
from littleclaw.scheduler import JobScheduler
from littleclaw.tools.base import Tool
from littleclaw.tools.file_tools import SendFileTool
from littleclaw.tools.registry import ToolRegistry


def _msg(text: str, channel: str = "chat", chat_id: str = "42", **kwargs: Any) -> InboundMessage:
    return InboundMessage(channel=channel, sender_id="user-1", chat_id=chat_id, content=text, **kwargs)


def _runtime(tmp_path, llm, registry=None, bus=None, **kwargs):
    return AgentRuntime(
        llm=llm,
        tool_registry=registry or ToolRegistry(),
        memory=MemoryStore(tmp_path),
        bus=bus or MessageBus(),
        request_timeout_seconds=5,
        **kwargs,
    )


def _drain(bus: MessageBus) -> list[OutboundMessage]:
    messages = []
    while not bus._outbound.empty():
        messages.append(bus._outbound.get_nowait())
    return messages


class PingTool(Tool):
    name = "ping"
    description = "Reply with pong."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {"target": {"type": "string"}},
        "additionalProperties": False,
    }

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []

    async def run(self, context: ToolContext, **kwargs: Any) -> ToolResult:
        self.calls.append(kwargs)
        return ToolResult(for_llm="pong", for_user="pong!")


class FakeProvider:
    async def generate(self, messages, tools=None, temperature=None):  # noqa: ANN001, ANN201
        return LLMResponse(content="4")


@pytest.mark.asyncio
async def test_plain_answer_is_sent_and_logged(tmp_path):
    bus = MessageBus()
    runtime = _runtime(tmp_path, FakeProvider(), bus=bus)

    await runtime.handle_message(_msg("What's 2+2?", message_id="m1"))

    [reply] = _drain(bus)
    assert reply.content == "4"
    assert reply.chat_id == "42"
    assert reply.reply_to_message_id == "m1"

    history = (tmp_path / "memory" / "HISTORY.md").read_text()
    assert "USER: What's 2+2?" in history
    assert "ASSISTANT: 4" in history
    assert runtime.last_conversation == ConversationRef(channel="chat", chat_id="42")


@pytest.mark.asyncio
async def test_tool_call_round_trip_appends_reflection_prompt(tmp_path):
    bus = MessageBus()
    registry = ToolRegistry()
    ping = PingTool()
    registry.register(ping)
    llm = MagicMock()
    llm.generate = AsyncMock(
        side_effect=[
            LLMResponse(content="", tool_calls=[LLMToolCall(name="ping", arguments='{"target": "x"}')]),
            LLMResponse(content="done"),
        ]
    )
    runtime = _runtime(tmp_path, llm, registry=registry, bus=bus)

    await runtime.handle_message(_msg("ping it"))

    assert ping.calls == [{"target": "x"}]
    messages = llm.generate.call_args.args[0]
    roles = [m["role"] for m in messages]
    assert roles == ["system", "user", "assistant", "tool", "user"]
    assert messages[2]["tool_calls"][0]["id"] == messages[3]["tool_call_id"]
    assert messages[3]["content"] == "pong"
    assert messages[4]["content"] == REFLECTION_PROMPT

    outbound = _drain(bus)
    assert [m.content for m in outbound] == ["[ping] pong!", "done"]
    assert outbound[0].reply_to_message_id is None


@pytest.mark.asyncio
async def test_iteration_cap_stops_the_loop(tmp_path):
    bus = MessageBus()
    registry = ToolRegistry()
    registry.register(PingTool())
    llm = MagicMock()
    llm.generate = AsyncMock(
        return_value=LLMResponse(content="", tool_calls=[LLMToolCall(name="ping", arguments="{}")])
    )
    runtime = _runtime(tmp_path, llm, registry=registry, bus=bus, max_iterations=3)

    await runtime.handle_message(_msg("loop forever"))

    assert llm.generate.await_count == 3
    outbound = _drain(bus)
    assert outbound[-1].content == MAX_ITERATIONS_REPLY
    assert sum(m.content == MAX_ITERATIONS_REPLY for m in outbound) == 1


@pytest.mark.asyncio
async def test_malformed_arguments_are_treated_as_empty_and_reported(tmp_path):
    registry = ToolRegistry()
    ping = PingTool()
    registry.register(ping)
    llm = MagicMock()
    llm.generate = AsyncMock(
        side_effect=[
            LLMResponse(content="", tool_calls=[LLMToolCall(name="ping", arguments="{not json")]),
            LLMResponse(content="ok"),
        ]
    )
    runtime = _runtime(tmp_path, llm, registry=registry)

    await runtime.handle_message(_msg("ping"))

    assert ping.calls == [{}]
    tool_message = llm.generate.call_args.args[0][3]
    assert "were not valid JSON" in tool_message["content"]
    assert tool_message["content"].endswith("pong")


@pytest.mark.asyncio
async def test_unknown_tool_result_goes_back_to_model(tmp_path):
    llm = MagicMock()
    llm.generate = AsyncMock(
        side_effect=[
            LLMResponse(content="", tool_calls=[LLMToolCall(name="teleport")]),
            LLMResponse(content="cannot"),
        ]
    )
    runtime = _runtime(tmp_path, llm)

    await runtime.handle_message(_msg("go"))

    assert llm.generate.call_args.args[0][3]["content"] == "Error: Tool 'teleport' not found"


@pytest.mark.asyncio
async def test_backend_failure_sends_error_reply(tmp_path):
    bus = MessageBus()
    llm = MagicMock()
    llm.generate = AsyncMock(side_effect=RuntimeError("connection refused"))
    runtime = _runtime(tmp_path, llm, bus=bus)

    await runtime.handle_message(_msg("hello"))

    [reply] = _drain(bus)
    assert reply.content == BACKEND_ERROR_REPLY


@pytest.mark.asyncio
async def test_internal_turns_log_to_internal_file_without_replies(tmp_path):
    bus = MessageBus()
    runtime = _runtime(tmp_path, FakeProvider(), bus=bus)

    await runtime.handle_message(_msg("consolidate", channel=INTERNAL_CHANNEL, chat_id="internal_memory"))

    assert _drain(bus) == []
    internal = (tmp_path / "memory" / "INTERNAL.md").read_text()
    assert "SYSTEM: consolidate" in internal
    assert "ASSISTANT: 4" in internal
    assert not (tmp_path / "memory" / "HISTORY.md").exists()
    assert runtime.last_conversation is None


@pytest.mark.asyncio
async def test_reply_context_and_attachments_reach_the_model(tmp_path):
    llm = MagicMock()
    llm.generate = AsyncMock(return_value=LLMResponse(content="sure"))
    runtime = _runtime(tmp_path, llm)

    await runtime.handle_message(
        _msg("what about this?", reply_to="Meeting at 3pm", media=["/ws/downloads/photo.jpg"])
    )

    user_prompt = llm.generate.call_args.args[0][1]["content"]
    assert user_prompt.startswith("Context (User is replying to this previous message):\n\"Meeting at 3pm\"")
    assert "User's message: what about this?" in user_prompt
    assert "[Attachment: /ws/downloads/photo.jpg]" in user_prompt


@pytest.mark.asyncio
async def test_system_prompt_contains_memory_and_recent_history(tmp_path):
    llm = MagicMock()
    llm.generate = AsyncMock(return_value=LLMResponse(content="hi"))
    runtime = _runtime(tmp_path, llm)
    runtime._memory.write_long_term("Name: Sam")
    runtime._memory.append_history("user", "earlier question")

    await runtime.handle_message(_msg("hello"))

    system_prompt = llm.generate.call_args.args[0][0]["content"]
    assert "Name: Sam" in system_prompt
    assert "earlier question" in system_prompt


@pytest.mark.asyncio
async def test_send_file_delivers_attachment_without_tool_prefix(tmp_path):
    bus = MessageBus()
    (tmp_path / "report.txt").write_text("data")
    registry = ToolRegistry()
    registry.register(SendFileTool(tmp_path))
    llm = MagicMock()
    llm.generate = AsyncMock(
        side_effect=[
            LLMResponse(
                content="",
                tool_calls=[LLMToolCall(name="send_file", arguments='{"path": "report.txt", "caption": "Here"}')],
            ),
            LLMResponse(content="Sent."),
        ]
    )
    runtime = _runtime(tmp_path, llm, registry=registry, bus=bus)

    await runtime.handle_message(_msg("send me the report"))

    attachment, final = _drain(bus)
    assert attachment.content == "Here"
    assert attachment.files == [str(tmp_path / "report.txt")]
    assert final.content == "Sent."
    assert "[Attached files:" in (tmp_path / "memory" / "HISTORY.md").read_text()


def test_agent_tools_are_registered(tmp_path):
    registry = ToolRegistry()
    scheduler = JobScheduler(tmp_path / "CRON.json", tmp_path, MessageBus(), MemoryStore(tmp_path))
    _runtime(tmp_path, FakeProvider(), registry=registry, scheduler=scheduler)
    assert {
        "update_core_memory",
        "read_entity",
        "write_entity",
        "list_entities",
        "spawn",
        "cron_add",
        "cron_remove",
        "cron_list",
    } <= set(registry.names())


@pytest.mark.asyncio
async def test_spawn_runs_in_background_and_reports_to_conversation(tmp_path):
    bus = MessageBus()
    runtime = _runtime(tmp_path, FakeProvider(), bus=bus)
    context = ToolContext(conversation=ConversationRef(channel="chat", chat_id="42"))

    handle = runtime.spawn("count the files", context)
    assert handle.status == "running"
    assert runtime.background_tasks() == [handle]
    await asyncio.wait_for(handle.task, timeout=2)
    await asyncio.sleep(0)

    assert handle.status == "done"
    assert runtime.background_tasks() == []
    [reply] = _drain(bus)
    assert (reply.channel, reply.chat_id, reply.content) == ("chat", "42", "4")


@pytest.mark.asyncio
async def test_spawn_without_conversation_runs_internally(tmp_path):
    bus = MessageBus()
    runtime = _runtime(tmp_path, FakeProvider(), bus=bus)

    handle = runtime.spawn("tidy up", ToolContext())
    await asyncio.wait_for(handle.task, timeout=2)

    assert handle.target.channel == INTERNAL_CHANNEL
    assert _drain(bus) == []


@pytest.mark.asyncio
async def test_shutdown_cancels_running_background_tasks(tmp_path):
    class SlowProvider:
        async def generate(self, messages, tools=None, temperature=None):  # noqa: ANN001, ANN201
            await asyncio.sleep(10)
            return LLMResponse(content="late")

    runtime = _runtime(tmp_path, SlowProvider())
    handle = runtime.spawn("slow", ToolContext(conversation=ConversationRef(channel="chat", chat_id="1")))
    await asyncio.sleep(0)

    await runtime.shutdown()

    assert handle.status == "cancelled"


@pytest.mark.asyncio
async def test_finished_background_tasks_are_forgotten(tmp_path):
    runtime = _runtime(tmp_path, FakeProvider())
    context = ToolContext(conversation=ConversationRef(channel="chat", chat_id="42"))

    handles = [runtime.spawn(f"task {i}", context) for i in range(5)]
    await asyncio.gather(*(h.task for h in handles))
    await asyncio.sleep(0)

    assert runtime.background_tasks() == []
    assert runtime._background == {}


@pytest.mark.asyncio
async def test_empty_model_reply_still_ends_the_turn_for_the_channel(tmp_path):
    bus = MessageBus()
    llm = MagicMock()
    llm.generate = AsyncMock(return_value=LLMResponse(content=""))
    runtime = _runtime(tmp_path, llm, bus=bus)

    await runtime.handle_message(_msg("hello", message_id="m9"))

    [final] = _drain(bus)
    assert final.content == ""
    assert final.reply_to_message_id == "m9"
    assert "ASSISTANT" not in (tmp_path / "memory" / "HISTORY.md").read_text()


@pytest.mark.asyncio
async def test_runtime_deadline_defaults_to_provider_deadline(tmp_path):
    class BoundedProvider(FakeProvider):
        call_deadline_seconds = 123.0

    runtime = AgentRuntime(
        llm=BoundedProvider(),
        tool_registry=ToolRegistry(),
        memory=MemoryStore(tmp_path),
        bus=MessageBus(),
    )

    assert runtime._request_timeout_seconds == 123.0
