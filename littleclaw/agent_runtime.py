"""Core agent runtime: the bounded model-call / tool-execution loop."""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from littleclaw.bus import MessageBus
from littleclaw.llm.base import LLMProvider
from littleclaw.memory import MemoryStore
from littleclaw.models import (
    INTERNAL_CHANNEL,
    ConversationRef,
    InboundMessage,
    LLMToolCall,
    NoConversationError,
    OutboundMessage,
    ToolContext,
    ToolResult,
)
from littleclaw.scheduler import JobScheduler
from littleclaw.tools.cron_tool import CronAddTool, CronListTool, CronRemoveTool
from littleclaw.tools.memory_tool import ListEntitiesTool, ReadEntityTool, UpdateCoreMemoryTool, WriteEntityTool
from littleclaw.tools.registry import ToolRegistry
from littleclaw.tools.spawn_tool import SpawnTool

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 10
RECENT_HISTORY_BYTES = 4000

REFLECTION_PROMPT = "[System] Tool execution finished. Analyze the results and proceed or respond to the user."
MAX_ITERATIONS_REPLY = "Reached maximum reasoning iterations. Stopping here; ask me to continue if needed."
BACKEND_ERROR_REPLY = "Sorry, I couldn't reach the language model just now. Please try again in a moment."

_PERSONA = (
    "You are Littleclaw, an ultra-fast, deeply personalized AI agent.\n"
    "You have access to local file execution and scripts. Be concise, direct, and brilliant.\n\n"
)
_RULES = (
    "## Operating Rules\n"
    "- Memory lives behind dedicated tools. Use update_core_memory, list_entities, read_entity and "
    "write_entity; never touch MEMORY.md, HISTORY.md, INTERNAL.md or ENTITIES/ with file tools.\n"
    "- You have no built-in internet access. Use the exec tool (for example curl) for anything on the network.\n"
    "- Never claim to have performed an action without calling the tool that performs it.\n"
    "- Use cron_add for recurring work and spawn for long-running tasks.\n\n"
)


@dataclass(slots=True)
class BackgroundTask:
    """Handle for work started with the spawn tool."""

    task_id: str
    description: str
    target: ConversationRef
    task: asyncio.Task[None] | None = field(default=None, repr=False)

    @property
    def status(self) -> str:
        if self.task is None or not self.task.done():
            return "running"
        if self.task.cancelled():
            return "cancelled"
        return "failed" if self.task.exception() is not None else "done"


class AgentRuntime:
    """Orchestrates memory, tools and model calls for one inbound message at a time.

    Several messages may be handled concurrently; everything inside one
    handle_message call is sequential.
    """

    def __init__(
        self,
        llm: LLMProvider,
        tool_registry: ToolRegistry,
        memory: MemoryStore,
        bus: MessageBus,
        scheduler: JobScheduler | None = None,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        request_timeout_seconds: float | None = None,
    ) -> None:
        self._llm = llm
        self._tool_registry = tool_registry
        self._memory = memory
        self._bus = bus
        self._max_iterations = max_iterations
        if request_timeout_seconds is None:
            request_timeout_seconds = llm.call_deadline_seconds
        self._request_timeout_seconds = request_timeout_seconds
        self._last_conversation: ConversationRef | None = None
        self._background: dict[str, BackgroundTask] = {}

        self._register_agent_tools(scheduler)

    def _register_agent_tools(self, scheduler: JobScheduler | None) -> None:
        self._tool_registry.register(UpdateCoreMemoryTool(self._memory))
        self._tool_registry.register(ReadEntityTool(self._memory))
        self._tool_registry.register(WriteEntityTool(self._memory))
        self._tool_registry.register(ListEntitiesTool(self._memory))
        self._tool_registry.register(SpawnTool(self.spawn))
        if scheduler is not None:
            self._tool_registry.register(CronAddTool(scheduler))
            self._tool_registry.register(CronRemoveTool(scheduler))
            self._tool_registry.register(CronListTool(scheduler))

    @property
    def last_conversation(self) -> ConversationRef | None:
        return self._last_conversation

    async def handle_message(self, message: InboundMessage) -> None:
        """Answer one inbound message, emitting replies through the bus."""

        conversation = None
        if message.channel != INTERNAL_CHANNEL:
            conversation = ConversationRef(channel=message.channel, chat_id=message.chat_id)
            self._last_conversation = conversation
        context = ToolContext(
            conversation=conversation,
            last_user_conversation=self._last_conversation,
            message_id=message.message_id,
        )

        user_prompt = _user_prompt(message)
        messages: list[dict[str, Any]] = [
            {"role": "system", "content": self._build_system_prompt()},
            {"role": "user", "content": user_prompt},
        ]
        self._log(message, "SYSTEM" if conversation is None else "USER", user_prompt)

        for iteration in range(1, self._max_iterations + 1):
            try:
                response = await asyncio.wait_for(
                    self._llm.generate(messages, tools=self._tool_registry.list_tool_specs()),
                    timeout=self._request_timeout_seconds,
                )
            except Exception:  # noqa: BLE001
                LOGGER.exception("Model call failed for chat %s", message.chat_id)
                await self._deliver(message, BACKEND_ERROR_REPLY, final=True)
                return

            if not response.tool_calls:
                if response.content:
                    await self._deliver(message, response.content, final=True)
                else:
                    LOGGER.warning("Model returned neither content nor tool calls (iteration %d)", iteration)
                    # Every turn ends with a final message, even an empty one.
                    await self._deliver(message, "", final=True)
                return

            calls = [_with_call_id(call, iteration, index) for index, call in enumerate(response.tool_calls)]
            messages.append(
                {
                    "role": "assistant",
                    "content": response.content,
                    "tool_calls": [
                        {
                            "id": call.call_id,
                            "type": "function",
                            "function": {"name": call.name, "arguments": call.arguments},
                        }
                        for call in calls
                    ],
                }
            )
            for call in calls:
                result = await self._execute_tool_call(call, context)
                messages.append({"role": "tool", "tool_call_id": call.call_id, "content": result.for_llm})
                if result.for_user or result.files:
                    await self._deliver_tool_output(message, call.name, result)

            messages.append({"role": "user", "content": REFLECTION_PROMPT})

        LOGGER.warning("Chat %s hit the iteration cap (%d)", message.chat_id, self._max_iterations)
        await self._deliver(message, MAX_ITERATIONS_REPLY, final=True)

    async def _execute_tool_call(self, call: LLMToolCall, context: ToolContext) -> ToolResult:
        arguments, parse_error = _parse_arguments(call.arguments)
        result = await self._tool_registry.execute(call.name, arguments, context)
        if parse_error is None:
            return result
        LOGGER.warning("Malformed arguments for tool %s: %s", call.name, parse_error)
        return ToolResult(
            for_llm=(
                f"Note: your arguments for '{call.name}' were not valid JSON ({parse_error}) "
                f"and were treated as empty.\n{result.for_llm}"
            ),
            for_user=result.for_user,
            files=result.files,
        )

    async def _deliver_tool_output(self, message: InboundMessage, tool_name: str, result: ToolResult) -> None:
        tool = self._tool_registry.get(tool_name)
        content = result.for_user
        if content and (tool is None or tool.announce_as_tool):
            content = f"[{tool_name}] {content}"
        await self._deliver(message, content, files=result.files)

    async def _deliver(
        self,
        message: InboundMessage,
        content: str,
        files: list[str] | None = None,
        final: bool = False,
    ) -> None:
        """Send a reply (except on the internal channel) and record it in the matching log."""

        files = list(files or [])
        if message.channel != INTERNAL_CHANNEL:
            await self._bus.send_outbound(
                OutboundMessage(
                    channel=message.channel,
                    chat_id=message.chat_id,
                    content=content,
                    reply_to_message_id=message.message_id if final else None,
                    files=files,
                )
            )

        logged = content
        if files:
            logged = f"{logged} [Attached files: {', '.join(files)}]".strip()
        if logged:
            self._log(message, "ASSISTANT", logged)

    def _log(self, message: InboundMessage, role: str, content: str) -> None:
        try:
            if message.channel == INTERNAL_CHANNEL:
                self._memory.append_internal(role, content)
            else:
                self._memory.append_history(role, content)
        except OSError as exc:
            LOGGER.error("Could not write %s entry to memory: %s", role, exc)

    def _build_system_prompt(self) -> str:
        parts = [_PERSONA, _RULES, self._memory.build_context()]
        recent = self._memory.read_recent_history(RECENT_HISTORY_BYTES)
        if recent:
            parts.append(
                "\n\n## Recent Conversational History\n\n"
                f"{recent}\n\n"
                "(Note: The above is the recent conversation log. Use it to understand "
                "references like 'that file' or 'send it again'.)\n"
            )
        return "".join(parts)

    def spawn(self, task: str, context: ToolContext) -> BackgroundTask:
        """Start a background run of the agent and return its handle.

        The run goes through handle_message like any conversation, addressed to
        the caller's conversation (or the internal channel when there is none).
        """

        try:
            target = context.reply_target()
        except NoConversationError:
            target = ConversationRef(channel=INTERNAL_CHANNEL, chat_id="background")

        task_id = uuid.uuid4().hex[:8]
        handle = BackgroundTask(task_id=task_id, description=task, target=target)
        inbound = InboundMessage(
            channel=target.channel,
            sender_id="subagent",
            chat_id=target.chat_id,
            content=(
                f"[Background task {task_id}]\n{task}\n\n"
                "Work through this autonomously with your tools, then report the outcome to the user."
            ),
        )
        handle.task = asyncio.create_task(self.handle_message(inbound), name=f"spawn-{task_id}")
        handle.task.add_done_callback(lambda t: self._on_background_done(handle))
        self._background[task_id] = handle
        LOGGER.info("Spawned background task %s for %s:%s", task_id, target.channel, target.chat_id)
        return handle

    def background_tasks(self) -> list[BackgroundTask]:
        """Handles of background tasks that are still running."""

        return list(self._background.values())

    def _on_background_done(self, handle: BackgroundTask) -> None:
        LOGGER.info("Background task %s finished with status %s", handle.task_id, handle.status)
        if handle.status == "failed":
            LOGGER.error("Background task %s failed", handle.task_id, exc_info=handle.task.exception())
        self._background.pop(handle.task_id, None)

    async def shutdown(self) -> None:
        """Cancel background tasks that are still running."""

        pending = [h.task for h in self._background.values() if h.task is not None and not h.task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)


def _user_prompt(message: InboundMessage) -> str:
    prompt = message.content
    if message.reply_to:
        prompt = (
            "Context (User is replying to this previous message):\n"
            f'"{message.reply_to}"\n\n'
            f"User's message: {message.content}"
        )
    if message.media:
        prompt += "\n" + "\n".join(f"[Attachment: {ref}]" for ref in message.media)
    return prompt


def _parse_arguments(raw: str) -> tuple[dict[str, Any], str | None]:
    if not raw or not raw.strip():
        return {}, None
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        return {}, str(exc)
    if not isinstance(parsed, dict):
        return {}, f"expected a JSON object, got {type(parsed).__name__}"
    return parsed, None


def _with_call_id(call: LLMToolCall, iteration: int, index: int) -> LLMToolCall:
    if call.call_id:
        return call
    return LLMToolCall(name=call.name, arguments=call.arguments, call_id=f"call_{iteration}_{index}")
