"""Core domain models used across layers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

INTERNAL_CHANNEL = "internal"


class NoConversationError(ValueError):
    """Raised when a tool needs a conversation to reply to and none is known."""


@dataclass(slots=True)
class InboundMessage:
    """Message normalized by adapters for runtime usage."""

    channel: str
    sender_id: str
    chat_id: str
    content: str
    message_id: str | None = None
    reply_to: str | None = None
    media: list[str] = field(default_factory=list)


@dataclass(slots=True)
class OutboundMessage:
    """Message produced by the runtime or scheduler for a channel adapter."""

    channel: str
    chat_id: str
    content: str
    reply_to_message_id: str | None = None
    files: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ToolResult:
    """Outcome of a tool call.

    ``for_llm`` is always returned to the model, including on failure.
    ``for_user`` and ``files`` are forwarded to the human when present.
    """

    for_llm: str
    for_user: str = ""
    files: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.for_llm:
            raise ValueError("ToolResult.for_llm must not be empty")


@dataclass(frozen=True, slots=True)
class ConversationRef:
    """Where replies for a conversation should be delivered."""

    channel: str
    chat_id: str


@dataclass(slots=True)
class ToolContext:
    """Execution context handed to every tool call."""

    conversation: ConversationRef | None = None
    last_user_conversation: ConversationRef | None = None
    message_id: str | None = None

    def reply_target(self) -> ConversationRef:
        """Return the live conversation, falling back to the last user conversation."""

        if self.conversation is not None:
            return self.conversation
        if self.last_user_conversation is not None:
            return self.last_user_conversation
        raise NoConversationError("No conversation is available to deliver replies to")


@dataclass(slots=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(slots=True)
class LLMToolCall:
    """Tool invocation returned by an LLM provider.

    ``arguments`` is the raw JSON string sent by the model; the runtime parses it.
    """

    name: str
    arguments: str = "{}"
    call_id: str | None = None


@dataclass(slots=True)
class LLMResponse:
    """Result from an LLM generation request."""

    content: str
    tool_calls: list[LLMToolCall] = field(default_factory=list)
    usage: TokenUsage = field(default_factory=TokenUsage)
    raw: dict[str, Any] | None = None
