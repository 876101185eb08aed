"""Messages API wire shapes (the upstream format).

Only the fields the relay reads or writes are declared; upstream responses
may carry more.
"""

from __future__ import annotations

from typing import Any

from typing_extensions import TypedDict

from .chat import JSONValue


class CacheControl(TypedDict, total=False):
    """Prompt-cache breakpoint ("ephemeral" with a TTL such as "1h")."""
    type: str
    ttl: str


class ImageSource(TypedDict, total=False):
    type: str
    media_type: str
    data: str
    url: str


class ContentBlock(TypedDict, total=False):
    """A content block of an outbound message or an upstream response.

    Attributes:
        type: "text", "image", "tool_use" or "tool_result".
        text: Text for "text" blocks.
        source: Image source for "image" blocks.
        id: Tool invocation id for "tool_use" blocks.
        name: Tool name for "tool_use" blocks.
        input: Decoded tool arguments for "tool_use" blocks.
        tool_use_id: Invocation answered by a "tool_result" block.
        content: Raw result payload of a "tool_result" block.
        cache_control: Optional cache breakpoint.
    """
    type: str
    text: str
    source: ImageSource
    id: str
    name: str
    input: JSONValue
    tool_use_id: str
    content: JSONValue
    cache_control: CacheControl


class SystemBlock(TypedDict, total=False):
    type: str
    text: str
    cache_control: CacheControl


class Message(TypedDict):
    role: str
    content: str | list[ContentBlock]


class ToolSchema(TypedDict, total=False):
    name: str
    description: str
    input_schema: dict[str, JSONValue]


class MessagesRequest(TypedDict, total=False):
    """Outbound request body for ``POST /v1/messages``."""
    model: str
    max_tokens: int
    messages: list[Message]
    system: list[SystemBlock]
    temperature: float
    top_p: float
    stop_sequences: list[str]
    stream: bool
    tools: list[ToolSchema]
    tool_choice: dict[str, Any]
    metadata: dict[str, str]


class MessagesUsage(TypedDict, total=False):
    input_tokens: int
    output_tokens: int
    cache_creation_input_tokens: int
    cache_read_input_tokens: int


class MessagesResponse(TypedDict, total=False):
    """Complete upstream response."""
    id: str
    type: str
    role: str
    content: list[ContentBlock]
    model: str
    stop_reason: str | None
    stop_sequence: str | None
    usage: MessagesUsage


class StreamEvent(TypedDict, total=False):
    """One decoded upstream stream event.

    ``type`` is one of message_start, content_block_start,
    content_block_delta, content_block_stop, message_delta, message_stop,
    ping or error.
    """
    type: str
    message: MessagesResponse
    index: int
    content_block: ContentBlock
    delta: dict[str, Any]
    usage: MessagesUsage
    error: dict[str, Any]
