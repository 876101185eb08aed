"""Chat Completions wire shapes (the caller-facing format).

These types describe what clients send to ``/v1/chat/completions`` and what
the relay sends back, both for complete responses and for streamed chunks.
"""

from __future__ import annotations

from typing import Any, Union

from typing_extensions import TypedDict

# A decoded JSON document: tool arguments, parameter schemas and any
# content-part shape the relay does not model explicitly.
JSONValue = Union[None, bool, int, float, str, list["JSONValue"], dict[str, "JSONValue"]]


class FunctionCall(TypedDict, total=False):
    """Function name and serialized arguments of a tool call.

    Attributes:
        name: Function name. Absent on streamed argument fragments.
        arguments: JSON text of the arguments, or a fragment of it while
            streaming.
    """
    name: str
    arguments: str


class ToolCall(TypedDict, total=False):
    """A tool invocation requested by the assistant.

    Attributes:
        id: Identifier that tool results refer back to via ``tool_call_id``.
        type: Always "function".
        function: Name and arguments.
        index: Position of the call within the turn (streamed chunks only).
    """
    id: str
    type: str
    function: FunctionCall
    index: int


class ContentPart(TypedDict, total=False):
    """One typed part of a multi-part message ("text" or "image_url")."""
    type: str
    text: str
    image_url: dict[str, Any]


class ChatMessage(TypedDict, total=False):
    """A message of the inbound conversation.

    Attributes:
        role: "system", "user", "assistant" or "tool".
        content: Plain string, list of content parts, or None.
        tool_calls: Tool invocations issued by the assistant.
        tool_call_id: For role "tool", the invocation this result answers.
    """
    role: str
    content: str | list[ContentPart] | None
    tool_calls: list[ToolCall]
    tool_call_id: str


class FunctionDefinition(TypedDict, total=False):
    name: str
    description: str
    parameters: JSONValue


class ToolDefinition(TypedDict, total=False):
    type: str
    function: FunctionDefinition


class ChatCompletionRequest(TypedDict, total=False):
    """Inbound request body."""
    model: str
    messages: list[ChatMessage]
    max_tokens: int
    temperature: float
    top_p: float
    stream: bool
    stop: str | list[str]
    tools: list[ToolDefinition]
    tool_choice: str | dict[str, Any]
    user: str


class Delta(TypedDict, total=False):
    """Incremental update carried by a streamed chunk."""
    role: str
    content: str
    tool_calls: list[ToolCall]


class Choice(TypedDict, total=False):
    index: int
    delta: Delta
    message: ChatMessage
    finish_reason: str | None


class Usage(TypedDict, total=False):
    """Token accounting in chat-completion terms.

    Attributes:
        prompt_tokens: Upstream input tokens.
        completion_tokens: Upstream output tokens.
        total_tokens: prompt_tokens + completion_tokens.
        prompt_tokens_details: ``cached_tokens`` carries cache-read tokens.
        cache_creation_input_tokens: Tokens written to the prompt cache.
        cache_read_input_tokens: Tokens served from the prompt cache.
    """
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    prompt_tokens_details: dict[str, int]
    completion_tokens_details: dict[str, int]
    cache_creation_input_tokens: int
    cache_read_input_tokens: int


class ChatCompletionChunk(TypedDict, total=False):
    id: str
    object: str
    created: int
    model: str
    choices: list[Choice]
    usage: Usage


class ChatCompletionResponse(TypedDict, total=False):
    id: str
    object: str
    created: int
    model: str
    choices: list[Choice]
    usage: Usage
