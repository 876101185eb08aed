"""Type definitions for both wire formats."""

from enum import Enum

from .chat import (
    ChatCompletionChunk,
    ChatCompletionRequest,
    ChatCompletionResponse,
    ChatMessage,
    Choice,
    ContentPart,
    Delta,
    FunctionCall,
    FunctionDefinition,
    JSONValue,
    ToolCall,
    ToolDefinition,
    Usage,
)
from .messages import (
    CacheControl,
    ContentBlock,
    ImageSource,
    Message,
    MessagesRequest,
    MessagesResponse,
    MessagesUsage,
    StreamEvent,
    SystemBlock,
    ToolSchema,
)


class Role(str, Enum):
    """Closed set of inbound message roles."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


__all__ = [
    "CacheControl",
    "ChatCompletionChunk",
    "ChatCompletionRequest",
    "ChatCompletionResponse",
    "ChatMessage",
    "Choice",
    "ContentBlock",
    "ContentPart",
    "Delta",
    "FunctionCall",
    "FunctionDefinition",
    "ImageSource",
    "JSONValue",
    "Message",
    "MessagesRequest",
    "MessagesResponse",
    "MessagesUsage",
    "Role",
    "StreamEvent",
    "SystemBlock",
    "ToolCall",
    "ToolDefinition",
    "ToolSchema",
    "Usage",
]
