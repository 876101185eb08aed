"""OpenAI Chat Completions <-> Anthropic Messages translation helpers.

Provides translation of Chat Completions requests into Messages API
requests, and of Messages API responses (complete or streamed) back into
Chat Completions format.
"""

from .translator import (
    chat_completions_to_messages,
    convert_stop_reason,
    message_to_chat_completion,
    resolve_max_tokens,
)
from .stream_adapter import (
    MessagesToChatStreamAdapter,
    adapt_messages_stream_to_chat,
)

__all__ = [
    "chat_completions_to_messages",
    "message_to_chat_completion",
    "convert_stop_reason",
    "resolve_max_tokens",
    "MessagesToChatStreamAdapter",
    "adapt_messages_stream_to_chat",
]
