"""Stream adapter for converting Anthropic Messages SSE to OpenAI Chat Completions SSE.

Anthropic Messages Events:
    event: message_start
    data: {"type":"message_start","message":{"id":"msg_1","usage":{"input_tokens":10}}}

    event: content_block_start
    data: {"type":"content_block_start","index":1,"content_block":{"type":"tool_use","id":"toolu_1","name":"f"}}

    event: content_block_delta
    data: {"type":"content_block_delta","index":0,"delta":{"type":"text_delta","text":"Hello"}}

    event: content_block_delta
    data: {"type":"content_block_delta","index":1,"delta":{"type":"input_json_delta","partial_json":"{\\"a\\""}}

    event: content_block_stop
    data: {"type":"content_block_stop","index":0}

    event: message_delta
    data: {"type":"message_delta","delta":{"stop_reason":"end_turn"},"usage":{"output_tokens":3}}

OpenAI Chat Completion Events:
    data: {"choices":[{"delta":{"role":"assistant","content":""},"index":0}]}
    data: {"choices":[{"delta":{"content":"Hello"},"index":0}]}
    data: {"choices":[{"delta":{"tool_calls":[{"index":0,...}]},"index":0}]}
    data: {"choices":[{"delta":{},"finish_reason":"stop","index":0}],"usage":{...}}
    data: [DONE]

Each upstream event yields at most one chunk; nothing is buffered beyond the
current event except an incomplete trailing line.
"""

import json
import logging
import time
from typing import Any, AsyncIterator, Mapping, Optional

import httpx

from ..core.sse import DONE_FRAME, SSELineDecoder, encode_sse_data, extract_sse_data
from ..types import ChatCompletionChunk, Delta
from .translator import convert_stop_reason, convert_usage

logger = logging.getLogger("chatrelay")

_USAGE_KEYS = (
    "input_tokens",
    "output_tokens",
    "cache_creation_input_tokens",
    "cache_read_input_tokens",
)


class MessagesToChatStreamAdapter:
    """Converts an Anthropic Messages SSE stream to OpenAI chat completion chunks.

    State kept across events:
    - the upstream message id (stamped on every chunk)
    - the positional index of the current tool call
    - whether any tool call was started (forces finish_reason "tool_calls")
    - usage counters from message_start, updated by message_delta
    """

    def __init__(
        self,
        model: str,
        request_id: Optional[int] = None,
        created: Optional[int] = None,
    ):
        """Initialize the stream adapter.

        Args:
            model: Model name stamped on every chunk (after model mapping)
            request_id: Log correlation id
            created: Unix timestamp for the chunks (defaults to now)
        """
        self.model = model
        self.request_id = request_id
        self.created = created if created is not None else int(time.time())

        self.message_id = ""
        self.tool_index = 0
        self.saw_tool_use = False
        self.usage: Optional[dict[str, int]] = None
        self.finish_reason: Optional[str] = None
        self.event_count = 0

        self._lines = SSELineDecoder()

    @property
    def _log_prefix(self) -> str:
        return f"[REQ#{self.request_id}]" if self.request_id is not None else "[stream]"

    async def adapt_stream(
        self,
        upstream: AsyncIterator[bytes],
    ) -> AsyncIterator[bytes]:
        """Transform the upstream Messages stream into chat completion SSE frames.

        Always ends with ``data: [DONE]``, even when the upstream stream ends
        without a message_delta or the connection fails mid-stream.
        """
        try:
            async for chunk in upstream:
                for line in self._lines.feed(chunk):
                    for frame in self.process_line(line):
                        yield frame
        except httpx.HTTPError as exc:
            logger.error(
                f"{self._log_prefix} Upstream stream failed after {self.event_count} events: "
                f"{exc.__class__.__name__}: {exc}"
            )

        for line in self._lines.flush():
            for frame in self.process_line(line):
                yield frame

        logger.info(
            f"{self._log_prefix} Stream finished: {self.event_count} events, "
            f"finish_reason={self.finish_reason}"
        )
        yield DONE_FRAME

    def process_line(self, line: str) -> list[bytes]:
        """Process one upstream SSE line, returning encoded frames."""
        data = extract_sse_data(line.strip())
        if data is None or data == "" or data == "[DONE]":
            return []

        self.event_count += 1
        logger.debug(f"{self._log_prefix} Stream[{self.event_count}]: {data[:500]}")

        try:
            event = json.loads(data)
        except json.JSONDecodeError as exc:
            logger.warning(
                f"{self._log_prefix} Failed to parse stream event: {exc}, data: {data[:200]}"
            )
            return []
        if not isinstance(event, dict):
            logger.warning(f"{self._log_prefix} Ignoring non-object stream event: {data[:200]}")
            return []

        return [encode_sse_data(payload) for payload in self.process_event(event)]

    def process_event(self, event: Mapping[str, Any]) -> list[dict[str, Any]]:
        """Process one decoded upstream event, returning chunk payloads."""
        event_type = event.get("type")

        if event_type == "message_start":
            return self._on_message_start(event)
        if event_type == "content_block_start":
            return self._on_content_block_start(event)
        if event_type == "content_block_delta":
            return self._on_content_block_delta(event)
        if event_type == "content_block_stop":
            self.tool_index += 1
            return []
        if event_type == "message_delta":
            return self._on_message_delta(event)
        if event_type == "error":
            error = event.get("error") or {}
            logger.error(f"{self._log_prefix} Upstream stream error: {error}")
            return []

        # message_stop, ping and unknown events carry nothing to relay
        return []

    def _on_message_start(self, event: Mapping[str, Any]) -> list[dict[str, Any]]:
        message = event.get("message") or {}
        self.message_id = str(message.get("id") or self.message_id)
        usage = message.get("usage")
        if isinstance(usage, Mapping):
            self._merge_usage(usage)
        logger.info(f"{self._log_prefix} Stream started - message id: {self.message_id}")
        return [self._chunk({"role": "assistant", "content": ""})]

    def _on_content_block_start(self, event: Mapping[str, Any]) -> list[dict[str, Any]]:
        block = event.get("content_block") or {}
        if block.get("type") != "tool_use":
            return []

        self.saw_tool_use = True
        logger.info(
            f"{self._log_prefix} Tool use started - id: {block.get('id')}, "
            f"name: {block.get('name')}, index: {self.tool_index}"
        )
        return [self._chunk({
            "tool_calls": [{
                "index": self.tool_index,
                "id": str(block.get("id") or ""),
                "type": "function",
                "function": {"name": str(block.get("name") or ""), "arguments": ""},
            }]
        })]

    def _on_content_block_delta(self, event: Mapping[str, Any]) -> list[dict[str, Any]]:
        delta = event.get("delta") or {}
        delta_type = delta.get("type")

        if delta_type == "text_delta":
            text = delta.get("text")
            if isinstance(text, str):
                return [self._chunk({"content": text})]
        elif delta_type == "input_json_delta":
            partial = delta.get("partial_json")
            if isinstance(partial, str):
                return [self._chunk({
                    "tool_calls": [{
                        "index": self.tool_index,
                        "function": {"arguments": partial},
                    }]
                })]
        return []

    def _on_message_delta(self, event: Mapping[str, Any]) -> list[dict[str, Any]]:
        usage = event.get("usage")
        if isinstance(usage, Mapping):
            self._merge_usage(usage)

        delta = event.get("delta") or {}
        stop_reason = delta.get("stop_reason")
        if not isinstance(stop_reason, str) or not stop_reason:
            return []

        self.finish_reason = "tool_calls" if self.saw_tool_use else convert_stop_reason(stop_reason)
        logger.info(
            f"{self._log_prefix} Stream ended - stop reason: {stop_reason} "
            f"-> {self.finish_reason}"
        )
        chunk = self._chunk({}, finish_reason=self.finish_reason)
        if self.usage is not None:
            chunk["usage"] = convert_usage(self.usage)
        return [chunk]

    def _merge_usage(self, usage: Mapping[str, Any]) -> None:
        if self.usage is None:
            self.usage = {}
        for key in _USAGE_KEYS:
            value = usage.get(key)
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                self.usage[key] = int(value)

    def _chunk(
        self, delta: Delta, finish_reason: Optional[str] = None
    ) -> ChatCompletionChunk:
        return {
            "id": self.message_id,
            "object": "chat.completion.chunk",
            "created": self.created,
            "model": self.model,
            "choices": [
                {
                    "index": 0,
                    "delta": delta,
                    "finish_reason": finish_reason,
                }
            ],
        }


async def adapt_messages_stream_to_chat(
    model: str,
    upstream: AsyncIterator[bytes],
    request_id: Optional[int] = None,
) -> AsyncIterator[bytes]:
    """Convenience function to adapt an Anthropic Messages stream to OpenAI chunks."""
    adapter = MessagesToChatStreamAdapter(model, request_id=request_id)
    async for frame in adapter.adapt_stream(upstream):
        yield frame
