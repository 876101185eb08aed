"""Testing utilities for in-process relay simulations."""

from .assertions import (
    assert_chat_chunks_valid,
    assert_chat_completion_valid,
    collect_stream_text,
    collect_stream_tool_calls,
    parse_sse_chunks,
)
from .fake_upstream import FakeUpstream, ResetStream, UpstreamResponse, build_reset_transport
from .proxy_harness import ProxyHarness
from .response_builders import (
    build_chat_request,
    build_function_tool,
    build_message_response,
    build_message_stream_events,
)

__all__ = [
    # Core simulation classes
    "FakeUpstream",
    "UpstreamResponse",
    "ResetStream",
    "build_reset_transport",
    "ProxyHarness",
    # Builders
    "build_chat_request",
    "build_function_tool",
    "build_message_response",
    "build_message_stream_events",
    # Assertions
    "assert_chat_completion_valid",
    "assert_chat_chunks_valid",
    "collect_stream_text",
    "collect_stream_tool_calls",
    "parse_sse_chunks",
]
