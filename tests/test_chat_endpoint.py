"""Simulation tests for POST /v1/chat/completions.

Tests the complete flow: OpenAI request -> translation -> fake Messages API ->
translation back -> OpenAI response, including streaming and error paths.
"""

from __future__ import annotations

import json

import httpx
import pytest

from conftest import TEST_API_KEY, UPSTREAM_HOST, build_settings, register_fake_upstream
from chatrelay.core.upstream_transport import register_upstream_transport
from chatrelay.testing import (
    FakeUpstream,
    ProxyHarness,
    UpstreamResponse,
    assert_chat_chunks_valid,
    assert_chat_completion_valid,
    build_chat_request,
    build_function_tool,
    build_message_stream_events,
    build_reset_transport,
    collect_stream_text,
    collect_stream_tool_calls,
    parse_sse_chunks,
)

CHAT_PATH = "/v1/chat/completions"


# =============================================================================
# Authentication and input validation
# =============================================================================


class TestRequestValidation:
    """Client input errors never reach the upstream."""

    @pytest.mark.asyncio
    async def test_missing_authorization_is_401(self, relay_harness):
        upstream, harness = relay_harness
        async with harness.make_async_client(api_key=None) as client:
            response = await client.post(CHAT_PATH, json=build_chat_request([{"role": "user", "content": "Hi"}]))

        assert response.status_code == 401
        assert "error" in response.json()
        assert upstream.received == []

    @pytest.mark.asyncio
    async def test_non_bearer_authorization_is_401(self, relay_harness):
        upstream, harness = relay_harness
        async with harness.make_async_client(api_key=None) as client:
            response = await client.post(
                CHAT_PATH,
                json=build_chat_request([{"role": "user", "content": "Hi"}]),
                headers={"Authorization": "Basic abc"},
            )

        assert response.status_code == 401
        assert upstream.received == []

    @pytest.mark.asyncio
    async def test_empty_bearer_token_is_401(self, relay_harness):
        _, harness = relay_harness
        async with harness.make_async_client(api_key=None) as client:
            response = await client.post(
                CHAT_PATH,
                json=build_chat_request([{"role": "user", "content": "Hi"}]),
                headers={"Authorization": "Bearer   "},
            )

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_invalid_json_is_400(self, relay_harness):
        _, harness = relay_harness
        async with harness.make_async_client() as client:
            response = await client.post(
                CHAT_PATH,
                content=b"{not json",
                headers={"Content-Type": "application/json"},
            )

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid JSON payload"}

    @pytest.mark.asyncio
    async def test_non_object_body_is_400(self, relay_harness):
        _, harness = relay_harness
        async with harness.make_async_client() as client:
            response = await client.post(CHAT_PATH, json=[1, 2, 3])

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_missing_model_is_400(self, relay_harness):
        _, harness = relay_harness
        async with harness.make_async_client() as client:
            response = await client.post(CHAT_PATH, json={"messages": []})

        assert response.status_code == 400
        assert response.json() == {"error": "Missing model parameter"}

    @pytest.mark.asyncio
    async def test_unknown_role_is_400(self, relay_harness):
        upstream, harness = relay_harness
        async with harness.make_async_client() as client:
            response = await client.post(
                CHAT_PATH, json=build_chat_request([{"role": "wizard", "content": "Hi"}])
            )

        assert response.status_code == 400
        assert "wizard" in response.json()["error"]
        assert upstream.received == []


# =============================================================================
# Non-streaming
# =============================================================================


class TestNonStreaming:
    @pytest.mark.asyncio
    async def test_text_completion(self, relay_harness):
        upstream, harness = relay_harness
        upstream.enqueue_message_response(
            [{"type": "text", "text": "Hello there!"}],
            usage={"input_tokens": 12, "output_tokens": 4},
            model="claude-sonnet-4-5",
            message_id="msg_abc",
        )

        async with harness.make_async_client() as client:
            response = await client.post(
                CHAT_PATH,
                json=build_chat_request(
                    [
                        {"role": "system", "content": "Be nice."},
                        {"role": "user", "content": "Hi"},
                    ],
                    model="claude-sonnet-4-5",
                ),
            )

        assert response.status_code == 200
        body = response.json()
        assert_chat_completion_valid(body)
        assert body["id"] == "msg_abc"
        assert body["choices"][0]["message"]["content"] == "Hello there!"
        assert body["choices"][0]["finish_reason"] == "stop"
        assert body["usage"]["total_tokens"] == 16

        sent = upstream.last_request
        assert sent["path"] == "/v1/messages"
        assert sent["json"]["system"][0]["text"] == "Be nice."
        assert sent["json"]["messages"] == [{"role": "user", "content": "Hi"}]
        assert sent["json"]["max_tokens"] == 8192
        assert "stream" not in sent["json"]

    @pytest.mark.asyncio
    async def test_upstream_headers(self, relay_harness):
        upstream, harness = relay_harness
        upstream.enqueue_message_response([{"type": "text", "text": "ok"}])

        async with harness.make_async_client() as client:
            await client.post(CHAT_PATH, json=build_chat_request([{"role": "user", "content": "Hi"}]))

        headers = upstream.last_request["headers"]
        assert headers["x-api-key"] == TEST_API_KEY
        assert headers["anthropic-version"] == "2023-06-01"
        assert headers["anthropic-beta"] == "prompt-caching-2024-07-31"
        assert headers["content-type"] == "application/json"
        assert "authorization" not in headers

    @pytest.mark.asyncio
    async def test_tool_call_round_trip(self, relay_harness):
        upstream, harness = relay_harness
        upstream.enqueue_message_response(
            [{"type": "tool_use", "id": "toolu_1", "name": "get_weather", "input": {"city": "Rome"}}],
            stop_reason="tool_use",
        )

        async with harness.make_async_client() as client:
            response = await client.post(
                CHAT_PATH,
                json=build_chat_request(
                    [{"role": "user", "content": "Weather in Rome?"}],
                    tools=[build_function_tool("get_weather", "Get weather", {
                        "type": "object",
                        "properties": {"city": {"type": "string"}},
                        "required": ["city"],
                    })],
                    tool_choice="auto",
                ),
            )

        body = response.json()
        assert_chat_completion_valid(body)
        tool_call = body["choices"][0]["message"]["tool_calls"][0]
        assert tool_call["id"] == "toolu_1"
        assert json.loads(tool_call["function"]["arguments"]) == {"city": "Rome"}
        assert body["choices"][0]["finish_reason"] == "tool_calls"

        sent = upstream.last_request["json"]
        assert sent["tools"][0]["name"] == "get_weather"
        assert sent["tools"][0]["input_schema"]["required"] == ["city"]
        assert sent["tool_choice"] == {"type": "auto"}

    @pytest.mark.asyncio
    async def test_model_mapping_and_max_tokens_mapping(self, clear_transport_registry):
        upstream = FakeUpstream()
        upstream.enqueue_message_response([{"type": "text", "text": "mapped"}])
        register_fake_upstream(UPSTREAM_HOST, upstream)

        settings = build_settings(
            model_mapping={"gpt-4": "claude-opus-4-5-20251101"},
            max_tokens_mapping={"claude-opus-4-5-20251101": 3000},
        )
        with ProxyHarness(settings) as harness:
            async with harness.make_async_client() as client:
                response = await client.post(
                    CHAT_PATH,
                    json=build_chat_request([{"role": "user", "content": "Hi"}], model="gpt-4"),
                )

        assert response.status_code == 200
        sent = upstream.last_request["json"]
        assert sent["model"] == "claude-opus-4-5-20251101"
        assert sent["max_tokens"] == 3000

    @pytest.mark.asyncio
    async def test_upstream_error_status_is_passed_through(self, relay_harness):
        upstream, harness = relay_harness
        upstream.enqueue_error_response(429, "rate_limit_error", "Slow down")

        async with harness.make_async_client() as client:
            response = await client.post(CHAT_PATH, json=build_chat_request([{"role": "user", "content": "Hi"}]))

        assert response.status_code == 429
        raw = response.json()["error"]
        assert isinstance(raw, str)
        assert json.loads(raw)["error"]["message"] == "Slow down"

    @pytest.mark.asyncio
    async def test_unparseable_upstream_body_is_502(self, relay_harness):
        upstream, harness = relay_harness
        upstream.enqueue(UpstreamResponse(body="<html>gateway</html>"))

        async with harness.make_async_client() as client:
            response = await client.post(CHAT_PATH, json=build_chat_request([{"role": "user", "content": "Hi"}]))

        assert response.status_code == 502
        assert response.json()["error"].startswith("Failed to parse upstream response")

    @pytest.mark.asyncio
    async def test_connection_failure_is_502(self, clear_transport_registry):
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        register_upstream_transport(UPSTREAM_HOST, httpx.MockTransport(refuse))

        with ProxyHarness(build_settings()) as harness:
            async with harness.make_async_client() as client:
                response = await client.post(
                    CHAT_PATH, json=build_chat_request([{"role": "user", "content": "Hi"}])
                )

        assert response.status_code == 502
        assert "connection refused" in response.json()["error"]


# =============================================================================
# Streaming
# =============================================================================


class TestStreaming:
    @pytest.mark.asyncio
    async def test_text_stream(self, relay_harness):
        upstream, harness = relay_harness
        upstream.enqueue_message_response(
            [{"type": "text", "text": "Streaming works"}],
            usage={"input_tokens": 10, "output_tokens": 3},
            message_id="msg_stream",
            stream=True,
        )

        async with harness.make_async_client() as client:
            response = await client.post(
                CHAT_PATH,
                json=build_chat_request([{"role": "user", "content": "Hi"}], stream=True),
            )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"
        chunks, saw_done = parse_sse_chunks(response.content)
        assert saw_done
        assert_chat_chunks_valid(chunks)
        assert collect_stream_text(chunks) == "Streaming works"
        assert chunks[0]["id"] == "msg_stream"
        final = chunks[-1]
        assert final["choices"][0]["finish_reason"] == "stop"
        assert final["usage"]["prompt_tokens"] == 10
        assert final["usage"]["completion_tokens"] == 3
        assert final["usage"]["total_tokens"] == 13

        assert upstream.last_request["json"]["stream"] is True

    @pytest.mark.asyncio
    async def test_fragmented_tool_stream(self, relay_harness):
        upstream, harness = relay_harness
        upstream.enqueue_message_response(
            [
                {"type": "tool_use", "id": "toolu_1", "name": "lookup", "input": {"id": 1}},
                {"type": "tool_use", "id": "toolu_2", "name": "lookup", "input": {"id": 2}},
            ],
            stop_reason="tool_use",
            stream=True,
            chunk_sizes=[5, 17, 3, 40, 11, 64],
        )

        async with harness.make_async_client() as client:
            response = await client.post(
                CHAT_PATH,
                json=build_chat_request([{"role": "user", "content": "Look up"}], stream=True),
            )

        chunks, saw_done = parse_sse_chunks(response.content)
        assert saw_done
        calls = collect_stream_tool_calls(chunks)
        assert [calls[i]["id"] for i in sorted(calls)] == ["toolu_1", "toolu_2"]
        assert json.loads(calls[1]["arguments"]) == {"id": 2}
        assert chunks[-1]["choices"][0]["finish_reason"] == "tool_calls"

    @pytest.mark.asyncio
    async def test_malformed_event_does_not_abort_stream(self, relay_harness):
        upstream, harness = relay_harness
        upstream.enqueue(
            UpstreamResponse(
                stream_events=build_message_stream_events("fine"),
                inject_malformed_at=2,
            )
        )

        async with harness.make_async_client() as client:
            response = await client.post(
                CHAT_PATH,
                json=build_chat_request([{"role": "user", "content": "Hi"}], stream=True),
            )

        chunks, saw_done = parse_sse_chunks(response.content)
        assert saw_done
        assert collect_stream_text(chunks) == "fine"

    @pytest.mark.asyncio
    async def test_connection_reset_mid_stream_still_sends_done(self, clear_transport_registry):
        events = build_message_stream_events("never finished", message_id="msg_reset")
        register_upstream_transport(UPSTREAM_HOST, build_reset_transport(events, reset_after=4))

        with ProxyHarness(build_settings()) as harness:
            async with harness.make_async_client() as client:
                response = await client.post(
                    CHAT_PATH,
                    json=build_chat_request([{"role": "user", "content": "Hi"}], stream=True),
                )

        assert response.status_code == 200
        chunks, saw_done = parse_sse_chunks(response.content)
        assert saw_done
        assert_chat_chunks_valid(chunks)
        assert chunks[0]["id"] == "msg_reset"
        assert collect_stream_text(chunks) == "never finished"
        assert chunks[-1]["choices"][0]["finish_reason"] is None

    @pytest.mark.asyncio
    async def test_stream_error_status_is_passed_through(self, relay_harness):
        upstream, harness = relay_harness
        upstream.enqueue_error_response(401, "authentication_error", "invalid x-api-key")

        async with harness.make_async_client() as client:
            response = await client.post(
                CHAT_PATH,
                json=build_chat_request([{"role": "user", "content": "Hi"}], stream=True),
            )

        assert response.status_code == 401
        assert "invalid x-api-key" in response.json()["error"]


# =============================================================================
# Health
# =============================================================================


class TestHealth:
    @pytest.mark.asyncio
    async def test_health_reports_configuration(self, clear_transport_registry):
        settings = build_settings(model_mapping={"gpt-4": "claude-x"})
        with ProxyHarness(settings) as harness:
            async with harness.make_async_client() as client:
                response = await client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["service"] == "chatrelay"
        assert body["upstream_base_url"] == "http://upstream.local"
        assert body["model_mapping"] == {"gpt-4": "claude-x"}
        assert isinstance(body["requests_received"], int)
