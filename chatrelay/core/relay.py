"""Relay orchestration: model mapping, translation and upstream calls."""

import json
import logging
from typing import Any, AsyncIterator, Mapping, Optional

from ..config_loader import RelaySettings
from ..messages import (
    MessagesToChatStreamAdapter,
    chat_completions_to_messages,
    message_to_chat_completion,
)
from ..types import ChatCompletionResponse, MessagesRequest
from .exceptions import UpstreamError
from .upstream import UpstreamClient, UpstreamStream, mask_secret

logger = logging.getLogger("chatrelay")

_LOG_PREVIEW_CHARS = 500


def _preview(value: Any) -> str:
    text = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False)
    if len(text) > _LOG_PREVIEW_CHARS:
        return text[:_LOG_PREVIEW_CHARS] + "..."
    return text


class Relay:
    """Forwards chat completion requests to the Messages API and back."""

    def __init__(
        self,
        settings: RelaySettings,
        upstream: Optional[UpstreamClient] = None,
    ) -> None:
        self.settings = settings
        self.upstream = upstream or UpstreamClient(
            base_url=settings.upstream_base_url,
            anthropic_version=settings.anthropic_version,
            anthropic_beta=settings.anthropic_beta,
            timeout=settings.request_timeout,
        )

    def map_model(self, model: str) -> str:
        return self.settings.model_mapping.get(model, model)

    def translate_request(
        self, payload: Mapping[str, Any], req_id: int
    ) -> MessagesRequest:
        """Apply the model mapping and translate the request body.

        Raises:
            InvalidRequestError: when the body cannot be translated.
        """
        prefix = f"[REQ#{req_id}]"
        model = str(payload.get("model") or "")
        mapped = self.map_model(model)
        if mapped != model:
            logger.info(f"{prefix} Model mapping: {model} -> {mapped}")
            payload = {**payload, "model": mapped}

        messages = payload.get("messages")
        tools = payload.get("tools")
        logger.info(
            f"{prefix} Request: model={mapped}, stream={bool(payload.get('stream'))}, "
            f"messages={len(messages) if isinstance(messages, list) else 'invalid'}, "
            f"tools={len(tools) if isinstance(tools, list) else 0}, "
            f"user={payload.get('user') or '-'}"
        )
        if logger.isEnabledFor(logging.DEBUG) and isinstance(messages, list):
            for idx, message in enumerate(messages):
                if isinstance(message, Mapping):
                    logger.debug(
                        f"{prefix} Message[{idx}] role={message.get('role')}: "
                        f"{_preview(message.get('content'))}"
                    )

        outbound = chat_completions_to_messages(
            payload,
            max_tokens_mapping=self.settings.max_tokens_mapping,
            default_max_tokens=self.settings.default_max_tokens,
        )
        logger.info(
            f"{prefix} Translated: {len(outbound['messages'])} messages, "
            f"{len(outbound.get('system', []))} system blocks, "
            f"max_tokens={outbound['max_tokens']}"
        )
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"{prefix} Outbound body: {_preview(outbound)}")
        return outbound

    async def complete(
        self, outbound: MessagesRequest, api_key: str, req_id: int
    ) -> ChatCompletionResponse:
        """Send a non-streaming request and translate the reply.

        Raises:
            UpstreamError: on transport failure, non-2xx status, or an
                unparseable success body.
        """
        prefix = f"[REQ#{req_id}]"
        logger.info(
            f"{prefix} Forwarding to {self.upstream.messages_url} "
            f"(key {mask_secret(api_key)})"
        )
        response = await self.upstream.post_messages(outbound, api_key)
        logger.info(f"{prefix} Upstream status: {response.status_code}")

        if not response.is_success:
            body = response.text
            logger.error(f"{prefix} Upstream error {response.status_code}: {_preview(body)}")
            raise UpstreamError(body, status_code=response.status_code, body=body)

        try:
            payload = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            logger.error(f"{prefix} Failed to parse upstream response: {exc}")
            raise UpstreamError(f"Failed to parse upstream response: {exc}") from exc
        if not isinstance(payload, dict):
            logger.error(f"{prefix} Upstream response is not a JSON object")
            raise UpstreamError("Failed to parse upstream response: not a JSON object")

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"{prefix} Upstream body: {_preview(payload)}")
        return message_to_chat_completion(payload)

    async def open_stream(
        self, outbound: MessagesRequest, api_key: str, req_id: int
    ) -> AsyncIterator[bytes]:
        """Open the upstream stream and return an iterator of chat SSE frames.

        The upstream status is checked before anything is returned so errors
        can still be reported with a proper status code. The returned
        iterator releases the upstream connection on every exit path.

        Raises:
            UpstreamError: on transport failure or non-2xx status.
        """
        prefix = f"[REQ#{req_id}]"
        logger.info(
            f"{prefix} Opening stream to {self.upstream.messages_url} "
            f"(key {mask_secret(api_key)})"
        )
        stream = await self.upstream.open_messages_stream(outbound, api_key)
        logger.info(f"{prefix} Upstream status: {stream.status_code}")

        if stream.is_error:
            try:
                data = await stream.aread()
            finally:
                await stream.aclose()
            body = data.decode("utf-8", errors="replace")
            logger.error(f"{prefix} Upstream error {stream.status_code}: {_preview(body)}")
            raise UpstreamError(body, status_code=stream.status_code, body=body)

        adapter = MessagesToChatStreamAdapter(outbound["model"], request_id=req_id)
        return self._relay_stream(stream, adapter)

    async def _relay_stream(
        self, stream: UpstreamStream, adapter: MessagesToChatStreamAdapter
    ) -> AsyncIterator[bytes]:
        try:
            async for frame in adapter.adapt_stream(stream.aiter_bytes()):
                yield frame
        finally:
            await stream.aclose()
