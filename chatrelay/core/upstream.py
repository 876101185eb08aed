"""HTTP client for the upstream Anthropic Messages endpoint."""

import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Mapping, Optional

import httpx

from .exceptions import UpstreamError
from .upstream_transport import get_upstream_transport

logger = logging.getLogger("chatrelay")

DEFAULT_BASE_URL = "https://api.anthropic.com"
MESSAGES_PATH = "/v1/messages"
DEFAULT_TIMEOUT = 600.0
DEFAULT_ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_ANTHROPIC_BETA = "prompt-caching-2024-07-31"

_SENSITIVE_HEADERS = {"x-api-key", "authorization", "proxy-authorization"}


def mask_secret(secret: Optional[str]) -> str:
    """Mask a credential for logs, keeping the first 6 and last 4 characters."""
    if not secret:
        return "<empty>"
    if len(secret) <= 10:
        return "***"
    return f"{secret[:6]}...{secret[-4:]}"


def safe_headers_for_log(headers: Mapping[str, str]) -> dict[str, str]:
    safe: dict[str, str] = {}
    for key, value in headers.items():
        if key.lower() in _SENSITIVE_HEADERS:
            safe[key] = mask_secret(value)
        else:
            safe[key] = value
    return safe


def format_httpx_error(exc: Any, url: Optional[str] = None, timeout: Optional[float] = None) -> str:
    """Produce a detailed, user-facing description of an httpx error."""
    parts = [exc.__class__.__name__]
    message = str(exc).strip()
    if message:
        parts.append(message)

    request = getattr(exc, "_request", None)
    if request is not None:
        parts.append(f"request={request.method} {request.url}")
    elif url:
        parts.append(f"url={url}")

    if isinstance(exc, httpx.TimeoutException) and timeout:
        parts.append(f"timeout={timeout}s")

    return "; ".join(parts)


class UpstreamStream:
    """An open streaming response from the upstream.

    Owns both the response and the client; ``aclose`` releases both and may
    be called more than once.
    """

    def __init__(self, client: httpx.AsyncClient, response: httpx.Response, url: str):
        self._client = client
        self._response = response
        self._url = url
        self._closed = False

    @property
    def status_code(self) -> int:
        return self._response.status_code

    @property
    def headers(self) -> httpx.Headers:
        return self._response.headers

    @property
    def is_error(self) -> bool:
        return not self._response.is_success

    async def aread(self) -> bytes:
        return await self._response.aread()

    async def aiter_bytes(self) -> AsyncIterator[bytes]:
        async for chunk in self._response.aiter_bytes():
            yield chunk

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        logger.debug(f"Closing upstream stream for {self._url}")
        await self._response.aclose()
        await self._client.aclose()


@dataclass
class UpstreamClient:
    """Sends translated requests to ``<base_url>/v1/messages``."""

    base_url: str = DEFAULT_BASE_URL
    anthropic_version: str = DEFAULT_ANTHROPIC_VERSION
    anthropic_beta: Optional[str] = DEFAULT_ANTHROPIC_BETA
    timeout: float = DEFAULT_TIMEOUT

    @property
    def messages_url(self) -> str:
        return self.base_url.rstrip("/") + MESSAGES_PATH

    def build_headers(self, api_key: str) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "x-api-key": api_key,
            "anthropic-version": self.anthropic_version,
        }
        if self.anthropic_beta:
            headers["anthropic-beta"] = self.anthropic_beta
        return headers

    def _encode(self, body: Mapping[str, Any]) -> bytes:
        return json.dumps(body, ensure_ascii=False).encode("utf-8")

    async def post_messages(self, body: Mapping[str, Any], api_key: str) -> httpx.Response:
        """Send a non-streaming request and return the fully read response.

        Raises:
            UpstreamError: when the upstream cannot be reached (status 502).
        """
        url = self.messages_url
        headers = self.build_headers(api_key)
        content = self._encode(body)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("POST %s headers=%s", url, safe_headers_for_log(headers))
            logger.debug(f"Request body size: {len(content)} bytes")

        transport = get_upstream_transport(url)
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout), transport=transport
            ) as client:
                response = await client.post(url, headers=headers, content=content)
        except httpx.HTTPError as exc:
            detail = format_httpx_error(exc, url=url, timeout=self.timeout)
            logger.error(f"Upstream request failed: {detail}")
            raise UpstreamError(f"upstream request failed: {detail}") from exc

        logger.debug(f"Upstream responded with status {response.status_code}")
        return response

    async def open_messages_stream(
        self, body: Mapping[str, Any], api_key: str
    ) -> UpstreamStream:
        """Open a streaming request; the caller must ``aclose`` the result.

        Raises:
            UpstreamError: when the upstream cannot be reached (status 502).
        """
        url = self.messages_url
        headers = self.build_headers(api_key)
        content = self._encode(body)
        stream_timeout = httpx.Timeout(
            connect=self.timeout, read=None, write=self.timeout, pool=self.timeout
        )
        transport = get_upstream_transport(url)
        client = httpx.AsyncClient(timeout=stream_timeout, transport=transport)
        try:
            request = client.build_request("POST", url, headers=headers, content=content)
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug("Streaming POST %s headers=%s", url, safe_headers_for_log(request.headers))
            response = await client.send(request, stream=True)
        except httpx.HTTPError as exc:
            await client.aclose()
            detail = format_httpx_error(exc, url=url, timeout=self.timeout)
            logger.error(f"Failed to open upstream stream: {detail}")
            raise UpstreamError(f"upstream request failed: {detail}") from exc
        except BaseException:
            await client.aclose()
            raise

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "Upstream stream opened: status=%s, headers=%s",
                response.status_code,
                safe_headers_for_log(response.headers),
            )
        return UpstreamStream(client, response, url)
