"""OpenAI-compatible chat completions endpoint."""

import json
import logging
import time
from typing import Mapping

from fastapi import Request, Response
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.requests import ClientDisconnect

from ...core.exceptions import AuthenticationError, InvalidRequestError, UpstreamError
from ...core.registry import get_relay
from ...core.request_counter import next_request_id
from ...core.upstream import mask_secret

logger = logging.getLogger("chatrelay")

_BEARER_PREFIX = "bearer "


def _error_response(message: str, status_code: int = 400) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def _extract_api_key(headers: Mapping[str, str]) -> str:
    """Return the credential from an ``Authorization: Bearer <key>`` header.

    Raises:
        AuthenticationError: when the header is missing or malformed.
    """
    auth_header = headers.get("authorization")
    if not auth_header:
        raise AuthenticationError("Missing Authorization header")
    if auth_header[: len(_BEARER_PREFIX)].lower() != _BEARER_PREFIX:
        raise AuthenticationError("Authorization header must use the Bearer scheme")
    api_key = auth_header[len(_BEARER_PREFIX):].strip()
    if not api_key:
        raise AuthenticationError("Authorization header carries an empty credential")
    return api_key


async def chat_completions(request: Request) -> Response:
    """POST /v1/chat/completions - relayed to the Anthropic Messages API."""
    req_id = next_request_id()
    prefix = f"[REQ#{req_id}]"
    start_time = time.perf_counter()
    client_host = request.client.host if request.client else "unknown"
    logger.info(f"{prefix} Chat completion request from {client_host}")

    try:
        api_key = _extract_api_key(request.headers)
    except AuthenticationError as exc:
        logger.warning(f"{prefix} Rejected: {exc.message}")
        return _error_response(exc.message, exc.status_code)
    logger.debug(f"{prefix} Credential: {mask_secret(api_key)}")

    try:
        body = await request.body()
        payload = json.loads(body or b"{}")
    except ClientDisconnect:
        elapsed = time.perf_counter() - start_time
        logger.warning(f"{prefix} ClientDisconnect after {elapsed:.3f}s while reading body")
        return Response(status_code=499)  # Client Closed Request
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        logger.warning(f"{prefix} Invalid JSON payload: {exc}")
        return _error_response("Invalid JSON payload")

    if not isinstance(payload, Mapping):
        logger.warning(f"{prefix} Request body is not a JSON object")
        return _error_response("Request body must be a JSON object")

    model = payload.get("model")
    if not isinstance(model, str) or not model:
        logger.warning(f"{prefix} Missing model parameter")
        return _error_response("Missing model parameter")

    relay = get_relay()
    try:
        outbound = relay.translate_request(payload, req_id)
    except InvalidRequestError as exc:
        logger.warning(f"{prefix} Invalid request: {exc.message}")
        return _error_response(exc.message, exc.status_code)

    try:
        if outbound.get("stream"):
            frames = await relay.open_stream(outbound, api_key, req_id)
            return StreamingResponse(
                frames,
                media_type="text/event-stream",
                headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
            )

        result = await relay.complete(outbound, api_key, req_id)
    except UpstreamError as exc:
        return _error_response(_upstream_error_detail(exc), exc.status_code)

    elapsed = time.perf_counter() - start_time
    logger.info(
        f"{prefix} Completed in {elapsed:.3f}s - finish_reason: "
        f"{result['choices'][0].get('finish_reason')}"
    )
    return JSONResponse(result)


def _upstream_error_detail(exc: UpstreamError) -> str:
    # Non-2xx upstream replies carry their raw body; transport failures do not.
    return exc.body if exc.body is not None else exc.message
