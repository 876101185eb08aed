"""Per-host httpx transport overrides.

Tests (and embedded deployments) can route calls for an upstream host to an
in-process ASGI app instead of the network.
"""

from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import urlparse

import httpx

logger = logging.getLogger("chatrelay")

_TRANSPORTS: dict[str, httpx.AsyncBaseTransport] = {}


def _host_key(url_or_host: str) -> str:
    # Accept either a full URL or a bare netloc such as "upstream.local:8000".
    candidate = url_or_host.strip()
    if "://" in candidate:
        candidate = urlparse(candidate).netloc
    return candidate.lower()


def register_upstream_transport(
    url_or_host: str, transport: httpx.AsyncBaseTransport
) -> None:
    """Route every upstream call for this host through ``transport``."""
    key = _host_key(url_or_host) if url_or_host else ""
    if not key:
        raise ValueError("host is required")
    _TRANSPORTS[key] = transport
    logger.debug("Registered upstream transport for host '%s'", key)


def clear_upstream_transports() -> None:
    _TRANSPORTS.clear()


def get_upstream_transport(url: str) -> Optional[httpx.AsyncBaseTransport]:
    """Return the transport registered for the URL's host, if any."""
    if not url:
        return None
    return _TRANSPORTS.get(_host_key(url))
