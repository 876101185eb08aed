"""Core relay components."""

from .exceptions import (
    AuthenticationError,
    InvalidRequestError,
    ProxyError,
    UpstreamError,
)
from .registry import get_relay, set_relay
from .request_counter import current_request_count, next_request_id
from .upstream import UpstreamClient, UpstreamStream, mask_secret
from .upstream_transport import (
    clear_upstream_transports,
    get_upstream_transport,
    register_upstream_transport,
)

__all__ = [
    "AuthenticationError",
    "InvalidRequestError",
    "ProxyError",
    "UpstreamClient",
    "UpstreamError",
    "UpstreamStream",
    "clear_upstream_transports",
    "current_request_count",
    "get_relay",
    "get_upstream_transport",
    "mask_secret",
    "next_request_id",
    "register_upstream_transport",
    "set_relay",
]
