"""Health check endpoint."""

from ...core.registry import get_relay
from ...core.request_counter import current_request_count

SERVICE_NAME = "chatrelay"


async def health() -> dict:
    """GET /health - liveness plus the active relay configuration."""
    settings = get_relay().settings
    return {
        "status": "ok",
        "service": SERVICE_NAME,
        "upstream_base_url": settings.upstream_base_url,
        "model_mapping": settings.model_mapping,
        "max_tokens_mapping": settings.max_tokens_mapping,
        "requests_received": current_request_count(),
    }
