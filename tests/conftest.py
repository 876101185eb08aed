"""Pytest configuration and fixtures for testing."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Generator

import httpx
import pytest

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

UPSTREAM_HOST = "upstream.local"
UPSTREAM_BASE_URL = f"http://{UPSTREAM_HOST}"
TEST_API_KEY = "sk-ant-test-0123456789"


# =============================================================================
# Transport Registry Fixtures
# =============================================================================


@pytest.fixture
def clear_transport_registry() -> Generator[None, None, None]:
    """Clear upstream transport registry after test.

    Use this fixture in tests that register fake transports.
    """
    from chatrelay.core.upstream_transport import clear_upstream_transports

    yield
    clear_upstream_transports()


def register_fake_upstream(
    host: str,
    upstream: Any,
) -> None:
    """Register a FakeUpstream for the given host.

    Args:
        host: Host to register (e.g., "upstream.local")
        upstream: FakeUpstream instance
    """
    from chatrelay.core.upstream_transport import register_upstream_transport

    register_upstream_transport(host, httpx.ASGITransport(app=upstream.app))


# =============================================================================
# Harness Fixtures
# =============================================================================


def build_settings(**overrides: Any):
    """RelaySettings pointed at the fake upstream host."""
    from chatrelay.config_loader import RelaySettings

    values: dict[str, Any] = {"upstream_base_url": UPSTREAM_BASE_URL}
    values.update(overrides)
    return RelaySettings(**values)


@pytest.fixture
def relay_harness(
    clear_transport_registry: None,
) -> Generator[tuple[Any, Any], None, None]:
    """Create a relay harness backed by a FakeUpstream.

    Returns:
        Tuple of (FakeUpstream, ProxyHarness)

    Usage:
        async def test_chat(relay_harness):
            upstream, harness = relay_harness
            upstream.enqueue_message_response([{"type": "text", "text": "Hello"}])
            # ... test code ...
    """
    from chatrelay.testing import FakeUpstream, ProxyHarness

    upstream = FakeUpstream()
    register_fake_upstream(UPSTREAM_HOST, upstream)

    harness = ProxyHarness(build_settings())
    try:
        yield upstream, harness
    finally:
        harness.close()
