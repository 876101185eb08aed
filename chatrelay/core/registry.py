"""Process-wide slot holding the active :class:`Relay`.

Routes resolve the relay through ``get_relay`` so ``chatrelay.main`` and the
route modules never import each other.
"""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .relay import Relay

_active_relay: Optional["Relay"] = None


def set_relay(relay: Optional["Relay"]) -> Optional["Relay"]:
    """Install ``relay`` (or clear the slot with None); returns the one it replaced."""
    global _active_relay
    previous, _active_relay = _active_relay, relay
    return previous


def get_relay() -> "Relay":
    if _active_relay is None:
        raise RuntimeError("No relay installed; build the app or a ProxyHarness first")
    return _active_relay
