"""Main FastAPI application for the chat relay."""

import socket

from fastapi import FastAPI

from .api.routes import chat_completions, health
from .config_loader import RelaySettings, load_settings
from .core.registry import set_relay
from .core.relay import Relay
from .logging import setup_logging


def build_app(settings: RelaySettings, title: str = "chatrelay") -> FastAPI:
    """Create the relay app for ``settings`` and make it the active relay."""
    relay = Relay(settings)
    set_relay(relay)

    app = FastAPI(title=title)
    app.post("/v1/chat/completions")(chat_completions)
    app.get("/health")(health)
    return app


# Load configuration
settings = load_settings()

# Initialize logging
logger = setup_logging(settings.log_level)

app = build_app(settings)
logger.info("FastAPI application created")


@app.on_event("startup")
async def startup_event():
    """Handle application startup."""
    logger.info("chatrelay server starting up...")
    logger.info("Configured bind address %s:%s", settings.host, settings.port)
    if settings.host == "0.0.0.0":
        hostname = socket.gethostname()
        logger.info("Reachable on local network at http://%s:%s", hostname, settings.port)
    logger.info(f"Upstream: {settings.upstream_base_url}")
    if settings.model_mapping:
        logger.info(f"Model mapping: {settings.model_mapping}")
    if settings.max_tokens_mapping:
        logger.info(f"Max tokens mapping: {settings.max_tokens_mapping}")
    if settings.default_max_tokens:
        logger.info(f"Default max tokens: {settings.default_max_tokens}")
    logger.info("chatrelay server ready to handle requests")


def create_app() -> FastAPI:
    """Factory function to create the FastAPI application.

    Returns:
        The configured FastAPI application instance.
    """
    return app


__all__ = ["app", "build_app", "create_app", "settings"]
