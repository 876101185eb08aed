"""API module for the relay."""

from .routes import chat_completions, health

__all__ = ["chat_completions", "health"]
