"""API routes for the relay."""

from .chat import chat_completions
from .health import health

__all__ = ["chat_completions", "health"]
