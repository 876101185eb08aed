"""OpenAI Chat Completions to Anthropic Messages relay."""

__version__ = "0.1.0"
