"""
Provider handlers.
"""

from .base import HTTPHandler
from .ollama_handler import OllamaHandler
from .openai_compatible_handler import (
    OpenAICompatibleHandler,
    OpenRouterHandler,
    OpenAIHandler,
)
from .gemini_handler import GeminiHandler
from .anthropic_handler import AnthropicHandler

__all__ = [
    "HTTPHandler",
    "OllamaHandler",
    "OpenAICompatibleHandler",
    "OpenRouterHandler",
    "OpenAIHandler",
    "GeminiHandler",
    "AnthropicHandler",
]
