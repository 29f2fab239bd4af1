"""
Model Gateway

Speaks the Anthropic Messages API to its clients and translates each call
to the dialect of the provider the model id names (OpenRouter, OpenAI,
Gemini, Ollama), with optional fallback to Anthropic and usage/cost
accounting.
"""

__version__ = "1.0.0"

from .core import (
    GatewayError,
    ModelExecutor,
    ExecutionResult,
    ModelRouter,
    HandlerRegistry,
    HandlerConfig,
    ProviderType,
    load_config,
)
from .models import MessagesRequest, MessagesResponse

__all__ = [
    "GatewayError",
    "ModelExecutor",
    "ExecutionResult",
    "ModelRouter",
    "HandlerRegistry",
    "HandlerConfig",
    "ProviderType",
    "load_config",
    "MessagesRequest",
    "MessagesResponse",
]
