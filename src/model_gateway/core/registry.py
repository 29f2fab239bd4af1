"""
Handler registry for caching and looking up provider handlers.
"""

import logging
import threading
from typing import Dict, List, Optional, Tuple

import httpx

from .interface import AbstractHandler, HandlerConfig, ProviderType
from .errors import ConfigurationError, UnknownProviderError, NotRegisteredError

logger = logging.getLogger(__name__)


def create_handler(
    config: HandlerConfig,
    timeout: float = 120.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> AbstractHandler:
    """
    Construct a handler for config.provider.

    Raises:
        UnknownProviderError: The provider name is not a ProviderType
        ConfigurationError: A remote provider was given no API key
    """
    # imported here to keep core importable without the handler modules
    from ..handlers.ollama_handler import OllamaHandler
    from ..handlers.openai_compatible_handler import OpenRouterHandler, OpenAIHandler
    from ..handlers.gemini_handler import GeminiHandler

    try:
        provider = ProviderType(config.provider)
    except ValueError:
        raise UnknownProviderError(
            f"Unknown provider: {config.provider}",
            provider=config.provider,
        ) from None

    if provider == ProviderType.OLLAMA:
        return OllamaHandler(base_url=config.base_url, timeout=timeout, transport=transport)
    elif provider == ProviderType.OPENROUTER:
        handler_class = OpenRouterHandler
    elif provider == ProviderType.OPENAI:
        handler_class = OpenAIHandler
    elif provider == ProviderType.GEMINI:
        handler_class = GeminiHandler
    else:
        raise UnknownProviderError(f"Unknown provider: {config.provider}", provider=config.provider)

    if not config.api_key:
        raise ConfigurationError(
            f"API key is required for {handler_class.display_name}",
            provider=provider.value,
        )
    return handler_class(
        api_key=config.api_key,
        base_url=config.base_url,
        timeout=timeout,
        transport=transport,
    )


class HandlerRegistry:
    """
    Registry for provider handlers.

    Handlers built from a HandlerConfig are cached per
    (provider, api_key, base_url) so identical configs share one handler
    and its HTTP connection pool. Handlers injected with register() take
    precedence over cached ones for the same provider.
    """

    def __init__(
        self,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._timeout = timeout
        self._transport = transport
        self._registered: Dict[str, AbstractHandler] = {}
        self._cache: Dict[Tuple, AbstractHandler] = {}
        self._lock = threading.Lock()

    def register(self, provider: str, handler: AbstractHandler) -> None:
        """Register an explicit handler for a provider."""
        with self._lock:
            self._registered[provider] = handler
        logger.info(f"Registered handler for provider: {provider}")

    def get(self, provider: str) -> AbstractHandler:
        """
        Get the handler for a provider.

        Raises:
            NotRegisteredError: Nothing registered or cached for provider
        """
        with self._lock:
            if provider in self._registered:
                return self._registered[provider]
            for key, handler in self._cache.items():
                if key[0] == provider:
                    return handler
        raise NotRegisteredError(
            f"No handler registered for provider: {provider}",
            provider=provider,
        )

    def get_or_create(self, config: HandlerConfig) -> AbstractHandler:
        """Return the cached handler for config, constructing it if needed."""
        key = config.cache_key()
        with self._lock:
            if config.provider in self._registered:
                return self._registered[config.provider]
            handler = self._cache.get(key)
            if handler is None:
                handler = create_handler(config, self._timeout, self._transport)
                self._cache[key] = handler
                logger.info(f"Created handler for provider: {config.provider}")
            return handler

    def list_providers(self) -> List[str]:
        with self._lock:
            providers = list(self._registered)
            for key in self._cache:
                if key[0] not in providers:
                    providers.append(key[0])
        return providers

    async def invalidate(self) -> None:
        """Drop cached handlers and close their clients. Registered handlers are kept."""
        with self._lock:
            dropped = list(self._cache.values())
            self._cache.clear()
        await self._disconnect(dropped)

    async def aclose(self) -> None:
        """Close the HTTP clients of every known handler."""
        with self._lock:
            handlers = list(self._registered.values()) + list(self._cache.values())
        await self._disconnect(handlers)

    async def _disconnect(self, handlers: List[AbstractHandler]) -> None:
        for handler in handlers:
            try:
                await handler.disconnect()
            except Exception as e:
                logger.error(f"Failed to disconnect handler {handler.provider}: {e}")
