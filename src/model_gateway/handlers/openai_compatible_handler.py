"""
OpenAI-compatible chat-completions handlers.

OpenRouter and OpenAI speak the same dialect and differ only in endpoint
and attribution headers.
"""

import logging
from typing import AsyncIterator, Dict, Optional

import httpx

from ..core.errors import ConfigurationError
from ..core.interface import ProviderType
from ..models.request import MessagesRequest
from ..models.response import MessagesResponse
from ..transformers.openai import to_openai, from_openai
from ..transformers.streaming import transform_stream_line
from .base import HTTPHandler

logger = logging.getLogger(__name__)


APP_REFERER = "https://github.com/model-gateway/model-gateway"
APP_TITLE = "Model Gateway"


class OpenAICompatibleHandler(HTTPHandler):
    """
    Handler for any OpenAI-compatible chat-completions endpoint.

    Requires an API key, sent as a bearer token.
    """

    DEFAULT_BASE_URL = ""
    provider_type: ProviderType = ProviderType.OPENAI

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not api_key:
            raise ConfigurationError(
                f"API key is required for {self.display_name}",
                provider=self.provider_type.value,
            )
        super().__init__(base_url or self.DEFAULT_BASE_URL, timeout, transport)
        self._api_key = api_key

    @property
    def provider(self) -> str:
        return self.provider_type.value

    def get_endpoint(self) -> str:
        return f"{self._base_url}/chat/completions"

    def get_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": APP_REFERER,
            "X-Title": APP_TITLE,
        }

    async def handle(self, request: MessagesRequest) -> MessagesResponse:
        body = to_openai(request)
        body.pop("stream", None)
        return await self._post_json(self.get_endpoint(), body, from_openai)

    async def stream(self, request: MessagesRequest) -> AsyncIterator[str]:
        body = to_openai(request)
        body["stream"] = True
        body["stream_options"] = {"include_usage": True}
        async for line in self._stream_events(
            self.get_endpoint(),
            body,
            transform_stream_line,
            model=request.model,
        ):
            yield line

    async def check_health(self) -> bool:
        try:
            await self._get(f"{self._base_url}/models")
            return True
        except Exception as e:
            logger.debug(f"{self.display_name} health check failed: {e}")
            return False


class OpenRouterHandler(OpenAICompatibleHandler):
    """Handler for the OpenRouter API."""

    DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
    display_name = "OpenRouter"
    provider_type = ProviderType.OPENROUTER


class OpenAIHandler(OpenAICompatibleHandler):
    """Handler for the OpenAI API."""

    DEFAULT_BASE_URL = "https://api.openai.com/v1"
    display_name = "OpenAI"
    provider_type = ProviderType.OPENAI
