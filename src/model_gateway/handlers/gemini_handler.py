"""
Google Gemini handler (generateContent API).
"""

import logging
from typing import AsyncIterator, Dict, Optional

import httpx

from ..core.errors import ConfigurationError
from ..core.interface import ProviderType
from ..models.request import MessagesRequest
from ..models.response import MessagesResponse
from ..transformers.gemini import to_gemini, from_gemini, transform_gemini_stream_line
from .base import HTTPHandler

logger = logging.getLogger(__name__)


class GeminiHandler(HTTPHandler):
    """
    Handler for the Gemini API.

    The model is part of the URL, so the endpoint depends on the request.
    """

    DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
    DEFAULT_MODEL = "gemini-2.0-flash"
    display_name = "Gemini"

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not api_key:
            raise ConfigurationError(
                "API key is required for Gemini",
                provider=ProviderType.GEMINI.value,
            )
        super().__init__(base_url or self.DEFAULT_BASE_URL, timeout, transport)
        self._api_key = api_key

    @property
    def provider(self) -> str:
        return ProviderType.GEMINI.value

    def get_endpoint(self, model: Optional[str] = None) -> str:
        return f"{self._base_url}/models/{model or self.DEFAULT_MODEL}:generateContent"

    def get_stream_endpoint(self, model: Optional[str] = None) -> str:
        return (
            f"{self._base_url}/models/{model or self.DEFAULT_MODEL}"
            ":streamGenerateContent?alt=sse"
        )

    def get_headers(self) -> Dict[str, str]:
        return {
            "x-goog-api-key": self._api_key,
            "Content-Type": "application/json",
        }

    async def handle(self, request: MessagesRequest) -> MessagesResponse:
        return await self._post_json(
            self.get_endpoint(request.model),
            to_gemini(request),
            lambda data: from_gemini(data, model=request.model),
        )

    async def stream(self, request: MessagesRequest) -> AsyncIterator[str]:
        async for line in self._stream_events(
            self.get_stream_endpoint(request.model),
            to_gemini(request),
            transform_gemini_stream_line,
            model=request.model,
            frame=True,
        ):
            yield line

    async def check_health(self) -> bool:
        try:
            await self._get(f"{self._base_url}/models")
            return True
        except Exception as e:
            logger.debug(f"Gemini health check failed: {e}")
            return False
