"""
Ollama handler.

Talks to a local Ollama daemon over its native /api/chat endpoint.
No API key is needed.
"""

import logging
from typing import AsyncIterator, List, Optional

import httpx

from ..core.interface import ProviderType
from ..models.request import MessagesRequest
from ..models.response import MessagesResponse
from ..transformers.ollama import to_ollama, from_ollama, transform_ollama_stream_line
from .base import HTTPHandler

logger = logging.getLogger(__name__)


class OllamaHandler(HTTPHandler):
    """Handler for a local Ollama server."""

    DEFAULT_BASE_URL = "http://localhost:11434"
    display_name = "Ollama"

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(base_url or self.DEFAULT_BASE_URL, timeout, transport)

    @property
    def provider(self) -> str:
        return ProviderType.OLLAMA.value

    def get_endpoint(self) -> str:
        return f"{self._base_url}/api/chat"

    def _not_running_message(self) -> str:
        return "Ollama is not running. Start Ollama with: ollama serve"

    async def handle(self, request: MessagesRequest) -> MessagesResponse:
        return await self._post_json(self.get_endpoint(), to_ollama(request), from_ollama)

    async def stream(self, request: MessagesRequest) -> AsyncIterator[str]:
        async for line in self._stream_events(
            self.get_endpoint(),
            to_ollama(request, stream=True),
            transform_ollama_stream_line,
            model=request.model,
            frame=True,
        ):
            yield line

    async def check_health(self) -> bool:
        try:
            await self._get(f"{self._base_url}/")
            return True
        except Exception as e:
            logger.debug(f"Ollama health check failed: {e}")
            return False

    async def list_models(self) -> List[str]:
        """Names of the models currently pulled into the daemon."""
        response = await self._get(f"{self._base_url}/api/tags")
        return self._parse_response(
            response, lambda data: [m["name"] for m in data.get("models", [])]
        )
