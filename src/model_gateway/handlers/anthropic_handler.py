"""
Direct Anthropic API handler.

This is the built-in "claude" provider: requests already have the
Anthropic shape and are forwarded as they are.
"""

import json
import logging
from dataclasses import replace
from typing import AsyncIterator, Dict, Optional, Tuple

import httpx

from ..core.errors import ConfigurationError
from ..core.interface import NATIVE_PROVIDER, is_native_model
from ..models.request import MessagesRequest
from ..models.response import MessagesResponse
from ..transformers.streaming import StreamState
from .base import HTTPHandler

logger = logging.getLogger(__name__)


def passthrough_stream_line(
    line: str,
    state: StreamState,
) -> Tuple[Optional[str], StreamState]:
    """Anthropic SSE data lines are already in the target format."""
    line = line.strip()
    if not line.startswith("data:"):
        return None, state
    payload = line[len("data:"):].strip()
    try:
        event_type = json.loads(payload).get("type")
    except (json.JSONDecodeError, AttributeError):
        return None, state
    if event_type == "message_start":
        state = replace(state, started=True)
    elif event_type == "message_stop":
        state = replace(state, finished=True)
    return f"data: {payload}\n\n", state


class AnthropicHandler(HTTPHandler):
    """
    Native Anthropic Messages API handler.

    Non-Anthropic model ids (including the "default"/"claude" aliases and
    ids of a provider being fallen back from) are replaced by DEFAULT_MODEL.
    """

    DEFAULT_BASE_URL = "https://api.anthropic.com/v1"
    ANTHROPIC_VERSION = "2023-06-01"
    DEFAULT_MODEL = "claude-sonnet-4-20250514"
    display_name = "Anthropic"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        default_model: Optional[str] = None,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(base_url or self.DEFAULT_BASE_URL, timeout, transport)
        self._api_key = api_key
        self._default_model = default_model or self.DEFAULT_MODEL

    @property
    def provider(self) -> str:
        return NATIVE_PROVIDER

    async def connect(self) -> None:
        if not self._api_key:
            raise ConfigurationError(
                "API key is required for Anthropic",
                provider=NATIVE_PROVIDER,
            )
        await super().connect()

    def get_endpoint(self) -> str:
        return f"{self._base_url}/messages"

    def get_headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": self._api_key or "",
            "anthropic-version": self.ANTHROPIC_VERSION,
        }

    def _native_body(self, request: MessagesRequest) -> Dict:
        body = request.to_anthropic_format()
        if is_native_model(request.model) or not request.model.startswith("claude-"):
            body["model"] = self._default_model
        return body

    async def handle(self, request: MessagesRequest) -> MessagesResponse:
        body = self._native_body(request)
        body.pop("stream", None)
        return await self._post_json(self.get_endpoint(), body, MessagesResponse.from_anthropic)

    async def stream(self, request: MessagesRequest) -> AsyncIterator[str]:
        body = self._native_body(request)
        body["stream"] = True
        async for line in self._stream_events(
            self.get_endpoint(),
            body,
            passthrough_stream_line,
            model=body["model"],
        ):
            yield line

    async def check_health(self) -> bool:
        try:
            await self._get(f"{self._base_url}/models")
            return True
        except Exception as e:
            logger.debug(f"Anthropic health check failed: {e}")
            return False
