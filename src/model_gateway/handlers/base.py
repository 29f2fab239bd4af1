"""
Shared httpx plumbing for provider handlers.
"""

import logging
from typing import Any, AsyncIterator, Callable, Dict, Optional, TypeVar

import httpx

from ..core.interface import AbstractHandler
from ..core.errors import NotRunningError, ProviderAPIError
from ..transformers.streaming import (
    LineTransform,
    StreamState,
    feed_stream,
    flush_stream,
    message_start_event,
    message_stop_event,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class HTTPHandler(AbstractHandler):
    """
    Base class for handlers that talk HTTP to their provider.

    Owns one lazily created httpx.AsyncClient. Subclasses supply the
    dialect translation; this class classifies transport failures and
    error statuses.
    """

    display_name = "Provider"

    def __init__(
        self,
        base_url: str,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def connect(self) -> None:
        """Initialize HTTP client."""
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            timeout=self._timeout,
            transport=self._transport,
        )
        logger.info(f"Connected to {self.display_name} at {self._base_url}")

    async def disconnect(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info(f"Disconnected from {self.display_name}")

    async def _get_client(self) -> httpx.AsyncClient:
        if not self._client:
            await self.connect()
        return self._client

    def get_headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json"}

    async def _post_json(
        self,
        url: str,
        body: Dict[str, Any],
        parse: Callable[[Any], T],
    ) -> T:
        """One POST; returns the JSON body converted by parse."""
        client = await self._get_client()
        try:
            response = await client.post(url, json=body, headers=self.get_headers())
        except httpx.RequestError as e:
            raise self._connection_error(e) from e

        self._check_response_errors(response)
        return self._parse_response(response, parse)

    async def _get(self, url: str) -> httpx.Response:
        client = await self._get_client()
        try:
            response = await client.get(url, headers=self.get_headers())
        except httpx.RequestError as e:
            raise self._connection_error(e) from e
        self._check_response_errors(response)
        return response

    async def _stream_events(
        self,
        url: str,
        body: Dict[str, Any],
        transform: LineTransform,
        model: str = "",
        frame: bool = False,
    ) -> AsyncIterator[str]:
        """
        POST a streaming request and yield Anthropic SSE lines.

        Errors are raised before the first line is yielded. With frame=True
        a message_start is emitted once the provider accepts the request,
        for dialects that have no start marker of their own. A
        message_stop always closes the stream.
        """
        client = await self._get_client()
        state = StreamState(model=model)

        try:
            async with client.stream(
                "POST", url, json=body, headers=self.get_headers()
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    self._check_response_errors(response)

                if frame:
                    out, state = message_start_event(state)
                    yield out

                async for text in response.aiter_text():
                    outputs, state = feed_stream(text, state, transform)
                    for out in outputs:
                        yield out
        except httpx.RequestError as e:
            raise self._connection_error(e) from e

        outputs, state = flush_stream(state, transform)
        for out in outputs:
            yield out

        if not state.finished:
            out, state = message_stop_event(state)
            yield out

    def _parse_response(self, response: httpx.Response, parse: Callable[[Any], T]) -> T:
        """
        Decode a 2xx body and convert it.

        A body that is not JSON or not the shape parse expects is a
        ProviderAPIError, like an error status.
        """
        try:
            return parse(response.json())
        except (ValueError, KeyError, TypeError, AttributeError, IndexError) as e:
            message = f"{self.display_name} returned an unexpected response: {e}"
            logger.warning(message)
            raise ProviderAPIError(
                message,
                provider=self.provider,
                status_code=response.status_code,
            ) from e

    def _connection_error(self, error: httpx.RequestError) -> NotRunningError:
        if isinstance(error, httpx.ConnectError):
            message = self._not_running_message()
        else:
            message = f"{self.display_name} is unreachable at {self._base_url}: {error}"
        logger.warning(message)
        return NotRunningError(message, provider=self.provider)

    def _not_running_message(self) -> str:
        return f"{self.display_name} is not running or unreachable at {self._base_url}"

    def _check_response_errors(self, response: httpx.Response) -> None:
        """Raise ProviderAPIError for any non-2xx status."""
        if response.is_success:
            return

        detail = None
        try:
            detail = extract_error_message(response.json())
        except ValueError:
            pass

        message = f"{self.display_name} API error: {detail or f'HTTP {response.status_code}'}"
        raise ProviderAPIError(
            message,
            provider=self.provider,
            status_code=response.status_code,
        )


def extract_error_message(data: Any) -> Optional[str]:
    """
    Pull a human-readable message out of a provider error body.

    Understands {"error": {"message": ...}} (OpenAI, OpenRouter, Gemini,
    Anthropic) and {"error": "..."} (Ollama).
    """
    if not isinstance(data, dict):
        return None
    error = data.get("error")
    if isinstance(error, dict):
        return error.get("message") or None
    if isinstance(error, str):
        return error or None
    return None
