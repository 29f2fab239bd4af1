"""
Model executor.

Runs one completion end to end: routes a model id to a handler, calls
it, optionally falls back to the native provider, and records usage.
"""

import json
import logging
from typing import AsyncIterator, Callable, List, Optional

from opentelemetry import trace
from pydantic import BaseModel

from .config import ProviderCredentials
from .errors import UnknownProviderError
from .interface import (
    AbstractHandler,
    NATIVE_PROVIDER,
    is_native_model,
    parse_model_id,
)
from .registry import HandlerRegistry
from ..models.request import MessagesRequest
from ..models.response import MessagesResponse, Usage

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


FallbackCallback = Callable[[str], None]


class ExecutionResult(BaseModel):
    """Outcome of one executed call."""
    text: str
    response: MessagesResponse
    provider: str
    model: str
    fallback_used: bool = False


class ModelExecutor:
    """
    Executes requests against the provider named by the model id.

    "default", "claude" and Anthropic model names go straight to the
    native provider. Anything else must be "<provider>/<model-path>".
    At most one fallback hop is taken, always to the native provider.
    """

    def __init__(
        self,
        registry: Optional[HandlerRegistry] = None,
        native_provider: Optional[AbstractHandler] = None,
        cost_tracker=None,
        credentials: Optional[ProviderCredentials] = None,
    ):
        self._registry = registry or HandlerRegistry()
        self._credentials = credentials or ProviderCredentials()
        if native_provider is None:
            from ..handlers.anthropic_handler import AnthropicHandler
            native_provider = AnthropicHandler(api_key=self._credentials.api_key(NATIVE_PROVIDER))
        self._native = native_provider
        self._cost_tracker = cost_tracker
        self._fallback_callbacks: List[FallbackCallback] = []

    @property
    def registry(self) -> HandlerRegistry:
        return self._registry

    @property
    def native_provider(self) -> AbstractHandler:
        return self._native

    def on_fallback(self, callback: FallbackCallback) -> None:
        """Register a callback told about every fallback taken."""
        self._fallback_callbacks.append(callback)

    def _resolve_handler(self, model: str) -> AbstractHandler:
        try:
            provider, _ = parse_model_id(model)
        except ValueError as e:
            raise UnknownProviderError(str(e)) from e
        return self._registry.get_or_create(self._credentials.handler_config(provider))

    def _proxied_request(self, request: MessagesRequest) -> MessagesRequest:
        """Copy of request with the model path the provider expects."""
        _, model_path = parse_model_id(request.model)
        return request.model_copy(update={"model": model_path})

    def _notify_fallback(self, provider: str, error: Exception) -> None:
        message = f"{provider} failed ({error}); falling back to Claude."
        logger.warning(message)
        for callback in self._fallback_callbacks:
            try:
                callback(message)
            except Exception as e:
                logger.error(f"Fallback callback failed: {e}")

    def _record(self, model: str, usage: Usage, command: Optional[str]) -> None:
        if self._cost_tracker is None:
            return
        from ..usage.cost_tracker import UsageRecord
        self._cost_tracker.record_usage(UsageRecord(
            command=command or "",
            model=model,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
        ))

    async def _run_native(self, request: MessagesRequest) -> MessagesResponse:
        with tracer.start_as_current_span("dispatch") as span:
            span.set_attribute("provider", NATIVE_PROVIDER)
            span.set_attribute("model", request.model)
            return await self._native.handle(request)

    async def execute(
        self,
        prompt: str,
        model: str,
        fallback_enabled: bool = False,
        command: Optional[str] = None,
    ) -> ExecutionResult:
        """Run a single-turn prompt on model."""
        request = MessagesRequest.from_prompt(prompt, model)
        return await self.execute_request(request, fallback_enabled, command)

    async def execute_request(
        self,
        request: MessagesRequest,
        fallback_enabled: bool = False,
        command: Optional[str] = None,
    ) -> ExecutionResult:
        """
        Run a canonical request on the provider its model names.

        Raises:
            GatewayError: The provider failed and fallback is disabled.
                The handler's error is re-raised unchanged.
        """
        model = request.model

        if is_native_model(model):
            response = await self._run_native(request)
            self._record(model, response.usage, command)
            return ExecutionResult(
                text=response.get_text(),
                response=response,
                provider=NATIVE_PROVIDER,
                model=model,
            )

        provider = model.split("/", 1)[0]
        with tracer.start_as_current_span("dispatch") as span:
            span.set_attribute("provider", provider)
            span.set_attribute("model", model)
            try:
                handler = self._resolve_handler(model)
                response = await handler.handle(self._proxied_request(request))
            except Exception as e:
                span.set_attribute("error", str(e))
                if not fallback_enabled:
                    raise
                span.set_attribute("fallback_used", True)
                failure = e
            else:
                logger.debug(f"{model} served by {handler.provider}")
                self._record(model, response.usage, command)
                return ExecutionResult(
                    text=response.get_text(),
                    response=response,
                    provider=handler.provider,
                    model=model,
                )

        self._notify_fallback(provider, failure)
        response = await self._run_native(request)
        self._record(NATIVE_PROVIDER, response.usage, command)
        return ExecutionResult(
            text=response.get_text(),
            response=response,
            provider=NATIVE_PROVIDER,
            model=NATIVE_PROVIDER,
            fallback_used=True,
        )

    async def _metered(
        self,
        stream: AsyncIterator[str],
        model: str,
        command: Optional[str],
    ) -> AsyncIterator[str]:
        """Relay stream, recording its token counts once it completes."""
        usage = Usage()
        async for item in stream:
            usage = _stream_usage(item, usage)
            yield item
        self._record(model, usage, command)

    async def stream_request(
        self,
        request: MessagesRequest,
        fallback_enabled: bool = False,
        command: Optional[str] = None,
    ) -> AsyncIterator[str]:
        """
        Open a stream of Anthropic SSE lines for request.

        The first line is fetched before returning, so routing and
        provider errors (and the fallback decision) happen here rather
        than mid-stream. Usage is recorded when the stream is read to
        the end; an abandoned stream records nothing.
        """
        model = request.model

        if is_native_model(model):
            return await _primed(self._metered(self._native.stream(request), model, command))

        provider = model.split("/", 1)[0]
        try:
            handler = self._resolve_handler(model)
            stream = handler.stream(self._proxied_request(request))
            return await _primed(self._metered(stream, model, command))
        except Exception as e:
            if not fallback_enabled:
                raise
            self._notify_fallback(provider, e)

        stream = self._native.stream(request)
        return await _primed(self._metered(stream, NATIVE_PROVIDER, command))


def _stream_usage(item: str, usage: Usage) -> Usage:
    """Fold token counts from message_start and message_delta events into usage."""
    for line in item.splitlines():
        if not line.startswith("data:"):
            continue
        try:
            event = json.loads(line[len("data:"):].strip())
        except json.JSONDecodeError:
            continue
        if not isinstance(event, dict):
            continue
        if event.get("type") == "message_start":
            message = event.get("message")
            counts = message.get("usage") if isinstance(message, dict) else None
        elif event.get("type") == "message_delta":
            counts = event.get("usage")
        else:
            continue
        if isinstance(counts, dict):
            usage = Usage(
                input_tokens=counts.get("input_tokens") or usage.input_tokens,
                output_tokens=counts.get("output_tokens") or usage.output_tokens,
            )
    return usage


async def _primed(stream: AsyncIterator[str]) -> AsyncIterator[str]:
    """Pull the first item now; return an iterator over all items."""
    iterator = stream.__aiter__()
    try:
        first = await iterator.__anext__()
    except StopAsyncIteration:
        first = None

    async def replay() -> AsyncIterator[str]:
        if first is not None:
            yield first
        async for item in iterator:
            yield item

    return replay()
