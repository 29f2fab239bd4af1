"""
Loopback HTTP front door.

Exposes the model executor as a local Anthropic-compatible
POST /v1/messages endpoint.
"""

import asyncio
import json
import logging
import math
import socket
from typing import Any, AsyncIterator, Awaitable, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from opentelemetry import trace
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .core.config import DEFAULT_MAX_BODY_BYTES
from .core.errors import (
    AlreadyRunningError,
    GatewayError,
    MalformedRequestError,
    NotRunningError,
    PayloadTooLargeError,
    ProviderAPIError,
    UnknownProviderError,
)
from .core.executor import ModelExecutor
from .models.request import MessagesRequest
from .transformers.streaming import format_sse

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


LOOPBACK = "127.0.0.1"

# (status, Anthropic error type); anything unlisted is a 500
ERROR_STATUS = [
    (MalformedRequestError, 400, "invalid_request_error"),
    (UnknownProviderError, 400, "invalid_request_error"),
    (PayloadTooLargeError, 413, "request_too_large"),
    (ProviderAPIError, 502, "api_error"),
    (NotRunningError, 503, "api_error"),
]


def error_body(error_type: str, message: str) -> dict:
    return {"type": "error", "error": {"type": error_type, "message": message}}


def error_response(exc: Exception) -> JSONResponse:
    """Map an exception to the nearest HTTP status."""
    for error_class, status, error_type in ERROR_STATUS:
        if isinstance(exc, error_class):
            return JSONResponse(error_body(error_type, exc.message), status_code=status)
    logger.error(f"Unhandled error serving request: {exc!r}")
    return JSONResponse(error_body("api_error", "Internal server error"), status_code=500)


class ClientDisconnected(Exception):
    pass


async def _wait_for_disconnect(request: Request) -> None:
    while True:
        message = await request.receive()
        if message["type"] == "http.disconnect":
            return


async def run_until_disconnect(request: Request, work: Awaitable[Any]) -> Any:
    """
    Await work, cancelling it if the client goes away first.

    Raises:
        ClientDisconnected: The client disconnected before work finished
    """
    task = asyncio.ensure_future(work)
    watcher = asyncio.ensure_future(_wait_for_disconnect(request))
    try:
        await asyncio.wait({task, watcher}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        watcher.cancel()

    if task.done():
        return task.result()

    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    raise ClientDisconnected()


async def parse_request(request: Request, max_body_bytes: int) -> MessagesRequest:
    """
    Read and validate a /v1/messages body.

    Raises:
        PayloadTooLargeError: The body exceeds max_body_bytes
        MalformedRequestError: The body is not a valid messages request
    """
    too_large = PayloadTooLargeError(
        f"Request body exceeds {max_body_bytes} bytes",
        limit=max_body_bytes,
    )

    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit() and int(content_length) > max_body_bytes:
        raise too_large

    body = await request.body()
    if len(body) > max_body_bytes:
        raise too_large

    try:
        data = json.loads(body)
    except ValueError as e:
        raise MalformedRequestError(f"Invalid JSON body: {e}") from e

    try:
        return MessagesRequest.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()))
        detail = f"{location}: {first.get('msg')}" if location else str(first.get("msg", e))
        raise MalformedRequestError(f"Invalid request: {detail}") from e


async def _guarded(stream: AsyncIterator[str]) -> AsyncIterator[str]:
    """Turn a mid-stream failure into a final SSE error event."""
    try:
        async for line in stream:
            yield line
    except GatewayError as e:
        logger.warning(f"Stream failed: {e.message}")
        yield format_sse(error_body("api_error", e.message))


def create_app(
    executor: ModelExecutor,
    max_body_bytes: int = DEFAULT_MAX_BODY_BYTES,
    fallback_enabled: bool = False,
) -> FastAPI:
    """Build the FastAPI app serving /v1/messages."""
    app = FastAPI(
        title="Model Gateway",
        description="Anthropic Messages API in front of other providers",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return JSONResponse({}, status_code=404)
        return JSONResponse(
            error_body("invalid_request_error", str(exc.detail)),
            status_code=exc.status_code,
            headers=getattr(exc, "headers", None),
        )

    @app.post("/v1/messages")
    async def create_message(request: Request):
        try:
            canonical = await parse_request(request, max_body_bytes)

            with tracer.start_as_current_span("messages") as span:
                span.set_attribute("model", canonical.model)
                span.set_attribute("stream", canonical.stream)

                if canonical.stream:
                    stream = await run_until_disconnect(
                        request,
                        executor.stream_request(canonical, fallback_enabled=fallback_enabled),
                    )
                    return StreamingResponse(_guarded(stream), media_type="text/event-stream")

                result = await run_until_disconnect(
                    request,
                    executor.execute_request(canonical, fallback_enabled=fallback_enabled),
                )
                span.set_attribute("provider", result.provider)
                span.set_attribute("fallback_used", result.fallback_used)

        except ClientDisconnected:
            logger.info("Client disconnected; outbound request cancelled")
            return Response(status_code=499)
        except Exception as e:
            return error_response(e)

        return JSONResponse(result.response.model_dump())

    FastAPIInstrumentor.instrument_app(app)
    return app


class GatewayServer:
    """
    Runs the gateway app under uvicorn on a loopback socket it owns.

    Owning the socket lets the port be known as soon as start() returns
    and released before shutdown() returns.
    shutdown() gives in-flight requests shutdown_grace_seconds to finish
    and then cancels them.
    """

    def __init__(
        self,
        executor: ModelExecutor,
        port: int = 0,
        max_body_bytes: int = DEFAULT_MAX_BODY_BYTES,
        shutdown_grace_seconds: float = 2.0,
        fallback_enabled: bool = False,
    ):
        self._executor = executor
        self._requested_port = port
        self._max_body_bytes = max_body_bytes
        self._grace = shutdown_grace_seconds
        self._fallback_enabled = fallback_enabled

        self._socket: Optional[socket.socket] = None
        self._server: Optional[uvicorn.Server] = None
        self._task: Optional[asyncio.Task] = None
        self._port = 0

    def get_port(self) -> int:
        return self._port

    def get_address(self) -> str:
        return LOOPBACK if self.is_running() else ""

    def is_running(self) -> bool:
        return self._task is not None

    async def start(self) -> None:
        """
        Bind and start serving.

        Raises:
            AlreadyRunningError: start() was already called without shutdown()
        """
        if self._task is not None:
            raise AlreadyRunningError("Gateway server is already running")

        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((LOOPBACK, self._requested_port))
        except OSError:
            sock.close()
            raise

        app = create_app(self._executor, self._max_body_bytes, self._fallback_enabled)
        config = uvicorn.Config(
            app,
            lifespan="off",
            log_config=None,
            access_log=False,
            timeout_graceful_shutdown=max(1, math.ceil(self._grace)),
        )
        server = uvicorn.Server(config)

        self._socket = sock
        self._server = server
        self._port = sock.getsockname()[1]
        self._task = asyncio.create_task(server.serve(sockets=[sock]))

        while not server.started:
            if self._task.done():
                task = self._task
                self._reset()
                task.result()
                raise RuntimeError("Gateway server exited during startup")
            await asyncio.sleep(0.01)

        logger.info(f"Gateway listening on http://{LOOPBACK}:{self._port}")

    async def shutdown(self) -> None:
        """Stop serving and release the socket. Safe to call when stopped."""
        if self._task is None:
            return

        task = self._task
        self._server.should_exit = True
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=self._grace)
        except asyncio.TimeoutError:
            logger.warning("Gateway did not stop within grace period; forcing")
            self._server.force_exit = True
            for request_task in list(self._server.server_state.tasks):
                request_task.cancel()
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        finally:
            self._reset()

        logger.info("Gateway stopped")

    def _reset(self) -> None:
        if self._socket is not None:
            self._socket.close()
        self._socket = None
        self._server = None
        self._task = None
        self._port = 0
