"""
Integration tests for the loopback gateway server.

These start a real server on an ephemeral port and talk to it over HTTP.
"""
import asyncio
import contextlib
import json
import socket

import httpx
import pytest

from model_gateway.core.config import ProviderCredentials
from model_gateway.core.errors import (
    AlreadyRunningError,
    NotRunningError,
    ProviderAPIError,
)
from model_gateway.core.executor import ModelExecutor
from model_gateway.core.interface import AbstractHandler
from model_gateway.core.registry import HandlerRegistry
from model_gateway.models import MessagesResponse, TextBlock, Usage
from model_gateway.server import GatewayServer
from model_gateway.transformers.streaming import format_sse


class StubHandler(AbstractHandler):
    """Answers every request with one text block, or raises."""

    def __init__(self, name, text="pong", error=None):
        self._name = name
        self._text = text
        self._error = error
        self.requests = []

    @property
    def provider(self):
        return self._name

    async def handle(self, request):
        self.requests.append(request)
        if self._error is not None:
            raise self._error
        return MessagesResponse(
            id="msg_stub",
            model=request.model,
            content=[TextBlock(text=self._text)],
            usage=Usage(input_tokens=3, output_tokens=1),
        )

    async def stream(self, request):
        self.requests.append(request)
        if self._error is not None:
            raise self._error
        yield format_sse({"type": "message_start", "message": {"id": "msg_stub", "model": request.model}})
        yield format_sse({"type": "content_block_delta", "index": 0,
                          "delta": {"type": "text_delta", "text": self._text}})
        yield format_sse({"type": "message_stop"})

    async def check_health(self):
        return True

    def get_endpoint(self):
        return f"stub://{self._name}"


class SlowHandler(StubHandler):
    """Blocks until cancelled, noting when it starts and when it is cancelled."""

    def __init__(self, name):
        super().__init__(name)
        self.started = asyncio.Event()
        self.cancelled = asyncio.Event()

    async def handle(self, request):
        self.requests.append(request)
        self.started.set()
        try:
            await asyncio.sleep(60)
        except asyncio.CancelledError:
            self.cancelled.set()
            raise
        raise AssertionError("slow handler was not cancelled")


def _server(handlers=(), native=None, **kwargs):
    registry = HandlerRegistry()
    for handler in handlers:
        registry.register(handler.provider, handler)
    executor = ModelExecutor(
        registry=registry,
        native_provider=native or StubHandler("claude", text="native"),
        credentials=ProviderCredentials(environ={}),
    )
    return GatewayServer(executor, **kwargs)


@contextlib.asynccontextmanager
async def running(server):
    await server.start()
    try:
        async with httpx.AsyncClient(
            base_url=f"http://{server.get_address()}:{server.get_port()}",
            trust_env=False,
            timeout=10.0,
        ) as client:
            yield client
    finally:
        await server.shutdown()


def _body(model="ollama/llama3.2", **extra):
    body = {
        "model": model,
        "max_tokens": 64,
        "messages": [{"role": "user", "content": "ping"}],
    }
    body.update(extra)
    return body


class TestLifecycle:
    """Test start and shutdown."""

    @pytest.mark.asyncio
    async def test_not_started(self):
        """Test a fresh server reports no port or address."""
        server = _server()
        assert server.get_port() == 0
        assert server.get_address() == ""
        assert not server.is_running()

    @pytest.mark.asyncio
    async def test_start_and_shutdown(self):
        """Test the server binds loopback and releases its port."""
        server = _server()
        await server.start()
        port = server.get_port()
        try:
            assert port > 0
            assert server.get_address() == "127.0.0.1"
            assert server.is_running()
        finally:
            await server.shutdown()

        assert server.get_port() == 0
        assert server.get_address() == ""

        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(("127.0.0.1", port))

    @pytest.mark.asyncio
    async def test_double_start(self):
        """Test starting twice fails."""
        server = _server()
        await server.start()
        try:
            with pytest.raises(AlreadyRunningError):
                await server.start()
        finally:
            await server.shutdown()

    @pytest.mark.asyncio
    async def test_shutdown_idempotent(self):
        """Test shutdown is safe before start and after shutdown."""
        server = _server()
        await server.shutdown()
        await server.start()
        await server.shutdown()
        await server.shutdown()
        assert not server.is_running()

    @pytest.mark.asyncio
    async def test_restart(self):
        """Test a stopped server can be started again."""
        server = _server()
        async with running(server) as client:
            response = await client.post("/v1/messages", json=_body("default"))
            assert response.status_code == 200
        async with running(server) as client:
            response = await client.post("/v1/messages", json=_body("default"))
            assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_shutdown_with_request_in_flight(self):
        """Test shutdown is bounded by the grace period and frees the port."""
        slow = SlowHandler("ollama")
        server = _server([slow], shutdown_grace_seconds=0.3)
        await server.start()
        port = server.get_port()
        loop = asyncio.get_running_loop()

        async with httpx.AsyncClient(
            base_url=f"http://127.0.0.1:{port}", trust_env=False, timeout=10.0,
        ) as client:
            pending = asyncio.ensure_future(client.post("/v1/messages", json=_body()))
            await asyncio.wait_for(slow.started.wait(), timeout=5)

            began = loop.time()
            await server.shutdown()
            elapsed = loop.time() - began

            pending.cancel()
            with contextlib.suppress(asyncio.CancelledError, httpx.HTTPError):
                await pending

        assert elapsed < 1.0
        await asyncio.wait_for(slow.cancelled.wait(), timeout=5)
        assert not server.is_running()
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(("127.0.0.1", port))


class TestMessages:
    """Test the /v1/messages endpoint."""

    @pytest.mark.asyncio
    async def test_proxied_request(self):
        """Test a provider-prefixed model is served by its handler."""
        ollama = StubHandler("ollama", text="pong")
        async with running(_server([ollama])) as client:
            response = await client.post("/v1/messages", json=_body())

        assert response.status_code == 200
        data = response.json()
        assert data["type"] == "message"
        assert data["role"] == "assistant"
        assert data["content"] == [{"type": "text", "text": "pong"}]
        assert data["usage"] == {"input_tokens": 3, "output_tokens": 1}
        assert ollama.requests[0].model == "llama3.2"

    @pytest.mark.asyncio
    async def test_native_request(self):
        """Test native models go to the native provider."""
        async with running(_server()) as client:
            response = await client.post("/v1/messages", json=_body("claude"))
        assert response.json()["content"][0]["text"] == "native"

    @pytest.mark.asyncio
    async def test_not_json(self):
        """Test a non-JSON body is a 400."""
        async with running(_server()) as client:
            response = await client.post(
                "/v1/messages",
                content=b"not json",
                headers={"Content-Type": "application/json"},
            )
        assert response.status_code == 400
        assert response.json()["type"] == "error"
        assert response.json()["error"]["type"] == "invalid_request_error"

    @pytest.mark.asyncio
    async def test_invalid_request(self):
        """Test a body missing required fields is a 400."""
        async with running(_server()) as client:
            response = await client.post("/v1/messages", json={"model": "claude"})
        assert response.status_code == 400
        assert response.json()["error"]["type"] == "invalid_request_error"

    @pytest.mark.asyncio
    async def test_wrong_method(self):
        """Test GET on the messages endpoint is a 405."""
        async with running(_server()) as client:
            response = await client.get("/v1/messages")
        assert response.status_code == 405

    @pytest.mark.asyncio
    async def test_unknown_path(self):
        """Test other paths are a 404 with an empty object."""
        async with running(_server()) as client:
            response = await client.post("/v1/complete", json=_body())
        assert response.status_code == 404
        assert response.json() == {}

    @pytest.mark.asyncio
    async def test_payload_too_large(self):
        """Test bodies over the ceiling are a 413."""
        server = _server(max_body_bytes=256)
        async with running(server) as client:
            response = await client.post("/v1/messages", json=_body(system="x" * 1024))
        assert response.status_code == 413
        assert response.json()["error"]["type"] == "request_too_large"

    @pytest.mark.asyncio
    async def test_unknown_provider(self):
        """Test an unroutable model id is a 400."""
        async with running(_server()) as client:
            response = await client.post("/v1/messages", json=_body("gpt-4o"))
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_provider_api_error(self):
        """Test provider API errors are a 502 carrying the message."""
        failing = StubHandler("openrouter", error=ProviderAPIError(
            "OpenRouter API error: rate limited", provider="openrouter", status_code=429,
        ))
        async with running(_server([failing])) as client:
            response = await client.post("/v1/messages", json=_body("openrouter/deepseek/deepseek-chat"))
        assert response.status_code == 502
        assert response.json()["error"] == {
            "type": "api_error",
            "message": "OpenRouter API error: rate limited",
        }

    @pytest.mark.asyncio
    async def test_provider_not_running(self):
        """Test unreachable providers are a 503."""
        failing = StubHandler("ollama", error=NotRunningError(
            "Ollama is not running. Start Ollama with: ollama serve", provider="ollama",
        ))
        async with running(_server([failing])) as client:
            response = await client.post("/v1/messages", json=_body())
        assert response.status_code == 503
        assert "ollama serve" in response.json()["error"]["message"]

    @pytest.mark.asyncio
    async def test_unexpected_error(self):
        """Test unclassified errors are a generic 500."""
        failing = StubHandler("ollama", error=RuntimeError("secret detail"))
        async with running(_server([failing])) as client:
            response = await client.post("/v1/messages", json=_body())
        assert response.status_code == 500
        assert response.json()["error"]["message"] == "Internal server error"

    @pytest.mark.asyncio
    async def test_fallback(self):
        """Test fallback serves the request from the native provider."""
        failing = StubHandler("ollama", error=NotRunningError("down", provider="ollama"))
        server = _server([failing], fallback_enabled=True)
        async with running(server) as client:
            response = await client.post("/v1/messages", json=_body())
        assert response.status_code == 200
        assert response.json()["content"][0]["text"] == "native"

    @pytest.mark.asyncio
    async def test_concurrent_requests(self):
        """Test requests are served concurrently on one server."""
        ollama = StubHandler("ollama")
        async with running(_server([ollama])) as client:
            responses = await asyncio.gather(*[
                client.post("/v1/messages", json=_body()) for _ in range(8)
            ])
        assert all(r.status_code == 200 for r in responses)
        assert len(ollama.requests) == 8

    @pytest.mark.asyncio
    async def test_client_disconnect_cancels_provider_call(self):
        """Test a client going away aborts the outstanding provider call."""
        slow = SlowHandler("ollama")
        server = _server([slow])
        await server.start()
        try:
            client = httpx.AsyncClient(
                base_url=f"http://{server.get_address()}:{server.get_port()}",
                trust_env=False,
                timeout=10.0,
            )
            pending = asyncio.ensure_future(client.post("/v1/messages", json=_body()))
            await asyncio.wait_for(slow.started.wait(), timeout=5)

            pending.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await pending
            await client.aclose()

            await asyncio.wait_for(slow.cancelled.wait(), timeout=5)
        finally:
            await server.shutdown()


class TestStreaming:
    """Test streamed responses."""

    @pytest.mark.asyncio
    async def test_stream(self):
        """Test stream=true relays Anthropic SSE events."""
        async with running(_server([StubHandler("ollama", text="pong")])) as client:
            async with client.stream("POST", "/v1/messages", json=_body(stream=True)) as response:
                assert response.status_code == 200
                assert response.headers["content-type"].startswith("text/event-stream")
                events = [
                    json.loads(line[len("data: "):])
                    async for line in response.aiter_lines()
                    if line.startswith("data: ")
                ]

        assert [e["type"] for e in events] == ["message_start", "content_block_delta", "message_stop"]
        assert events[1]["delta"]["text"] == "pong"

    @pytest.mark.asyncio
    async def test_stream_error_before_first_byte(self):
        """Test a stream failing up front gets a normal error status."""
        failing = StubHandler("ollama", error=NotRunningError("down", provider="ollama"))
        async with running(_server([failing])) as client:
            response = await client.post("/v1/messages", json=_body(stream=True))
        assert response.status_code == 503
