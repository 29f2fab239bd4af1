"""
Run the gateway: python -m model_gateway [--config PATH] [--port N]
"""

import argparse
import asyncio
import logging
import os
import signal

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from .core.config import load_config
from .core.executor import ModelExecutor
from .core.registry import HandlerRegistry
from .server import GatewayServer
from .usage.cost_tracker import CostTracker

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def setup_tracing() -> None:
    """Export spans over OTLP when an endpoint is configured."""
    otel_endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if not otel_endpoint:
        return
    resource = Resource.create({"service.name": "model-gateway"})
    provider = TracerProvider(resource=resource)
    processor = BatchSpanProcessor(OTLPSpanExporter(endpoint=otel_endpoint))
    provider.add_span_processor(processor)
    trace.set_tracer_provider(provider)


async def serve(config_path=None, port=None) -> None:
    config = load_config(config_path)
    credentials = config.credentials()

    registry = HandlerRegistry(timeout=config.server.request_timeout)
    cost_tracker = CostTracker(config.data_dir)
    cost_tracker.load()

    executor = ModelExecutor(
        registry=registry,
        cost_tracker=cost_tracker,
        credentials=credentials,
    )
    server = GatewayServer(
        executor,
        port=config.server.port if port is None else port,
        max_body_bytes=config.server.max_body_bytes,
        shutdown_grace_seconds=config.server.shutdown_grace_seconds,
        fallback_enabled=config.fallback_enabled,
    )

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    await server.start()
    print(f"http://{server.get_address()}:{server.get_port()}", flush=True)
    try:
        await stop.wait()
    finally:
        await server.shutdown()
        await registry.aclose()
        await executor.native_provider.disconnect()
        cost_tracker.flush()


def main() -> None:
    parser = argparse.ArgumentParser(prog="model-gateway")
    parser.add_argument("--config", help="gateway YAML config file")
    parser.add_argument("--port", type=int, help="port to bind (0 = any free port)")
    args = parser.parse_args()

    setup_tracing()
    asyncio.run(serve(args.config, args.port))


if __name__ == "__main__":
    main()
