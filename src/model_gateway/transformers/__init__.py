"""
Pure format transformers between the canonical shape and provider dialects.
"""

from .openai import to_openai, from_openai, map_finish_reason
from .gemini import (
    to_gemini,
    from_gemini,
    map_gemini_finish_reason,
    transform_gemini_stream_line,
)
from .ollama import to_ollama, from_ollama, transform_ollama_stream_line
from .streaming import (
    StreamState,
    format_sse,
    transform_stream_line,
    transform_stream_chunk,
    feed_stream,
    flush_stream,
)

__all__ = [
    "to_openai",
    "from_openai",
    "map_finish_reason",
    "to_gemini",
    "from_gemini",
    "map_gemini_finish_reason",
    "transform_gemini_stream_line",
    "to_ollama",
    "from_ollama",
    "transform_ollama_stream_line",
    "StreamState",
    "format_sse",
    "transform_stream_line",
    "transform_stream_chunk",
    "feed_stream",
    "flush_stream",
]
