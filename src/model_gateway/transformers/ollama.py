"""
Anthropic <-> Ollama /api/chat conversion.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Tuple

from ..models.request import MessagesRequest, TextBlock, ToolResultBlock
from ..models.response import MessagesResponse, Usage, StopReason
from .streaming import StreamState, text_delta_event, message_stop_event, usage_event

logger = logging.getLogger(__name__)


def to_ollama(request: MessagesRequest, stream: bool = False) -> Dict[str, Any]:
    """
    Convert a canonical request to an Ollama chat body.

    Ollama chat messages are text only, so block content is flattened to
    its text (tool results included).
    """
    messages: List[Dict[str, str]] = []

    system = request.system_text()
    if system:
        messages.append({"role": "system", "content": system})

    for msg in request.messages:
        if isinstance(msg.content, str):
            content = msg.content
        else:
            pieces = []
            for block in msg.content:
                if isinstance(block, TextBlock):
                    pieces.append(block.text)
                elif isinstance(block, ToolResultBlock):
                    pieces.append(block.text())
            content = "".join(pieces)
        messages.append({"role": msg.role, "content": content})

    options: Dict[str, Any] = {"num_predict": request.max_tokens}
    if request.temperature is not None:
        options["temperature"] = request.temperature
    if request.top_p is not None:
        options["top_p"] = request.top_p

    return {
        "model": request.model,
        "messages": messages,
        "stream": stream,
        "options": options,
    }


def from_ollama(data: Dict[str, Any]) -> MessagesResponse:
    """Convert an Ollama chat response body to canonical form."""
    message = data.get("message") or {}

    if data.get("done_reason") == "length":
        stop_reason = StopReason.MAX_TOKENS.value
    else:
        stop_reason = StopReason.END_TURN.value

    return MessagesResponse(
        model=data.get("model", ""),
        content=[TextBlock(text=message.get("content", ""))],
        stop_reason=stop_reason,
        usage=Usage(
            input_tokens=data.get("prompt_eval_count", 0) or 0,
            output_tokens=data.get("eval_count", 0) or 0,
        ),
    )


def transform_ollama_stream_line(
    line: str,
    state: StreamState,
) -> Tuple[Optional[str], StreamState]:
    """Transform one line of Ollama's NDJSON chat stream."""
    line = line.strip()
    if not line:
        return None, state

    try:
        chunk = json.loads(line)
    except json.JSONDecodeError:
        logger.debug(f"Skipping unparseable Ollama stream line: {line[:80]}")
        return None, state

    if not isinstance(chunk, dict):
        return None, state

    outputs: List[str] = []

    content = (chunk.get("message") or {}).get("content")
    if content:
        out, state = text_delta_event(content, state)
        outputs.append(out)

    if chunk.get("done"):
        if "prompt_eval_count" in chunk or "eval_count" in chunk:
            out, state = usage_event(
                chunk.get("prompt_eval_count") or 0,
                chunk.get("eval_count") or 0,
                state,
            )
            outputs.append(out)
        out, state = message_stop_event(state)
        outputs.append(out)

    if not outputs:
        return None, state
    return "".join(outputs), state
