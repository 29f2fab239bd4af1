"""
Streaming chunk transformation.

Each provider stream line is mapped to zero or one Anthropic SSE
payloads by a pure function. Anything that has to survive from one line
to the next lives in a StreamState value that the caller threads through
successive calls.
"""

import json
import logging
from dataclasses import dataclass, replace, asdict
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..models.response import new_message_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StreamState:
    """Accumulator carried between stream lines."""
    started: bool = False
    finished: bool = False
    message_id: str = ""
    model: str = ""
    saw_text: bool = False
    # (block index, accumulated partial JSON) per tool call seen so far
    tool_arguments: Tuple[Tuple[int, str], ...] = ()
    buffer: str = ""

    def arguments_for(self, index: int) -> str:
        for block_index, arguments in self.tool_arguments:
            if block_index == index:
                return arguments
        return ""

    def with_arguments(self, index: int, fragment: str) -> "StreamState":
        merged = dict(self.tool_arguments)
        merged[index] = merged.get(index, "") + fragment
        return replace(self, tool_arguments=tuple(sorted(merged.items())))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StreamState":
        data = dict(data)
        data["tool_arguments"] = tuple(
            (int(index), arguments) for index, arguments in data.get("tool_arguments", ())
        )
        return cls(**data)


LineTransform = Callable[[str, StreamState], Tuple[Optional[str], StreamState]]


def dump_arguments(value: Any) -> str:
    """Tool-call arguments as compact JSON with non-ASCII kept literal."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def format_sse(event: Dict[str, Any]) -> str:
    """Serialize one Anthropic stream event as an SSE data line."""
    return f"data: {json.dumps(event, separators=(',', ':'))}\n\n"


def message_start_event(state: StreamState) -> Tuple[str, StreamState]:
    """Open the message; allocates the message id."""
    message_id = state.message_id or new_message_id()
    event = {
        "type": "message_start",
        "message": {
            "id": message_id,
            "type": "message",
            "role": "assistant",
            "model": state.model,
            "content": [],
            "stop_reason": None,
            "stop_sequence": None,
            "usage": {"input_tokens": 0, "output_tokens": 0},
        },
    }
    return format_sse(event), replace(state, started=True, message_id=message_id)


def message_stop_event(state: StreamState) -> Tuple[str, StreamState]:
    return format_sse({"type": "message_stop"}), replace(state, finished=True)


def usage_event(input_tokens: int, output_tokens: int, state: StreamState) -> Tuple[str, StreamState]:
    """message_delta carrying the provider's token counts."""
    event = {
        "type": "message_delta",
        "delta": {},
        "usage": {"input_tokens": input_tokens, "output_tokens": output_tokens},
    }
    return format_sse(event), state


def text_delta_event(text: str, state: StreamState) -> Tuple[str, StreamState]:
    event = {
        "type": "content_block_delta",
        "index": 0,
        "delta": {"type": "text_delta", "text": text},
    }
    return format_sse(event), replace(state, saw_text=True)


def tool_delta_event(
    tool_index: int,
    partial_json: str,
    state: StreamState,
) -> Tuple[str, StreamState]:
    """Partial tool-call JSON; block index follows the text block if any."""
    index = tool_index + (1 if state.saw_text else 0)
    event = {
        "type": "content_block_delta",
        "index": index,
        "delta": {"type": "input_json_delta", "partial_json": partial_json},
    }
    return format_sse(event), state.with_arguments(index, partial_json)


def _data_payload(line: str) -> Optional[str]:
    line = line.strip()
    if not line.startswith("data:"):
        return None
    return line[len("data:"):].strip()


def transform_stream_line(
    line: str,
    state: StreamState,
) -> Tuple[Optional[str], StreamState]:
    """
    Transform one OpenAI SSE line.

    Returns the Anthropic SSE output (or None when the line produces
    nothing) together with the next state.
    """
    payload = _data_payload(line)
    if not payload:
        return None, state

    if payload == "[DONE]":
        return message_stop_event(state)

    try:
        chunk = json.loads(payload)
    except json.JSONDecodeError:
        logger.debug(f"Skipping unparseable stream line: {payload[:80]}")
        return None, state

    if not isinstance(chunk, dict):
        return None, state

    if not state.model and chunk.get("model"):
        state = replace(state, model=chunk["model"])

    choices = chunk.get("choices") or [{}]
    delta = choices[0].get("delta") or {}

    outputs: List[str] = []

    if delta.get("role") == "assistant" and not state.started:
        out, state = message_start_event(state)
        outputs.append(out)

    content = delta.get("content")
    if content:
        out, state = text_delta_event(content, state)
        outputs.append(out)

    for tool_call in delta.get("tool_calls") or []:
        function = tool_call.get("function") or {}
        out, state = tool_delta_event(
            tool_call.get("index", 0),
            function.get("arguments") or "",
            state,
        )
        outputs.append(out)

    usage = chunk.get("usage")
    if isinstance(usage, dict):
        out, state = usage_event(
            usage.get("prompt_tokens") or 0,
            usage.get("completion_tokens") or 0,
            state,
        )
        outputs.append(out)

    if not outputs:
        return None, state
    return "".join(outputs), state


def transform_stream_chunk(line: str) -> str:
    """Stateless single-line transform; empty string when nothing is emitted."""
    output, _ = transform_stream_line(line, StreamState())
    return output or ""


def feed_stream(
    data: str,
    state: StreamState,
    transform: LineTransform = transform_stream_line,
) -> Tuple[List[str], StreamState]:
    """
    Feed an arbitrary slice of a provider stream.

    Incomplete trailing lines are held in state.buffer until the rest
    arrives, so the input may be split anywhere.
    """
    pending = state.buffer + data
    *lines, rest = pending.split("\n")
    state = replace(state, buffer=rest)

    outputs: List[str] = []
    for line in lines:
        output, state = transform(line, state)
        if output:
            outputs.append(output)
    return outputs, state


def flush_stream(
    state: StreamState,
    transform: LineTransform = transform_stream_line,
) -> Tuple[List[str], StreamState]:
    """Process whatever is left in the buffer at end of stream."""
    if not state.buffer:
        return [], state
    output, state = transform(state.buffer, replace(state, buffer=""))
    return ([output] if output else []), state
