"""
Anthropic <-> Gemini generateContent conversion.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Tuple

from ..models.request import (
    MessagesRequest,
    Message,
    TextBlock,
    ToolUseBlock,
    ToolResultBlock,
)
from ..models.response import MessagesResponse, Usage, StopReason, new_tool_call_id
from .streaming import (
    StreamState,
    dump_arguments,
    text_delta_event,
    tool_delta_event,
    usage_event,
)

logger = logging.getLogger(__name__)


GEMINI_FINISH_REASON_MAP: Dict[str, str] = {
    "STOP": StopReason.END_TURN.value,
    "MAX_TOKENS": StopReason.MAX_TOKENS.value,
}


def map_gemini_finish_reason(finish_reason: Optional[str]) -> str:
    return GEMINI_FINISH_REASON_MAP.get(finish_reason or "", StopReason.END_TURN.value)


def to_gemini(request: MessagesRequest) -> Dict[str, Any]:
    """
    Convert a canonical request to a Gemini generateContent body.

    The model is not part of the body; Gemini takes it from the URL.
    """
    tool_names: Dict[str, str] = {}
    contents: List[Dict[str, Any]] = []

    for msg in request.messages:
        contents.append(_message_to_gemini(msg, tool_names))

    data: Dict[str, Any] = {"contents": contents}

    system = request.system_text()
    if system:
        data["systemInstruction"] = {"parts": [{"text": system}]}

    if request.tools:
        data["tools"] = [{
            "functionDeclarations": [
                {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.input_schema,
                }
                for tool in request.tools
            ]
        }]

    generation_config: Dict[str, Any] = {"maxOutputTokens": request.max_tokens}
    if request.temperature is not None:
        generation_config["temperature"] = request.temperature
    if request.top_p is not None:
        generation_config["topP"] = request.top_p
    data["generationConfig"] = generation_config

    return data


def _message_to_gemini(msg: Message, tool_names: Dict[str, str]) -> Dict[str, Any]:
    role = "model" if msg.role == "assistant" else "user"

    if isinstance(msg.content, str):
        return {"role": role, "parts": [{"text": msg.content}]}

    parts: List[Dict[str, Any]] = []
    for block in msg.content:
        if isinstance(block, TextBlock):
            parts.append({"text": block.text})
        elif isinstance(block, ToolUseBlock):
            tool_names[block.id] = block.name
            parts.append({"functionCall": {"name": block.name, "args": block.input}})
        elif isinstance(block, ToolResultBlock):
            # Gemini pairs results with calls by function name, not id
            parts.append({
                "functionResponse": {
                    "name": tool_names.get(block.tool_use_id, block.tool_use_id),
                    "response": {"result": block.content},
                }
            })

    return {"role": role, "parts": parts}


def from_gemini(data: Dict[str, Any], model: str = "") -> MessagesResponse:
    """Convert a Gemini generateContent response body to canonical form."""
    candidates = data.get("candidates") or [{}]
    candidate = candidates[0]
    parts = (candidate.get("content") or {}).get("parts") or []

    content: List[Any] = []
    for part in parts:
        if "text" in part:
            content.append(TextBlock(text=part["text"]))
        elif "functionCall" in part:
            call = part["functionCall"]
            content.append(ToolUseBlock(
                id=new_tool_call_id(),
                name=call.get("name", ""),
                input=call.get("args") or {},
            ))

    stop_reason = map_gemini_finish_reason(candidate.get("finishReason"))
    if stop_reason == StopReason.END_TURN.value and any(
        isinstance(block, ToolUseBlock) for block in content
    ):
        stop_reason = StopReason.TOOL_USE.value

    usage = data.get("usageMetadata") or {}

    return MessagesResponse(
        model=data.get("modelVersion") or model,
        content=content,
        stop_reason=stop_reason,
        usage=Usage(
            input_tokens=usage.get("promptTokenCount", 0),
            output_tokens=usage.get("candidatesTokenCount", 0),
        ),
    )


def transform_gemini_stream_line(
    line: str,
    state: StreamState,
) -> Tuple[Optional[str], StreamState]:
    """Transform one streamGenerateContent (alt=sse) line."""
    line = line.strip()
    if not line.startswith("data:"):
        return None, state

    try:
        chunk = json.loads(line[len("data:"):].strip())
    except json.JSONDecodeError:
        logger.debug(f"Skipping unparseable Gemini stream line: {line[:80]}")
        return None, state

    if not isinstance(chunk, dict):
        return None, state

    candidates = chunk.get("candidates") or [{}]
    parts = (candidates[0].get("content") or {}).get("parts") or []

    outputs: List[str] = []
    tool_index = len(state.tool_arguments)
    for part in parts:
        if part.get("text"):
            out, state = text_delta_event(part["text"], state)
            outputs.append(out)
        elif "functionCall" in part:
            args = part["functionCall"].get("args") or {}
            out, state = tool_delta_event(tool_index, dump_arguments(args), state)
            tool_index += 1
            outputs.append(out)

    usage = chunk.get("usageMetadata")
    if candidates[0].get("finishReason") and isinstance(usage, dict):
        out, state = usage_event(
            usage.get("promptTokenCount") or 0,
            usage.get("candidatesTokenCount") or 0,
            state,
        )
        outputs.append(out)

    if not outputs:
        return None, state
    return "".join(outputs), state
