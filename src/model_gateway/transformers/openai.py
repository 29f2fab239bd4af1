"""
Anthropic <-> OpenAI chat-completions conversion.

Pure functions, no I/O. Used by every OpenAI-compatible handler
(OpenRouter, OpenAI).
"""

import json
from typing import Any, Dict, List, Optional

from ..models.request import (
    MessagesRequest,
    Message,
    TextBlock,
    ToolUseBlock,
    ToolResultBlock,
)
from ..models.response import MessagesResponse, Usage, StopReason
from .streaming import dump_arguments


FINISH_REASON_MAP: Dict[str, str] = {
    "stop": StopReason.END_TURN.value,
    "length": StopReason.MAX_TOKENS.value,
    "tool_calls": StopReason.TOOL_USE.value,
}


def map_finish_reason(finish_reason: Optional[str]) -> str:
    """Map an OpenAI finish_reason; anything unmapped becomes end_turn."""
    return FINISH_REASON_MAP.get(finish_reason or "", StopReason.END_TURN.value)


def to_openai(request: MessagesRequest) -> Dict[str, Any]:
    """
    Convert a canonical request to an OpenAI chat-completions body.

    The system prompt becomes a leading system message, tool_use blocks
    become tool_calls on an assistant message, and tool_result blocks
    become role "tool" messages. Fields with no OpenAI equivalent
    (metadata and any extras) are dropped.
    """
    messages: List[Dict[str, Any]] = []

    system = request.system_text()
    if system:
        messages.append({"role": "system", "content": system})

    for msg in request.messages:
        messages.extend(_message_to_openai(msg))

    data: Dict[str, Any] = {
        "model": request.model,
        "messages": messages,
        "max_tokens": request.max_tokens,
    }

    if request.temperature is not None:
        data["temperature"] = request.temperature
    if request.top_p is not None:
        data["top_p"] = request.top_p
    if request.stream:
        data["stream"] = True

    if request.tools:
        data["tools"] = [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.input_schema,
                },
            }
            for tool in request.tools
        ]

    return data


def _message_to_openai(msg: Message) -> List[Dict[str, Any]]:
    """One canonical message may expand to several OpenAI messages."""
    if isinstance(msg.content, str):
        return [{"role": msg.role, "content": msg.content}]

    text_parts: List[str] = []
    tool_calls: List[Dict[str, Any]] = []
    tool_messages: List[Dict[str, Any]] = []

    for block in msg.content:
        if isinstance(block, TextBlock):
            text_parts.append(block.text)
        elif isinstance(block, ToolUseBlock):
            tool_calls.append({
                "id": block.id,
                "type": "function",
                "function": {
                    "name": block.name,
                    "arguments": dump_arguments(block.input),
                },
            })
        elif isinstance(block, ToolResultBlock):
            tool_messages.append({
                "role": "tool",
                "tool_call_id": block.tool_use_id,
                "content": block.text(),
            })

    results: List[Dict[str, Any]] = []

    if text_parts or tool_calls or not tool_messages:
        message: Dict[str, Any] = {
            "role": msg.role,
            "content": "".join(text_parts) if text_parts else None,
        }
        if tool_calls:
            message["role"] = "assistant"
            message["tool_calls"] = tool_calls
        results.append(message)

    # tool messages must directly follow the assistant turn that called them,
    # so any accompanying user text goes after them
    if tool_messages:
        if results and results[0]["role"] == "user":
            return tool_messages + results
        return results + tool_messages

    return results


def from_openai(data: Dict[str, Any]) -> MessagesResponse:
    """Convert an OpenAI chat-completions response body to canonical form."""
    choices = data.get("choices") or [{}]
    choice = choices[0]
    message = choice.get("message") or {}

    content: List[Any] = []

    text = message.get("content")
    if text:
        content.append(TextBlock(text=text))

    for tool_call in message.get("tool_calls") or []:
        function = tool_call.get("function") or {}
        content.append(ToolUseBlock(
            id=tool_call.get("id", ""),
            name=function.get("name", ""),
            input=_parse_arguments(function.get("arguments")),
        ))

    usage = data.get("usage") or {}

    return MessagesResponse(
        model=data.get("model", ""),
        content=content,
        stop_reason=map_finish_reason(choice.get("finish_reason")),
        usage=Usage(
            input_tokens=usage.get("prompt_tokens", 0) or 0,
            output_tokens=usage.get("completion_tokens", 0) or 0,
        ),
    )


def _parse_arguments(arguments: Any) -> Dict[str, Any]:
    if isinstance(arguments, dict):
        return arguments
    if not arguments:
        return {}
    parsed = json.loads(arguments)
    return parsed if isinstance(parsed, dict) else {"value": parsed}
