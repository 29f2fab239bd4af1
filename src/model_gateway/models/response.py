"""
Canonical response models (Anthropic Messages shape).
"""

import uuid
from typing import Optional, List, Dict, Any, Union, Literal, Annotated
from enum import Enum
from pydantic import BaseModel, Field

from .request import TextBlock, ToolUseBlock


class StopReason(str, Enum):
    """Reasons for a completion stopping."""
    END_TURN = "end_turn"
    MAX_TOKENS = "max_tokens"
    TOOL_USE = "tool_use"
    STOP_SEQUENCE = "stop_sequence"


def new_message_id() -> str:
    """Fresh response id."""
    return f"msg_{uuid.uuid4().hex[:24]}"


def new_tool_call_id() -> str:
    """Fresh tool-call id for dialects that do not supply one."""
    return f"call_{uuid.uuid4().hex[:24]}"


class Usage(BaseModel):
    """Token usage information."""
    input_tokens: int = 0
    output_tokens: int = 0


_KEPT_BLOCK_TYPES = ("text", "tool_use")

ResponseBlock = Annotated[
    Union[TextBlock, ToolUseBlock],
    Field(discriminator="type"),
]


class MessagesResponse(BaseModel):
    """Canonical completion response."""
    id: str = Field(default_factory=new_message_id)
    type: Literal["message"] = "message"
    role: Literal["assistant"] = "assistant"
    model: str = ""
    content: List[ResponseBlock] = Field(default_factory=list)
    stop_reason: Optional[str] = StopReason.END_TURN.value
    stop_sequence: Optional[str] = None
    usage: Usage = Field(default_factory=Usage)

    @classmethod
    def from_anthropic(cls, data: Dict[str, Any]) -> "MessagesResponse":
        """
        Create from an Anthropic API response body.

        Block types other than text and tool_use (thinking, for one) are dropped.
        """
        content = [
            block for block in data.get("content") or []
            if isinstance(block, dict) and block.get("type") in _KEPT_BLOCK_TYPES
        ]
        return cls.model_validate({**data, "content": content})

    def get_text(self) -> str:
        """Concatenated text of all text blocks."""
        return "".join(
            block.text for block in self.content if isinstance(block, TextBlock)
        )

    def get_tool_uses(self) -> List[ToolUseBlock]:
        """All tool_use blocks, in order."""
        return [block for block in self.content if isinstance(block, ToolUseBlock)]
