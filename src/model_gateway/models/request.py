"""
Canonical request models (Anthropic Messages shape).
"""

from typing import Optional, List, Dict, Any, Union, Literal, Annotated
from pydantic import BaseModel, Field


class TextBlock(BaseModel):
    """Plain text content."""
    type: Literal["text"] = "text"
    text: str


class ToolUseBlock(BaseModel):
    """A tool invocation requested by the assistant."""
    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: Dict[str, Any] = Field(default_factory=dict)


class ToolResultBlock(BaseModel):
    """A tool's output fed back to the model."""
    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    content: Union[str, List[Dict[str, Any]]] = ""

    def text(self) -> str:
        """Flatten the result to a string."""
        if isinstance(self.content, str):
            return self.content
        return "".join(
            part.get("text", "")
            for part in self.content
            if part.get("type") == "text"
        )


ContentBlock = Annotated[
    Union[TextBlock, ToolUseBlock, ToolResultBlock],
    Field(discriminator="type"),
]


class Message(BaseModel):
    """One role-tagged conversation turn."""
    role: Literal["user", "assistant"]
    content: Union[str, List[ContentBlock]]


class Tool(BaseModel):
    """Tool definition."""
    name: str
    description: Optional[str] = None
    input_schema: Dict[str, Any] = Field(default_factory=lambda: {"type": "object"})


class MessagesRequest(BaseModel):
    """
    Canonical completion request.

    Unknown top-level fields are accepted at the boundary so that
    Anthropic-only extras survive parsing; transformers only forward the
    fields they know, which drops the rest.
    """
    model: str = Field(..., description="Model identifier")
    messages: List[Message] = Field(..., description="Conversation messages")
    max_tokens: int = Field(..., ge=1)

    system: Optional[Union[str, List[TextBlock]]] = None
    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    top_p: Optional[float] = Field(default=None, ge=0, le=1)
    tools: Optional[List[Tool]] = None
    stream: bool = Field(default=False)

    # Anthropic-only, never forwarded to other dialects
    metadata: Optional[Dict[str, Any]] = None

    class Config:
        extra = "allow"

    def system_text(self) -> Optional[str]:
        """System prompt as a single string."""
        if self.system is None or isinstance(self.system, str):
            return self.system
        return "".join(block.text for block in self.system)

    def to_anthropic_format(self) -> Dict[str, Any]:
        """Serialize for an Anthropic-compatible endpoint."""
        return self.model_dump(exclude_none=True)

    @classmethod
    def from_prompt(
        cls,
        prompt: str,
        model: str,
        max_tokens: int = 4096,
        system: Optional[str] = None,
    ) -> "MessagesRequest":
        """Build a single-turn request from prompt text."""
        return cls(
            model=model,
            messages=[Message(role="user", content=prompt)],
            max_tokens=max_tokens,
            system=system,
        )
