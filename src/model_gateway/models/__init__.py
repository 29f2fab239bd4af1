"""
Canonical data models.
"""

from .request import (
    MessagesRequest,
    Message,
    Tool,
    TextBlock,
    ToolUseBlock,
    ToolResultBlock,
    ContentBlock,
)
from .response import (
    MessagesResponse,
    Usage,
    StopReason,
    new_message_id,
    new_tool_call_id,
)

__all__ = [
    "MessagesRequest",
    "Message",
    "Tool",
    "TextBlock",
    "ToolUseBlock",
    "ToolResultBlock",
    "ContentBlock",
    "MessagesResponse",
    "Usage",
    "StopReason",
    "new_message_id",
    "new_tool_call_id",
]
