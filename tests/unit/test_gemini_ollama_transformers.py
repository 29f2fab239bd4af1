"""
Unit tests for the Gemini and Ollama transformers.
"""
import pytest

from model_gateway.models import (
    MessagesRequest,
    Message,
    Tool,
    TextBlock,
    ToolUseBlock,
    ToolResultBlock,
)
from model_gateway.transformers.gemini import to_gemini, from_gemini, map_gemini_finish_reason
from model_gateway.transformers.ollama import to_ollama, from_ollama


class TestToGemini:
    """Test canonical -> Gemini request conversion."""

    def test_roles_and_parts(self):
        """Test assistant maps to model and string content to a text part."""
        request = MessagesRequest(
            model="gemini-2.0-flash",
            max_tokens=256,
            messages=[
                Message(role="user", content="Hi"),
                Message(role="assistant", content="Hello"),
            ],
        )
        data = to_gemini(request)
        assert data["contents"] == [
            {"role": "user", "parts": [{"text": "Hi"}]},
            {"role": "model", "parts": [{"text": "Hello"}]},
        ]

    def test_system_instruction(self):
        """Test system prompt becomes systemInstruction."""
        request = MessagesRequest(
            model="m",
            max_tokens=10,
            system="Be brief.",
            messages=[Message(role="user", content="Hi")],
        )
        assert to_gemini(request)["systemInstruction"] == {"parts": [{"text": "Be brief."}]}

    def test_generation_config(self):
        """Test sampling parameters map into generationConfig."""
        request = MessagesRequest(
            model="m",
            max_tokens=512,
            temperature=0.5,
            top_p=0.9,
            messages=[Message(role="user", content="Hi")],
        )
        assert to_gemini(request)["generationConfig"] == {
            "maxOutputTokens": 512,
            "temperature": 0.5,
            "topP": 0.9,
        }

    def test_function_call_and_response(self):
        """Test tool_use and tool_result blocks become function parts."""
        request = MessagesRequest(
            model="m",
            max_tokens=10,
            messages=[
                Message(role="assistant", content=[
                    ToolUseBlock(id="toolu_1", name="get_weather", input={"city": "Oslo"}),
                ]),
                Message(role="user", content=[
                    ToolResultBlock(tool_use_id="toolu_1", content="sunny"),
                ]),
            ],
        )
        contents = to_gemini(request)["contents"]
        assert contents[0]["parts"] == [
            {"functionCall": {"name": "get_weather", "args": {"city": "Oslo"}}},
        ]
        assert contents[1]["parts"] == [
            {"functionResponse": {"name": "get_weather", "response": {"result": "sunny"}}},
        ]

    def test_function_declarations(self):
        """Test tools become functionDeclarations."""
        schema = {"type": "object", "properties": {"city": {"type": "string"}}}
        request = MessagesRequest(
            model="m",
            max_tokens=10,
            messages=[Message(role="user", content="Hi")],
            tools=[Tool(name="get_weather", description="Weather", input_schema=schema)],
        )
        assert to_gemini(request)["tools"] == [{
            "functionDeclarations": [
                {"name": "get_weather", "description": "Weather", "parameters": schema},
            ],
        }]


class TestFromGemini:
    """Test Gemini -> canonical response conversion."""

    def test_multiple_parts_in_order(self):
        """Test each part becomes one content block, in order."""
        response = from_gemini({
            "candidates": [{
                "content": {"role": "model", "parts": [
                    {"text": "Checking."},
                    {"functionCall": {"name": "get_weather", "args": {"city": "Oslo"}}},
                    {"text": "Done."},
                ]},
                "finishReason": "STOP",
            }],
            "usageMetadata": {"promptTokenCount": 9, "candidatesTokenCount": 4},
        }, model="gemini-2.0-flash")
        assert [b.type for b in response.content] == ["text", "tool_use", "text"]
        assert response.content[1].name == "get_weather"
        assert response.content[1].input == {"city": "Oslo"}
        assert response.content[1].id.startswith("call_")
        assert response.id.startswith("msg_")
        assert response.model == "gemini-2.0-flash"
        assert response.usage.input_tokens == 9
        assert response.usage.output_tokens == 4

    def test_text_only_stop(self):
        """Test a plain text reply ends the turn."""
        response = from_gemini({
            "candidates": [{"content": {"parts": [{"text": "Hi"}]}, "finishReason": "STOP"}],
        })
        assert response.stop_reason == "end_turn"
        assert response.get_text() == "Hi"

    @pytest.mark.parametrize("reason,expected", [
        ("STOP", "end_turn"),
        ("MAX_TOKENS", "max_tokens"),
        ("SAFETY", "end_turn"),
        ("OTHER", "end_turn"),
        (None, "end_turn"),
    ])
    def test_finish_reason(self, reason, expected):
        """Test finishReason mapping is total."""
        assert map_gemini_finish_reason(reason) == expected


class TestOllama:
    """Test the Ollama transformer."""

    def test_request(self):
        """Test Ollama chat body layout."""
        request = MessagesRequest(
            model="llama3.2",
            max_tokens=100,
            temperature=0.2,
            system="Be brief.",
            messages=[Message(role="user", content=[TextBlock(text="Hi"), TextBlock(text="!")])],
        )
        assert to_ollama(request) == {
            "model": "llama3.2",
            "messages": [
                {"role": "system", "content": "Be brief."},
                {"role": "user", "content": "Hi!"},
            ],
            "stream": False,
            "options": {"num_predict": 100, "temperature": 0.2},
        }

    def test_response(self):
        """Test Ollama reply conversion."""
        response = from_ollama({
            "model": "llama3.2",
            "message": {"role": "assistant", "content": "Hello"},
            "done": True,
            "prompt_eval_count": 11,
            "eval_count": 3,
        })
        assert response.get_text() == "Hello"
        assert response.model == "llama3.2"
        assert response.stop_reason == "end_turn"
        assert response.usage.input_tokens == 11
        assert response.usage.output_tokens == 3

    def test_length_stop(self):
        """Test done_reason=length maps to max_tokens."""
        response = from_ollama({"message": {"content": "x"}, "done": True, "done_reason": "length"})
        assert response.stop_reason == "max_tokens"
