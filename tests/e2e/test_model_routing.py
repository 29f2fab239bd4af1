"""
End-to-end tests: routing, execution through real handlers, and usage.

Provider HTTP traffic is served by httpx.MockTransport.
"""
import json

import httpx
import pytest

from model_gateway.core.config import ProviderCredentials, ProviderSettings
from model_gateway.core.executor import ModelExecutor
from model_gateway.core.registry import HandlerRegistry
from model_gateway.core.router import ModelRouter, read_frontmatter_model
from model_gateway.handlers import AnthropicHandler
from model_gateway.usage.cost_tracker import CostTracker


def _provider(request):
    """Minimal Ollama, OpenAI and Anthropic servers behind one transport."""
    body = json.loads(request.content) if request.content else {}
    if request.url.host == "localhost" and request.url.path == "/api/chat":
        return httpx.Response(200, json={
            "model": body["model"],
            "message": {"role": "assistant", "content": f"ollama:{body['model']}"},
            "done": True,
            "prompt_eval_count": 12,
            "eval_count": 4,
        })
    if request.url.host == "api.openai.com":
        return httpx.Response(200, json={
            "id": "chatcmpl-1",
            "model": body["model"],
            "choices": [{
                "index": 0,
                "message": {"role": "assistant", "content": f"openai:{body['model']}"},
                "finish_reason": "stop",
            }],
            "usage": {"prompt_tokens": 1000, "completion_tokens": 4250},
        })
    if request.url.host == "api.anthropic.com":
        return httpx.Response(200, json={
            "id": "msg_native",
            "type": "message",
            "role": "assistant",
            "model": body["model"],
            "content": [{"type": "text", "text": "claude"}],
            "stop_reason": "end_turn",
            "usage": {"input_tokens": 5, "output_tokens": 2},
        })
    return httpx.Response(404, json={"error": {"message": "no route"}})


def _refusing(request):
    if request.url.host == "localhost":
        raise httpx.ConnectError("Connection refused", request=request)
    return _provider(request)


def _pipeline(tmp_path, handler=_provider, models=None):
    user_dir = tmp_path / "home" / ".model-gateway"
    user_dir.mkdir(parents=True)
    (user_dir / "config.json").write_text(json.dumps({"models": models or {}}))
    project_dir = tmp_path / "project"
    project_dir.mkdir()

    transport = httpx.MockTransport(handler)
    credentials = ProviderCredentials(
        {"openai": ProviderSettings(api_key="sk-test")},
        environ={},
    )
    tracker = CostTracker(str(tmp_path / "data"))
    executor = ModelExecutor(
        registry=HandlerRegistry(transport=transport),
        native_provider=AnthropicHandler(api_key="sk-ant-test", transport=transport),
        cost_tracker=tracker,
        credentials=credentials,
    )
    return ModelRouter(str(user_dir), str(project_dir)), executor, tracker


class TestModelRouting:
    """Test prompts flow from routing to a provider and into usage."""

    @pytest.mark.asyncio
    async def test_configured_agent_runs_on_ollama(self, tmp_path):
        """Test a per-agent entry routes to the local provider at no cost."""
        router, executor, tracker = _pipeline(
            tmp_path, models={"agents": {"reviewer": "ollama/llama3.2"}}
        )

        model = router.resolve_model(prompt_type="agent", prompt_name="reviewer")
        result = await executor.execute("Review this", model, command="reviewer")

        assert result.text == "ollama:llama3.2"
        assert result.provider == "ollama"
        stats = tracker.get_usage_by_command("reviewer")
        assert stats.total_tokens == 16
        assert stats.total_cost_usd == 0.0

    @pytest.mark.asyncio
    async def test_frontmatter_routes_to_openai(self, tmp_path):
        """Test a frontmatter model is used and priced."""
        router, executor, tracker = _pipeline(tmp_path)
        prompt = "---\nmodel: openai/gpt-4o\n---\nSummarize the changelog.\n"

        model = router.resolve_model(
            prompt_type="command",
            prompt_name="summarize",
            frontmatter_model=read_frontmatter_model(prompt),
        )
        result = await executor.execute(prompt, model, command="summarize")

        assert result.text == "openai:gpt-4o"
        assert tracker.get_stats().total_cost_usd == pytest.approx(0.045)

    @pytest.mark.asyncio
    async def test_default_runs_natively(self, tmp_path):
        """Test an unconfigured prompt runs on the native provider."""
        router, executor, tracker = _pipeline(tmp_path)

        model = router.resolve_model(prompt_type="skill", prompt_name="anything")
        result = await executor.execute("Hi", model)

        assert model == "claude"
        assert result.text == "claude"
        assert result.provider == "claude"

    @pytest.mark.asyncio
    async def test_ollama_down_falls_back(self, tmp_path):
        """Test a refused local connection falls back once to Claude."""
        router, executor, tracker = _pipeline(
            tmp_path, handler=_refusing, models={"default": "ollama/llama3.2"}
        )
        notices = []
        executor.on_fallback(notices.append)

        model = router.resolve_model(prompt_type="agent", prompt_name="reviewer")
        result = await executor.execute("Hi", model, fallback_enabled=True)

        assert result.fallback_used is True
        assert result.text == "claude"
        assert len(notices) == 1
        assert "falling back to Claude" in notices[0]
        assert [r.model for r in tracker.get_records()] == ["claude"]
