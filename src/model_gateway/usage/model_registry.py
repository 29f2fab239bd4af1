"""
Model catalog with per-model pricing.
"""

import logging
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field

from ..core.interface import NATIVE_MODEL_NAMES, ProviderType

logger = logging.getLogger(__name__)


class ModelPricing(BaseModel):
    """USD per one million tokens."""
    input_per_1m: float = 0.0
    output_per_1m: float = 0.0


FREE = ModelPricing()


class ModelInfo(BaseModel):
    """One catalog entry."""
    id: str
    name: str = ""
    provider: str
    is_free: bool = False
    tags: List[str] = Field(default_factory=list)
    pricing: ModelPricing = Field(default_factory=ModelPricing)


def _entry(id, name, provider, tags, input_per_1m=0.0, output_per_1m=0.0, is_free=False):
    return ModelInfo(
        id=id,
        name=name,
        provider=provider,
        is_free=is_free,
        tags=tags,
        pricing=ModelPricing(input_per_1m=input_per_1m, output_per_1m=output_per_1m),
    )


DEFAULT_MODELS: List[ModelInfo] = [
    # OpenRouter
    _entry("openrouter/deepseek/deepseek-chat", "DeepSeek Chat", "openrouter",
           ["chat", "general"], 0.14, 0.28),
    _entry("openrouter/deepseek/deepseek-coder", "DeepSeek Coder", "openrouter",
           ["code", "programming"], 0.14, 0.28),
    _entry("openrouter/anthropic/claude-3.5-sonnet", "Claude 3.5 Sonnet", "openrouter",
           ["chat", "general", "code"], 3.00, 15.00),
    _entry("openrouter/openai/gpt-4o", "GPT-4o", "openrouter",
           ["chat", "general", "code"], 2.50, 10.00),
    _entry("openrouter/meta-llama/llama-3.2-3b-instruct:free", "Llama 3.2 3B (Free)",
           "openrouter", ["chat", "llama", "free"], is_free=True),

    # Ollama (local, always free)
    _entry("ollama/llama3.2", "Llama 3.2", "ollama",
           ["chat", "general", "llama", "free"], is_free=True),
    _entry("ollama/codellama", "CodeLlama", "ollama",
           ["code", "programming", "llama", "free"], is_free=True),
    _entry("ollama/mistral", "Mistral", "ollama",
           ["chat", "general", "free"], is_free=True),
    _entry("ollama/qwen2.5-coder", "Qwen 2.5 Coder", "ollama",
           ["code", "programming", "free"], is_free=True),

    # OpenAI
    _entry("openai/gpt-4o", "GPT-4o", "openai", ["chat", "general", "code"], 2.50, 10.00),
    _entry("openai/gpt-4o-mini", "GPT-4o Mini", "openai", ["chat", "general"], 0.15, 0.60),
    _entry("openai/o1", "o1", "openai", ["reasoning", "code"], 15.00, 60.00),
    _entry("openai/o1-mini", "o1 Mini", "openai", ["reasoning"], 3.00, 12.00),

    # Gemini
    _entry("gemini/gemini-2.0-flash", "Gemini 2.0 Flash", "gemini", ["chat", "fast"], 0.075, 0.30),
    _entry("gemini/gemini-1.5-pro", "Gemini 1.5 Pro", "gemini", ["chat", "general"], 1.25, 5.00),
    _entry("gemini/gemini-1.5-flash", "Gemini 1.5 Flash", "gemini", ["chat", "fast"], 0.075, 0.30),
]


class ModelRegistry:
    """
    Read-only model catalog.

    Local (Ollama) entries are forced free regardless of what a loaded
    catalog says.
    """

    def __init__(self, models: Optional[List[ModelInfo]] = None):
        entries = DEFAULT_MODELS if models is None else models
        self._models: Dict[str, ModelInfo] = {}
        for model in entries:
            if model.provider == ProviderType.OLLAMA.value:
                model = model.model_copy(update={"is_free": True, "pricing": FREE})
            self._models[model.id] = model

    @classmethod
    def from_yaml(cls, path: str) -> "ModelRegistry":
        """
        Load a catalog file.

        Expected shape: {"models": [{"id": ..., "provider": ..., "pricing":
        {"input_per_1m": ..., "output_per_1m": ...}, "tags": [...]}]}.
        """
        with open(path, "r") as f:
            data: Dict[str, Any] = yaml.safe_load(f) or {}
        models = [ModelInfo.model_validate(entry) for entry in data.get("models", [])]
        logger.info(f"Loaded {len(models)} models from {path}")
        return cls(models)

    def get_pricing(self, model_id: str) -> ModelPricing:
        """Pricing for model_id; free for native, local and unknown ids."""
        if model_id in NATIVE_MODEL_NAMES or model_id.startswith("ollama/"):
            return FREE
        model = self._models.get(model_id)
        return model.pricing if model else FREE

    def list_models(self, provider: Optional[str] = None) -> List[ModelInfo]:
        if provider is None:
            return list(self._models.values())
        return [m for m in self._models.values() if m.provider == provider]

    def search_models(self, term: str) -> List[ModelInfo]:
        """Case-insensitive match on id or name substring, or an exact tag."""
        term = term.lower()
        return [
            m for m in self._models.values()
            if term in m.id.lower()
            or term in m.name.lower()
            or term in (t.lower() for t in m.tags)
        ]

    def get_free_models(self) -> List[ModelInfo]:
        return [m for m in self._models.values() if m.is_free]

    def get_model_info(self, model_id: str) -> Optional[ModelInfo]:
        return self._models.get(model_id)
