"""
Handler interface definition.

Defines the contract that every provider handler implements, the closed
set of provider kinds, and model-identifier parsing.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import AsyncIterator, NamedTuple, Optional

from pydantic import BaseModel

from ..models.request import MessagesRequest
from ..models.response import MessagesResponse


NATIVE_MODEL_NAMES = ("default", "claude")
NATIVE_PROVIDER = "claude"


class ProviderType(str, Enum):
    """Providers the gateway can proxy to."""
    OLLAMA = "ollama"
    OPENROUTER = "openrouter"
    OPENAI = "openai"
    GEMINI = "gemini"


REMOTE_PROVIDERS = frozenset({
    ProviderType.OPENROUTER,
    ProviderType.OPENAI,
    ProviderType.GEMINI,
})


class HandlerConfig(BaseModel):
    """
    What is needed to construct a handler.

    provider is kept as a plain string so that an unknown name reaches the
    handler factory and is reported there by name.
    """
    provider: str
    api_key: Optional[str] = None
    base_url: Optional[str] = None

    def cache_key(self):
        return (self.provider, self.api_key, self.base_url)


class ModelId(NamedTuple):
    provider: str
    model: str


def is_native_model(model: str) -> bool:
    """True for the native aliases and for Anthropic model names."""
    return model in NATIVE_MODEL_NAMES or model.startswith("claude-")


def parse_model_id(model: str) -> ModelId:
    """
    Split "<provider>/<model-path>".

    The model path may itself contain slashes
    (openrouter/deepseek/deepseek-chat). "default", "claude" and
    "claude-*" names parse to the native provider.
    """
    if is_native_model(model):
        return ModelId(NATIVE_PROVIDER, model)
    provider, sep, path = model.partition("/")
    if not sep or not provider or not path:
        raise ValueError(f"Invalid model id: {model!r} (expected provider/model)")
    return ModelId(provider, path)


def is_valid_model_id(model: str) -> bool:
    """True for native names and for ids naming a known provider."""
    try:
        provider, _ = parse_model_id(model)
    except ValueError:
        return False
    if provider == NATIVE_PROVIDER:
        return True
    return provider in {p.value for p in ProviderType}


class AbstractHandler(ABC):
    """
    Abstract base class for provider handlers.

    A handler owns the translation to and from one provider dialect and
    performs exactly one outbound request per call.
    """

    @property
    @abstractmethod
    def provider(self) -> str:
        """Provider name (e.g. "ollama", "openrouter")."""
        pass

    @abstractmethod
    async def handle(self, request: MessagesRequest) -> MessagesResponse:
        """
        Run one completion.

        Args:
            request: Canonical request

        Returns:
            Canonical response

        Raises:
            NotRunningError: The provider could not be reached
            ProviderAPIError: The provider answered with a non-2xx status
        """
        pass

    @abstractmethod
    def stream(self, request: MessagesRequest) -> AsyncIterator[str]:
        """
        Run one streaming completion.

        Yields:
            Anthropic-format SSE lines ("data: {...}\\n\\n")
        """
        pass

    @abstractmethod
    async def check_health(self) -> bool:
        """Best-effort reachability probe. Never raises."""
        pass

    @abstractmethod
    def get_endpoint(self) -> str:
        """Fully qualified URL used for completions."""
        pass

    async def connect(self) -> None:
        pass

    async def disconnect(self) -> None:
        pass
