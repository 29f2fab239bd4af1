"""
Core components: errors, configuration, handler interface, registry,
router and executor.
"""

from .errors import (
    GatewayError,
    ConfigurationError,
    UnknownProviderError,
    NotRunningError,
    ProviderAPIError,
    MalformedRequestError,
    PayloadTooLargeError,
    AlreadyRunningError,
    NotRegisteredError,
)
from .interface import (
    AbstractHandler,
    HandlerConfig,
    ProviderType,
    ModelId,
    parse_model_id,
    is_valid_model_id,
    is_native_model,
)
from .config import GatewayConfig, ServerConfig, ProviderSettings, ProviderCredentials, load_config
from .registry import HandlerRegistry, create_handler
from .router import ModelRouter, ResolveModelParams, read_frontmatter_model
from .executor import ModelExecutor, ExecutionResult

__all__ = [
    "GatewayError",
    "ConfigurationError",
    "UnknownProviderError",
    "NotRunningError",
    "ProviderAPIError",
    "MalformedRequestError",
    "PayloadTooLargeError",
    "AlreadyRunningError",
    "NotRegisteredError",
    "AbstractHandler",
    "HandlerConfig",
    "ProviderType",
    "ModelId",
    "parse_model_id",
    "is_valid_model_id",
    "is_native_model",
    "GatewayConfig",
    "ServerConfig",
    "ProviderSettings",
    "ProviderCredentials",
    "load_config",
    "HandlerRegistry",
    "create_handler",
    "ModelRouter",
    "ResolveModelParams",
    "read_frontmatter_model",
    "ModelExecutor",
    "ExecutionResult",
]
