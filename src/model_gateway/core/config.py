"""
Configuration loading for the model gateway.
"""

import os
import re
import logging
from typing import Dict, List, Any, Optional, Iterable
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .interface import (
    HandlerConfig,
    ProviderType,
    REMOTE_PROVIDERS,
    NATIVE_PROVIDER,
    parse_model_id,
)

logger = logging.getLogger(__name__)


DEFAULT_MAX_BODY_BYTES = 10 * 1024 * 1024

# Environment variables take precedence over persisted values
API_KEY_ENV_VARS: Dict[str, str] = {
    ProviderType.OPENROUTER.value: "OPENROUTER_API_KEY",
    ProviderType.OPENAI.value: "OPENAI_API_KEY",
    ProviderType.GEMINI.value: "GEMINI_API_KEY",
    NATIVE_PROVIDER: "ANTHROPIC_API_KEY",
}

BASE_URL_ENV_VARS: Dict[str, str] = {
    ProviderType.OLLAMA.value: "OLLAMA_BASE_URL",
}

_ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


@dataclass
class ServerConfig:
    """Gateway HTTP server settings."""
    port: int = 0
    max_body_bytes: int = DEFAULT_MAX_BODY_BYTES
    shutdown_grace_seconds: float = 2.0
    request_timeout: float = 120.0


@dataclass
class ProviderSettings:
    """Persisted settings for one provider."""
    api_key: Optional[str] = None
    base_url: Optional[str] = None


@dataclass
class GatewayConfig:
    """Complete gateway configuration."""
    server: ServerConfig = field(default_factory=ServerConfig)
    fallback_enabled: bool = False
    providers: Dict[str, ProviderSettings] = field(default_factory=dict)
    user_config_dir: str = field(
        default_factory=lambda: str(Path.home() / ".model-gateway")
    )
    data_dir: str = field(
        default_factory=lambda: str(Path.home() / ".model-gateway" / "data")
    )

    def credentials(self) -> "ProviderCredentials":
        return ProviderCredentials(self.providers)


def load_config(config_path: Optional[str] = None) -> GatewayConfig:
    """
    Load gateway configuration from YAML file.

    Args:
        config_path: Path to config file. If None, uses
            $MODEL_GATEWAY_CONFIG or the default locations.

    Returns:
        Loaded configuration
    """
    if config_path is None:
        config_path = os.environ.get("MODEL_GATEWAY_CONFIG")

    if config_path is None:
        paths = [
            Path("model-gateway.yaml"),
            Path.home() / ".model-gateway/gateway.yaml",
        ]
        for p in paths:
            if p.exists():
                config_path = str(p)
                break

    if config_path is None or not Path(config_path).exists():
        logger.warning("No gateway config file found, using defaults")
        return GatewayConfig()

    try:
        with open(config_path, 'r') as f:
            data = yaml.safe_load(f) or {}

        return _parse_config(expand_env(data))

    except (OSError, yaml.YAMLError, TypeError, ValueError) as e:
        logger.error(f"Failed to load config from {config_path}: {e}")
        return GatewayConfig()


def expand_env(value: Any) -> Any:
    """Replace ${VAR} references in every string of a parsed document."""
    if isinstance(value, str):
        return _ENV_PATTERN.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env(v) for v in value]
    return value


def _parse_config(data: Dict[str, Any]) -> GatewayConfig:
    """Parse configuration dictionary."""
    defaults = GatewayConfig()

    server_data = data.get("server") or {}
    server = ServerConfig(
        port=int(server_data.get("port", 0)),
        max_body_bytes=int(server_data.get("max_body_bytes", DEFAULT_MAX_BODY_BYTES)),
        shutdown_grace_seconds=float(server_data.get("shutdown_grace_seconds", 2.0)),
        request_timeout=float(server_data.get("request_timeout", 120.0)),
    )

    providers = {}
    for name, settings in (data.get("providers") or {}).items():
        settings = settings or {}
        providers[name] = ProviderSettings(
            api_key=settings.get("api_key") or None,
            base_url=settings.get("base_url") or None,
        )

    return GatewayConfig(
        server=server,
        fallback_enabled=bool(data.get("fallback_enabled", False)),
        providers=providers,
        user_config_dir=os.path.expanduser(
            data.get("user_config_dir", defaults.user_config_dir)
        ),
        data_dir=os.path.expanduser(data.get("data_dir", defaults.data_dir)),
    )


class ProviderCredentials:
    """
    Resolves provider credentials.

    An API key or base URL set in the environment wins over the value
    persisted in the config file.
    """

    def __init__(
        self,
        providers: Optional[Dict[str, ProviderSettings]] = None,
        environ: Optional[Dict[str, str]] = None,
    ):
        self._providers = providers or {}
        self._environ = os.environ if environ is None else environ

    def api_key(self, provider: str) -> Optional[str]:
        env_var = API_KEY_ENV_VARS.get(provider)
        if env_var and self._environ.get(env_var):
            return self._environ[env_var]
        settings = self._providers.get(provider)
        return settings.api_key if settings else None

    def base_url(self, provider: str) -> Optional[str]:
        env_var = BASE_URL_ENV_VARS.get(provider)
        if env_var and self._environ.get(env_var):
            return self._environ[env_var]
        settings = self._providers.get(provider)
        return settings.base_url if settings else None

    def handler_config(self, provider: str) -> HandlerConfig:
        return HandlerConfig(
            provider=provider,
            api_key=self.api_key(provider),
            base_url=self.base_url(provider),
        )

    def missing_keys(self, models: Iterable[str]) -> List[str]:
        """
        Providers referenced by the given model ids that need a key and
        have none. Each provider is reported once, in first-seen order.
        """
        remote = {p.value for p in REMOTE_PROVIDERS}
        missing: List[str] = []
        for model in models:
            try:
                provider, _ = parse_model_id(model)
            except ValueError:
                continue
            if provider in remote and not self.api_key(provider) and provider not in missing:
                missing.append(provider)
        return missing
