"""
Model router.

Decides which model identifier a prompt runs on by walking an ordered
list of resolvers and taking the first one that yields a value.
"""

import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import yaml

from .interface import NATIVE_MODEL_NAMES

logger = logging.getLogger(__name__)


DEFAULT_MODEL = "claude"
PROJECT_CONFIG_DIR = ".model-gateway"
CONFIG_FILE = "config.json"

# promptType -> section of the "models" mapping
PROMPT_TYPE_SECTIONS: Dict[str, str] = {
    "agent": "agents",
    "command": "commands",
    "skill": "skills",
    "hook": "hooks",
}


@dataclass(frozen=True)
class ResolveModelParams:
    """What the router needs to know about one prompt."""
    prompt_type: str
    prompt_name: str
    cli_override: Optional[str] = None
    frontmatter_model: Optional[str] = None

    def cache_key(self) -> Tuple:
        return (self.prompt_type, self.prompt_name, self.cli_override, self.frontmatter_model)


Resolver = Callable[[ResolveModelParams], Optional[str]]


def read_frontmatter_model(text: str) -> Optional[str]:
    """
    Extract the "model" key from a prompt's YAML frontmatter.

    Frontmatter is the block between a leading "---" line and the next
    "---" line. Returns None when there is no frontmatter, it is not valid
    YAML, or it declares no model.
    """
    lines = text.splitlines()
    if not lines or lines[0].strip() != "---":
        return None

    for end, line in enumerate(lines[1:], start=1):
        if line.strip() == "---":
            break
    else:
        return None

    try:
        data = yaml.safe_load("\n".join(lines[1:end]))
    except yaml.YAMLError as e:
        logger.warning(f"Invalid frontmatter: {e}")
        return None

    if not isinstance(data, dict):
        return None
    model = data.get("model")
    return str(model) if model else None


def _load_models_section(path: Path) -> Dict[str, Any]:
    """The "models" mapping of a config file, or {} if unreadable."""
    if not path.is_file():
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning(f"Ignoring unreadable model config {path}: {e}")
        return {}
    models = data.get("models") if isinstance(data, dict) else None
    return models if isinstance(models, dict) else {}


def _prompt_entry(models: Dict[str, Any], params: ResolveModelParams) -> Optional[str]:
    section = models.get(PROMPT_TYPE_SECTIONS[params.prompt_type])
    if not isinstance(section, dict):
        return None
    return section.get(params.prompt_name) or None


def _configured_default(models: Dict[str, Any]) -> Optional[str]:
    # a default naming the native provider is the same as no default, so
    # frontmatter still gets its say
    value = models.get("default")
    if not value or value in NATIVE_MODEL_NAMES:
        return None
    return value


class ModelRouter:
    """
    Resolves models following the precedence chain:

    1. CLI override
    2. project per-prompt entry
    3. user per-prompt entry
    4. project default
    5. user default
    6. frontmatter
    7. "claude"

    Configuration files are read once and resolutions are cached; both
    stay stale until invalidate_cache() is called.
    """

    def __init__(self, user_config_dir: str, project_dir: Optional[str] = None):
        self._user_config_dir = Path(user_config_dir)
        self._project_dir = Path(project_dir) if project_dir else Path.cwd()
        self._lock = threading.Lock()
        self._cache: Dict[Tuple, str] = {}
        self._project_models: Optional[Dict[str, Any]] = None
        self._user_models: Optional[Dict[str, Any]] = None

        self._resolvers: List[Resolver] = [
            lambda p: p.cli_override or None,
            lambda p: _prompt_entry(self._project_config(), p),
            lambda p: _prompt_entry(self._user_config(), p),
            lambda p: _configured_default(self._project_config()),
            lambda p: _configured_default(self._user_config()),
            lambda p: p.frontmatter_model or None,
        ]

    @property
    def user_config_path(self) -> Path:
        return self._user_config_dir / CONFIG_FILE

    def find_project_config(self) -> Optional[Path]:
        """Nearest .model-gateway/config.json at or above the project dir."""
        user_path = self.user_config_path.resolve()
        directory = self._project_dir.resolve()
        for candidate_dir in [directory, *directory.parents]:
            candidate = candidate_dir / PROJECT_CONFIG_DIR / CONFIG_FILE
            if candidate.resolve() == user_path:
                return None
            if candidate.is_file():
                return candidate
        return None

    def _project_config(self) -> Dict[str, Any]:
        if self._project_models is None:
            path = self.find_project_config()
            self._project_models = _load_models_section(path) if path else {}
        return self._project_models

    def _user_config(self) -> Dict[str, Any]:
        if self._user_models is None:
            self._user_models = _load_models_section(self.user_config_path)
        return self._user_models

    def resolve_model(
        self,
        params: Optional[ResolveModelParams] = None,
        **kwargs: Any,
    ) -> str:
        """
        Resolve the model for a prompt.

        Accepts a ResolveModelParams or its fields as keyword arguments.
        """
        if params is None:
            params = ResolveModelParams(**kwargs)

        if params.cli_override:
            return params.cli_override

        if not params.prompt_name or params.prompt_type not in PROMPT_TYPE_SECTIONS:
            return DEFAULT_MODEL

        key = params.cache_key()
        with self._lock:
            cached = self._cache.get(key)
            if cached is not None:
                return cached

            model = DEFAULT_MODEL
            for resolver in self._resolvers:
                value = resolver(params)
                if value:
                    model = value
                    break

            self._cache[key] = model

        logger.debug(f"Resolved {params.prompt_type} {params.prompt_name!r} -> {model}")
        return model

    def invalidate_cache(self) -> None:
        """Forget cached resolutions and re-read configuration on next use."""
        with self._lock:
            self._cache.clear()
            self._project_models = None
            self._user_models = None
