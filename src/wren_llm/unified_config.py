"""Unified YAML Configuration for wren-llm.

Configuration Priority: Environment Variables > YAML > Defaults

Example YAML configuration (wren.yaml):

    wren:
      generation:
        max_attempts: 3
        timeout_seconds: 120
        default_model: gpt-4o-mini
      store:
        path: .wren/providers.json
      backends:
        - id: openai
          protocol: chat
          model: gpt-4o-mini
          api_key_ref: openai
        - id: nvidia-reasoning
          protocol: responses
          base_url: https://integrate.api.nvidia.com/v1
          model: openai/gpt-oss-120b
          api_key_ref: ${NVIDIA_KEY_VAR}
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from .config import DEFAULT_STORE_PATH

logger = logging.getLogger(__name__)


# =============================================================================
# Sub-configuration Models
# =============================================================================


class GenerationConfig(BaseModel):
    """Configuration for content generation and failover."""

    max_attempts: int = Field(default=3, ge=1, le=10)
    timeout_seconds: float = Field(default=120.0, ge=1.0, le=3600.0)
    default_model: str = "gpt-4o-mini"
    max_output_tokens: int = Field(default=4096, ge=1)


class StoreConfig(BaseModel):
    """Configuration for the backend pool / performance store."""

    path: Path = Field(default=DEFAULT_STORE_PATH)


class BackendSeedConfig(BaseModel):
    """A backend registered in the pool at startup if not already present."""

    id: str
    protocol: Literal["chat", "structured", "responses"] = "chat"
    base_url: Optional[str] = None
    model: Optional[str] = None
    api_key_ref: Optional[str] = None
    enabled: bool = True

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("backend id must not be empty")
        return v.strip()


class UnifiedConfig(BaseModel):
    """Root configuration object."""

    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    backends: List[BackendSeedConfig] = Field(default_factory=list)

    def to_yaml(self) -> str:
        """Serialize configuration to YAML."""
        config_dict = {"wren": self.to_dict()}
        return yaml.dump(config_dict, default_flow_style=False, sort_keys=False)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize configuration to a plain dict."""
        return self.model_dump(mode="json")


_ENV_REFERENCE = re.compile(r"\$\{([^}]+)\}")


def _substitute_env_vars(value: Any) -> Any:
    """Expand ``${VAR}`` references in every string of a parsed YAML tree.

    Unset variables expand to an empty string.
    """
    if isinstance(value, str):
        return _ENV_REFERENCE.sub(lambda m: os.getenv(m.group(1), ""), value)
    if isinstance(value, dict):
        return {key: _substitute_env_vars(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_substitute_env_vars(item) for item in value]
    return value


def _wren_section(config_path: Path) -> Dict[str, Any]:
    with open(config_path, "r") as f:
        document = yaml.safe_load(f) or {}
    if not isinstance(document, dict):
        raise ValueError(f"{config_path} does not contain a mapping")
    section = document.get("wren") or {}
    if not isinstance(section, dict):
        raise ValueError(f"'wren' in {config_path} is not a mapping")
    return _substitute_env_vars(section)


def load_config(
    config_path: Optional[Path] = None,
    strict: bool = False,
) -> UnifiedConfig:
    """Read the ``wren:`` section of a YAML file.

    A missing path yields the defaults. Unreadable YAML or values that fail
    validation also yield the defaults, unless ``strict`` is set, in which
    case they raise ``ValueError``.
    """
    if config_path is None or not config_path.exists():
        return UnifiedConfig()

    try:
        return UnifiedConfig(**_wren_section(config_path))
    except yaml.YAMLError as e:
        if strict:
            raise ValueError(f"Invalid YAML in {config_path}: {e}") from e
    except (OSError, TypeError, ValueError) as e:
        if strict:
            raise ValueError(f"Invalid configuration in {config_path}: {e}") from e
    logger.warning(f"Ignoring unusable configuration file {config_path}; using defaults")
    return UnifiedConfig()


def _find_config_file() -> Optional[Path]:
    """Find configuration file in standard locations.

    Search order:
    1. WREN_CONFIG environment variable
    2. ./wren.yaml (current directory)
    3. ~/.config/wren/wren.yaml
    """
    env_path = os.getenv("WREN_CONFIG")
    if env_path:
        path = Path(env_path)
        if path.exists():
            return path

    cwd_path = Path.cwd() / "wren.yaml"
    if cwd_path.exists():
        return cwd_path

    home_path = Path.home() / ".config" / "wren" / "wren.yaml"
    if home_path.exists():
        return home_path

    return None


def _apply_env_overrides(config: UnifiedConfig) -> UnifiedConfig:
    """Apply environment variable overrides to configuration.

    Environment variables take precedence over YAML configuration.
    """
    config_dict = config.to_dict()

    max_attempts_env = os.getenv("WREN_MAX_ATTEMPTS")
    if max_attempts_env:
        config_dict.setdefault("generation", {})["max_attempts"] = int(max_attempts_env)

    timeout_env = os.getenv("WREN_REQUEST_TIMEOUT")
    if timeout_env:
        config_dict.setdefault("generation", {})["timeout_seconds"] = float(timeout_env)

    model_env = os.getenv("WREN_MODEL")
    if model_env:
        config_dict.setdefault("generation", {})["default_model"] = model_env

    store_env = os.getenv("WREN_STORE_PATH")
    if store_env:
        config_dict.setdefault("store", {})["path"] = store_env

    return UnifiedConfig(**config_dict)


def get_effective_config(config_path: Optional[Path] = None) -> UnifiedConfig:
    """Get the effective configuration with all overrides applied.

    Priority: Environment Variables > YAML > Defaults

    Args:
        config_path: Optional explicit path to configuration file.
                    If None, searches standard locations.

    Returns:
        UnifiedConfig with all overrides applied
    """
    if config_path is None:
        config_path = _find_config_file()

    config = load_config(config_path)
    return _apply_env_overrides(config)


# =============================================================================
# Global Configuration Instance
# =============================================================================

_global_config: Optional[UnifiedConfig] = None


def get_config() -> UnifiedConfig:
    """Process-wide configuration, resolved on first use and then cached."""
    global _global_config
    if _global_config is None:
        _global_config = get_effective_config()
    return _global_config


def reload_config() -> UnifiedConfig:
    """Discard the cached configuration and resolve it again."""
    global _global_config
    _global_config = get_effective_config()
    return _global_config
