"""Credential resolution and provider catalog for wren-llm.

Key resolution priority for a credential reference:
1. Environment variable (explicit override, CI/CD standard)
2. System Keychain/Credential Manager (desktop security)
3. .env file (via dotenv - already loaded below)

A credential reference is either a provider name ("openai") which maps to
its canonical env var, or an explicit env var name ("MY_GATEWAY_KEY").
"""

import os
from pathlib import Path
from typing import Dict, Optional

import keyring
from dotenv import load_dotenv

load_dotenv()

# Keychain service name used for stored provider keys
KEYRING_SERVICE = "wren-llm"

# Project-local state directory
WREN_DIR = Path(".wren")

# Default location of the backend pool / performance store
DEFAULT_STORE_PATH = WREN_DIR / "providers.json"

# Default OpenAI-compatible base URLs for the known providers
PROVIDER_BASE_URLS: Dict[str, str] = {
    "openai": "https://api.openai.com/v1",
    "openrouter": "https://openrouter.ai/api/v1",
    "deepseek": "https://api.deepseek.com/v1",
    "groq": "https://api.groq.com/openai/v1",
    "nvidia": "https://integrate.api.nvidia.com/v1",
    "qwen": "https://dashscope-intl.aliyuncs.com/compatible-mode/v1",
    "moonshot-ai": "https://api.moonshot.ai/v1",
    "kilo": "https://api.kilocode.ai/v1",
    "zai": "https://api.z.ai/api/paas/v4",
    "xai": "https://api.x.ai/v1",
    "mistral": "https://api.mistral.ai/v1",
    "cerebras": "https://api.cerebras.ai/v1",
    "google": "https://generativelanguage.googleapis.com/v1beta",
}

# Provider API key environment variable names
PROVIDER_KEY_ENV_VARS: Dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
    "deepseek": "DEEPSEEK_API_KEY",
    "groq": "GROQ_API_KEY",
    "nvidia": "NVIDIA_API_KEY",
    "qwen": "QWEN_API_KEY",
    "moonshot-ai": "MOONSHOT_API_KEY",
    "kilo": "KILO_API_KEY",
    "zai": "ZAI_API_KEY",
    "xai": "XAI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "cerebras": "CEREBRAS_API_KEY",
    "google": "GEMINI_API_KEY",
}

# Track which source each key came from (for diagnostics)
_key_sources: Dict[str, Optional[str]] = {}


def canonical_env_var(provider: str) -> str:
    """Return the env var name holding the key for a provider.

    Unknown providers map to ``<PROVIDER>_API_KEY`` with dashes replaced.
    """
    if provider in PROVIDER_KEY_ENV_VARS:
        return PROVIDER_KEY_ENV_VARS[provider]
    return provider.upper().replace("-", "_") + "_API_KEY"


def _is_fail_backend() -> bool:
    """Check if keyring has a fail backend (headless/Docker)."""
    try:
        from keyring.backends import fail
        return isinstance(keyring.get_keyring(), fail.Keyring)
    except Exception:
        return True


def _get_api_key_from_keychain(ref: str) -> Optional[str]:
    """Attempt to retrieve a key from the system keychain."""
    if _is_fail_backend():
        return None

    try:
        return keyring.get_password(KEYRING_SERVICE, ref)
    except Exception:
        # Keychain access failed (headless, permissions, etc.)
        return None


def get_api_key(ref: Optional[str]) -> Optional[str]:
    """Resolve a credential reference to an API key.

    Args:
        ref: Provider name or env var name. None resolves to None.

    Returns:
        API key string or None if not found
    """
    if not ref:
        return None

    env_var = ref if ref.isupper() else canonical_env_var(ref)

    # 1. Environment variable takes priority (CI/CD standard)
    key = os.getenv(env_var)
    if key:
        _key_sources[ref] = "environment"
        return key

    # 2. Try keychain
    key = _get_api_key_from_keychain(ref)
    if key:
        _key_sources[ref] = "keychain"
        return key

    _key_sources[ref] = None
    return None


def get_key_source(ref: str) -> Optional[str]:
    """Return where the key for ``ref`` was last loaded from.

    Returns:
        "environment", "keychain", or None if no key was found
    """
    return _key_sources.get(ref)


def default_base_url(provider: str) -> Optional[str]:
    """Return the catalog base URL for a provider, if known."""
    return PROVIDER_BASE_URLS.get(provider)
