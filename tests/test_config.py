"""Tests for credential resolution."""

import os
from unittest.mock import patch

import pytest

from wren_llm import config


class TestCanonicalEnvVar:
    @pytest.mark.parametrize(
        "provider,expected",
        [
            ("openai", "OPENAI_API_KEY"),
            ("google", "GEMINI_API_KEY"),
            ("moonshot-ai", "MOONSHOT_API_KEY"),
            ("my-gateway", "MY_GATEWAY_API_KEY"),
        ],
    )
    def test_mapping(self, provider, expected):
        assert config.canonical_env_var(provider) == expected


class TestGetApiKey:
    """Environment first, then keychain."""

    def test_none_ref(self):
        assert config.get_api_key(None) is None
        assert config.get_api_key("") is None

    def test_provider_name_uses_canonical_env_var(self):
        with patch.dict(os.environ, {"OPENAI_API_KEY": "sk-openai-test"}):
            assert config.get_api_key("openai") == "sk-openai-test"
        assert config.get_key_source("openai") == "environment"

    def test_uppercase_ref_is_env_var_name(self):
        with patch.dict(os.environ, {"MY_GATEWAY_KEY": "gw-key"}):
            assert config.get_api_key("MY_GATEWAY_KEY") == "gw-key"

    def test_keychain_fallback(self):
        with patch.object(config, "_get_api_key_from_keychain", return_value="kc-key") as kc:
            assert config.get_api_key("deepseek") == "kc-key"
        kc.assert_called_once_with("deepseek")
        assert config.get_key_source("deepseek") == "keychain"

    def test_env_beats_keychain(self):
        with patch.dict(os.environ, {"GROQ_API_KEY": "env-key"}):
            with patch.object(config, "_get_api_key_from_keychain", return_value="kc-key"):
                assert config.get_api_key("groq") == "env-key"

    def test_missing_key(self):
        with patch.object(config, "_get_api_key_from_keychain", return_value=None):
            assert config.get_api_key("xai") is None
        assert config.get_key_source("xai") is None

    def test_fail_keyring_backend_skips_lookup(self):
        with patch.object(config, "_is_fail_backend", return_value=True):
            with patch.object(config.keyring, "get_password") as get_password:
                assert config._get_api_key_from_keychain("openai") is None
        get_password.assert_not_called()

    def test_keychain_errors_are_not_fatal(self):
        with patch.object(config, "_is_fail_backend", return_value=False):
            with patch.object(config.keyring, "get_password", side_effect=RuntimeError("locked")):
                assert config._get_api_key_from_keychain("openai") is None


class TestDefaultBaseUrl:
    def test_known_provider(self):
        assert config.default_base_url("openai") == "https://api.openai.com/v1"

    def test_unknown_provider(self):
        assert config.default_base_url("somewhere-else") is None
