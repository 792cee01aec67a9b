"""Tests for generator construction and shared gateway helpers."""

import os
from unittest.mock import patch

import httpx
import pytest


def _backend(**kwargs):
    from wren_llm.performance.types import BackendDescriptor

    fields = {"id": "b", "base_url": "https://b.example/v1", "model": "m-1"}
    fields.update(kwargs)
    return BackendDescriptor(**fields)


class TestCreateGenerator:
    @pytest.mark.parametrize(
        "protocol,class_name",
        [
            ("chat", "ChatCompletionGenerator"),
            ("structured", "StructuredTurnGenerator"),
            ("responses", "ReasoningGenerator"),
        ],
    )
    def test_protocol_selects_class(self, protocol, class_name):
        from wren_llm.gateway.factory import create_generator

        generator = create_generator(_backend(protocol=protocol))
        assert type(generator).__name__ == class_name
        assert generator.backend_id == "b"
        assert generator.model == "m-1"

    def test_default_model_used_when_unset(self):
        from wren_llm.gateway.factory import create_generator

        generator = create_generator(_backend(model=""), default_model="fallback-model")
        assert generator.model == "fallback-model"

    def test_no_model_rejected(self):
        from wren_llm.gateway.factory import create_generator

        with pytest.raises(ValueError):
            create_generator(_backend(model=""))

    def test_credential_resolved_from_ref(self):
        from wren_llm.gateway.factory import create_generator

        with patch.dict(os.environ, {"OPENAI_API_KEY": "sk-resolved"}):
            generator = create_generator(_backend(api_key_ref="openai"))

        assert generator._headers()["Authorization"] == "Bearer sk-resolved"

    def test_missing_credential_warns(self, caplog):
        from wren_llm.gateway.factory import create_generator

        with caplog.at_level("WARNING"):
            generator = create_generator(_backend(api_key_ref="MISSING_KEY_VAR"))

        assert "Authorization" not in generator._headers()
        assert "No credential found" in caplog.text

    def test_max_output_tokens_only_for_responses(self):
        from wren_llm.gateway.factory import create_generator

        generator = create_generator(_backend(protocol="responses"), max_output_tokens=256)
        assert generator._max_output_tokens == 256
        # Other protocols ignore it
        create_generator(_backend(protocol="chat"), max_output_tokens=256)


class TestBuildModelsUrl:
    @pytest.mark.parametrize(
        "base_url,expected",
        [
            ("https://api.openai.com/v1", "https://api.openai.com/v1/models"),
            ("https://api.openai.com/v1/", "https://api.openai.com/v1/models"),
            ("https://gw.example/v1/models", "https://gw.example/v1/models"),
            ("https://gw.example", "https://gw.example/v1/models"),
            ("https://gw.example/api", "https://gw.example/api/v1/models"),
        ],
    )
    def test_build_models_url(self, base_url, expected):
        from wren_llm.gateway.base import build_models_url

        assert build_models_url(base_url) == expected


class TestRaiseForStatus:
    def test_success_passes(self):
        from wren_llm.gateway.base import raise_for_status

        raise_for_status(200, "", {}, "b")

    def test_rate_limit_default_retry_after(self):
        from wren_llm.gateway.base import raise_for_status
        from wren_llm.gateway.errors import RateLimitError

        with pytest.raises(RateLimitError) as exc_info:
            raise_for_status(429, "slow down", {}, "b")
        assert exc_info.value.retry_after == 60

    @pytest.mark.parametrize("status", [401, 403])
    def test_authentication(self, status):
        from wren_llm.gateway.base import raise_for_status
        from wren_llm.gateway.errors import AuthenticationError

        with pytest.raises(AuthenticationError):
            raise_for_status(status, "denied", {}, "b")

    def test_body_truncated_in_message(self):
        from wren_llm.gateway.base import raise_for_status
        from wren_llm.gateway.errors import BackendError

        with pytest.raises(BackendError) as exc_info:
            raise_for_status(500, "x" * 1000, {}, "b")

        assert exc_info.value.status_code == 500
        assert "x" * 201 not in str(exc_info.value)


class TestHealthCheck:
    @pytest.mark.asyncio
    async def test_unreachable_backend_is_unhealthy(self):
        from wren_llm.gateway.base import HealthStatus
        from wren_llm.gateway.chat import ChatCompletionGenerator

        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        generator = ChatCompletionGenerator(
            backend_id="b",
            base_url="https://b.example/v1",
            model="m",
            transport=httpx.MockTransport(handler),
        )
        health = await generator.health_check()

        assert health.status == HealthStatus.UNHEALTHY
        assert health.healthy is False
        assert health.error_message
