"""Tests for the structured-turn generator."""

import json

import httpx
import pytest


def _generator(handler):
    from wren_llm.gateway.structured import StructuredTurnGenerator

    return StructuredTurnGenerator(
        backend_id="test-structured",
        model="gem-1",
        base_url="https://structured.example/v1beta",
        api_key="g-key",
        transport=httpx.MockTransport(handler),
    )


def _request(text="hi"):
    from wren_llm.gateway.types import GenerationRequest, Turn

    return GenerationRequest(turns=[Turn.user(text)])


def _candidate_frame(parts, finish_reason=None):
    candidate = {"content": {"role": "model", "parts": parts}}
    if finish_reason:
        candidate["finishReason"] = finish_reason
    return json.dumps({"candidates": [candidate]})


class TestStructuredPayload:
    """Test request conversion."""

    def test_roles_are_kept(self):
        from wren_llm.gateway.structured import build_structured_payload
        from wren_llm.gateway.types import GenerationRequest, SamplingConfig, Turn

        request = GenerationRequest(
            turns=[Turn.user("q"), Turn.model("a")],
            sampling=SamplingConfig(temperature=0.5, max_output_tokens=10),
        )
        payload = build_structured_payload(request)

        assert payload["contents"] == [
            {"role": "user", "parts": [{"text": "q"}]},
            {"role": "model", "parts": [{"text": "a"}]},
        ]
        assert payload["generationConfig"] == {"temperature": 0.5, "maxOutputTokens": 10}

    def test_function_parts(self):
        from wren_llm.gateway.structured import convert_part
        from wren_llm.gateway.types import FunctionCall, FunctionResponse, Part

        assert convert_part(Part(function_call=FunctionCall("f", {"a": 1}))) == {
            "functionCall": {"name": "f", "args": {"a": 1}}
        }
        assert convert_part(Part(function_response=FunctionResponse("f", {"ok": True}))) == {
            "functionResponse": {"name": "f", "response": {"ok": True}}
        }


class TestStructuredGenerateContent:
    """Test non-streaming generation."""

    @pytest.mark.asyncio
    async def test_generate_content(self):
        from wren_llm.channels import Channel

        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["key"] = request.url.params.get("key")
            return httpx.Response(
                200,
                json={
                    "candidates": [
                        {
                            "content": {
                                "role": "model",
                                "parts": [
                                    {"text": "weighing options", "thought": True},
                                    {"text": "final answer"},
                                    {"functionCall": {"name": "run", "args": {"cmd": "ls"}}},
                                ],
                            },
                            "finishReason": "STOP",
                        }
                    ]
                },
            )

        response = await _generator(handler).generate_content(_request())
        candidate = response.candidates[0]

        assert seen["path"] == "/v1beta/models/gem-1:generateContent"
        assert seen["key"] == "g-key"
        assert candidate.text(Channel.ANALYSIS) == "weighing options"
        assert response.text == "final answer"
        assert candidate.function_calls[0].name == "run"
        assert candidate.function_calls[0].args == {"cmd": "ls"}
        assert candidate.finish_reason == "STOP"

    @pytest.mark.asyncio
    async def test_missing_candidates_is_protocol_error(self):
        from wren_llm.gateway.errors import ProtocolError

        with pytest.raises(ProtocolError):
            await _generator(lambda r: httpx.Response(200, json={"nope": 1})).generate_content(
                _request()
            )


class TestStructuredStreaming:
    """Test SSE streaming without a terminal sentinel."""

    @pytest.mark.asyncio
    async def test_stream_ends_at_connection_close(self, sse):
        from wren_llm.channels import Channel, ChannelMessage

        body = sse(
            _candidate_frame([{"text": "plan", "thought": True}]),
            _candidate_frame([{"text": "Hel"}]),
            _candidate_frame([{"text": "lo"}], finish_reason="STOP"),
        )
        seen = {}

        def handler(request):
            seen["alt"] = request.url.params.get("alt")
            seen["path"] = request.url.path
            return httpx.Response(200, content=body)

        stream = await _generator(handler).generate_content_stream(_request())
        deltas = [d async for d in stream]
        messages = [m for d in deltas for c in d.candidates for m in c.channel_content]

        assert seen["alt"] == "sse"
        assert seen["path"].endswith(":streamGenerateContent")
        assert messages == [
            ChannelMessage.marker_for(Channel.ANALYSIS),
            ChannelMessage(Channel.ANALYSIS, "plan"),
            ChannelMessage(Channel.FINAL, "Hel"),
            ChannelMessage(Channel.FINAL, "lo"),
        ]
        assert deltas[-1].candidates[0].finish_reason == "STOP"

    @pytest.mark.asyncio
    async def test_unterminated_last_line_is_processed(self):
        from wren_llm.channels import Channel, ChannelMessage

        body = f"data: {_candidate_frame([{'text': 'tail'}])}".encode()
        stream = await _generator(lambda r: httpx.Response(200, content=body)).generate_content_stream(
            _request()
        )
        messages = [m for d in [d async for d in stream] for c in d.candidates for m in c.channel_content]

        assert messages == [ChannelMessage(Channel.FINAL, "tail")]

    @pytest.mark.asyncio
    async def test_streamed_function_call(self, sse):
        body = sse(_candidate_frame([{"functionCall": {"name": "ls", "args": {"d": "/"}}}]))
        stream = await _generator(lambda r: httpx.Response(200, content=body)).generate_content_stream(
            _request()
        )
        deltas = [d async for d in stream]

        calls = [call for d in deltas for c in d.candidates for call in c.function_calls]
        assert [(c.name, c.args) for c in calls] == [("ls", {"d": "/"})]


class TestStructuredAuxiliaryOperations:
    """Test count_tokens and embed_content endpoints."""

    @pytest.mark.asyncio
    async def test_count_tokens_uses_endpoint(self):
        def handler(request):
            assert request.url.path.endswith(":countTokens")
            return httpx.Response(200, json={"totalTokens": 42})

        assert await _generator(handler).count_tokens(_request()) == 42

    @pytest.mark.asyncio
    async def test_embed_content(self):
        def handler(request):
            assert request.url.path == "/v1beta/models/text-embedding-004:embedContent"
            assert json.loads(request.content) == {"content": {"parts": [{"text": "vec"}]}}
            return httpx.Response(200, json={"embedding": {"values": [1, 2.5]}})

        assert await _generator(handler).embed_content(_request("vec")) == [1.0, 2.5]

    @pytest.mark.asyncio
    async def test_health_check_lists_models(self):
        from wren_llm.gateway.base import HealthStatus

        def handler(request):
            assert request.url.path == "/v1beta/models"
            assert request.url.params.get("key") == "g-key"
            return httpx.Response(200, json={"models": []})

        health = await _generator(handler).health_check()
        assert health.status == HealthStatus.HEALTHY
