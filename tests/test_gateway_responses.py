"""Tests for the reasoning-responses generator."""

import json

import httpx
import pytest


def _generator(handler):
    from wren_llm.gateway.responses import ReasoningGenerator

    return ReasoningGenerator(
        backend_id="test-reasoning",
        base_url="https://reason.example/v1",
        model="r-1",
        api_key="sk-r",
        transport=httpx.MockTransport(handler),
    )


def _request(*texts, **kwargs):
    from wren_llm.gateway.types import GenerationRequest, Turn

    return GenerationRequest(turns=[Turn.user(t) for t in texts] or [Turn.user("hi")], **kwargs)


def _event(event_type, delta=None):
    event = {"type": event_type}
    if delta is not None:
        event["delta"] = delta
    return json.dumps(event)


class TestResponsesPayload:
    def test_defaults(self):
        """Unset sampling falls back to 4096 tokens, top_p 1, temperature 1."""
        from wren_llm.gateway.responses import build_responses_payload

        payload = build_responses_payload("r-1", _request("a", "b"))

        assert payload == {
            "model": "r-1",
            "input": ["a", "b"],
            "max_output_tokens": 4096,
            "top_p": 1.0,
            "temperature": 1.0,
            "stream": False,
        }

    def test_function_parts_dropped(self):
        from wren_llm.gateway.responses import build_responses_payload
        from wren_llm.gateway.types import FunctionCall, GenerationRequest, Part, Turn

        request = GenerationRequest(
            turns=[Turn(role="model", parts=[Part(text="x"), Part(function_call=FunctionCall("f"))])]
        )
        assert build_responses_payload("r-1", request)["input"] == ["x"]

    def test_explicit_sampling(self):
        from wren_llm.gateway.responses import build_responses_payload
        from wren_llm.gateway.types import SamplingConfig

        payload = build_responses_payload(
            "r-1", _request(sampling=SamplingConfig(temperature=0.0, top_p=0.5, max_output_tokens=99))
        )

        assert payload["temperature"] == 0.0
        assert payload["top_p"] == 0.5
        assert payload["max_output_tokens"] == 99


class TestResponsesGenerateContent:
    @pytest.mark.asyncio
    async def test_flat_fields(self):
        from wren_llm.channels import Channel

        def handler(request):
            assert request.url.path == "/v1/responses"
            return httpx.Response(200, json={"reasoning_text": "r", "output_text": "o"})

        response = await _generator(handler).generate_content(_request())

        assert response.text == "o"
        assert response.candidates[0].text(Channel.ANALYSIS) == "r"

    @pytest.mark.asyncio
    async def test_output_items(self):
        from wren_llm.channels import Channel

        body = {
            "output": [
                {"type": "reasoning", "content": [{"type": "reasoning_text", "text": "why"}]},
                {"type": "message", "content": [{"type": "output_text", "text": "what"}]},
            ]
        }
        response = await _generator(lambda r: httpx.Response(200, json=body)).generate_content(
            _request()
        )

        assert response.text == "what"
        assert response.candidates[0].text(Channel.ANALYSIS) == "why"

    @pytest.mark.asyncio
    async def test_unrecognized_body_is_protocol_error(self):
        from wren_llm.gateway.errors import ProtocolError

        with pytest.raises(ProtocolError):
            await _generator(lambda r: httpx.Response(200, json={"id": "x"})).generate_content(
                _request()
            )


class TestResponsesStreaming:
    @pytest.mark.asyncio
    async def test_typed_events_map_to_channels(self, sse):
        from wren_llm.channels import Channel, ChannelMessage

        body = sse(
            _event("response.created"),
            _event("response.reasoning_text.delta", "step 1"),
            _event("response.reasoning_text.delta", " step 2"),
            _event("response.commentary.delta", "calling tool"),
            _event("response.output_text.delta", "result"),
            _event("response.done"),
            _event("response.output_text.delta", "ignored"),
        )
        stream = await _generator(lambda r: httpx.Response(200, content=body)).generate_content_stream(
            _request()
        )
        deltas = [d async for d in stream]
        messages = [m for d in deltas for c in d.candidates for m in c.channel_content]

        assert messages == [
            ChannelMessage.marker_for(Channel.ANALYSIS),
            ChannelMessage(Channel.ANALYSIS, "step 1"),
            ChannelMessage(Channel.ANALYSIS, " step 2"),
            ChannelMessage.marker_for(Channel.COMMENTARY),
            ChannelMessage(Channel.COMMENTARY, "calling tool"),
            ChannelMessage(Channel.FINAL, "result"),
        ]
        assert deltas[-1].candidates[0].finish_reason == "STOP"

    @pytest.mark.asyncio
    async def test_completed_is_terminal(self, sse):
        body = sse(
            _event("response.output_text.delta", "a"),
            _event("response.completed"),
            _event("response.output_text.delta", "b"),
        )
        stream = await _generator(lambda r: httpx.Response(200, content=body)).generate_content_stream(
            _request()
        )
        texts = [d.text for d in [d async for d in stream]]

        assert "".join(texts) == "a"


class TestResponsesAuxiliaryOperations:
    @pytest.mark.asyncio
    async def test_count_tokens_estimates(self):
        assert await _generator(lambda r: httpx.Response(500)).count_tokens(_request("12345")) == 2

    @pytest.mark.asyncio
    async def test_embed_content_unsupported(self):
        from wren_llm.gateway.errors import UnsupportedOperation

        with pytest.raises(UnsupportedOperation):
            await _generator(lambda r: httpx.Response(500)).embed_content(_request())
