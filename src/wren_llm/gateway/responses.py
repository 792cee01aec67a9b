"""Reasoning-model generator for the ``/responses`` API.

The request ``input`` is the flat list of text parts; function-call parts
are not representable in this protocol family and are dropped. Stream
frames carry a ``type`` discriminator rather than a chat delta.
"""

import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from ..channels import AdapterChain, Channel, ChannelMessage
from .base import GeneratorCapabilities, HttpContentGenerator, estimate_tokens
from .errors import ProtocolError, UnsupportedOperation
from .streaming import StreamDecodeContext, delta_response
from .types import Candidate, GenerationRequest, GenerationResponse

logger = logging.getLogger(__name__)

DEFAULT_MAX_OUTPUT_TOKENS = 4096
DEFAULT_TOP_P = 1.0
DEFAULT_TEMPERATURE = 1.0

# Stream event types mapped to channels
DELTA_CHANNELS = {
    "response.reasoning_text.delta": Channel.ANALYSIS,
    "response.commentary.delta": Channel.COMMENTARY,
    "response.output_text.delta": Channel.FINAL,
}

TERMINAL_TYPES = ("response.done", "response.completed")


def build_responses_payload(
    model: str,
    request: GenerationRequest,
    stream: bool = False,
    default_max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
) -> Dict[str, Any]:
    sampling = request.sampling
    return {
        "model": model,
        "input": request.text_parts(),
        "max_output_tokens": sampling.max_output_tokens or default_max_output_tokens,
        "top_p": sampling.top_p if sampling.top_p is not None else DEFAULT_TOP_P,
        "temperature": (
            sampling.temperature if sampling.temperature is not None else DEFAULT_TEMPERATURE
        ),
        "stream": stream,
    }


def _output_messages(data: Dict[str, Any]) -> List[ChannelMessage]:
    """Extract channel content from a non-streaming responses body.

    Accepts the flat ``reasoning_text``/``output_text`` fields as well as
    the ``output`` item list.
    """
    messages: List[ChannelMessage] = []
    reasoning = data.get("reasoning_text")
    output = data.get("output_text")
    if isinstance(reasoning, str) and reasoning:
        messages.append(ChannelMessage(Channel.ANALYSIS, reasoning))
    if isinstance(output, str) and output:
        messages.append(ChannelMessage(Channel.FINAL, output))
    if messages:
        return messages

    for item in data.get("output") or []:
        if not isinstance(item, dict):
            continue
        if item.get("type") == "reasoning":
            for block in item.get("content") or item.get("summary") or []:
                if isinstance(block, dict) and block.get("text"):
                    messages.append(ChannelMessage(Channel.ANALYSIS, str(block["text"])))
        elif item.get("type") == "message":
            for block in item.get("content") or []:
                if (
                    isinstance(block, dict)
                    and block.get("type") == "output_text"
                    and block.get("text")
                ):
                    messages.append(ChannelMessage(Channel.FINAL, str(block["text"])))
    return messages


class ReasoningGenerator(HttpContentGenerator):
    """Content generator for reasoning models behind ``/responses``."""

    def __init__(
        self,
        backend_id: str,
        base_url: str,
        model: str,
        api_key: Optional[str] = None,
        default_timeout: float = 120.0,
        max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
        adapter_chain: Optional[AdapterChain] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(
            backend_id=backend_id,
            base_url=base_url,
            model=model,
            api_key=api_key,
            default_timeout=default_timeout,
            transport=transport,
        )
        self._max_output_tokens = max_output_tokens
        self._chain = adapter_chain or AdapterChain()

    @property
    def capabilities(self) -> GeneratorCapabilities:
        return GeneratorCapabilities(supports_embeddings=False)

    @property
    def responses_url(self) -> str:
        return f"{self._base_url}/responses"

    async def generate_content(self, request: GenerationRequest) -> GenerationResponse:
        payload = build_responses_payload(
            self._model, request, default_max_output_tokens=self._max_output_tokens
        )
        data = await self._post_json(self.responses_url, payload, request=request)
        messages = _output_messages(data) if isinstance(data, dict) else []
        if not messages:
            raise ProtocolError(
                f"Response from {self._backend_id} carries no reasoning or output text",
                backend_id=self._backend_id,
            )
        return GenerationResponse(
            candidates=[Candidate(channel_content=messages, finish_reason="STOP")]
        )

    async def generate_content_stream(
        self, request: GenerationRequest
    ) -> AsyncIterator[GenerationResponse]:
        payload = build_responses_payload(
            self._model, request, stream=True, default_max_output_tokens=self._max_output_tokens
        )
        return await self._stream(self.responses_url, payload, request)

    def _handle_frame(
        self, frame: Any, context: StreamDecodeContext
    ) -> List[GenerationResponse]:
        event_type = frame.get("type") if isinstance(frame, dict) else None
        if not isinstance(event_type, str):
            # Untyped frames are normalized like any other wire chunk
            messages = context.mark(self._chain.adapt(frame))
            return [delta_response(messages)] if messages else []

        if event_type in TERMINAL_TYPES:
            deltas = self._on_terminal(context)
            context.finish()
            return deltas + [delta_response([], finish_reason="STOP")]

        channel = DELTA_CHANNELS.get(event_type)
        if channel is None:
            logger.debug(f"Ignoring {event_type} event from {self._backend_id}")
            return []

        delta = frame.get("delta")
        messages = context.mark([ChannelMessage(channel, delta if isinstance(delta, str) else "")])
        return [delta_response(messages)] if messages else []

    async def count_tokens(self, request: GenerationRequest) -> int:
        return estimate_tokens(request)

    async def embed_content(self, request: GenerationRequest) -> List[float]:
        raise UnsupportedOperation(
            f"Embedding not supported for reasoning backend {self._backend_id}",
            backend_id=self._backend_id,
        )
