"""Structured-turn generator (Gemini-style ``contents``/``candidates`` API).

Endpoints, relative to ``{base_url}/models/{model}``:

    :generateContent                non-streaming generation
    :streamGenerateContent?alt=sse  SSE stream, ends when the connection closes
    :countTokens                    exact token count
    :embedContent                   embedding vector

The API key travels as the ``key`` query parameter.
"""

import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from ..channels import AdapterChain
from .base import HttpContentGenerator
from .errors import ProtocolError
from .streaming import (
    StreamDecodeContext,
    delta_response,
    normalize_finish_reason,
    parse_arguments,
)
from .types import (
    Candidate,
    FunctionCall,
    GenerationRequest,
    GenerationResponse,
    Part,
    Turn,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_EMBEDDING_MODEL = "text-embedding-004"


def convert_part(part: Part) -> Dict[str, Any]:
    if part.function_call is not None:
        return {
            "functionCall": {
                "name": part.function_call.name,
                "args": part.function_call.args,
            }
        }
    if part.function_response is not None:
        return {
            "functionResponse": {
                "name": part.function_response.name,
                "response": part.function_response.response,
            }
        }
    return {"text": part.text or ""}


def convert_turns(turns: List[Turn]) -> List[Dict[str, Any]]:
    return [
        {"role": turn.role, "parts": [convert_part(part) for part in turn.parts]}
        for turn in turns
    ]


def build_structured_payload(request: GenerationRequest) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"contents": convert_turns(request.turns)}

    generation_config: Dict[str, Any] = {}
    sampling = request.sampling
    if sampling.temperature is not None:
        generation_config["temperature"] = sampling.temperature
    if sampling.top_p is not None:
        generation_config["topP"] = sampling.top_p
    if sampling.max_output_tokens is not None:
        generation_config["maxOutputTokens"] = sampling.max_output_tokens
    if generation_config:
        payload["generationConfig"] = generation_config
    return payload


def _candidate_function_calls(candidate: Dict[str, Any]) -> List[FunctionCall]:
    content = candidate.get("content")
    if not isinstance(content, dict):
        return []
    calls = []
    for part in content.get("parts") or []:
        if isinstance(part, dict) and isinstance(part.get("functionCall"), dict):
            call = part["functionCall"]
            calls.append(
                FunctionCall(
                    name=call.get("name") or "unknown_function",
                    args=parse_arguments(call.get("args")),
                    id=call.get("id"),
                )
            )
    return calls


class StructuredTurnGenerator(HttpContentGenerator):
    """Content generator for structured-turn backends."""

    def __init__(
        self,
        backend_id: str,
        model: str,
        base_url: str = DEFAULT_BASE_URL,
        api_key: Optional[str] = None,
        default_timeout: float = 120.0,
        embedding_model: str = DEFAULT_EMBEDDING_MODEL,
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
        self._embedding_model = embedding_model
        self._chain = adapter_chain or AdapterChain()

    def _headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json"}

    def _params(self) -> Optional[Dict[str, str]]:
        return {"key": self._api_key} if self._api_key else None

    def _models_url(self) -> str:
        return f"{self._base_url}/models"

    def _method_url(self, method: str, model: Optional[str] = None) -> str:
        return f"{self._base_url}/models/{model or self._model}:{method}"

    async def generate_content(self, request: GenerationRequest) -> GenerationResponse:
        data = await self._post_json(
            self._method_url("generateContent"),
            build_structured_payload(request),
            params=self._params(),
            request=request,
        )
        if not isinstance(data, dict) or not isinstance(data.get("candidates"), list):
            raise ProtocolError(
                f"Response from {self._backend_id} has no candidates",
                backend_id=self._backend_id,
            )

        candidates = []
        for position, raw in enumerate(data["candidates"]):
            if not isinstance(raw, dict):
                raise ProtocolError(
                    f"Candidate {position} from {self._backend_id} is not an object",
                    backend_id=self._backend_id,
                )
            messages = [
                message
                for message in self._chain.adapt({"candidates": [raw]})
                if message.content
            ]
            candidates.append(
                Candidate(
                    channel_content=messages,
                    finish_reason=normalize_finish_reason(raw.get("finishReason")),
                    index=raw.get("index", position),
                    function_calls=_candidate_function_calls(raw),
                )
            )
        return GenerationResponse(candidates=candidates)

    async def generate_content_stream(
        self, request: GenerationRequest
    ) -> AsyncIterator[GenerationResponse]:
        params = dict(self._params() or {})
        params["alt"] = "sse"
        return await self._stream(
            self._method_url("streamGenerateContent"),
            build_structured_payload(request),
            request,
            params=params,
        )

    def _handle_frame(
        self, frame: Any, context: StreamDecodeContext
    ) -> List[GenerationResponse]:
        messages = context.mark(self._chain.adapt(frame))

        function_calls: List[FunctionCall] = []
        finish_reason = None
        if isinstance(frame, dict):
            candidates = frame.get("candidates")
            if isinstance(candidates, list) and candidates and isinstance(candidates[0], dict):
                function_calls = _candidate_function_calls(candidates[0])
                finish_reason = normalize_finish_reason(candidates[0].get("finishReason"))

        if not messages and not function_calls and not finish_reason:
            return []
        return [delta_response(messages, function_calls, finish_reason)]

    async def count_tokens(self, request: GenerationRequest) -> int:
        data = await self._post_json(
            self._method_url("countTokens"),
            {"contents": convert_turns(request.turns)},
            params=self._params(),
            request=request,
        )
        try:
            return int(data["totalTokens"])
        except (KeyError, TypeError, ValueError) as e:
            raise ProtocolError(
                f"Unexpected token count response from {self._backend_id}",
                backend_id=self._backend_id,
            ) from e

    async def embed_content(self, request: GenerationRequest) -> List[float]:
        data = await self._post_json(
            self._method_url("embedContent", model=self._embedding_model),
            {"content": {"parts": [{"text": text} for text in request.text_parts()]}},
            params=self._params(),
            request=request,
        )
        try:
            return [float(value) for value in data["embedding"]["values"]]
        except (KeyError, TypeError, ValueError) as e:
            raise ProtocolError(
                f"Unexpected embedding response from {self._backend_id}",
                backend_id=self._backend_id,
            ) from e
