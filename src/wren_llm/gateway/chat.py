"""OpenAI-compatible chat-completion generator.

Speaks ``POST {base_url}/chat/completions`` with a ``messages`` array.
Streaming frames are normalized by the channel adapter chain; tool-call
fragments are accumulated per index and surfaced as function calls once
the choice finishes or the stream ends.
"""

import json
import logging
import time
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from ..channels import AdapterChain, Channel, ChannelMessage
from .base import HttpContentGenerator, estimate_tokens
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
    Turn,
)

logger = logging.getLogger(__name__)

DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"

# Turn roles mapped onto chat-completion roles
ROLE_MAP = {"model": "assistant", "user": "user", "system": "system"}


def convert_turn(turn: Turn, call_offset: int = 0) -> List[Dict[str, Any]]:
    """Convert one turn into chat messages.

    Text parts are joined into ``content``; function calls become
    ``tool_calls`` on the same message; each function response becomes its
    own ``tool`` message.

    Args:
        turn: Turn to convert.
        call_offset: Numbering offset for synthesized tool-call ids.

    Returns:
        One or more chat-completion message dicts.
    """
    role = ROLE_MAP.get(turn.role, turn.role)
    texts = [part.text for part in turn.parts if part.text]
    tool_calls = []
    tool_messages = []

    for part in turn.parts:
        if part.function_call is not None:
            call = part.function_call
            tool_calls.append(
                {
                    "id": call.id or f"call_{call_offset + len(tool_calls)}",
                    "type": "function",
                    "function": {"name": call.name, "arguments": json.dumps(call.args)},
                }
            )
        elif part.function_response is not None:
            result = part.function_response
            tool_messages.append(
                {
                    "role": "tool",
                    "tool_call_id": result.id or result.name,
                    "content": json.dumps(result.response),
                }
            )

    messages: List[Dict[str, Any]] = []
    if texts or tool_calls:
        message: Dict[str, Any] = {"role": role, "content": "\n".join(texts)}
        if tool_calls:
            message["tool_calls"] = tool_calls
        messages.append(message)
    messages.extend(tool_messages)
    return messages


def convert_turns(turns: List[Turn]) -> List[Dict[str, Any]]:
    messages: List[Dict[str, Any]] = []
    for turn in turns:
        messages.extend(convert_turn(turn, call_offset=len(messages)))
    return messages


def build_chat_payload(
    model: str,
    request: GenerationRequest,
    stream: bool = False,
) -> Dict[str, Any]:
    """Build the chat-completion request body."""
    payload: Dict[str, Any] = {
        "model": model,
        "messages": convert_turns(request.turns),
    }
    if stream:
        payload["stream"] = True

    sampling = request.sampling
    if sampling.temperature is not None:
        payload["temperature"] = sampling.temperature
    if sampling.top_p is not None:
        payload["top_p"] = sampling.top_p
    if sampling.max_output_tokens is not None:
        payload["max_tokens"] = sampling.max_output_tokens
    return payload


def _tool_call_to_function_call(tool_call: Dict[str, Any]) -> FunctionCall:
    function = tool_call.get("function") or {}
    return FunctionCall(
        name=function.get("name") or "unknown_function",
        args=parse_arguments(function.get("arguments")),
        id=tool_call.get("id"),
    )


class ChatCompletionGenerator(HttpContentGenerator):
    """Content generator for OpenAI-compatible chat-completion backends."""

    def __init__(
        self,
        backend_id: str,
        base_url: str,
        model: str,
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

    @property
    def completions_url(self) -> str:
        return f"{self._base_url}/chat/completions"

    async def generate_content(self, request: GenerationRequest) -> GenerationResponse:
        start_time = time.time()
        data = await self._post_json(
            self.completions_url,
            build_chat_payload(self._model, request),
            request=request,
        )
        logger.debug(
            f"{self._backend_id} answered in {int((time.time() - start_time) * 1000)}ms"
        )
        return self._parse_completion(data)

    def _parse_completion(self, data: Any) -> GenerationResponse:
        choices = data.get("choices") if isinstance(data, dict) else None
        if not isinstance(choices, list) or not choices:
            raise ProtocolError(
                f"Response from {self._backend_id} has no choices",
                backend_id=self._backend_id,
            )

        candidates = []
        for position, choice in enumerate(choices):
            message = choice.get("message") if isinstance(choice, dict) else None
            if not isinstance(message, dict):
                raise ProtocolError(
                    f"Choice {position} from {self._backend_id} has no message",
                    backend_id=self._backend_id,
                )

            content: List[ChannelMessage] = []
            reasoning = message.get("reasoning_content") or message.get("reasoning")
            if isinstance(reasoning, str) and reasoning:
                content.append(ChannelMessage(Channel.ANALYSIS, reasoning))
            text = message.get("content")
            if isinstance(text, str) and text:
                content.append(ChannelMessage(Channel.FINAL, text))

            function_calls = [
                _tool_call_to_function_call(tool_call)
                for tool_call in message.get("tool_calls") or []
                if isinstance(tool_call, dict)
            ]

            candidates.append(
                Candidate(
                    channel_content=content,
                    finish_reason=normalize_finish_reason(choice.get("finish_reason")),
                    index=choice.get("index", position),
                    function_calls=function_calls,
                )
            )
        return GenerationResponse(candidates=candidates)

    async def generate_content_stream(
        self, request: GenerationRequest
    ) -> AsyncIterator[GenerationResponse]:
        payload = build_chat_payload(self._model, request, stream=True)
        return await self._stream(self.completions_url, payload, request)

    def _handle_frame(
        self, frame: Any, context: StreamDecodeContext
    ) -> List[GenerationResponse]:
        messages = context.mark(self._chain.adapt(frame))

        function_calls: List[FunctionCall] = []
        finish_reason = None
        choice = _first_choice(frame)
        if choice is not None:
            delta = choice.get("delta")
            if isinstance(delta, dict):
                for fragment in delta.get("tool_calls") or []:
                    if isinstance(fragment, dict):
                        context.accumulate_tool_call(fragment)
            finish_reason = normalize_finish_reason(choice.get("finish_reason"))
            if finish_reason:
                function_calls = context.finalize_tool_calls()

        if not messages and not function_calls and not finish_reason:
            return []
        return [delta_response(messages, function_calls, finish_reason)]

    async def count_tokens(self, request: GenerationRequest) -> int:
        return estimate_tokens(request)

    async def embed_content(self, request: GenerationRequest) -> List[float]:
        data = await self._post_json(
            f"{self._base_url}/embeddings",
            {"model": self._embedding_model, "input": "\n".join(request.text_parts())},
            request=request,
        )
        try:
            return [float(value) for value in data["data"][0]["embedding"]]
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise ProtocolError(
                f"Unexpected embedding response from {self._backend_id}",
                backend_id=self._backend_id,
            ) from e


def _first_choice(frame: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(frame, dict):
        return None
    choices = frame.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        return choices[0]
    return None
