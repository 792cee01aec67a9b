"""ContentGenerator protocol and shared HTTP plumbing.

Every backend protocol family (chat-completion, structured-turn, reasoning
responses) implements the ContentGenerator interface:

    generate_content(request)          -> GenerationResponse
    generate_content_stream(request)   -> AsyncIterator[GenerationResponse]
    count_tokens(request)              -> int
    embed_content(request)             -> List[float]
    health_check()                     -> BackendHealth

HttpContentGenerator carries the pieces all three HTTP families share: a
per-call httpx client, status-code to error mapping, and the SSE decode
loop that drives protocol-specific frame handlers.
"""

import asyncio
import json
import logging
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Dict, List, Optional, Tuple, TypeVar
from urllib.parse import urlsplit, urlunsplit

import httpx

from .errors import (
    AuthenticationError,
    BackendError,
    GenerationAborted,
    NetworkError,
    ProtocolError,
    RateLimitError,
)
from .streaming import (
    DONE_SENTINEL,
    StreamDecodeContext,
    data_payload,
    delta_response,
)
from .types import GenerationRequest, GenerationResponse

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Rough chars-per-token ratio used when a backend cannot count tokens
CHARS_PER_TOKEN = 4

# Default Retry-After when a 429 carries none we can parse
DEFAULT_RETRY_AFTER = 60


class HealthStatus(Enum):
    """Backend health status."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


@dataclass
class BackendHealth:
    """Result of a backend health check."""

    backend_id: str
    status: HealthStatus
    latency_ms: float
    last_check: datetime
    error_message: Optional[str] = None

    @property
    def healthy(self) -> bool:
        return self.status == HealthStatus.HEALTHY


@dataclass
class GeneratorCapabilities:
    """Which optional operations a generator supports."""

    supports_embeddings: bool = True


async def _next_chunk(chunks: AsyncIterator[str]) -> Optional[str]:
    """Next decoded chunk of a response body, or None once it is exhausted."""
    try:
        return await chunks.__anext__()
    except StopAsyncIteration:
        return None


def estimate_tokens(request: GenerationRequest) -> int:
    """Estimate token usage as ceil(total text characters / 4)."""
    chars = sum(len(text) for text in request.text_parts())
    return math.ceil(chars / CHARS_PER_TOKEN)


def build_models_url(base_url: str) -> str:
    """Derive the model-listing URL for an OpenAI-compatible base URL.

    Paths ending in ``/v1`` get ``/models`` appended, paths already ending
    in ``/models`` are kept, and anything else gets ``/v1/models``.
    """
    parts = urlsplit(base_url.strip())
    path = parts.path.rstrip("/")
    if path.endswith("/models"):
        pass
    elif path.endswith("/v1"):
        path = f"{path}/models"
    else:
        path = f"{path}/v1/models"
    return urlunsplit((parts.scheme, parts.netloc, path, parts.query, ""))


def _parse_retry_after(value: Optional[str]) -> int:
    if value and value.strip().isdigit():
        return int(value.strip())
    return DEFAULT_RETRY_AFTER


def raise_for_status(
    status_code: int,
    body: str,
    headers: Optional[httpx.Headers] = None,
    backend_id: Optional[str] = None,
) -> None:
    """Translate a non-2xx HTTP status into a GenerationError."""
    if 200 <= status_code < 300:
        return

    snippet = body[:200]
    if status_code == 429:
        retry_after = _parse_retry_after(headers.get("Retry-After") if headers else None)
        raise RateLimitError(
            f"Rate limited by {backend_id}: {snippet}",
            body=body,
            retry_after=retry_after,
            backend_id=backend_id,
        )
    if status_code in (401, 403):
        raise AuthenticationError(
            f"Authentication failed for {backend_id}: {status_code}",
            status_code=status_code,
            body=body,
            backend_id=backend_id,
        )
    raise BackendError(
        f"Backend {backend_id} returned HTTP {status_code}: {snippet}",
        status_code=status_code,
        body=body,
        backend_id=backend_id,
    )


class ContentGenerator(ABC):
    """Abstract content generator.

    Implementations talk to exactly one backend with one protocol family.
    Selection, retries and performance bookkeeping live above this layer.
    """

    @property
    @abstractmethod
    def backend_id(self) -> str:
        """Identifier of the backend this generator talks to."""
        ...

    @property
    def capabilities(self) -> GeneratorCapabilities:
        return GeneratorCapabilities()

    @abstractmethod
    async def generate_content(self, request: GenerationRequest) -> GenerationResponse:
        """Send a request and return the complete response."""
        ...

    @abstractmethod
    async def generate_content_stream(
        self, request: GenerationRequest
    ) -> AsyncIterator[GenerationResponse]:
        """Open a stream and return an iterator of partial responses.

        The connection is established before this coroutine returns, so
        transport and status errors surface here rather than on first read.
        """
        ...

    @abstractmethod
    async def count_tokens(self, request: GenerationRequest) -> int:
        ...

    @abstractmethod
    async def embed_content(self, request: GenerationRequest) -> List[float]:
        ...

    @abstractmethod
    async def health_check(self) -> BackendHealth:
        ...


class HttpContentGenerator(ContentGenerator):
    """Base for generators that speak JSON over HTTP with SSE streaming.

    Subclasses supply the URLs and payloads, plus ``_handle_frame`` for
    decoded stream frames. A fresh ``httpx.AsyncClient`` is created per
    call; ``transport`` lets tests substitute ``httpx.MockTransport``.
    """

    def __init__(
        self,
        backend_id: str,
        base_url: str,
        model: str,
        api_key: Optional[str] = None,
        default_timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._backend_id = backend_id
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._api_key = api_key or ""
        self._default_timeout = default_timeout
        self._transport = transport

    @property
    def backend_id(self) -> str:
        return self._backend_id

    @property
    def model(self) -> str:
        return self._model

    @property
    def base_url(self) -> str:
        return self._base_url

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _params(self) -> Optional[Dict[str, str]]:
        return None

    def _client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout if timeout is not None else self._default_timeout,
            transport=self._transport,
        )

    def _network_error(self, e: httpx.RequestError) -> NetworkError:
        if isinstance(e, httpx.TimeoutException):
            message = f"Timeout after {self._default_timeout}s talking to {self._backend_id}"
        elif isinstance(e, httpx.TransportError):
            message = f"Network error talking to {self._backend_id}: {e}"
        else:
            message = f"Request to {self._backend_id} failed ({type(e).__name__}): {e}"
        return NetworkError(message, backend_id=self._backend_id)

    def _aborted_error(self) -> GenerationAborted:
        return GenerationAborted(
            f"Request to {self._backend_id} aborted", backend_id=self._backend_id
        )

    async def _unless_aborted(
        self, operation: Awaitable[T], request: Optional[GenerationRequest]
    ) -> T:
        """Await ``operation``, cancelling it if the request is aborted first.

        Raises:
            GenerationAborted: If the abort signal fired before completion.
        """
        if request is None or request.abort is None:
            return await operation
        if request.aborted:
            if asyncio.iscoroutine(operation):
                operation.close()
            raise self._aborted_error()

        work = asyncio.ensure_future(operation)
        abort = asyncio.ensure_future(request.abort.wait())
        try:
            await asyncio.wait({work, abort}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            abort.cancel()
            if not work.done():
                work.cancel()
                await asyncio.wait({work})
        if work.cancelled():
            raise self._aborted_error()
        return work.result()

    async def _post_json(
        self,
        url: str,
        payload: Dict[str, Any],
        params: Optional[Dict[str, str]] = None,
        request: Optional[GenerationRequest] = None,
    ) -> Any:
        """POST a JSON payload and return the decoded JSON body."""
        try:
            async with self._client() as client:
                response = await self._unless_aborted(
                    client.post(url, headers=self._headers(), params=params, json=payload),
                    request,
                )
        except httpx.RequestError as e:
            raise self._network_error(e) from e

        raise_for_status(
            response.status_code, response.text, response.headers, self._backend_id
        )
        try:
            return response.json()
        except ValueError as e:
            raise ProtocolError(
                f"Invalid JSON from {self._backend_id}: {response.text[:200]}",
                backend_id=self._backend_id,
            ) from e

    async def _open_stream(
        self,
        url: str,
        payload: Dict[str, Any],
        params: Optional[Dict[str, str]] = None,
        request: Optional[GenerationRequest] = None,
    ) -> Tuple[httpx.AsyncClient, httpx.Response]:
        """Open a streaming POST and verify its status.

        On success the caller owns both the client and the response and
        must close them.
        """
        client = self._client()
        try:
            http_request = client.build_request(
                "POST", url, headers=self._headers(), params=params, json=payload
            )
            response = await self._unless_aborted(
                client.send(http_request, stream=True), request
            )
        except httpx.RequestError as e:
            await client.aclose()
            raise self._network_error(e) from e
        except BaseException:
            await client.aclose()
            raise

        if not 200 <= response.status_code < 300:
            try:
                body = (await response.aread()).decode("utf-8", errors="replace")
            except httpx.RequestError:
                body = ""
            finally:
                await response.aclose()
                await client.aclose()
            raise_for_status(
                response.status_code, body, response.headers, self._backend_id
            )

        return client, response

    async def _stream(
        self,
        url: str,
        payload: Dict[str, Any],
        request: GenerationRequest,
        params: Optional[Dict[str, str]] = None,
    ) -> AsyncIterator[GenerationResponse]:
        client, response = await self._open_stream(url, payload, params, request)
        return self._decode_stream(client, response, request)

    async def _decode_stream(
        self,
        client: httpx.AsyncClient,
        response: httpx.Response,
        request: GenerationRequest,
    ) -> AsyncIterator[GenerationResponse]:
        """Decode SSE lines into partial responses until the stream ends.

        The stream ends on the terminal sentinel, on a protocol-specific
        terminal frame, on abort, or when the connection closes. A read
        waiting on a stalled connection is cancelled as soon as the abort
        signal fires. The connection is released in every case.
        """
        context = StreamDecodeContext()
        chunks = response.aiter_text()
        try:
            while True:
                text = await self._unless_aborted(_next_chunk(chunks), request)
                if text is None:
                    break
                for line in context.feed(text):
                    for delta in self._process_line(line, context):
                        if request.aborted:
                            return
                        yield delta
                    if context.finished:
                        return

            for line in context.drain():
                for delta in self._process_line(line, context):
                    if request.aborted:
                        return
                    yield delta
                if context.finished:
                    return

            # Connection closed without a terminal sentinel
            for delta in self._on_terminal(context):
                if request.aborted:
                    return
                yield delta
        except GenerationAborted:
            logger.debug(f"Stream from {self._backend_id} aborted")
        except httpx.RequestError as e:
            raise self._network_error(e) from e
        finally:
            await response.aclose()
            await client.aclose()

    def _process_line(
        self, line: str, context: StreamDecodeContext
    ) -> List[GenerationResponse]:
        payload = data_payload(line)
        if payload is None:
            return []

        if payload == DONE_SENTINEL:
            deltas = self._on_terminal(context)
            context.finish()
            return deltas

        try:
            frame = json.loads(payload)
        except json.JSONDecodeError:
            logger.warning(
                f"Skipping malformed stream frame from {self._backend_id}: {payload[:200]}"
            )
            return []

        return self._handle_frame(frame, context)

    @abstractmethod
    def _handle_frame(
        self, frame: Any, context: StreamDecodeContext
    ) -> List[GenerationResponse]:
        """Turn one decoded frame into zero or more partial responses."""
        ...

    def _on_terminal(self, context: StreamDecodeContext) -> List[GenerationResponse]:
        """Flush tool calls still pending when the stream ends."""
        calls = context.finalize_tool_calls()
        if not calls:
            return []
        return [delta_response([], function_calls=calls, finish_reason="STOP")]

    def _models_url(self) -> str:
        return build_models_url(self._base_url)

    async def health_check(self) -> BackendHealth:
        """Query the backend's model-listing endpoint."""
        start_time = time.time()
        error: Optional[str] = None
        try:
            async with self._client(timeout=10.0) as client:
                response = await client.get(
                    self._models_url(), headers=self._headers(), params=self._params()
                )
            if not 200 <= response.status_code < 300:
                error = f"HTTP {response.status_code}: {response.text[:200]}"
        except httpx.RequestError as e:
            error = str(e) or type(e).__name__

        latency = (time.time() - start_time) * 1000
        if error:
            logger.warning(f"Health check failed for {self._backend_id}: {error}")
        return BackendHealth(
            backend_id=self._backend_id,
            status=HealthStatus.UNHEALTHY if error else HealthStatus.HEALTHY,
            latency_ms=latency,
            last_check=datetime.now(),
            error_message=error,
        )
