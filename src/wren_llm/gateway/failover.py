"""Failover content generator.

Wraps the backend pool behind the ContentGenerator interface. For every
operation it:

    1. keeps the backend it already holds, or selects one by performance weight
    2. builds (or reuses) that backend's generator
    3. runs the operation and records the outcome with the tracker
    4. on a retryable failure, drops the held backend and its generator and
       tries another backend, up to ``max_attempts`` selections

A backend that fails is skipped for the rest of that call only; its
lowered weight affects later selections probabilistically.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import (
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Set,
    TypeVar,
)

from ..config import default_base_url, get_api_key
from ..performance.store import BackendStore
from ..performance.tracker import PerformanceTracker
from ..performance.types import BackendDescriptor
from ..unified_config import UnifiedConfig, get_config
from .base import CHARS_PER_TOKEN, BackendHealth, ContentGenerator, HealthStatus
from .errors import (
    AllBackendsExhausted,
    GenerationAborted,
    GenerationError,
    NoBackendAvailable,
    UnsupportedOperation,
)
from .factory import create_generator
from .model_cache import ModelDiscoveryCache
from .types import GenerationRequest, GenerationResponse

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3


def _response_tokens(response: GenerationResponse) -> int:
    chars = sum(
        len(message.content)
        for candidate in response.candidates
        for message in candidate.channel_content
        if not message.is_marker
    )
    return chars // CHARS_PER_TOKEN


def _unhealthy(backend_id: str, message: str) -> BackendHealth:
    return BackendHealth(
        backend_id=backend_id,
        status=HealthStatus.UNHEALTHY,
        latency_ms=0.0,
        last_check=datetime.now(),
        error_message=message,
    )


class FailoverContentGenerator(ContentGenerator):
    """ContentGenerator that spreads calls over a weighted backend pool.

    Args:
        tracker: Performance tracker owning the backend pool
        max_attempts: Maximum backend selections per call
        generator_factory: Builds a generator for a backend descriptor
        model_cache: Optional model discovery cache; when set, each newly
            built backend has its model listing fetched once in the background
    """

    def __init__(
        self,
        tracker: PerformanceTracker,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        generator_factory: Optional[Callable[[BackendDescriptor], ContentGenerator]] = None,
        model_cache: Optional[ModelDiscoveryCache] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.tracker = tracker
        self.max_attempts = max_attempts
        self._factory = generator_factory or create_generator
        self.model_cache = model_cache
        self._generators: Dict[str, ContentGenerator] = {}
        self._active: Optional[BackendDescriptor] = None
        self._background: Set[asyncio.Task] = set()

    @classmethod
    def from_config(
        cls,
        config: Optional[UnifiedConfig] = None,
        discover_models: bool = True,
    ) -> "FailoverContentGenerator":
        """Build a controller from configuration.

        Loads the backend store and registers every configured backend seed
        that the store does not know yet.
        """
        config = config or get_config()
        tracker = PerformanceTracker(BackendStore(config.store.path))

        for seed in config.backends:
            base_url = seed.base_url or default_base_url(seed.id)
            if not base_url:
                logger.warning(f"Skipping backend {seed.id}: no base URL configured")
                continue
            tracker.register_backend(
                BackendDescriptor(
                    id=seed.id,
                    base_url=base_url,
                    api_key_ref=seed.api_key_ref or seed.id,
                    protocol=seed.protocol,
                    model=seed.model or "",
                    enabled=seed.enabled,
                )
            )

        generation = config.generation

        def factory(backend: BackendDescriptor) -> ContentGenerator:
            return create_generator(
                backend,
                default_model=generation.default_model,
                timeout=generation.timeout_seconds,
                max_output_tokens=generation.max_output_tokens,
            )

        return cls(
            tracker,
            max_attempts=generation.max_attempts,
            generator_factory=factory,
            model_cache=ModelDiscoveryCache() if discover_models else None,
        )

    @property
    def backend_id(self) -> str:
        return self._active.id if self._active else "failover"

    @property
    def active_backend(self) -> Optional[BackendDescriptor]:
        """Backend that served the most recent successful call."""
        return self._active

    def _generator_for(self, backend: BackendDescriptor) -> ContentGenerator:
        generator = self._generators.get(backend.id)
        if generator is None:
            generator = self._factory(backend)
            self._generators[backend.id] = generator
            self._schedule_discovery(backend)
        return generator

    def _schedule_discovery(self, backend: BackendDescriptor) -> None:
        if self.model_cache is None or self.model_cache.fetched(backend):
            return
        api_key = get_api_key(backend.api_key_ref) if backend.api_key_ref else None
        task = asyncio.create_task(self.model_cache.ensure_fetched(backend, api_key))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _held_backend(self, failed: Set[str]) -> Optional[BackendDescriptor]:
        """Backend of the last successful call, while it is still usable."""
        if self._active is None or self._active.id in failed:
            return None
        backend = self.tracker.get(self._active.id)
        if backend is None or not backend.enabled or backend.id not in self._generators:
            return None
        return backend

    def _discard(self, backend_id: str) -> None:
        self._generators.pop(backend_id, None)
        if self._active is not None and self._active.id == backend_id:
            self._active = None

    async def _run(
        self,
        operation: str,
        call: Callable[[ContentGenerator], Awaitable[T]],
        measure: Optional[Callable[[T], int]] = None,
        record_success: bool = True,
    ) -> T:
        """Run ``call`` against selected backends until one succeeds.

        Raises:
            UnsupportedOperation: Immediately, without retrying.
            AllBackendsExhausted: When every attempt failed or the pool is empty.
        """
        last_error: Optional[BaseException] = None
        failed: Set[str] = set()
        attempts = 0

        for attempt in range(1, self.max_attempts + 1):
            backend = self._held_backend(failed) or self.tracker.select(exclude=failed)
            if backend is None:
                last_error = last_error or NoBackendAvailable("No enabled backends configured")
                break
            attempts = attempt

            start_time = time.monotonic()
            try:
                generator = self._generator_for(backend)
                result = await call(generator)
            except GenerationAborted:
                logger.debug(f"{operation} on {backend.id} aborted by caller")
                raise
            except UnsupportedOperation as e:
                self.tracker.record(backend.id, success=False)
                logger.warning(f"{operation} not supported by {backend.id}: {e}")
                raise
            except (GenerationError, ValueError) as e:
                self.tracker.record(backend.id, success=False)
                logger.warning(
                    f"{operation} attempt {attempt}/{self.max_attempts} on {backend.id} failed: {e}"
                )
                self._discard(backend.id)
                failed.add(backend.id)
                last_error = e
                continue

            elapsed = time.monotonic() - start_time
            self._active = backend
            if record_success:
                tokens_per_second = None
                if measure is not None and elapsed > 0:
                    tokens_per_second = measure(result) / elapsed
                self.tracker.record(
                    backend.id,
                    success=True,
                    latency_ms=elapsed * 1000,
                    tokens_per_second=tokens_per_second,
                )
            return result

        logger.error(f"{operation} failed on every backend after {attempts} attempt(s)")
        raise AllBackendsExhausted(last_error, attempts) from last_error

    async def generate_content(self, request: GenerationRequest) -> GenerationResponse:
        return await self._run(
            "generate_content",
            lambda generator: generator.generate_content(request),
            measure=_response_tokens,
        )

    async def generate_content_stream(
        self, request: GenerationRequest
    ) -> AsyncIterator[GenerationResponse]:
        start_time = time.monotonic()
        stream = await self._run(
            "generate_content_stream",
            lambda generator: generator.generate_content_stream(request),
            record_success=False,
        )
        backend = self._active
        opened_ms = (time.monotonic() - start_time) * 1000
        return self._tracked_stream(stream, backend, opened_ms)

    async def _tracked_stream(
        self,
        stream: AsyncIterator[GenerationResponse],
        backend: Optional[BackendDescriptor],
        opened_ms: float,
    ) -> AsyncIterator[GenerationResponse]:
        """Relay a backend stream and record its outcome once it ends."""
        started = time.monotonic()
        tokens = 0
        failed = False
        try:
            async for response in stream:
                tokens += _response_tokens(response)
                yield response
        except GenerationError:
            failed = True
            raise
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()
            if backend is not None:
                elapsed = time.monotonic() - started
                self.tracker.record(
                    backend.id,
                    success=not failed,
                    latency_ms=None if failed else opened_ms,
                    tokens_per_second=tokens / elapsed if tokens and elapsed > 0 else None,
                )
                if failed:
                    self._discard(backend.id)

    async def count_tokens(self, request: GenerationRequest) -> int:
        return await self._run(
            "count_tokens", lambda generator: generator.count_tokens(request)
        )

    async def embed_content(self, request: GenerationRequest) -> List[float]:
        async def embed(generator: ContentGenerator) -> List[float]:
            if not generator.capabilities.supports_embeddings:
                raise UnsupportedOperation(
                    f"Backend {generator.backend_id} has no embedding endpoint",
                    backend_id=generator.backend_id,
                )
            return await generator.embed_content(request)

        return await self._run("embed_content", embed)

    async def health_check(self) -> BackendHealth:
        """Check the held backend, or one weighted-selected backend."""
        backend = self._held_backend(set()) or self.tracker.select()
        if backend is None:
            return _unhealthy("failover", "No enabled backends configured")
        return await self._check_backend(backend)

    async def check_all_backends(self) -> Dict[str, BackendHealth]:
        """Check every enabled backend concurrently."""
        backends = self.tracker.enabled_backends()
        results = await asyncio.gather(*(self._check_backend(b) for b in backends))
        return {health.backend_id: health for health in results}

    async def _check_backend(self, backend: BackendDescriptor) -> BackendHealth:
        try:
            generator = self._generator_for(backend)
        except ValueError as e:
            logger.warning(f"Cannot build generator for {backend.id}: {e}")
            return _unhealthy(backend.id, str(e))
        return await generator.health_check()

    async def aclose(self) -> None:
        """Wait for background discovery and store writes to finish."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
        await self.tracker.flush()
