"""Backend performance tracker.

Keeps the in-memory backend pool, updates each backend's statistics after
every generation attempt, recomputes its selection weight, and persists the
change to the backend store without blocking the caller.
"""

import asyncio
import copy
import logging
import random
import threading
from typing import Dict, Iterable, List, Optional, Set

from .selection import select_weighted
from .store import BackendStore
from .types import DEFAULT_WEIGHT, BackendDescriptor, PerformanceStats, utc_now
from .weighting import compute_weight

logger = logging.getLogger(__name__)

# Smoothing factor for latency and throughput moving averages
EMA_ALPHA = 0.1


def _ema(current: float, sample: float, alpha: float = EMA_ALPHA) -> float:
    return current * (1.0 - alpha) + sample * alpha


class PerformanceTracker:
    """Track per-backend success, latency and throughput.

    The pool is loaded from the store once at construction. ``record`` is
    synchronous and cheap; the store write it triggers runs in a worker
    thread when an event loop is running, and inline otherwise.

    Attributes:
        store: Backend store used for loading and persistence
    """

    def __init__(
        self,
        store: Optional[BackendStore] = None,
        rng: Optional[random.Random] = None,
    ):
        self.store = store or BackendStore()
        self._rng = rng
        self._backends: Dict[str, BackendDescriptor] = {
            backend.id: backend for backend in self.store.load_all()
        }
        self._pending_writes: Set[asyncio.Task] = set()
        self._write_lock = threading.Lock()

    def backends(self) -> List[BackendDescriptor]:
        return list(self._backends.values())

    def enabled_backends(self) -> List[BackendDescriptor]:
        return [b for b in self._backends.values() if b.enabled]

    def get(self, backend_id: str) -> Optional[BackendDescriptor]:
        return self._backends.get(backend_id)

    def select(self, exclude: Iterable[str] = ()) -> Optional[BackendDescriptor]:
        """Pick an enabled backend by weight.

        ``exclude`` only narrows this one draw; when it would leave nothing,
        the full enabled pool is used so a failed backend can still be
        retried.
        """
        excluded = set(exclude)
        pool = [b for b in self.enabled_backends() if b.id not in excluded]
        if not pool:
            pool = self.enabled_backends()
        return select_weighted(pool, self._rng)

    def register_backend(self, backend: BackendDescriptor) -> BackendDescriptor:
        """Add a backend to the pool, or refresh the connection details of a
        known one while keeping its statistics."""
        existing = self._backends.get(backend.id)
        if existing is None:
            backend.stats = PerformanceStats()
            backend.weight = DEFAULT_WEIGHT
            self._backends[backend.id] = backend
            logger.info(f"Registered backend {backend.id} ({backend.protocol})")
            self._schedule_persist(backend)
            return backend

        changed = False
        for name in ("base_url", "api_key_ref", "protocol", "model"):
            value = getattr(backend, name)
            if value and value != getattr(existing, name):
                setattr(existing, name, value)
                changed = True
        if changed:
            existing.touch()
            self._schedule_persist(existing)
        return existing

    def record(
        self,
        backend_id: str,
        success: bool,
        latency_ms: Optional[float] = None,
        tokens_per_second: Optional[float] = None,
    ) -> Optional[BackendDescriptor]:
        """Record the outcome of one generation attempt.

        Args:
            backend_id: Backend the attempt went to
            success: Whether the attempt succeeded
            latency_ms: Attempt latency, folded into the latency EMA
            tokens_per_second: Observed throughput, folded into its EMA

        Returns:
            The updated descriptor, or None for an unknown backend.
        """
        backend = self._backends.get(backend_id)
        if backend is None:
            logger.warning(f"Ignoring performance record for unknown backend {backend_id}")
            return None

        now = utc_now()
        stats = backend.stats
        if success:
            stats.success_count += 1
            stats.last_success = now
        else:
            stats.failure_count += 1
            stats.last_failure = now
        stats.total_requests += 1
        stats.last_used = now

        if latency_ms is not None:
            stats.avg_latency_ms = _ema(stats.avg_latency_ms, latency_ms)
        if tokens_per_second is not None:
            stats.avg_tokens_per_second = _ema(stats.avg_tokens_per_second, tokens_per_second)

        stats.error_rate = stats.failure_count / stats.total_requests
        backend.weight = compute_weight(stats)
        backend.updated_at = now

        logger.debug(
            f"Backend {backend_id}: success={success} weight={backend.weight:.3f} "
            f"error_rate={stats.error_rate:.2f}"
        )
        self._schedule_persist(backend)
        return backend

    def _persist(self, snapshot: BackendDescriptor) -> None:
        try:
            with self._write_lock:
                self.store.upsert(snapshot)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to persist backend {snapshot.id}: {e}")

    def _schedule_persist(self, backend: BackendDescriptor) -> None:
        snapshot = copy.deepcopy(backend)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._persist(snapshot)
            return

        task = loop.create_task(asyncio.to_thread(self._persist, snapshot))
        self._pending_writes.add(task)
        task.add_done_callback(self._pending_writes.discard)

    async def flush(self) -> None:
        """Wait for every scheduled store write to finish."""
        if self._pending_writes:
            await asyncio.gather(*list(self._pending_writes), return_exceptions=True)

    def reload(self) -> None:
        """Replace the in-memory pool with the store's contents."""
        self._backends = {backend.id: backend for backend in self.store.load_all()}
