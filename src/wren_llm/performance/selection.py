"""Performance-weighted random backend selection."""

import logging
import random
from typing import Optional, Sequence

from .types import BackendDescriptor

logger = logging.getLogger(__name__)


def select_weighted(
    pool: Sequence[BackendDescriptor],
    rng: Optional[random.Random] = None,
) -> Optional[BackendDescriptor]:
    """Pick one enabled backend with probability proportional to its weight.

    A single enabled backend is returned without consulting the RNG.

    Args:
        pool: Candidate backends; disabled entries are ignored.
        rng: Random source, injectable for reproducible selection.

    Returns:
        The chosen backend, or None when nothing is enabled.
    """
    enabled = [backend for backend in pool if backend.enabled]
    if not enabled:
        return None
    if len(enabled) == 1:
        return enabled[0]

    rng = rng or random
    total = sum(max(backend.weight, 0.0) for backend in enabled)
    if total <= 0:
        return enabled[0]

    target = rng.uniform(0, total)
    running = 0.0
    for backend in enabled:
        running += max(backend.weight, 0.0)
        if running >= target:
            logger.debug(f"Selected backend {backend.id} (weight {backend.weight:.2f})")
            return backend

    # Float rounding left target just past the running sum
    return enabled[-1]
