"""Performance weight for backend selection.

    weight = (0.5 + success_rate)
           x min(2.0, 2000 / max(avg_latency_ms, 100))   once a latency is known
           x (1 - 0.5 x error_rate)

clamped to [0.1, 5.0]. A fresh backend with no history weighs 0.5.
"""

from .types import PerformanceStats

MIN_WEIGHT = 0.1
MAX_WEIGHT = 5.0

# Latency (ms) that earns a neutral 1.0 latency factor
REFERENCE_LATENCY_MS = 2000.0
LATENCY_FLOOR_MS = 100.0
MAX_LATENCY_FACTOR = 2.0


def latency_factor(avg_latency_ms: float) -> float:
    if avg_latency_ms <= 0:
        return 1.0
    return min(MAX_LATENCY_FACTOR, REFERENCE_LATENCY_MS / max(avg_latency_ms, LATENCY_FLOOR_MS))


def compute_weight(stats: PerformanceStats) -> float:
    """Compute a selection weight from performance statistics."""
    weight = (
        (0.5 + stats.success_rate)
        * latency_factor(stats.avg_latency_ms)
        * (1.0 - 0.5 * stats.error_rate)
    )
    return max(MIN_WEIGHT, min(MAX_WEIGHT, weight))
