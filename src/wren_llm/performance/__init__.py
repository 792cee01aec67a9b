"""Backend performance tracking and weighted selection.

Usage:
    from wren_llm.performance import BackendStore, PerformanceTracker

    tracker = PerformanceTracker(BackendStore(".wren/providers.json"))
    backend = tracker.select()
    tracker.record(backend.id, success=True, latency_ms=850)
"""

from .selection import select_weighted
from .store import BackendStore
from .tracker import PerformanceTracker
from .types import BackendDescriptor, PerformanceStats
from .weighting import compute_weight

__all__ = [
    # Types (types.py)
    "BackendDescriptor",
    "PerformanceStats",
    # Storage (store.py)
    "BackendStore",
    # Weighting and selection
    "compute_weight",
    "select_weighted",
    # Tracker (tracker.py)
    "PerformanceTracker",
]
