"""Tests for performance weighting and weighted selection."""

import random

import pytest


def _backend(backend_id, weight=1.0, enabled=True):
    from wren_llm.performance.types import BackendDescriptor

    return BackendDescriptor(
        id=backend_id,
        base_url=f"https://{backend_id}.example/v1",
        weight=weight,
        enabled=enabled,
    )


class TestComputeWeight:
    """Test the weight formula."""

    def test_fresh_backend(self):
        """No history: (0.5 + 0) x 1 x 1 = 0.5."""
        from wren_llm.performance.types import PerformanceStats
        from wren_llm.performance.weighting import compute_weight

        assert compute_weight(PerformanceStats()) == pytest.approx(0.5)

    def test_perfect_fast_backend_is_capped_by_latency_factor(self):
        from wren_llm.performance.types import PerformanceStats
        from wren_llm.performance.weighting import compute_weight

        stats = PerformanceStats(success_count=10, total_requests=10, avg_latency_ms=50.0)
        # (0.5 + 1.0) x min(2, 2000/100) x 1.0 = 3.0
        assert compute_weight(stats) == pytest.approx(3.0)

    def test_slow_backend(self):
        from wren_llm.performance.types import PerformanceStats
        from wren_llm.performance.weighting import compute_weight

        stats = PerformanceStats(success_count=4, total_requests=4, avg_latency_ms=4000.0)
        # 1.5 x 0.5 x 1.0
        assert compute_weight(stats) == pytest.approx(0.75)

    def test_errors_reduce_weight(self):
        from wren_llm.performance.types import PerformanceStats
        from wren_llm.performance.weighting import compute_weight

        stats = PerformanceStats(
            success_count=1, failure_count=1, total_requests=2, error_rate=0.5, avg_latency_ms=2000.0
        )
        # (0.5 + 0.5) x 1.0 x 0.75
        assert compute_weight(stats) == pytest.approx(0.75)

    def test_weight_is_clamped_low(self):
        from wren_llm.performance.types import PerformanceStats
        from wren_llm.performance.weighting import compute_weight

        stats = PerformanceStats(
            failure_count=10, total_requests=10, error_rate=1.0, avg_latency_ms=100000.0
        )
        assert compute_weight(stats) == pytest.approx(0.1)

    @pytest.mark.parametrize("latency", [0.0, 1.0, 99.0, 100.0, 2000.0, 1e9])
    def test_weight_within_bounds(self, latency):
        from wren_llm.performance.types import PerformanceStats
        from wren_llm.performance.weighting import compute_weight

        for successes in range(0, 5):
            for failures in range(0, 5):
                total = successes + failures
                stats = PerformanceStats(
                    success_count=successes,
                    failure_count=failures,
                    total_requests=total,
                    error_rate=failures / total if total else 0.0,
                    avg_latency_ms=latency,
                )
                assert 0.1 <= compute_weight(stats) <= 5.0

    @pytest.mark.parametrize("latency", [0.0, 150.0, 2000.0, 30000.0])
    @pytest.mark.parametrize("fixed_rate", [0.0, 0.3, 1.0])
    def test_weight_monotonic_in_rates(self, latency, fixed_rate):
        """Weight never drops as success rate rises, never rises as error rate rises."""
        from wren_llm.performance.types import PerformanceStats
        from wren_llm.performance.weighting import compute_weight

        total = 20
        steps = range(total + 1)

        by_success = [
            compute_weight(
                PerformanceStats(
                    success_count=s,
                    total_requests=total,
                    error_rate=fixed_rate,
                    avg_latency_ms=latency,
                )
            )
            for s in steps
        ]
        assert all(a <= b for a, b in zip(by_success, by_success[1:]))

        successes = int(fixed_rate * total)
        by_error = [
            compute_weight(
                PerformanceStats(
                    success_count=successes,
                    total_requests=total,
                    error_rate=e / total,
                    avg_latency_ms=latency,
                )
            )
            for e in steps
        ]
        assert all(a >= b for a, b in zip(by_error, by_error[1:]))


class TestSelectWeighted:
    """Test weighted random selection."""

    def test_empty_pool(self):
        from wren_llm.performance.selection import select_weighted

        assert select_weighted([]) is None

    def test_disabled_backends_ignored(self):
        from wren_llm.performance.selection import select_weighted

        assert select_weighted([_backend("a", enabled=False)]) is None

    def test_single_enabled_backend_is_deterministic(self):
        """With one enabled backend, selection never varies."""
        from wren_llm.performance.selection import select_weighted

        pool = [_backend("only", weight=0.1), _backend("off", weight=5.0, enabled=False)]
        rng = random.Random(1)

        assert all(select_weighted(pool, rng).id == "only" for _ in range(1000))

    def test_selection_proportional_to_weight(self):
        """Weights 2.0 and 0.5 give roughly a 4:1 split."""
        from wren_llm.performance.selection import select_weighted

        pool = [_backend("heavy", weight=2.0), _backend("light", weight=0.5)]
        rng = random.Random(1234)

        counts = {"heavy": 0, "light": 0}
        for _ in range(10000):
            counts[select_weighted(pool, rng).id] += 1

        ratio = counts["heavy"] / counts["light"]
        assert 3.2 <= ratio <= 4.8

    def test_rng_at_upper_bound_returns_last(self):
        from wren_llm.performance.selection import select_weighted

        class MaxRandom(random.Random):
            def uniform(self, a, b):
                return b + 1e-9

        pool = [_backend("a"), _backend("b")]
        assert select_weighted(pool, MaxRandom()).id == "b"
