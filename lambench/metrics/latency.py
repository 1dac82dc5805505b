"""Latency statistics."""

import statistics
from dataclasses import dataclass
from typing import Sequence


@dataclass(frozen=True)
class LatencyStats:
    """Summary of a latency distribution, in milliseconds."""

    mean: float = 0.0
    p50: float = 0.0
    p90: float = 0.0
    p95: float = 0.0
    p99: float = 0.0
    min: float = 0.0
    max: float = 0.0
    stddev: float = 0.0
    sample_count: int = 0

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "mean": self.mean,
            "p50": self.p50,
            "p90": self.p90,
            "p95": self.p95,
            "p99": self.p99,
            "min": self.min,
            "max": self.max,
            "stddev": self.stddev,
            "sample_count": self.sample_count,
        }


def percentile(data: Sequence[float], p: float) -> float:
    """Compute percentile of a sorted sequence.

    Args:
        data: Sorted sequence of values
        p: Percentile (0-100)

    Returns:
        Value at the given percentile, linearly interpolated
    """
    if not data:
        return 0.0
    k = (len(data) - 1) * (p / 100)
    f = int(k)
    c = f + 1 if f + 1 < len(data) else f
    return data[f] + (k - f) * (data[c] - data[f])


def compute_stats(values: Sequence[float]) -> LatencyStats:
    """Compute summary statistics for a sequence of latencies.

    Args:
        values: Latencies in milliseconds, any order

    Returns:
        LatencyStats; all zeros for an empty sequence
    """
    if not values:
        return LatencyStats()

    sorted_values = sorted(values)
    return LatencyStats(
        mean=statistics.mean(sorted_values),
        p50=percentile(sorted_values, 50),
        p90=percentile(sorted_values, 90),
        p95=percentile(sorted_values, 95),
        p99=percentile(sorted_values, 99),
        min=sorted_values[0],
        max=sorted_values[-1],
        stddev=statistics.stdev(sorted_values) if len(sorted_values) > 1 else 0.0,
        sample_count=len(sorted_values),
    )
