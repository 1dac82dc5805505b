"""Throughput metrics computation."""

from dataclasses import dataclass

from lambench.metrics.aggregator import AggregateStats


@dataclass
class ThroughputMetrics:
    """Computed throughput metrics."""

    # Invocations per second
    requests_per_sec: float
    successful_requests_per_sec: float

    # Response payload bytes per second (sync mode)
    response_bytes_per_sec: float

    duration_sec: float

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "requests_per_sec": {
                "total": self.requests_per_sec,
                "successful": self.successful_requests_per_sec,
            },
            "response_bytes_per_sec": self.response_bytes_per_sec,
            "duration_sec": self.duration_sec,
        }


def compute_throughput_metrics(stats: AggregateStats, duration_sec: float) -> ThroughputMetrics:
    """Compute throughput metrics from an aggregate snapshot.

    Args:
        stats: Final aggregate snapshot
        duration_sec: Measured benchmark duration in seconds

    Returns:
        Computed throughput metrics
    """
    if duration_sec <= 0:
        raise ValueError("Duration must be positive")

    return ThroughputMetrics(
        requests_per_sec=stats.total_count / duration_sec,
        successful_requests_per_sec=stats.success_count / duration_sec,
        response_bytes_per_sec=stats.response_bytes / duration_sec,
        duration_sec=duration_sec,
    )
