"""Metrics computation for benchmark results."""

from lambench.metrics.aggregator import AggregateStats, ResultAggregator
from lambench.metrics.latency import LatencyStats, compute_stats, percentile
from lambench.metrics.throughput import ThroughputMetrics, compute_throughput_metrics

__all__ = [
    "AggregateStats",
    "ResultAggregator",
    "LatencyStats",
    "compute_stats",
    "percentile",
    "ThroughputMetrics",
    "compute_throughput_metrics",
]
