"""Thread-safe accumulation of invocation outcomes."""

import threading
from dataclasses import dataclass, field
from typing import Any

from lambench.invocation import ErrorKind, InvocationOutcome
from lambench.metrics.latency import LatencyStats, compute_stats


@dataclass(frozen=True)
class AggregateStats:
    """Point-in-time view of everything recorded so far.

    ``latency`` covers successful invocations only; ``failure_latency`` is kept
    apart so timeouts do not skew the primary distribution.
    """

    total_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    error_counts: dict[str, int] = field(
        default_factory=lambda: {kind.value: 0 for kind in ErrorKind}
    )
    latency: LatencyStats = field(default_factory=LatencyStats)
    failure_latency: LatencyStats = field(default_factory=LatencyStats)
    response_bytes: int = 0

    @property
    def success_rate(self) -> float:
        return self.success_count / self.total_count if self.total_count else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_count": self.total_count,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "success_rate": self.success_rate,
            "error_counts": dict(self.error_counts),
            "latency_ms": self.latency.to_dict(),
            "failure_latency_ms": self.failure_latency.to_dict(),
            "response_bytes": self.response_bytes,
        }


class ResultAggregator:
    """Accumulates outcomes from any number of workers.

    Every counter update happens under one lock, so ``success_count +
    failure_count == total_count`` holds in every snapshot.
    """

    def __init__(self, snapshot_timeout: float = 5.0):
        self.snapshot_timeout = snapshot_timeout
        self._lock = threading.Lock()
        self._total = 0
        self._success = 0
        self._failure = 0
        self._error_counts = {kind: 0 for kind in ErrorKind}
        self._success_latencies_ms: list[float] = []
        self._failure_latencies_ms: list[float] = []
        self._response_bytes = 0

    def record(self, outcome: InvocationOutcome) -> None:
        latency_ms = outcome.latency_ms
        with self._lock:
            self._total += 1
            if outcome.success:
                self._success += 1
                self._success_latencies_ms.append(latency_ms)
                if outcome.response_bytes is not None:
                    self._response_bytes += len(outcome.response_bytes)
            else:
                self._failure += 1
                # A failure without a kind is still a failure
                kind = outcome.error_kind or ErrorKind.INVALID_RESPONSE
                self._error_counts[kind] += 1
                self._failure_latencies_ms.append(latency_ms)

    def snapshot(self) -> AggregateStats:
        """Consistent read of all counters.

        Raises:
            TimeoutError: if the lock is not acquired within ``snapshot_timeout``
        """
        if not self._lock.acquire(timeout=self.snapshot_timeout):
            raise TimeoutError("Timed out waiting for in-progress record() calls")
        try:
            total = self._total
            success = self._success
            failure = self._failure
            error_counts = {kind.value: count for kind, count in self._error_counts.items()}
            success_latencies = list(self._success_latencies_ms)
            failure_latencies = list(self._failure_latencies_ms)
            response_bytes = self._response_bytes
        finally:
            self._lock.release()

        return AggregateStats(
            total_count=total,
            success_count=success,
            failure_count=failure,
            error_counts=error_counts,
            latency=compute_stats(success_latencies),
            failure_latency=compute_stats(failure_latencies),
            response_bytes=response_bytes,
        )
