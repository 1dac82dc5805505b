"""Benchmark summary record and its serializations."""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Any, Optional

from lambench.invocation import InvocationOutcome
from lambench.metrics.aggregator import AggregateStats
from lambench.metrics.throughput import ThroughputMetrics

logger = logging.getLogger(__name__)


@dataclass
class BenchmarkReport:
    """Final result of a benchmark run."""

    function_id: str
    invocation_mode: str
    concurrency: int
    config_hash: str
    stats: AggregateStats
    throughput: ThroughputMetrics
    started_at: datetime
    ended_at: datetime
    drain_complete: bool = True

    @property
    def duration_sec(self) -> float:
        return self.throughput.duration_sec

    def to_dict(self) -> dict[str, Any]:
        return {
            "function_id": self.function_id,
            "invocation_mode": self.invocation_mode,
            "concurrency": self.concurrency,
            "config_hash": self.config_hash,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat(),
            "duration_sec": self.duration_sec,
            "drain_complete": self.drain_complete,
            "stats": self.stats.to_dict(),
            "throughput": self.throughput.to_dict(),
        }


class TraceWriter:
    """Appends one JSON line per outcome to ``traces.jsonl``."""

    def __init__(self, output_dir: Path):
        output_dir.mkdir(parents=True, exist_ok=True)
        self.path = output_dir / "traces.jsonl"
        self._file: Optional[IO[str]] = open(self.path, "w")
        self.count = 0

    def write(self, outcome: InvocationOutcome) -> None:
        if self._file is None:
            raise ValueError("TraceWriter is closed")
        self._file.write(json.dumps(outcome.to_dict()) + "\n")
        self.count += 1

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None
            logger.info("Saved %d traces to %s", self.count, self.path)

    def __enter__(self) -> "TraceWriter":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()


def write_summary(report: BenchmarkReport, output_dir: Path) -> Path:
    """Write ``summary.json``."""
    output_dir.mkdir(parents=True, exist_ok=True)
    summary_file = output_dir / "summary.json"
    with open(summary_file, "w") as f:
        json.dump(report.to_dict(), f, indent=2)
    logger.info("Saved summary to %s", summary_file)
    return summary_file


def generate_report(
    report: BenchmarkReport,
    output_path: Path,
    title: str = "Function Invocation Benchmark",
) -> None:
    """Generate a markdown report from a benchmark report.

    Args:
        report: Final benchmark report
        output_path: Path to write the report
        title: Report title
    """
    timestamp = datetime.now(timezone.utc).isoformat()
    stats = report.stats
    latency = stats.latency

    text = f"""# {title}

**Generated**: {timestamp}
**Function**: {report.function_id} ({report.invocation_mode})
**Config Hash**: {report.config_hash}

## Summary

| Metric | Value |
|--------|-------|
| Total Invocations | {stats.total_count} |
| Successful | {stats.success_count} |
| Failed | {stats.failure_count} |
| Concurrency | {report.concurrency} |
| Duration | {report.duration_sec:.2f}s |
| Throughput | {report.throughput.requests_per_sec:.2f} req/s |
| Drain Complete | {'yes' if report.drain_complete else 'no (forced stop)'} |

## Latency (successful invocations)

| Percentile | Value (ms) |
|------------|------------|
| Mean | {latency.mean:.2f} |
| p50 | {latency.p50:.2f} |
| p90 | {latency.p90:.2f} |
| p95 | {latency.p95:.2f} |
| p99 | {latency.p99:.2f} |
| Min | {latency.min:.2f} |
| Max | {latency.max:.2f} |

## Failures by Kind

| Kind | Count |
|------|-------|
"""
    for kind, count in sorted(stats.error_counts.items()):
        text += f"| {kind} | {count} |\n"

    if stats.failure_count:
        text += f"\nFailed invocation latency p50: {stats.failure_latency.p50:.2f} ms, " \
                f"max: {stats.failure_latency.max:.2f} ms\n"

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w") as f:
        f.write(text)

    logger.info("Report written to %s", output_path)
