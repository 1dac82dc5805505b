"""Benchmark orchestration: setup, load, drain, teardown."""

import asyncio
import logging
import time
from datetime import datetime, timezone
from enum import Enum
from string import Template
from typing import Callable, Iterator, Optional

from lambench.analysis.report import BenchmarkReport, TraceWriter, generate_report, write_summary
from lambench.config import BenchmarkConfig, ConfigurationError
from lambench.invocation import InvocationMode, InvocationRequest
from lambench.metrics.aggregator import ResultAggregator
from lambench.metrics.throughput import compute_throughput_metrics
from lambench.runner.client import BaseClient, build_client
from lambench.runner.pool import WorkerPool

logger = logging.getLogger(__name__)

ClientFactory = Callable[[BenchmarkConfig], BaseClient]


class RunnerState(str, Enum):
    IDLE = "idle"
    SETUP = "setup"
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


def render_payload(template: bytes, index: int, request_id: str) -> bytes:
    """Substitute ``${index}`` and ``${request_id}`` in a payload template."""
    if b"$" not in template:
        return template
    text = template.decode("utf-8", errors="surrogateescape")
    rendered = Template(text).safe_substitute(index=index, request_id=request_id)
    return rendered.encode("utf-8", errors="surrogateescape")


def request_source(
    config: BenchmarkConfig,
    count: Optional[int] = None,
    duration_sec: Optional[float] = None,
    prefix: str = "req",
    clock: Callable[[], float] = time.monotonic,
) -> Iterator[InvocationRequest]:
    """Lazily build requests until ``count`` is reached or ``duration_sec`` passes."""
    mode = InvocationMode(config.invocation_mode)
    deadline = clock() + duration_sec if duration_sec is not None else None
    index = 0
    while count is None or index < count:
        if deadline is not None and clock() >= deadline:
            return
        request_id = f"{prefix}_{index:06d}"
        yield InvocationRequest(
            function_id=config.function_id,
            payload=render_payload(config.payload_template, index, request_id),
            mode=mode,
            request_id=request_id,
        )
        index += 1


class BenchmarkRunner:
    """Drives one benchmark run through IDLE -> SETUP -> RUNNING -> DRAINING -> STOPPED.

    A configuration error during SETUP is the only fatal failure: it is raised
    to the caller before any invocation is attempted. Every per-invocation
    failure ends up in the aggregate stats instead.
    """

    def __init__(
        self,
        config: BenchmarkConfig,
        client_factory: ClientFactory = build_client,
        aggregator: Optional[ResultAggregator] = None,
        preflight: bool = False,
    ):
        self.config = config
        self.preflight = preflight
        self.client_factory = client_factory
        self.aggregator = aggregator or ResultAggregator()
        self.client: Optional[BaseClient] = None
        self.state = RunnerState.IDLE
        self.history: list[RunnerState] = [RunnerState.IDLE]
        self.drain_complete = True
        self.report: Optional[BenchmarkReport] = None
        self._pool: Optional[WorkerPool] = None
        self._stop_requested = False

    def _transition(self, state: RunnerState) -> None:
        logger.info("Runner %s -> %s", self.state.value, state.value)
        self.state = state
        self.history.append(state)

    def stop(self) -> None:
        """Operator stop: drain gracefully."""
        self._stop_requested = True
        if self._pool is not None:
            self._pool.stop()

    async def _setup(self) -> None:
        self._transition(RunnerState.SETUP)
        try:
            self.config.validate()
            self.client = self.client_factory(self.config)
            if self.preflight and not await self.client.health_check(self.config.function_id):
                await self.client.close()
                raise ConfigurationError(f"Function {self.config.function_id!r} is not reachable")
        except ConfigurationError as e:
            logger.error("Setup failed: %s", e)
            self._transition(RunnerState.STOPPED)
            raise
        except Exception as e:
            logger.error("Setup failed: %s", e)
            self._transition(RunnerState.STOPPED)
            raise ConfigurationError(f"Cannot construct invocation client: {e}") from e

    async def _warmup(self) -> None:
        """Run warmup invocations (results discarded)."""
        count = self.config.warmup_requests
        if count <= 0:
            return
        assert self.client is not None
        logger.info("Running %d warmup invocations", count)
        pool = WorkerPool(self.client)
        self._pool = pool
        if self._stop_requested:
            pool.stop()
        failures = 0
        async for outcome in pool.run(
            request_source(self.config, count=count, prefix="warmup"),
            min(self.config.concurrency, count),
        ):
            if not outcome.success:
                failures += 1
        if failures:
            logger.warning("%d of %d warmup invocations failed", failures, count)

    async def _watch_drain(self, pool: WorkerPool) -> None:
        await pool.draining.wait()
        self._transition(RunnerState.DRAINING)
        try:
            await asyncio.wait_for(pool.finished.wait(), timeout=self.config.drain_timeout_sec)
        except asyncio.TimeoutError:
            logger.warning(
                "Drain timed out after %.1fs; abandoning %d in-flight invocations",
                self.config.drain_timeout_sec,
                pool.in_flight,
            )
            self.drain_complete = False
            pool.abort()

    async def _run_load(self) -> float:
        assert self.client is not None
        self._transition(RunnerState.RUNNING)
        pool = WorkerPool(self.client)
        self._pool = pool
        if self._stop_requested:
            pool.stop()

        loop = asyncio.get_running_loop()
        deadline = None
        if self.config.duration_sec is not None:
            deadline = loop.call_later(self.config.duration_sec, pool.stop)

        trace_writer = TraceWriter(self.config.output_dir) if self.config.output_dir else None
        watcher = asyncio.create_task(self._watch_drain(pool))
        start = time.perf_counter()
        try:
            requests = request_source(
                self.config,
                count=self.config.num_requests,
                duration_sec=self.config.duration_sec,
            )
            async for outcome in pool.run(requests, self.config.concurrency):
                self.aggregator.record(outcome)
                if trace_writer is not None:
                    trace_writer.write(outcome)
                if not outcome.success:
                    logger.debug(
                        "%s failed: %s %s",
                        outcome.request_id,
                        outcome.error_kind.value if outcome.error_kind else "unknown",
                        outcome.error,
                    )
        finally:
            duration = time.perf_counter() - start
            if deadline is not None:
                deadline.cancel()
            if not watcher.done():
                watcher.cancel()
            await asyncio.gather(watcher, return_exceptions=True)
            if trace_writer is not None:
                trace_writer.close()
            if self.state is RunnerState.RUNNING:
                self._transition(RunnerState.DRAINING)
        logger.info("Load phase finished: %d dispatched, peak in flight %d",
                    pool.dispatched, pool.peak_in_flight)
        return duration

    async def _teardown(self, started_at: datetime, duration: float) -> BenchmarkReport:
        if self.client is not None:
            await self.client.close()
        stats = self.aggregator.snapshot()
        report = BenchmarkReport(
            function_id=self.config.function_id,
            invocation_mode=self.config.invocation_mode,
            concurrency=self.config.concurrency,
            config_hash=self.config.config_hash(),
            stats=stats,
            throughput=compute_throughput_metrics(stats, max(duration, 1e-9)),
            started_at=started_at,
            ended_at=datetime.now(timezone.utc),
            drain_complete=self.drain_complete,
        )
        if self.config.output_dir:
            write_summary(report, self.config.output_dir)
            generate_report(report, self.config.output_dir / "report.md")
        self._transition(RunnerState.STOPPED)
        self.report = report
        return report

    async def run(self) -> BenchmarkReport:
        """Run the benchmark to completion and return the final report.

        Raises:
            ConfigurationError: if setup fails; no invocation is attempted
            RuntimeError: if this runner has already been used
        """
        if self.state is not RunnerState.IDLE:
            raise RuntimeError(f"BenchmarkRunner already used (state={self.state.value})")

        await self._setup()
        started_at = datetime.now(timezone.utc)
        duration = 0.0
        try:
            await self._warmup()
            duration = await self._run_load()
        except BaseException:
            # Release the client even when the run itself blows up
            if self.client is not None:
                await self.client.close()
            self._transition(RunnerState.STOPPED)
            raise
        return await self._teardown(started_at, duration)
