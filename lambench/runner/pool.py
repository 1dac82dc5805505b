"""Closed-loop worker pool."""

import asyncio
import logging
import time
from typing import AsyncIterator, Iterable, Iterator, Optional

from lambench.invocation import ErrorKind, InvocationOutcome, InvocationRequest
from lambench.runner.client import BaseClient

logger = logging.getLogger(__name__)

_WORKER_DONE = object()


class WorkerPool:
    """Runs invocations with a fixed number of concurrent workers.

    Each worker pulls its next request only after its previous call returned,
    so at most ``concurrency`` calls are in flight and exactly that many while
    requests remain. Outcomes are yielded in completion order.

    ``stop()`` lets in-flight calls finish and pulls nothing new. ``abort()``
    abandons in-flight calls; each one is reported as a TIMEOUT outcome.
    """

    def __init__(self, client: BaseClient):
        self.client = client
        self.in_flight = 0
        self.peak_in_flight = 0
        self.dispatched = 0
        # Set once no further requests will be pulled
        self.draining = asyncio.Event()
        # Set once every worker has exited
        self.finished = asyncio.Event()
        self._stop = asyncio.Event()
        self._workers: list[asyncio.Task] = []
        self._lookahead: Optional[InvocationRequest] = None
        self._source: Optional[Iterator[InvocationRequest]] = None
        self._active_workers = 0
        self._running = False

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def stop(self) -> None:
        """Graceful stop: finish in-flight calls, pull no new requests."""
        if not self._stop.is_set():
            logger.info("Worker pool stop requested (%d in flight)", self.in_flight)
        self._stop.set()
        self.draining.set()

    def abort(self) -> None:
        """Hard stop: abandon in-flight calls."""
        self.stop()
        abandoned = 0
        for task in self._workers:
            if not task.done():
                task.cancel()
                abandoned += 1
        if abandoned:
            logger.warning("Aborting %d workers with %d calls in flight", abandoned, self.in_flight)

    def _next_request(self) -> Optional[InvocationRequest]:
        # One request of lookahead so exhaustion is seen when the last request
        # is handed out, not when an idle worker asks for one more.
        if self._stop.is_set() or self._lookahead is None:
            return None
        request = self._lookahead
        assert self._source is not None
        try:
            self._lookahead = next(self._source)
        except StopIteration:
            self._lookahead = None
            self.draining.set()
        return request

    async def _invoke(self, request: InvocationRequest, queue: asyncio.Queue) -> None:
        self.in_flight += 1
        self.dispatched += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        start = time.perf_counter_ns()
        try:
            outcome = await self.client.invoke(request)
        except asyncio.CancelledError:
            queue.put_nowait(
                InvocationOutcome.failed(
                    request,
                    ErrorKind.TIMEOUT,
                    time.perf_counter_ns() - start,
                    "abandoned at hard stop",
                )
            )
            raise
        except Exception as e:
            # Clients classify their own failures; this is a client bug
            logger.exception("Client raised for %s", request.request_id)
            outcome = InvocationOutcome.failed(
                request,
                ErrorKind.INVALID_RESPONSE,
                time.perf_counter_ns() - start,
                f"exception: {e}",
            )
        finally:
            self.in_flight -= 1
        queue.put_nowait(outcome)

    async def _worker(self, queue: asyncio.Queue) -> None:
        while True:
            request = self._next_request()
            if request is None:
                break
            await self._invoke(request, queue)

    async def run(
        self, requests: Iterable[InvocationRequest], concurrency: int = 1
    ) -> AsyncIterator[InvocationOutcome]:
        """Invoke every request from ``requests`` with ``concurrency`` workers.

        Args:
            requests: Request source, consumed lazily
            concurrency: Number of concurrent workers (>= 1)

        Yields:
            One outcome per dispatched request, in completion order
        """
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        if self._running:
            raise RuntimeError("WorkerPool.run() is already active")

        self._source = iter(requests)
        self._lookahead = next(self._source, None)
        if self._lookahead is None:
            self.draining.set()
        self.finished.clear()
        self._running = True

        queue: asyncio.Queue = asyncio.Queue()
        self._active_workers = concurrency

        def _on_worker_done(task: asyncio.Task) -> None:
            # Runs even for a task cancelled before its first step
            self._active_workers -= 1
            if self._active_workers == 0:
                self.finished.set()
            queue.put_nowait(_WORKER_DONE)

        self._workers = [
            asyncio.create_task(self._worker(queue), name=f"lambench-worker-{i}")
            for i in range(concurrency)
        ]
        for task in self._workers:
            task.add_done_callback(_on_worker_done)
        remaining = len(self._workers)
        try:
            while remaining:
                item = await queue.get()
                if item is _WORKER_DONE:
                    remaining -= 1
                    continue
                yield item
        finally:
            for task in self._workers:
                if not task.done():
                    task.cancel()
            results = await asyncio.gather(*self._workers, return_exceptions=True)
            self._workers = []
            self._running = False
            self.draining.set()
            for result in results:
                # A failing request source is not a per-invocation error
                if isinstance(result, Exception):
                    raise result
