"""Benchmark runner components."""

from lambench.runner.benchmark import BenchmarkRunner, RunnerState, request_source
from lambench.runner.client import (
    BaseClient,
    HttpFunctionClient,
    LambdaClient,
    MockClient,
    build_client,
)
from lambench.runner.pool import WorkerPool

__all__ = [
    "BenchmarkRunner",
    "RunnerState",
    "request_source",
    "BaseClient",
    "HttpFunctionClient",
    "LambdaClient",
    "MockClient",
    "build_client",
    "WorkerPool",
]
