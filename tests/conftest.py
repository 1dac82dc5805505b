"""Shared fixtures and fake clients."""

import asyncio
from typing import Any

import pytest

from lambench.config import BenchmarkConfig, CredentialsRef
from lambench.invocation import InvocationOutcome, InvocationRequest
from lambench.runner.client import BaseClient


def make_config(**overrides: Any) -> BenchmarkConfig:
    """Valid mock-backend configuration with optional overrides."""
    values: dict[str, Any] = {
        "function_id": "echo",
        "payload_template": b'{"x":1}',
        "region": "us-east-1",
        "credentials": CredentialsRef(source="default"),
        "concurrency": 1,
        "num_requests": 5,
        "backend": "mock",
    }
    values.update(overrides)
    return BenchmarkConfig(**values)


class CountingClient(BaseClient):
    """Records how many invocations are in flight at once."""

    def __init__(self, delay_sec: float = 0.01):
        self.delay_sec = delay_sec
        self.current = 0
        self.peak = 0
        self.calls = 0
        self.closed = False

    async def invoke(self, request: InvocationRequest) -> InvocationOutcome:
        self.calls += 1
        self.current += 1
        self.peak = max(self.peak, self.current)
        try:
            await asyncio.sleep(self.delay_sec)
        finally:
            self.current -= 1
        return InvocationOutcome.ok(request, int(self.delay_sec * 1e9), response_bytes=b"ok")

    async def health_check(self, function_id: str) -> bool:
        return True

    async def close(self) -> None:
        self.closed = True


class HangingClient(BaseClient):
    """Never answers until released."""

    def __init__(self) -> None:
        self.started = 0
        self.closed = False
        self.release = asyncio.Event()

    async def invoke(self, request: InvocationRequest) -> InvocationOutcome:
        self.started += 1
        await self.release.wait()
        return InvocationOutcome.ok(request, 0)

    async def health_check(self, function_id: str) -> bool:
        return False

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def config() -> BenchmarkConfig:
    return make_config()


@pytest.fixture
def no_aws_credentials(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    """Point every link of the default credential chain at nothing."""
    for name in (
        "AWS_ACCESS_KEY_ID",
        "AWS_SECRET_ACCESS_KEY",
        "AWS_SESSION_TOKEN",
        "AWS_SECURITY_TOKEN",
        "AWS_PROFILE",
        "AWS_DEFAULT_PROFILE",
        "AWS_CONTAINER_CREDENTIALS_RELATIVE_URI",
        "AWS_CONTAINER_CREDENTIALS_FULL_URI",
        "AWS_WEB_IDENTITY_TOKEN_FILE",
        "AWS_ROLE_ARN",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("AWS_SHARED_CREDENTIALS_FILE", str(tmp_path / "missing-credentials"))
    monkeypatch.setenv("AWS_CONFIG_FILE", str(tmp_path / "missing-config"))
    monkeypatch.setenv("AWS_EC2_METADATA_DISABLED", "true")
