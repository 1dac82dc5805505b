"""Clients that invoke a remote function and classify the result."""

import asyncio
import logging
import random
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Optional

import boto3
import httpx
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    ConnectionError as BotoConnectionError,
    HTTPClientError,
    IncompleteReadError,
    NoCredentialsError,
    PartialCredentialsError,
    ProfileNotFound,
    ReadTimeoutError,
    ResponseStreamingError,
)

from lambench.config import BenchmarkConfig, ConfigurationError, CredentialsRef
from lambench.invocation import (
    ErrorKind,
    InvocationMode,
    InvocationOutcome,
    InvocationRequest,
)

logger = logging.getLogger(__name__)


def _elapsed_since(start_ns: int) -> int:
    return time.perf_counter_ns() - start_ns


class BaseClient(ABC):
    """Abstract base class for invocation clients.

    ``invoke`` must not raise for per-invocation failures: every failure path
    ends in an outcome carrying an ErrorKind.
    """

    @abstractmethod
    async def invoke(self, request: InvocationRequest) -> InvocationOutcome:
        """Invoke the function once and return the timed outcome."""
        pass

    @abstractmethod
    async def health_check(self, function_id: str) -> bool:
        """Check that the function is reachable."""
        pass

    async def close(self) -> None:
        """Release pooled connections."""
        return None


class LambdaClient(BaseClient):
    """AWS Lambda client built on boto3.

    boto3 calls block, so they run on an executor sized to the connection pool.
    """

    def __init__(
        self,
        region: str,
        credentials: Optional[CredentialsRef] = None,
        timeout: float = 30.0,
        max_connections: int = 10,
        endpoint_url: Optional[str] = None,
        qualifier: Optional[str] = None,
        lambda_client: Any = None,
    ):
        self.region = region
        self.timeout = timeout
        self.qualifier = qualifier
        self.max_connections = max_connections

        if lambda_client is None:
            lambda_client = self._build_boto_client(
                region, credentials or CredentialsRef(source="default"),
                timeout, max_connections, endpoint_url,
            )
        self._client = lambda_client
        self._executor: Optional[ThreadPoolExecutor] = ThreadPoolExecutor(
            max_workers=max_connections, thread_name_prefix="lambench-invoke"
        )

    @staticmethod
    def _build_boto_client(
        region: str,
        credentials: CredentialsRef,
        timeout: float,
        max_connections: int,
        endpoint_url: Optional[str],
    ) -> Any:
        boto_config = Config(
            region_name=region,
            connect_timeout=timeout,
            read_timeout=timeout,
            # Every attempt is measured; no hidden SDK retries
            retries={"max_attempts": 0, "mode": "standard"},
            max_pool_connections=max_connections,
        )
        try:
            session = boto3.session.Session(region_name=region, **credentials.session_kwargs())
            resolved = session.get_credentials()
            client = session.client("lambda", config=boto_config, endpoint_url=endpoint_url)
        except ProfileNotFound as e:
            raise ConfigurationError(f"AWS profile not found: {credentials.profile}") from e
        except (BotoCoreError, ValueError) as e:
            raise ConfigurationError(f"Cannot build Lambda client: {e}") from e
        if resolved is None:
            client.close()
            raise ConfigurationError("No AWS credentials could be resolved from the default provider chain")
        return client

    def _invoke_blocking(self, request: InvocationRequest) -> InvocationOutcome:
        kwargs: dict[str, Any] = {
            "FunctionName": request.function_id,
            "InvocationType": request.mode.lambda_invocation_type,
            "Payload": request.payload,
        }
        if self.qualifier:
            kwargs["Qualifier"] = self.qualifier

        start = time.perf_counter_ns()
        try:
            response = self._client.invoke(**kwargs)
            remote_id = response.get("ResponseMetadata", {}).get("RequestId")
            status = response.get("StatusCode")
            body = None
            if request.mode is InvocationMode.SYNC and response.get("Payload") is not None:
                body = response["Payload"].read()
            latency = _elapsed_since(start)
        except (ReadTimeoutError, ConnectTimeoutError) as e:
            return InvocationOutcome.failed(request, ErrorKind.TIMEOUT, _elapsed_since(start), str(e))
        except (IncompleteReadError, ResponseStreamingError) as e:
            return InvocationOutcome.failed(
                request, ErrorKind.INVALID_RESPONSE, _elapsed_since(start), str(e)
            )
        except (HTTPClientError, BotoConnectionError) as e:
            return InvocationOutcome.failed(
                request, ErrorKind.CONNECTION_FAILURE, _elapsed_since(start), str(e)
            )
        except (NoCredentialsError, PartialCredentialsError) as e:
            # Rejected before sending, like an access-denied reply
            return InvocationOutcome.failed(
                request, ErrorKind.REMOTE_EXECUTION_ERROR, _elapsed_since(start), str(e)
            )
        except ClientError as e:
            metadata = e.response.get("ResponseMetadata", {})
            return InvocationOutcome.failed(
                request,
                ErrorKind.REMOTE_EXECUTION_ERROR,
                _elapsed_since(start),
                str(e),
                status_code=metadata.get("HTTPStatusCode"),
                remote_request_id=metadata.get("RequestId"),
            )
        except BotoCoreError as e:
            return InvocationOutcome.failed(
                request, ErrorKind.CONNECTION_FAILURE, _elapsed_since(start), str(e)
            )
        except Exception as e:
            return InvocationOutcome.failed(
                request, ErrorKind.INVALID_RESPONSE, _elapsed_since(start), f"exception: {e}"
            )

        function_error = response.get("FunctionError")
        if function_error:
            snippet = (body or b"")[:500].decode("utf-8", errors="replace")
            return InvocationOutcome.failed(
                request,
                ErrorKind.REMOTE_EXECUTION_ERROR,
                latency,
                f"{function_error}: {snippet}",
                status_code=status,
                remote_request_id=remote_id,
            )

        expected = 200 if request.mode is InvocationMode.SYNC else 202
        if status != expected:
            return InvocationOutcome.failed(
                request,
                ErrorKind.INVALID_RESPONSE,
                latency,
                f"unexpected status {status}, expected {expected}",
                status_code=status,
                remote_request_id=remote_id,
            )
        if request.mode is InvocationMode.SYNC and body is None:
            return InvocationOutcome.failed(
                request, ErrorKind.INVALID_RESPONSE, latency, "missing response payload",
                status_code=status, remote_request_id=remote_id,
            )

        return InvocationOutcome.ok(
            request, latency, response_bytes=body, status_code=status, remote_request_id=remote_id
        )

    async def invoke(self, request: InvocationRequest) -> InvocationOutcome:
        if self._executor is None:
            raise RuntimeError("LambdaClient is closed")
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, self._invoke_blocking, request)

    async def health_check(self, function_id: str) -> bool:
        """Check the function exists and is readable with these credentials."""
        kwargs = {"FunctionName": function_id}
        if self.qualifier:
            kwargs["Qualifier"] = self.qualifier

        def _check() -> bool:
            try:
                self._client.get_function_configuration(**kwargs)
                return True
            except (ClientError, BotoCoreError) as e:
                logger.warning("Health check failed for %s: %s", function_id, e)
                return False

        if self._executor is None:
            return False
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, _check)

    async def close(self) -> None:
        if self._executor is not None:
            # Abandoned calls keep their thread until the SDK read timeout
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
        close = getattr(self._client, "close", None)
        if close is not None:
            close()


class HttpFunctionClient(BaseClient):
    """Client for HTTP function gateways.

    Defaults to the Lambda Invoke REST path, served unsigned by the runtime
    interface emulator and local Lambda emulators. Other gateways (for example
    OpenLambda's ``/run/{function}``) are selected with ``path_template``.
    """

    DEFAULT_PATH_TEMPLATE = "/2015-03-31/functions/{function}/invocations"

    def __init__(
        self,
        base_url: str,
        path_template: str = DEFAULT_PATH_TEMPLATE,
        timeout: float = 30.0,
        max_connections: int = 10,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.path_template = path_template
        self.timeout = timeout
        self.max_connections = max_connections
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                limits=httpx.Limits(max_connections=self.max_connections),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def health_check(self, function_id: str) -> bool:
        """Check the gateway answers at all."""
        try:
            client = await self._get_client()
            response = await client.get("/")
            return response.status_code < 500
        except httpx.HTTPError:
            return False

    async def invoke(self, request: InvocationRequest) -> InvocationOutcome:
        client = await self._get_client()
        path = self.path_template.format(function=request.function_id)
        headers = {"Content-Type": "application/json"}
        if request.mode is InvocationMode.ASYNC:
            headers["X-Amz-Invocation-Type"] = "Event"

        start = time.perf_counter_ns()
        try:
            response = await client.post(path, content=request.payload, headers=headers)
            latency = _elapsed_since(start)
        except httpx.TimeoutException as e:
            return InvocationOutcome.failed(request, ErrorKind.TIMEOUT, _elapsed_since(start), str(e))
        except httpx.TransportError as e:
            return InvocationOutcome.failed(
                request, ErrorKind.CONNECTION_FAILURE, _elapsed_since(start), str(e)
            )
        except httpx.HTTPError as e:
            return InvocationOutcome.failed(
                request, ErrorKind.INVALID_RESPONSE, _elapsed_since(start), str(e)
            )

        status = response.status_code
        remote_id = response.headers.get("x-amzn-requestid")
        function_error = response.headers.get("x-amz-function-error")
        # 429 is throttling, reported the same way as the Lambda backend
        if function_error or status >= 500 or status == 429:
            return InvocationOutcome.failed(
                request,
                ErrorKind.REMOTE_EXECUTION_ERROR,
                latency,
                function_error or f"http_{status}",
                status_code=status,
                remote_request_id=remote_id,
            )
        if not response.is_success:
            return InvocationOutcome.failed(
                request, ErrorKind.INVALID_RESPONSE, latency, f"http_{status}",
                status_code=status, remote_request_id=remote_id,
            )
        return InvocationOutcome.ok(
            request, latency, response_bytes=response.content,
            status_code=status, remote_request_id=remote_id,
        )


class MockClient(BaseClient):
    """Simulated endpoint for dry runs and tests.

    Every ``fail_every``-th call (1-based) fails with ``fail_kind``.
    """

    def __init__(
        self,
        base_latency_ms: float = 10.0,
        jitter_pct: float = 0.0,
        fail_every: int = 0,
        fail_kind: ErrorKind = ErrorKind.CONNECTION_FAILURE,
        seed: int = 42,
    ):
        self.base_latency_ms = base_latency_ms
        self.jitter_pct = jitter_pct
        self.fail_every = fail_every
        self.fail_kind = fail_kind
        self.calls = 0
        self._rng = random.Random(seed)

    def _jitter(self, value: float) -> float:
        """Add random jitter to a value."""
        jitter = self._rng.uniform(-self.jitter_pct, self.jitter_pct)
        return value * (1 + jitter)

    async def health_check(self, function_id: str) -> bool:
        return True

    async def invoke(self, request: InvocationRequest) -> InvocationOutcome:
        self.calls += 1
        call_number = self.calls
        latency_ms = self._jitter(self.base_latency_ms)
        await asyncio.sleep(latency_ms / 1000)
        latency_nanos = int(latency_ms * 1_000_000)

        if self.fail_every and call_number % self.fail_every == 0:
            return InvocationOutcome.failed(
                request, self.fail_kind, latency_nanos, f"simulated {self.fail_kind.value}"
            )
        if request.mode is InvocationMode.ASYNC:
            return InvocationOutcome.ok(request, latency_nanos, status_code=202)
        return InvocationOutcome.ok(request, latency_nanos, response_bytes=request.payload, status_code=200)


def build_client(config: BenchmarkConfig) -> BaseClient:
    """Construct the client for a validated configuration."""
    if config.backend == "mock":
        return MockClient()
    if config.backend == "http":
        assert config.endpoint_url is not None
        return HttpFunctionClient(
            base_url=config.endpoint_url,
            path_template=config.path_template or HttpFunctionClient.DEFAULT_PATH_TEMPLATE,
            timeout=config.timeout_sec,
            max_connections=config.concurrency,
        )
    return LambdaClient(
        region=config.region,
        credentials=config.credentials,
        timeout=config.timeout_sec,
        max_connections=config.concurrency,
        endpoint_url=config.endpoint_url,
        qualifier=config.qualifier,
    )
