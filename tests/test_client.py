"""Tests for invocation clients and failure classification."""

import io
from unittest.mock import MagicMock

import boto3
import httpx
import pytest
from botocore.exceptions import (
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    PartialCredentialsError,
    ReadTimeoutError,
)
from botocore.response import StreamingBody
from botocore.stub import Stubber

from lambench.config import ConfigurationError, CredentialsRef
from lambench.invocation import ErrorKind, InvocationMode, InvocationRequest
from lambench.runner.client import (
    HttpFunctionClient,
    LambdaClient,
    MockClient,
    build_client,
)

from conftest import make_config


def _boto_lambda():
    session = boto3.session.Session(
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
        region_name="us-east-1",
    )
    return session.client("lambda")


def _body(data: bytes) -> StreamingBody:
    return StreamingBody(io.BytesIO(data), len(data))


class TestLambdaClient:
    """Tests for LambdaClient against a stubbed boto3 client."""

    @pytest.mark.asyncio
    async def test_sync_success_keeps_payload(self) -> None:
        boto_client = _boto_lambda()
        client = LambdaClient(region="us-east-1", lambda_client=boto_client)
        request = InvocationRequest(function_id="echo", payload=b'{"x":1}', request_id="r1")

        with Stubber(boto_client) as stubber:
            stubber.add_response(
                "invoke",
                {
                    "StatusCode": 200,
                    "Payload": _body(b'{"x":1}'),
                    "ResponseMetadata": {"RequestId": "aws-req-1", "HTTPStatusCode": 200},
                },
                {"FunctionName": "echo", "InvocationType": "RequestResponse", "Payload": b'{"x":1}'},
            )
            outcome = await client.invoke(request)

        await client.close()
        assert outcome.success is True
        assert outcome.request_id == "r1"
        assert outcome.response_bytes == b'{"x":1}'
        assert outcome.status_code == 200
        assert outcome.remote_request_id == "aws-req-1"
        assert outcome.latency_nanos >= 0

    @pytest.mark.asyncio
    async def test_async_mode_accepted(self) -> None:
        """Fire-and-forget succeeds on acceptance (202) with no payload."""
        boto_client = _boto_lambda()
        client = LambdaClient(region="us-east-1", lambda_client=boto_client, qualifier="live")
        request = InvocationRequest(function_id="echo", mode=InvocationMode.ASYNC)

        with Stubber(boto_client) as stubber:
            stubber.add_response(
                "invoke",
                {"StatusCode": 202, "Payload": _body(b"")},
                {"FunctionName": "echo", "InvocationType": "Event", "Payload": b"", "Qualifier": "live"},
            )
            outcome = await client.invoke(request)

        await client.close()
        assert outcome.success is True
        assert outcome.response_bytes is None
        assert outcome.status_code == 202

    @pytest.mark.asyncio
    async def test_function_error_is_remote_execution_error(self) -> None:
        boto_client = _boto_lambda()
        client = LambdaClient(region="us-east-1", lambda_client=boto_client)
        request = InvocationRequest(function_id="broken")

        with Stubber(boto_client) as stubber:
            stubber.add_response(
                "invoke",
                {
                    "StatusCode": 200,
                    "FunctionError": "Unhandled",
                    "Payload": _body(b'{"errorMessage": "boom"}'),
                },
            )
            outcome = await client.invoke(request)

        await client.close()
        assert outcome.success is False
        assert outcome.error_kind is ErrorKind.REMOTE_EXECUTION_ERROR
        assert "Unhandled" in outcome.error
        assert "boom" in outcome.error

    @pytest.mark.asyncio
    async def test_client_error_is_remote_execution_error(self) -> None:
        boto_client = _boto_lambda()
        client = LambdaClient(region="us-east-1", lambda_client=boto_client)

        with Stubber(boto_client) as stubber:
            stubber.add_client_error(
                "invoke",
                service_error_code="TooManyRequestsException",
                service_message="Rate exceeded",
                http_status_code=429,
            )
            outcome = await client.invoke(InvocationRequest(function_id="echo"))

        await client.close()
        assert outcome.success is False
        assert outcome.error_kind is ErrorKind.REMOTE_EXECUTION_ERROR
        assert outcome.status_code == 429

    @pytest.mark.asyncio
    async def test_unexpected_status_is_invalid_response(self) -> None:
        boto_client = _boto_lambda()
        client = LambdaClient(region="us-east-1", lambda_client=boto_client)

        with Stubber(boto_client) as stubber:
            stubber.add_response("invoke", {"StatusCode": 204, "Payload": _body(b"")})
            outcome = await client.invoke(InvocationRequest(function_id="echo"))

        await client.close()
        assert outcome.success is False
        assert outcome.error_kind is ErrorKind.INVALID_RESPONSE

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "exc, expected",
        [
            (ReadTimeoutError(endpoint_url="https://lambda"), ErrorKind.TIMEOUT),
            (ConnectTimeoutError(endpoint_url="https://lambda"), ErrorKind.TIMEOUT),
            (EndpointConnectionError(endpoint_url="https://lambda"), ErrorKind.CONNECTION_FAILURE),
            (NoCredentialsError(), ErrorKind.REMOTE_EXECUTION_ERROR),
            (
                PartialCredentialsError(provider="env", cred_var="AWS_SECRET_ACCESS_KEY"),
                ErrorKind.REMOTE_EXECUTION_ERROR,
            ),
            (RuntimeError("garbled"), ErrorKind.INVALID_RESPONSE),
        ],
    )
    async def test_exceptions_are_classified(self, exc: Exception, expected: ErrorKind) -> None:
        """No exception escapes invoke(); each maps to an ErrorKind."""
        fake = MagicMock()
        fake.invoke.side_effect = exc
        client = LambdaClient(region="us-east-1", lambda_client=fake)

        outcome = await client.invoke(InvocationRequest(function_id="echo"))

        await client.close()
        assert outcome.success is False
        assert outcome.error_kind is expected
        fake.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_health_check(self) -> None:
        boto_client = _boto_lambda()
        client = LambdaClient(region="us-east-1", lambda_client=boto_client)

        with Stubber(boto_client) as stubber:
            stubber.add_response("get_function_configuration", {"FunctionName": "echo"})
            stubber.add_client_error("get_function_configuration", "ResourceNotFoundException")
            assert await client.health_check("echo") is True
            assert await client.health_check("missing") is False

        await client.close()

    @pytest.mark.asyncio
    async def test_closed_client_refuses_work(self) -> None:
        client = LambdaClient(region="us-east-1", lambda_client=MagicMock())
        await client.close()
        with pytest.raises(RuntimeError, match="closed"):
            await client.invoke(InvocationRequest(function_id="echo"))

    def test_unknown_profile_is_configuration_error(self) -> None:
        with pytest.raises(ConfigurationError, match="profile"):
            LambdaClient(
                region="us-east-1",
                credentials=CredentialsRef(profile="lambench-profile-that-does-not-exist"),
            )

    def test_missing_credentials_is_configuration_error(self, no_aws_credentials) -> None:
        """An empty provider chain fails at construction, not on every invoke."""
        with pytest.raises(ConfigurationError, match="No AWS credentials"):
            LambdaClient(region="us-east-1", credentials=CredentialsRef(source="default"))


class TestHttpFunctionClient:
    """Tests for HttpFunctionClient with a mock transport."""

    @pytest.mark.asyncio
    async def test_sync_success(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, content=request.content, headers={"x-amzn-RequestId": "gw-1"})

        client = HttpFunctionClient("http://localhost:9000", transport=httpx.MockTransport(handler))
        outcome = await client.invoke(InvocationRequest(function_id="echo", payload=b"hi"))
        await client.close()

        assert outcome.success is True
        assert outcome.response_bytes == b"hi"
        assert outcome.remote_request_id == "gw-1"
        assert seen[0].url.path == "/2015-03-31/functions/echo/invocations"
        assert "x-amz-invocation-type" not in seen[0].headers

    @pytest.mark.asyncio
    async def test_async_sets_event_header(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(202)

        client = HttpFunctionClient(
            "http://localhost:8080",
            path_template="/run/{function}",
            transport=httpx.MockTransport(handler),
        )
        outcome = await client.invoke(InvocationRequest(function_id="echo", mode=InvocationMode.ASYNC))
        await client.close()

        assert outcome.success is True
        assert outcome.response_bytes is None
        assert seen[0].url.path == "/run/echo"
        assert seen[0].headers["x-amz-invocation-type"] == "Event"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status, headers, expected",
        [
            (500, {}, ErrorKind.REMOTE_EXECUTION_ERROR),
            (200, {"X-Amz-Function-Error": "Unhandled"}, ErrorKind.REMOTE_EXECUTION_ERROR),
            (429, {}, ErrorKind.REMOTE_EXECUTION_ERROR),
            (404, {}, ErrorKind.INVALID_RESPONSE),
        ],
    )
    async def test_status_classification(self, status: int, headers: dict, expected: ErrorKind) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status, headers=headers)

        client = HttpFunctionClient("http://localhost:9000", transport=httpx.MockTransport(handler))
        outcome = await client.invoke(InvocationRequest(function_id="echo"))
        await client.close()

        assert outcome.success is False
        assert outcome.error_kind is expected
        assert outcome.status_code == status

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "exc_type, expected",
        [
            (httpx.ReadTimeout, ErrorKind.TIMEOUT),
            (httpx.ConnectError, ErrorKind.CONNECTION_FAILURE),
        ],
    )
    async def test_transport_errors(self, exc_type: type, expected: ErrorKind) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise exc_type("simulated", request=request)

        client = HttpFunctionClient("http://localhost:9000", transport=httpx.MockTransport(handler))
        outcome = await client.invoke(InvocationRequest(function_id="echo"))
        await client.close()

        assert outcome.success is False
        assert outcome.error_kind is expected


class TestMockClient:
    """Tests for MockClient."""

    @pytest.mark.asyncio
    async def test_echoes_payload(self) -> None:
        client = MockClient(base_latency_ms=1.0)
        outcome = await client.invoke(InvocationRequest(function_id="echo", payload=b"p"))
        assert outcome.success is True
        assert outcome.response_bytes == b"p"
        assert outcome.latency_ms == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_fails_every_nth_call(self) -> None:
        client = MockClient(base_latency_ms=0.1, fail_every=3, fail_kind=ErrorKind.TIMEOUT)
        outcomes = [await client.invoke(InvocationRequest(function_id="echo")) for _ in range(6)]
        assert [o.success for o in outcomes] == [True, True, False, True, True, False]
        assert outcomes[2].error_kind is ErrorKind.TIMEOUT

    @pytest.mark.asyncio
    async def test_deterministic_with_seed(self) -> None:
        client1 = MockClient(jitter_pct=0.5, seed=123)
        client2 = MockClient(jitter_pct=0.5, seed=123)
        request = InvocationRequest(function_id="echo")
        assert (await client1.invoke(request)).latency_nanos == (await client2.invoke(request)).latency_nanos


class TestBuildClient:
    """Tests for build_client."""

    def test_mock_backend(self) -> None:
        assert isinstance(build_client(make_config(backend="mock")), MockClient)

    def test_http_backend(self) -> None:
        client = build_client(make_config(backend="http", endpoint_url="http://localhost:9000",
                                          concurrency=7, timeout_millis=1500))
        assert isinstance(client, HttpFunctionClient)
        assert client.max_connections == 7
        assert client.timeout == 1.5

    @pytest.mark.asyncio
    async def test_lambda_backend(self) -> None:
        config = make_config(
            backend="lambda",
            credentials={"access_key_id": "testing", "secret_access_key": "testing"},
            concurrency=3,
        )
        client = build_client(config)
        assert isinstance(client, LambdaClient)
        assert client.max_connections == 3
        await client.close()
