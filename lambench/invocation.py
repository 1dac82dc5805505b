"""Invocation requests and outcomes shared by clients, the pool and metrics."""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class InvocationMode(str, Enum):
    SYNC = "sync"  # RequestResponse
    ASYNC = "async"  # Event (fire-and-forget)

    @property
    def lambda_invocation_type(self) -> str:
        return "RequestResponse" if self is InvocationMode.SYNC else "Event"


class ErrorKind(str, Enum):
    CONNECTION_FAILURE = "connection_failure"
    TIMEOUT = "timeout"
    REMOTE_EXECUTION_ERROR = "remote_execution_error"
    INVALID_RESPONSE = "invalid_response"


def new_request_id() -> str:
    return f"req_{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class InvocationRequest:
    """One invocation of a remote function."""

    function_id: str
    payload: bytes = b""
    mode: InvocationMode = InvocationMode.SYNC
    request_id: str = field(default_factory=new_request_id)


@dataclass(frozen=True)
class InvocationOutcome:
    """Result of one invocation, success or classified failure."""

    request_id: str
    success: bool
    latency_nanos: int
    response_bytes: Optional[bytes] = None
    error_kind: Optional[ErrorKind] = None
    error: Optional[str] = None
    status_code: Optional[int] = None
    remote_request_id: Optional[str] = None

    @property
    def latency_ms(self) -> float:
        return self.latency_nanos / 1_000_000

    @classmethod
    def ok(
        cls,
        request: InvocationRequest,
        latency_nanos: int,
        response_bytes: Optional[bytes] = None,
        status_code: Optional[int] = None,
        remote_request_id: Optional[str] = None,
    ) -> "InvocationOutcome":
        return cls(
            request_id=request.request_id,
            success=True,
            latency_nanos=max(0, latency_nanos),
            # Fire-and-forget has no payload to keep
            response_bytes=response_bytes if request.mode is InvocationMode.SYNC else None,
            status_code=status_code,
            remote_request_id=remote_request_id,
        )

    @classmethod
    def failed(
        cls,
        request: InvocationRequest,
        error_kind: ErrorKind,
        latency_nanos: int,
        error: Optional[str] = None,
        status_code: Optional[int] = None,
        remote_request_id: Optional[str] = None,
    ) -> "InvocationOutcome":
        return cls(
            request_id=request.request_id,
            success=False,
            latency_nanos=max(0, latency_nanos),
            error_kind=error_kind,
            error=error,
            status_code=status_code,
            remote_request_id=remote_request_id,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "success": self.success,
            "latency_ms": self.latency_ms,
            "response_bytes": len(self.response_bytes) if self.response_bytes is not None else None,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "error": self.error,
            "status_code": self.status_code,
            "remote_request_id": self.remote_request_id,
        }


