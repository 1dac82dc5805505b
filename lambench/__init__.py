"""Concurrent invocation benchmarking for AWS Lambda and HTTP function gateways."""

from lambench.config import BenchmarkConfig, ConfigurationError, CredentialsRef
from lambench.invocation import ErrorKind, InvocationMode, InvocationOutcome, InvocationRequest

__version__ = "0.1.0"

__all__ = [
    "BenchmarkConfig",
    "ConfigurationError",
    "CredentialsRef",
    "ErrorKind",
    "InvocationMode",
    "InvocationOutcome",
    "InvocationRequest",
]
