"""Benchmark configuration.

Reads a YAML file (or CLI overrides) into a fixed, validated structure. All
validation happens once, before any client is built.
"""

import hashlib
import json
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Optional

import boto3
import yaml

DEFAULT_TIMEOUT_MILLIS = 30_000
DEFAULT_DRAIN_TIMEOUT_SEC = 30.0

INVOCATION_MODES = ("sync", "async")
BACKENDS = ("lambda", "http", "mock")


class LambenchError(Exception):
    """Base class for lambench errors."""


class ConfigurationError(LambenchError, ValueError):
    """Configuration is missing, malformed or cannot be resolved."""


_known_regions: Optional[frozenset[str]] = None


def known_regions() -> frozenset[str]:
    """Regions where Lambda is available, from botocore's bundled endpoint data."""
    global _known_regions
    if _known_regions is None:
        session = boto3.session.Session()
        regions: set[str] = set()
        for partition in session.get_available_partitions():
            regions.update(session.get_available_regions("lambda", partition_name=partition))
        _known_regions = frozenset(regions)
    return _known_regions


@dataclass(frozen=True)
class CredentialsRef:
    """Reference to AWS credentials; resolution is left to boto3.

    Exactly one of: the default provider chain (``source: default``), a named
    profile, or a static key pair.
    """

    source: Optional[str] = None
    profile: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    session_token: Optional[str] = None

    @classmethod
    def from_value(cls, value: Any) -> "CredentialsRef":
        if isinstance(value, CredentialsRef):
            return value
        if isinstance(value, str):
            # Shorthand: "default" or a profile name
            return cls(source="default") if value == "default" else cls(profile=value)
        if not isinstance(value, dict):
            raise ConfigurationError("credentials must be a mapping or a string")
        unknown = set(value) - {f.name for f in fields(cls)}
        if unknown:
            raise ConfigurationError(f"Unknown credentials fields: {sorted(unknown)}")
        return cls(**value)

    def validate(self) -> None:
        has_keys = bool(self.access_key_id or self.secret_access_key)
        chosen = [bool(self.source), bool(self.profile), has_keys]
        if sum(chosen) != 1:
            raise ConfigurationError(
                "credentials must name exactly one of: source, profile, access key pair"
            )
        if self.source and self.source != "default":
            raise ConfigurationError(f"Unknown credentials source: {self.source!r}")
        if has_keys and not (self.access_key_id and self.secret_access_key):
            raise ConfigurationError(
                "credentials need both access_key_id and secret_access_key"
            )

    def session_kwargs(self) -> dict[str, str]:
        """Keyword arguments for ``boto3.session.Session``."""
        if self.profile:
            return {"profile_name": self.profile}
        if self.access_key_id:
            kwargs = {
                "aws_access_key_id": self.access_key_id,
                "aws_secret_access_key": self.secret_access_key or "",
            }
            if self.session_token:
                kwargs["aws_session_token"] = self.session_token
            return kwargs
        return {}

    def redacted(self) -> dict[str, Optional[str]]:
        return {
            "source": self.source,
            "profile": self.profile,
            "access_key_id": (self.access_key_id[:4] + "...") if self.access_key_id else None,
        }


@dataclass
class BenchmarkConfig:
    """Configuration for one benchmark run."""

    function_id: str
    payload_template: bytes
    region: str
    credentials: CredentialsRef
    concurrency: int
    num_requests: Optional[int] = None
    duration_sec: Optional[float] = None
    invocation_mode: str = "sync"
    timeout_millis: int = DEFAULT_TIMEOUT_MILLIS
    backend: str = "lambda"
    endpoint_url: Optional[str] = None
    path_template: Optional[str] = None
    qualifier: Optional[str] = None
    warmup_requests: int = 0
    drain_timeout_sec: float = DEFAULT_DRAIN_TIMEOUT_SEC
    output_dir: Optional[Path] = None
    description: str = ""

    def __post_init__(self) -> None:
        if isinstance(self.payload_template, str):
            self.payload_template = self.payload_template.encode("utf-8")
        if not isinstance(self.credentials, CredentialsRef):
            self.credentials = CredentialsRef.from_value(self.credentials)
        if self.output_dir is not None and not isinstance(self.output_dir, Path):
            self.output_dir = Path(self.output_dir)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BenchmarkConfig":
        known_fields = {f.name for f in fields(cls)}
        unknown = set(data) - known_fields
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {sorted(unknown)}")
        missing = [
            name
            for name in ("function_id", "payload_template", "region", "credentials", "concurrency")
            if name not in data
        ]
        if missing:
            raise ConfigurationError(f"Missing required configuration keys: {missing}")
        return cls(**data)

    @classmethod
    def from_yaml(cls, path: Path) -> "BenchmarkConfig":
        """Load configuration from YAML file."""
        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except OSError as e:
            raise ConfigurationError(f"Cannot read config file {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {path} must contain a mapping")
        # payload may be given as structured YAML; it is sent as JSON text
        payload = data.get("payload_template")
        if isinstance(payload, (dict, list)):
            data["payload_template"] = json.dumps(payload, separators=(",", ":"))
        return cls.from_dict(data)

    def validate(self) -> None:
        """Check every field once; raises ConfigurationError on the first problem."""
        if not isinstance(self.function_id, str) or not self.function_id.strip():
            raise ConfigurationError("function_id must be a non-empty string")
        if not isinstance(self.payload_template, bytes):
            raise ConfigurationError("payload_template must be bytes or text")
        if self.invocation_mode not in INVOCATION_MODES:
            raise ConfigurationError(
                f"invocation_mode must be one of {INVOCATION_MODES}, got {self.invocation_mode!r}"
            )
        if self.backend not in BACKENDS:
            raise ConfigurationError(f"backend must be one of {BACKENDS}, got {self.backend!r}")
        if not isinstance(self.region, str) or not self.region.strip():
            raise ConfigurationError("region must be a non-empty string")
        if self.region not in known_regions():
            raise ConfigurationError(f"Unknown region identifier: {self.region!r}")
        self.credentials.validate()

        if not isinstance(self.concurrency, int) or isinstance(self.concurrency, bool) or self.concurrency < 1:
            raise ConfigurationError(f"concurrency must be an integer >= 1, got {self.concurrency!r}")
        if (self.num_requests is None) == (self.duration_sec is None):
            raise ConfigurationError("exactly one of num_requests or duration_sec must be set")
        if self.num_requests is not None and (
            not isinstance(self.num_requests, int) or self.num_requests < 1
        ):
            raise ConfigurationError(f"num_requests must be an integer >= 1, got {self.num_requests!r}")
        if self.duration_sec is not None and not self.duration_sec > 0:
            raise ConfigurationError(f"duration_sec must be positive, got {self.duration_sec!r}")
        if not isinstance(self.timeout_millis, int) or self.timeout_millis <= 0:
            raise ConfigurationError(f"timeout_millis must be a positive integer, got {self.timeout_millis!r}")
        if self.warmup_requests < 0:
            raise ConfigurationError("warmup_requests must be >= 0")
        if self.drain_timeout_sec < 0:
            raise ConfigurationError("drain_timeout_sec must be >= 0")
        if self.backend == "http" and not self.endpoint_url:
            raise ConfigurationError("endpoint_url is required for the http backend")
        if self.endpoint_url and not self.endpoint_url.startswith(("http://", "https://")):
            raise ConfigurationError(f"endpoint_url must be an http(s) URL, got {self.endpoint_url!r}")
        if self.path_template is not None:
            if "{function}" not in self.path_template:
                raise ConfigurationError("path_template must contain a {function} placeholder")
            try:
                self.path_template.format(function=self.function_id)
            except (KeyError, IndexError, AttributeError, ValueError) as e:
                raise ConfigurationError(
                    f"path_template may only use the {{function}} placeholder: {e!r}"
                ) from e

    @property
    def timeout_sec(self) -> float:
        return self.timeout_millis / 1000

    def to_dict(self) -> dict[str, Any]:
        """Serializable view with credentials redacted."""
        data = asdict(self)
        data["payload_template"] = self.payload_template.decode("utf-8", errors="replace")
        data["credentials"] = self.credentials.redacted()
        data["output_dir"] = str(self.output_dir) if self.output_dir else None
        return data

    def config_hash(self) -> str:
        """Generate a hash of the configuration for reproducibility."""
        data = self.to_dict()
        data.pop("output_dir")
        config_str = yaml.dump(data, sort_keys=True)
        return hashlib.sha256(config_str.encode()).hexdigest()[:16]
