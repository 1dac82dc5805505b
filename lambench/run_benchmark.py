#!/usr/bin/env python3
"""Run a function-invocation benchmark from a YAML config and/or flags."""

import argparse
import asyncio
import dataclasses
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Optional

from lambench.analysis.report import BenchmarkReport
from lambench.config import BenchmarkConfig, ConfigurationError, CredentialsRef
from lambench.log import setup_logging
from lambench.runner.benchmark import BenchmarkRunner

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CONFIG_ERROR = 2


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Benchmark a remote function endpoint")
    parser.add_argument("--config", type=Path, help="Path to YAML configuration file")
    parser.add_argument("--function", dest="function_id", help="Function name or ARN")
    parser.add_argument("--region", help="AWS region, e.g. us-east-1")
    parser.add_argument("--mode", dest="invocation_mode", choices=["sync", "async"])
    parser.add_argument("--concurrency", type=int)
    stop_group = parser.add_mutually_exclusive_group()
    stop_group.add_argument("--requests", dest="num_requests", type=int,
                            help="Total number of invocations")
    stop_group.add_argument("--duration", dest="duration_sec", type=float,
                            help="Run for this many seconds")
    payload_group = parser.add_mutually_exclusive_group()
    payload_group.add_argument("--payload", help="Payload template text")
    payload_group.add_argument("--payload-file", type=Path, help="Read payload template from file")
    parser.add_argument("--profile", help="AWS named profile for credentials")
    parser.add_argument("--backend", choices=["lambda", "http", "mock"])
    parser.add_argument("--endpoint-url", help="Override endpoint (LocalStack, emulator, gateway)")
    parser.add_argument("--qualifier", help="Lambda alias or version")
    parser.add_argument("--timeout-ms", dest="timeout_millis", type=int)
    parser.add_argument("--warmup", dest="warmup_requests", type=int)
    parser.add_argument("--drain-timeout", dest="drain_timeout_sec", type=float)
    parser.add_argument("--output", dest="output_dir", type=Path,
                        help="Write traces.jsonl, summary.json and report.md here")
    parser.add_argument("--health-check", action="store_true",
                        help="Check the function is reachable before the run")
    parser.add_argument("--log-level", default="INFO")
    parser.add_argument("--dry-run", action="store_true",
                        help="Validate and print the configuration without invoking")
    return parser.parse_args(argv)


_OVERRIDE_FIELDS = (
    "function_id",
    "region",
    "invocation_mode",
    "concurrency",
    "num_requests",
    "duration_sec",
    "backend",
    "endpoint_url",
    "qualifier",
    "timeout_millis",
    "warmup_requests",
    "drain_timeout_sec",
    "output_dir",
)


def build_config(args: argparse.Namespace) -> BenchmarkConfig:
    """Merge the YAML file (if any) with command line overrides."""
    overrides: dict[str, Any] = {
        name: getattr(args, name)
        for name in _OVERRIDE_FIELDS
        if getattr(args, name) is not None
    }
    if args.payload is not None:
        overrides["payload_template"] = args.payload
    elif args.payload_file is not None:
        try:
            overrides["payload_template"] = args.payload_file.read_bytes()
        except OSError as e:
            raise ConfigurationError(f"Cannot read payload file: {e}") from e
    if args.profile:
        overrides["credentials"] = CredentialsRef(profile=args.profile)
    # The stop condition is either/or; a flag replaces whatever the file set
    if "num_requests" in overrides:
        overrides["duration_sec"] = None
    elif "duration_sec" in overrides:
        overrides["num_requests"] = None

    if args.config is not None:
        config = BenchmarkConfig.from_yaml(args.config)
        return dataclasses.replace(config, **overrides)

    overrides.setdefault("credentials", CredentialsRef(source="default"))
    overrides.setdefault("payload_template", b"")
    return BenchmarkConfig.from_dict(overrides)


def print_report(report: BenchmarkReport) -> None:
    stats = report.stats
    sep = "=" * 60
    print(f"\n{sep}")
    print("BENCHMARK RESULTS")
    print(sep)
    print(f"Function: {report.function_id} ({report.invocation_mode})")
    print(f"Total invocations: {stats.total_count}")
    print(f"Successful: {stats.success_count}")
    print(f"Failed: {stats.failure_count}")
    print(f"Duration: {report.duration_sec:.2f}s")
    print(f"Throughput: {report.throughput.requests_per_sec:.2f} req/s")

    if stats.success_count > 0:
        print("\nLatency (ms) - successful only:")
        print(f"  p50: {stats.latency.p50:.2f}")
        print(f"  p90: {stats.latency.p90:.2f}")
        print(f"  p99: {stats.latency.p99:.2f}")
        print(f"  Max: {stats.latency.max:.2f}")

    if stats.failure_count > 0:
        print("\nFailed invocation breakdown:")
        for kind, count in sorted(stats.error_counts.items(), key=lambda x: -x[1]):
            if count:
                print(f"  {kind}: {count}")

    if not report.drain_complete:
        print("\nWARNING: drain timed out; in-flight invocations were counted as timeouts")


async def run(config: BenchmarkConfig, health_check: bool = False) -> BenchmarkReport:
    runner = BenchmarkRunner(config, preflight=health_check)
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, runner.stop)
    except (NotImplementedError, RuntimeError):
        pass  # not supported on this platform
    try:
        return await runner.run()
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    try:
        setup_logging(args.log_level)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    try:
        config = build_config(args)
        if args.dry_run:
            config.validate()
            print(f"Function: {config.function_id} ({config.invocation_mode}) in {config.region}")
            print(f"Config Hash: {config.config_hash()}")
            for key, value in config.to_dict().items():
                print(f"  {key}: {value}")
            print("\n[Dry run - not invoking]")
            return EXIT_OK
        report = asyncio.run(run(config, health_check=args.health_check))
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    except Exception:
        logger.exception("Benchmark failed")
        return EXIT_ERROR

    print_report(report)
    if config.output_dir:
        print(f"\nResults saved to {config.output_dir}")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
