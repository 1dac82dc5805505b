"""Reporting utilities."""

from lambench.analysis.report import BenchmarkReport, TraceWriter, generate_report, write_summary

__all__ = ["BenchmarkReport", "TraceWriter", "generate_report", "write_summary"]
