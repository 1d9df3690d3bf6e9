"""Composable interceptors for gRPC-style calls: retry, recovery, real IP, selector, timeout, validation and reporting."""

__version__ = "0.1.0"

__all__ = [
    "core",
    "metadata",
    "backoff",
    "reporter",
    "server",
    "realip",
    "recovery",
    "selector",
    "timeout",
    "retry",
    "validator",
]