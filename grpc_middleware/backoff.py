"""Backoff helpers. Durations are seconds as floats."""

from __future__ import annotations

import random
from typing import Callable

from .core import Context

BackoffFunc = Callable[[Context, int], float]


def jitter_up(duration: float, jitter: float) -> float:
    """Return ``duration`` moved randomly by up to ``jitter`` of itself either way."""
    multiplier = jitter * (random.random() * 2 - 1)
    return duration * (1 + multiplier)


def exponent_base2(a: int) -> int:
    """Return 2**(a-1) for a >= 1, and 0 for a == 0."""
    return (1 << a) >> 1


def backoff_linear(wait_between: float) -> BackoffFunc:
    """Wait a fixed time between calls."""
    wait = float(wait_between)

    def backoff(ctx: Context, attempt: int) -> float:
        return float(wait)

    return backoff


def backoff_linear_with_jitter(wait_between: float, jitter_fraction: float) -> BackoffFunc:
    """Wait a fixed time between calls, adjusted by a random jitter fraction."""

    def backoff(ctx: Context, attempt: int) -> float:
        return jitter_up(wait_between, jitter_fraction)

    return backoff


def backoff_exponential(scalar: float) -> BackoffFunc:
    """Wait ``scalar`` times 2**(attempt-1) between calls."""

    def backoff(ctx: Context, attempt: int) -> float:
        return scalar * exponent_base2(attempt)

    return backoff


def backoff_exponential_with_jitter(scalar: float, jitter_fraction: float) -> BackoffFunc:
    """Exponential backoff with a random jitter fraction."""

    def backoff(ctx: Context, attempt: int) -> float:
        return jitter_up(scalar * exponent_base2(attempt), jitter_fraction)

    return backoff