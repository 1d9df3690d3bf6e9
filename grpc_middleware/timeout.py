"""Client interceptor that puts a timeout on each call."""

from __future__ import annotations

from typing import Any, Callable

from .core import Context


def unary_client_interceptor(timeout: float):
    """Return a unary client interceptor that gives each call a ``timeout`` in seconds.

    The invoker receives a context that expires after ``timeout``; the context
    is cancelled once the call returns.
    """

    def interceptor(ctx: Context, method: str, req: Any, cc: Any, invoker: Callable[..., Any], *opts: Any) -> Any:
        timed_ctx = ctx.with_timeout(timeout)
        try:
            return invoker(timed_ctx, method, req, cc, *opts)
        finally:
            timed_ctx.cancel()

    return interceptor