"""Server interceptors that recover from handler crashes.

An exception escaping a handler that is not an RPC error (a StatusError or a
context error) is treated as a crash. By default it is turned into a
:class:`PanicError`, which reports as status UNKNOWN and carries the
traceback. A custom recovery function can be given instead.
"""

from __future__ import annotations

import traceback
from dataclasses import dataclass
from typing import Any, Callable

from .core import Context, ContextError, ServerStream, StatusError, StreamServerInfo, UnaryServerInfo

RecoveryHandlerFunc = Callable[[Any], "BaseException | None"]
RecoveryHandlerFuncContext = Callable[[Context, Any], "BaseException | None"]


class PanicError(Exception):
    """A crash caught in a handler, with its traceback."""

    def __init__(self, panic: Any, stack: str) -> None:
        super().__init__(panic, stack)
        self.panic = panic
        self.stack = stack

    def __str__(self) -> str:
        return f"panic caught: {self.panic}\n\n{self.stack}"


@dataclass
class _Options:
    recovery_handler_func: RecoveryHandlerFuncContext | None = None


Option = Callable[[_Options], None]


def _evaluate_options(opts: tuple[Option, ...]) -> _Options:
    options = _Options()
    for opt in opts:
        opt(options)
    return options


def with_recovery_handler(f: RecoveryHandlerFunc) -> Option:
    """Recover with ``f(panic)``, which returns the error to report."""

    def apply(o: _Options) -> None:
        o.recovery_handler_func = lambda ctx, p: f(p)

    return apply


def with_recovery_handler_context(f: RecoveryHandlerFuncContext) -> Option:
    """Recover with ``f(ctx, panic)``, which returns the error to report."""

    def apply(o: _Options) -> None:
        o.recovery_handler_func = f

    return apply


def _recover_from(ctx: Context, exc: BaseException, handler: RecoveryHandlerFuncContext | None) -> BaseException | None:
    if handler is not None:
        return handler(ctx, exc)
    stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return PanicError(exc, stack)


def _is_rpc_error(exc: BaseException) -> bool:
    return isinstance(exc, (StatusError, ContextError))


def unary_server_interceptor(*opts: Option):
    """Return a unary server interceptor that recovers from handler crashes."""
    options = _evaluate_options(opts)

    def interceptor(ctx: Context, req: Any, info: UnaryServerInfo, handler: Callable[[Context, Any], Any]) -> Any:
        try:
            return handler(ctx, req)
        except Exception as exc:
            if _is_rpc_error(exc):
                raise
            err = _recover_from(ctx, exc, options.recovery_handler_func)
            if err is None:
                return None
            raise err from exc

    return interceptor


def stream_server_interceptor(*opts: Option):
    """Return a streaming server interceptor that recovers from handler crashes."""
    options = _evaluate_options(opts)

    def interceptor(
        srv: Any, stream: ServerStream, info: StreamServerInfo, handler: Callable[[Any, ServerStream], None]
    ) -> None:
        try:
            handler(srv, stream)
        except Exception as exc:
            if _is_rpc_error(exc):
                raise
            err = _recover_from(stream.context(), exc, options.recovery_handler_func)
            if err is None:
                return
            raise err from exc

    return interceptor