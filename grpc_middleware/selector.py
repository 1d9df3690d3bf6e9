"""Interceptors that run another interceptor only for calls a matcher selects.

Useful to switch middleware such as authentication on or off by method.
"""

from __future__ import annotations

import abc
from typing import Any, Callable

from .core import ClientStream, Context, ServerStream, StreamDesc, StreamServerInfo, UnaryServerInfo
from .reporter import CallMeta, new_client_call_meta, new_server_call_meta


class Matcher(abc.ABC):
    """Decides whether a call is selected."""

    @abc.abstractmethod
    def match(self, ctx: Context, call_meta: CallMeta) -> bool:
        """Return True if the call described by ``call_meta`` is selected."""


class _FuncMatcher(Matcher):
    def __init__(self, func: Callable[[Context, CallMeta], bool]) -> None:
        self._func = func

    def match(self, ctx: Context, call_meta: CallMeta) -> bool:
        return self._func(ctx, call_meta)


def match_func(f: Callable[[Context, CallMeta], bool]) -> Matcher:
    """Return a matcher backed by the function ``f(ctx, call_meta)``."""
    return _FuncMatcher(f)


def unary_server_interceptor(interceptor, matcher: Matcher):
    """Run ``interceptor`` for matching unary server calls; call the handler directly otherwise."""

    def selected(ctx: Context, req: Any, info: UnaryServerInfo, handler: Callable[[Context, Any], Any]) -> Any:
        meta = new_server_call_meta(info.full_method, None, req)
        if matcher.match(ctx, meta):
            return interceptor(ctx, req, info, handler)
        return handler(ctx, req)

    return selected


def stream_server_interceptor(interceptor, matcher: Matcher):
    """Run ``interceptor`` for matching streaming server calls; call the handler directly otherwise."""

    def selected(
        srv: Any, stream: ServerStream, info: StreamServerInfo, handler: Callable[[Any, ServerStream], None]
    ) -> None:
        meta = new_server_call_meta(info.full_method, info, None)
        if matcher.match(stream.context(), meta):
            return interceptor(srv, stream, info, handler)
        return handler(srv, stream)

    return selected


def unary_client_interceptor(interceptor, matcher: Matcher):
    """Run ``interceptor`` for matching unary client calls; call the invoker directly otherwise.

    Interceptors take ``(ctx, method, req, cc, invoker, *opts)``; invokers take
    ``(ctx, method, req, cc, *opts)`` and return the reply.
    """

    def selected(ctx: Context, method: str, req: Any, cc: Any, invoker: Callable[..., Any], *opts: Any) -> Any:
        meta = new_client_call_meta(method, None, req)
        if matcher.match(ctx, meta):
            return interceptor(ctx, method, req, cc, invoker, *opts)
        return invoker(ctx, method, req, cc, *opts)

    return selected


def stream_client_interceptor(interceptor, matcher: Matcher):
    """Run ``interceptor`` for matching streaming client calls; call the streamer directly otherwise.

    Interceptors take ``(ctx, desc, cc, method, streamer, *opts)``; streamers take
    ``(ctx, desc, cc, method, *opts)`` and return a client stream.
    """

    def selected(
        ctx: Context, desc: StreamDesc, cc: Any, method: str, streamer: Callable[..., ClientStream], *opts: Any
    ) -> ClientStream:
        meta = new_client_call_meta(method, desc, None)
        if matcher.match(ctx, meta):
            return interceptor(ctx, desc, cc, method, streamer, *opts)
        return streamer(ctx, desc, cc, method, *opts)

    return selected