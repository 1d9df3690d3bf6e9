"""Server interceptors that feed call and message events to a reporter."""

from __future__ import annotations

import time
from typing import Any, Callable

from .core import Context, ServerStream, StreamServerInfo, UnaryServerInfo
from .reporter import Reporter, ServerReportable, new_server_call_meta

UnaryHandler = Callable[[Context, Any], Any]
StreamHandler = Callable[[Any, ServerStream], None]


def _since(start: float) -> float:
    return time.monotonic() - start


def unary_server_interceptor(reportable: ServerReportable):
    """Return a unary server interceptor that reports through ``reportable``."""

    def interceptor(ctx: Context, req: Any, info: UnaryServerInfo, handler: UnaryHandler) -> Any:
        start = time.monotonic()
        reporter, new_ctx = reportable.server_reporter(ctx, new_server_call_meta(info.full_method, None, req))
        reporter.post_msg_receive(req, None, _since(start))
        try:
            resp = handler(new_ctx, req)
        except Exception as err:
            reporter.post_msg_send(None, err, _since(start))
            reporter.post_call(err, _since(start))
            raise
        reporter.post_msg_send(resp, None, _since(start))
        reporter.post_call(None, _since(start))
        return resp

    return interceptor


class _MonitoredServerStream(ServerStream):
    def __init__(self, stream: ServerStream, ctx: Context, reporter: Reporter) -> None:
        self._stream = stream
        self._ctx = ctx
        self._reporter = reporter

    def context(self) -> Context:
        return self._ctx

    def send_msg(self, m: Any) -> None:
        start = time.monotonic()
        try:
            self._stream.send_msg(m)
        except Exception as err:
            self._reporter.post_msg_send(m, err, _since(start))
            raise
        self._reporter.post_msg_send(m, None, _since(start))

    def recv_msg(self) -> Any:
        start = time.monotonic()
        try:
            m = self._stream.recv_msg()
        except Exception as err:
            self._reporter.post_msg_receive(None, err, _since(start))
            raise
        self._reporter.post_msg_receive(m, None, _since(start))
        return m


def stream_server_interceptor(reportable: ServerReportable):
    """Return a streaming server interceptor that reports every message and the call."""

    def interceptor(srv: Any, stream: ServerStream, info: StreamServerInfo, handler: StreamHandler) -> None:
        start = time.monotonic()
        meta = new_server_call_meta(info.full_method, info, None)
        reporter, new_ctx = reportable.server_reporter(stream.context(), meta)
        try:
            handler(srv, _MonitoredServerStream(stream, new_ctx, reporter))
        except Exception as err:
            reporter.post_call(err, _since(start))
            raise
        reporter.post_call(None, _since(start))

    return interceptor