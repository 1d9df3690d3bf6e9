"""Client-side retry interceptors.

Calls are retried automatically based on the status code of the reply.
Unary (1:1) and server-streaming (1:n) calls are supported.

Retries are disabled by default (``max`` is 0), which prevents accidental
use. Enable them when the interceptor is built, or per call by passing
:class:`CallOption` values among the call options, e.g. ``with_max(5)``.
By default ``RESOURCE_EXHAUSTED`` and ``UNAVAILABLE`` are retried, with a
50ms linear backoff and 10% jitter.

In a chain of interceptors, every interceptor that follows the retry
interceptor is called again on each retry.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from .backoff import BackoffFunc, backoff_linear_with_jitter
from .core import (
    ClientStream,
    Code,
    Context,
    ContextCanceled,
    ContextDeadlineExceeded,
    ContextError,
    StatusError,
    StreamDesc,
    status_code,
)
from .metadata import extract_outgoing

ATTEMPT_METADATA_KEY = "x-retry-attempt"

DEFAULT_RETRIABLE_CODES = (Code.RESOURCE_EXHAUSTED, Code.UNAVAILABLE)

OnRetryCallback = Callable[[Context, int, BaseException], None]
RetriableFunc = Callable[[BaseException], bool]

_log = logging.getLogger(__name__)


def _is_context_error(err: BaseException) -> bool:
    if isinstance(err, ContextError):
        return True
    return status_code(err) in (Code.DEADLINE_EXCEEDED, Code.CANCELED)


def _new_retriable_func_for_codes(codes: Iterable[Code]) -> RetriableFunc:
    retriable = frozenset(Code(code) for code in codes)

    def is_retriable(err: BaseException) -> bool:
        # Context errors are never retried on user settings.
        if _is_context_error(err):
            return False
        return status_code(err) in retriable

    return is_retriable


def _log_retry(ctx: Context, attempt: int, err: BaseException) -> None:
    _log.debug("grpc_retry attempt: %d, backoff for %s", attempt, err)


@dataclass
class _Options:
    max: int = 0
    per_call_timeout: float = 0.0
    include_header: bool = True
    backoff_func: BackoffFunc = dataclasses.field(default_factory=lambda: backoff_linear_with_jitter(0.05, 0.10))
    on_retry_callback: OnRetryCallback = _log_retry
    retriable_func: RetriableFunc | None = dataclasses.field(
        default_factory=lambda: _new_retriable_func_for_codes(DEFAULT_RETRIABLE_CODES)
    )


_DEFAULT_OPTIONS = _Options()


@dataclass(frozen=True)
class CallOption:
    """An option of the retry interceptors; may also be passed among call options."""

    apply_func: Callable[[_Options], None]


def disable() -> CallOption:
    """Disable retries; the same as ``with_max(0)``."""
    return with_max(0)


def with_max(max_retries: int) -> CallOption:
    """Set the maximum number of attempts."""
    if max_retries < 0:
        raise ValueError(f"max_retries must not be negative: {max_retries}")

    def apply(o: _Options) -> None:
        o.max = max_retries

    return CallOption(apply)


def with_backoff(backoff_func: BackoffFunc) -> CallOption:
    """Set the function that gives the wait before each retry."""

    def apply(o: _Options) -> None:
        o.backoff_func = backoff_func

    return CallOption(apply)


def with_on_retry_callback(fn: OnRetryCallback) -> CallOption:
    """Set the callback called with ``(ctx, attempt, err)`` after a failed attempt."""

    def apply(o: _Options) -> None:
        o.on_retry_callback = fn

    return CallOption(apply)


def with_codes(*retry_codes: Code) -> CallOption:
    """Set which status codes are retried. Cancellation and deadlines never are."""

    def apply(o: _Options) -> None:
        o.retriable_func = _new_retriable_func_for_codes(retry_codes)

    return CallOption(apply)


def with_per_retry_timeout(timeout: float) -> CallOption:
    """Give each attempt its own timeout in seconds; 0 uses the parent deadline only.

    When set, attempts that fail with a deadline error are retried.
    """

    def apply(o: _Options) -> None:
        o.per_call_timeout = timeout

    return CallOption(apply)


def with_retriable(retriable_func: RetriableFunc) -> CallOption:
    """Set the function that decides whether an error is retried."""

    def apply(o: _Options) -> None:
        o.retriable_func = retriable_func

    return CallOption(apply)


def _reuse_or_new(opts: _Options, call_options: Iterable[CallOption]) -> _Options:
    call_options = list(call_options)
    if not call_options:
        return opts
    copy = dataclasses.replace(opts)
    for option in call_options:
        option.apply_func(copy)
    return copy


def _filter_call_options(opts: Iterable[Any]) -> tuple[list[Any], list[CallOption]]:
    grpc_opts: list[Any] = []
    retry_opts: list[CallOption] = []
    for opt in opts:
        (retry_opts if isinstance(opt, CallOption) else grpc_opts).append(opt)
    return grpc_opts, retry_opts


def _is_retriable(err: BaseException, opts: _Options) -> bool:
    if opts.retriable_func is not None:
        return opts.retriable_func(err)
    return False


def _context_err_to_status(err: ContextError | None) -> StatusError:
    if isinstance(err, ContextDeadlineExceeded):
        return StatusError(Code.DEADLINE_EXCEEDED, str(err))
    if isinstance(err, ContextCanceled):
        return StatusError(Code.CANCELED, str(err))
    return StatusError(Code.UNKNOWN, str(err))


def _wait_retry_backoff(attempt: int, parent_ctx: Context, opts: _Options) -> None:
    wait_time = opts.backoff_func(parent_ctx, attempt) if attempt > 0 else 0.0
    if wait_time > 0:
        _log.debug("grpc_retry attempt: %d, backoff for %ss", attempt, wait_time)
        if parent_ctx.wait(wait_time):
            raise _context_err_to_status(parent_ctx.err())


def _per_call_context(parent_ctx: Context, opts: _Options, attempt: int) -> tuple[Context, Callable[[], None]]:
    ctx = parent_ctx
    cancel: Callable[[], None] = lambda: None
    if opts.per_call_timeout:
        ctx = ctx.with_timeout(opts.per_call_timeout)
        cancel = ctx.cancel
    if attempt > 0 and opts.include_header:
        md = extract_outgoing(ctx).clone().set(ATTEMPT_METADATA_KEY, str(attempt))
        ctx = md.to_outgoing(ctx)
    return ctx, cancel


def _should_stop_on_context_error(err: BaseException, parent_ctx: Context, opts: _Options, attempt: int) -> bool | None:
    """True: give up; False: retry regardless of code; None: decide by retriability."""
    if not _is_context_error(err):
        return None
    if parent_ctx.err() is not None:
        _log.debug("grpc_retry attempt: %d, parent context error: %s", attempt, parent_ctx.err())
        return True
    if opts.per_call_timeout:
        _log.debug("grpc_retry attempt: %d, context error from retry call", attempt)
        return False
    return None


def unary_client_interceptor(*opt_funcs: CallOption):
    """Return a retrying unary client interceptor.

    Interceptors take ``(ctx, method, req, cc, invoker, *opts)``; invokers take
    ``(ctx, method, req, cc, *opts)`` and return the reply.
    """
    int_opts = _reuse_or_new(_DEFAULT_OPTIONS, opt_funcs)

    def interceptor(parent_ctx: Context, method: str, req: Any, cc: Any, invoker: Callable[..., Any], *opts: Any) -> Any:
        grpc_opts, retry_opts = _filter_call_options(opts)
        call_opts = _reuse_or_new(int_opts, retry_opts)
        if call_opts.max == 0:
            return invoker(parent_ctx, method, req, cc, *grpc_opts)
        last_err: BaseException | None = None
        for attempt in range(call_opts.max):
            _wait_retry_backoff(attempt, parent_ctx, call_opts)
            call_ctx, cancel = _per_call_context(parent_ctx, call_opts, attempt)
            try:
                return invoker(call_ctx, method, req, cc, *grpc_opts)
            except Exception as err:
                last_err = err
            finally:
                cancel()
            call_opts.on_retry_callback(parent_ctx, attempt, last_err)
            stop = _should_stop_on_context_error(last_err, parent_ctx, call_opts, attempt)
            if stop is True:
                raise last_err
            if stop is False:
                continue
            if not _is_retriable(last_err, call_opts):
                raise last_err
        raise last_err

    return interceptor


def stream_client_interceptor(*opt_funcs: CallOption):
    """Return a retrying client interceptor for server-streaming calls.

    Only server streams (1:n) can be retried, since the messages sent by the
    client are buffered for resending; other streams with retries enabled fail
    with UNIMPLEMENTED. Interceptors take ``(ctx, desc, cc, method, streamer, *opts)``;
    streamers take ``(ctx, desc, cc, method, *opts)`` and return a client stream.
    """
    int_opts = _reuse_or_new(_DEFAULT_OPTIONS, opt_funcs)

    def interceptor(
        parent_ctx: Context, desc: StreamDesc, cc: Any, method: str, streamer: Callable[..., ClientStream], *opts: Any
    ) -> ClientStream:
        grpc_opts, retry_opts = _filter_call_options(opts)
        call_opts = _reuse_or_new(int_opts, retry_opts)
        if call_opts.max == 0:
            return streamer(parent_ctx, desc, cc, method, *grpc_opts)
        if desc.client_streams:
            raise StatusError(
                Code.UNIMPLEMENTED, "grpc_retry: cannot retry on ClientStreams, set grpc_retry.Disable()"
            )

        def streamer_call(ctx: Context) -> ClientStream:
            return streamer(ctx, desc, cc, method, *grpc_opts)

        last_err: BaseException | None = None
        for attempt in range(call_opts.max):
            _wait_retry_backoff(attempt, parent_ctx, call_opts)
            try:
                new_stream = streamer_call(parent_ctx)
            except Exception as err:
                last_err = err
            else:
                return _ServerStreamingRetryingStream(new_stream, call_opts, parent_ctx, streamer_call)
            call_opts.on_retry_callback(parent_ctx, attempt, last_err)
            stop = _should_stop_on_context_error(last_err, parent_ctx, call_opts, attempt)
            if stop is True:
                raise last_err
            if stop is False:
                continue
            if not _is_retriable(last_err, call_opts):
                raise last_err
        raise last_err

    return interceptor


class _ServerStreamingRetryingStream(ClientStream):
    """Proxies a client stream and re-establishes it when a receive fails retriably."""

    def __init__(
        self,
        stream: ClientStream,
        call_opts: _Options,
        parent_ctx: Context,
        streamer_call: Callable[[Context], ClientStream],
    ) -> None:
        self._stream = stream
        self._call_opts = call_opts
        self._parent_ctx = parent_ctx
        self._streamer_call = streamer_call
        self._buffered_sends: list[Any] = []
        self._was_closed_send = False
        self._lock = threading.Lock()

    def _get_stream(self) -> ClientStream:
        with self._lock:
            return self._stream

    def _set_stream(self, stream: ClientStream) -> None:
        with self._lock:
            self._stream = stream

    def context(self) -> Context:
        return self._get_stream().context()

    def send_msg(self, m: Any) -> None:
        with self._lock:
            self._buffered_sends.append(m)
        self._get_stream().send_msg(m)

    def close_send(self) -> None:
        with self._lock:
            self._was_closed_send = True
        self._get_stream().close_send()

    def header(self) -> Any:
        return self._get_stream().header()

    def trailer(self) -> Any:
        return self._get_stream().trailer()

    def recv_msg(self) -> Any:
        retry, msg, last_err = self._receive_and_indicate_retry()
        if not retry:
            if last_err is not None:
                raise last_err
            return msg
        # Attempt 0 was the original stream.
        for attempt in range(1, self._call_opts.max):
            _wait_retry_backoff(attempt, self._parent_ctx, self._call_opts)
            self._call_opts.on_retry_callback(self._parent_ctx, attempt, last_err)
            try:
                new_stream = self._reestablish_and_resend(self._parent_ctx)
            except Exception as err:
                # Failures to set up a stream are retried as well.
                if _is_retriable(err, self._call_opts):
                    continue
                raise
            self._set_stream(new_stream)
            retry, msg, last_err = self._receive_and_indicate_retry()
            if not retry:
                if last_err is not None:
                    raise last_err
                return msg
        raise last_err

    def _receive_and_indicate_retry(self) -> tuple[bool, Any, BaseException | None]:
        try:
            return False, self._get_stream().recv_msg(), None
        except EOFError as eof:
            return False, None, eof
        except Exception as err:
            if _is_context_error(err):
                if self._parent_ctx.err() is not None:
                    _log.debug("grpc_retry parent context error: %s", self._parent_ctx.err())
                    return False, None, err
                if self._call_opts.per_call_timeout:
                    _log.debug("grpc_retry context error from retry call")
                    return True, None, err
            return _is_retriable(err, self._call_opts), None, err

    def _reestablish_and_resend(self, ctx: Context) -> ClientStream:
        with self._lock:
            buffered = list(self._buffered_sends)
        try:
            new_stream = self._streamer_call(ctx)
        except Exception as err:
            _log.debug("grpc_retry failed redialing new stream: %s", err)
            raise
        try:
            for msg in buffered:
                new_stream.send_msg(msg)
        except Exception as err:
            _log.debug("grpc_retry failed resending message: %s", err)
            raise
        try:
            new_stream.close_send()
        except Exception as err:
            _log.debug("grpc_retry failed CloseSend on new stream %s", err)
            raise
        return new_stream