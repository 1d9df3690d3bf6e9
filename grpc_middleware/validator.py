"""Interceptors that validate the messages of a call.

A message is validated if it has one of these methods, tried in this order:

* ``validate_all()``: checks every rule and reports all violations;
* ``validate(all)``: checks every rule when ``all`` is true, stops at the
  first violation when it is false;
* ``validate()``: the older form with no arguments.

A validation method signals failure by raising an exception or by returning
one. Invalid messages are rejected with an ``INVALID_ARGUMENT`` status error
whose description is the validation error's message.

When fail-fast is on, the argument-less ``validate()`` is tried first, then
``validate(False)``; ``validate_all()`` is not used.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from .core import Code, Context, ServerStream, StatusError, StreamServerInfo, UnaryServerInfo

OnValidationErrCallback = Callable[[Context, BaseException], None]

_CO_VARARGS = 0x04


@dataclass
class _Options:
    should_fail_fast: bool = False
    on_validation_err_callback: OnValidationErrCallback | None = None


Option = Callable[[_Options], None]


def _evaluate_opts(opts: tuple[Option, ...]) -> _Options:
    options = _Options()
    for opt in opts:
        opt(options)
    return options


def with_on_validation_err_callback(callback: OnValidationErrCallback) -> Option:
    """Call ``callback(ctx, err)`` whenever a message fails validation."""

    def apply(o: _Options) -> None:
        o.on_validation_err_callback = callback

    return apply


def with_fail_fast() -> Option:
    """Stop validating a message at its first violation."""

    def apply(o: _Options) -> None:
        o.should_fail_fast = True

    return apply


def _method(message: Any, name: str) -> Callable[..., Any] | None:
    method = getattr(message, name, None)
    return method if callable(method) else None


def _takes_argument(method: Callable[..., Any]) -> bool:
    func = getattr(method, "__func__", method)
    code = getattr(func, "__code__", None)
    if code is None:
        return False
    bound = 1 if func is not method and getattr(method, "__self__", None) is not None else 0
    return code.co_argcount - bound > 0 or bool(code.co_flags & _CO_VARARGS)


def _select_check(message: Any, should_fail_fast: bool) -> Callable[[], Any] | None:
    validate_all = _method(message, "validate_all")
    validate_method = _method(message, "validate")
    takes_all = validate_method is not None and _takes_argument(validate_method)

    if should_fail_fast:
        if validate_method is not None and not takes_all:
            return validate_method
        if validate_method is not None:
            return lambda: validate_method(False)
        return None

    if validate_all is not None:
        return validate_all
    if validate_method is not None and takes_all:
        return lambda: validate_method(True)
    if validate_method is not None:
        return validate_method
    return None


def validate(
    ctx: Context,
    message: Any,
    should_fail_fast: bool,
    on_validation_err_callback: OnValidationErrCallback | None,
) -> None:
    """Validate ``message``; raise an INVALID_ARGUMENT StatusError if it is invalid."""
    check = _select_check(message, should_fail_fast)
    if check is None:
        return
    err: BaseException | None
    try:
        result = check()
    except Exception as exc:
        err = exc
    else:
        err = result if isinstance(result, BaseException) else None
    if err is None:
        return
    if on_validation_err_callback is not None:
        on_validation_err_callback(ctx, err)
    raise StatusError(Code.INVALID_ARGUMENT, str(err)) from err


def unary_server_interceptor(*opts: Option):
    """Return a unary server interceptor that rejects invalid requests before the handler runs."""
    options = _evaluate_opts(opts)

    def interceptor(ctx: Context, req: Any, info: UnaryServerInfo, handler: Callable[[Context, Any], Any]) -> Any:
        validate(ctx, req, options.should_fail_fast, options.on_validation_err_callback)
        return handler(ctx, req)

    return interceptor


def unary_client_interceptor(*opts: Option):
    """Return a unary client interceptor that rejects invalid requests before they are sent.

    Interceptors take ``(ctx, method, req, cc, invoker, *opts)``; invokers take
    ``(ctx, method, req, cc, *opts)`` and return the reply.
    """
    options = _evaluate_opts(opts)

    def interceptor(ctx: Context, method: str, req: Any, cc: Any, invoker: Callable[..., Any], *call_opts: Any) -> Any:
        validate(ctx, req, options.should_fail_fast, options.on_validation_err_callback)
        return invoker(ctx, method, req, cc, *call_opts)

    return interceptor


class _RecvWrapper(ServerStream):
    def __init__(self, stream: ServerStream, options: _Options) -> None:
        self._stream = stream
        self._options = options

    def context(self) -> Context:
        return self._stream.context()

    def send_msg(self, m: Any) -> None:
        self._stream.send_msg(m)

    def recv_msg(self) -> Any:
        m = self._stream.recv_msg()
        validate(self.context(), m, self._options.should_fail_fast, self._options.on_validation_err_callback)
        return m


def stream_server_interceptor(*opts: Option):
    """Return a streaming server interceptor that validates every received message.

    Invalid messages are rejected when the handler receives them.
    """
    options = _evaluate_opts(opts)

    def interceptor(
        srv: Any, stream: ServerStream, info: StreamServerInfo, handler: Callable[[Any, ServerStream], None]
    ) -> None:
        return handler(srv, _RecvWrapper(stream, options))

    return interceptor