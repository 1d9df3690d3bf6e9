# grpc_middleware

Composable interceptors for gRPC-style calls. Every interceptor is a plain
Python callable that wraps a handler, invoker or streamer, so interceptors can
be chained in front of whatever carries the calls. Errors are raised as
exceptions; durations and timeouts are seconds as floats.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Calling conventions

- Unary server interceptor: `interceptor(ctx, req, info, handler)`, where
  `handler(ctx, req)` returns the response.
- Streaming server interceptor: `interceptor(srv, stream, info, handler)`,
  where `handler(srv, stream)` works with a `core.ServerStream`.
- Unary client interceptor: `interceptor(ctx, method, req, cc, invoker, *opts)`,
  where `invoker(ctx, method, req, cc, *opts)` returns the reply.
- Streaming client interceptor: `interceptor(ctx, desc, cc, method, streamer, *opts)`,
  where `streamer(ctx, desc, cc, method, *opts)` returns a `core.ClientStream`.

Streams raise `EOFError` from `recv_msg()` at the end of input. RPC failures
are `core.StatusError` exceptions carrying a `core.Code`.

## Modules

- `grpc_middleware.core`: `Code`, `StatusError` and `status_code`; `Context`
  (values, `with_cancel`, `with_timeout`, `cancel`, `err`, `wait`) with
  `background()` and the errors `ContextCanceled` and `ContextDeadlineExceeded`;
  `Peer`, `with_peer` and `peer_from_context`; `UnaryServerInfo`,
  `StreamServerInfo` and `StreamDesc`; the abstract `ServerStream` and
  `ClientStream`; and `wrap_server_stream`, which returns a
  `WrappedServerStream` whose `wrapped_context` can be replaced.
- `grpc_middleware.metadata`: `MD`, a dict of lower-case keys to lists of
  values, with `get`, `set`, `add`, `delete`, `clone`, `to_incoming` and
  `to_outgoing`; plus `pairs`, `extract_incoming` and `extract_outgoing`.
  Values set or added under keys ending in `-bin` are base64-encoded.
- `grpc_middleware.backoff`: `jitter_up`, `exponent_base2`, and the backoff
  factories `backoff_linear`, `backoff_linear_with_jitter`,
  `backoff_exponential` and `backoff_exponential_with_jitter`.
- `grpc_middleware.reporter`: `GRPCType`, `CallMeta`, `new_server_call_meta`,
  `new_client_call_meta`, the `Reporter` interface, `NoopReporter`,
  `ServerReportable`, `ClientReportable` and `CommonReportable`.
- `grpc_middleware.server`: `unary_server_interceptor` and
  `stream_server_interceptor`, which report each received and sent message and
  the end of each call to a `ServerReportable`.
- `grpc_middleware.realip`: interceptors that store the client's real IP in
  the context; read it with `from_context`. Headers are only trusted when the
  peer is inside one of the trusted networks; the rightmost address of a comma
  separated header is used. Header names `X_REAL_IP`, `X_FORWARDED_FOR` and
  `TRUE_CLIENT_IP` are provided.
- `grpc_middleware.recovery`: turns exceptions raised by handlers (other than
  `StatusError` and context errors) into `PanicError`, or into whatever
  `with_recovery_handler` / `with_recovery_handler_context` returns.
- `grpc_middleware.selector`: applies an interceptor only to calls accepted
  by a `Matcher`; `match_func` builds one from a function.
- `grpc_middleware.timeout`: `unary_client_interceptor(timeout)` gives each
  call a context that expires after `timeout` seconds.
- `grpc_middleware.retry`: retrying unary and server-streaming client
  interceptors, configured with `with_max`, `with_backoff`, `with_codes`,
  `with_retriable`, `with_per_retry_timeout`, `with_on_retry_callback` and
  `disable`. Retries are off by default; when enabled, `RESOURCE_EXHAUSTED`
  and `UNAVAILABLE` are retried after a 50ms backoff with 10% jitter. Options
  may also be passed among the call options. Retried attempts carry an
  `x-retry-attempt` outgoing metadata entry.
- `grpc_middleware.validator`: rejects messages whose `validate_all()` or
  `validate(...)` method reports a failure with an `INVALID_ARGUMENT` status
  error; see `with_fail_fast` and `with_on_validation_err_callback`.

## Examples

Retrying a unary call:

```python
from grpc_middleware import backoff, core, retry

calls = []

def invoker(ctx, method, req, cc):
    calls.append(method)
    if len(calls) < 3:
        raise core.StatusError(core.Code.UNAVAILABLE, "try again")
    return "pong"

call = retry.unary_client_interceptor(
    retry.with_max(3),
    retry.with_backoff(backoff.backoff_linear(0.01)),
)
reply = call(core.background(), "/ping.v1.PingService/Ping", "ping", None, invoker)
assert reply == "pong" and len(calls) == 3
```

Finding the real client IP behind a trusted proxy:

```python
from grpc_middleware import core, metadata, realip

interceptor = realip.unary_server_interceptor(["127.0.0.1/32"], [realip.X_FORWARDED_FOR])

ctx = core.with_peer(core.background(), core.Peer("127.0.0.1:5000"))
ctx = metadata.pairs("X-Forwarded-For", "10.0.0.1, 203.0.113.7").to_incoming(ctx)

ip = interceptor(ctx, None, core.UnaryServerInfo("/ping.v1.PingService/Ping"),
                 lambda ctx, req: realip.from_context(ctx))
assert str(ip) == "203.0.113.7"
```

## What this package does not do

It carries no calls itself: there is no network transport, server or client
channel, and no generated service code. Interceptors are called with your own
handlers, invokers and streamers. It has no metrics exporter either; the
reporter interfaces are the hook for one.