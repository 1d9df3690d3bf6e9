import pytest

from grpc_middleware.core import (
    Code,
    ServerStream,
    StatusError,
    StreamServerInfo,
    UnaryServerInfo,
    background,
    status_code,
)
from grpc_middleware.recovery import (
    PanicError,
    stream_server_interceptor,
    unary_server_interceptor,
    with_recovery_handler,
    with_recovery_handler_context,
)

UNARY_INFO = UnaryServerInfo("/testing.testpb.v1.TestService/Ping")
STREAM_INFO = StreamServerInfo("/testing.testpb.v1.TestService/PingList", is_server_stream=True)


class FakeStream(ServerStream):
    def __init__(self, ctx):
        self._ctx = ctx
        self.sent = []

    def context(self):
        return self._ctx

    def send_msg(self, m):
        self.sent.append(m)

    def recv_msg(self):
        raise EOFError


def ping_handler(ctx, req):
    if req == "panic":
        raise RuntimeError("very bad thing happened")
    return f"pong {req}"


def ping_list_handler(srv, stream):
    if srv == "panic":
        raise RuntimeError("very bad thing happened")
    stream.send_msg("pong")


def override_handler(p):
    return StatusError(Code.UNKNOWN, f"panic triggered: {p}")


def test_unary_successful_request():
    assert unary_server_interceptor()(background(), "something", UNARY_INFO, ping_handler) == "pong something"


def test_unary_panicking_request():
    with pytest.raises(PanicError) as info:
        unary_server_interceptor()(background(), "panic", UNARY_INFO, ping_handler)
    err = info.value
    assert status_code(err) == Code.UNKNOWN
    assert "panic caught" in str(err)
    assert "very bad thing happened" in str(err)
    assert "ping_handler" in err.stack


def test_stream_successful_receive():
    stream = FakeStream(background())
    stream_server_interceptor()("ok", stream, STREAM_INFO, ping_list_handler)
    assert stream.sent == ["pong"]


def test_stream_panicking_receive():
    with pytest.raises(PanicError) as info:
        stream_server_interceptor()("panic", FakeStream(background()), STREAM_INFO, ping_list_handler)
    assert status_code(info.value) == Code.UNKNOWN
    assert "panic caught" in str(info.value)
    assert "ping_list_handler" in info.value.stack


def test_override_unary_successful_request():
    interceptor = unary_server_interceptor(with_recovery_handler(override_handler))
    assert interceptor(background(), "x", UNARY_INFO, ping_handler) == "pong x"


def test_override_unary_panicking_request():
    interceptor = unary_server_interceptor(with_recovery_handler(override_handler))
    with pytest.raises(StatusError) as info:
        interceptor(background(), "panic", UNARY_INFO, ping_handler)
    assert info.value.code == Code.UNKNOWN
    assert info.value.message == "panic triggered: very bad thing happened"


def test_override_stream_panicking_receive():
    interceptor = stream_server_interceptor(with_recovery_handler(override_handler))
    with pytest.raises(StatusError) as info:
        interceptor("panic", FakeStream(background()), STREAM_INFO, ping_list_handler)
    assert info.value.code == Code.UNKNOWN
    assert info.value.message == "panic triggered: very bad thing happened"


def test_handler_context_receives_call_context():
    key = object()
    seen = []

    def recover(ctx, p):
        seen.append(ctx.value(key))
        return StatusError(Code.INTERNAL, "recovered")

    ctx = background().with_value(key, "marker")
    stream = FakeStream(ctx)
    with pytest.raises(StatusError) as info:
        stream_server_interceptor(with_recovery_handler_context(recover))("panic", stream, STREAM_INFO, ping_list_handler)
    assert info.value.code == Code.INTERNAL
    assert seen == ["marker"]


def test_status_errors_pass_through():
    def failing(ctx, req):
        raise StatusError(Code.NOT_FOUND, "missing")

    with pytest.raises(StatusError) as info:
        unary_server_interceptor()(background(), None, UNARY_INFO, failing)
    assert info.value.code == Code.NOT_FOUND


def test_recovery_returning_none_swallows_error():
    interceptor = unary_server_interceptor(with_recovery_handler(lambda p: None))
    assert interceptor(background(), "panic", UNARY_INFO, ping_handler) is None


def test_panic_error_message_format():
    assert str(PanicError("boom", "stack")) == "panic caught: boom\n\nstack"