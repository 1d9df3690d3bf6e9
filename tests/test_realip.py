import ipaddress

import pytest

from grpc_middleware.core import Peer, ServerStream, StreamServerInfo, UnaryServerInfo, background, with_peer
from grpc_middleware.metadata import pairs
from grpc_middleware.realip import (
    TRUE_CLIENT_IP,
    X_FORWARDED_FOR,
    X_REAL_IP,
    from_context,
    stream_server_interceptor,
    unary_server_interceptor,
)

LOCALNET = [ipaddress.ip_network("127.0.0.1/8", strict=False)]
PRIVATENET = [
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
]
PRIVATE_IP = ipaddress.ip_address("192.168.0.1")
PUBLIC_IP = ipaddress.ip_address("8.8.8.8")
LOCALHOST = ipaddress.ip_address("127.0.0.1")


def tcp_peer(ip):
    return Peer(addr=f"{ip}:0")


class FakeStream(ServerStream):
    def __init__(self, ctx):
        self._ctx = ctx

    def context(self):
        return self._ctx

    def send_msg(self, m):
        return None

    def recv_msg(self):
        raise EOFError


CASES = {
    "no peer": (LOCALNET, [X_FORWARDED_FOR], {X_FORWARDED_FOR: str(LOCALHOST)}, None, None),
    "trusted peer header csv": (
        LOCALNET, [X_FORWARDED_FOR], {X_FORWARDED_FOR: f"{LOCALHOST},{PUBLIC_IP}"}, tcp_peer(LOCALHOST), PUBLIC_IP,
    ),
    "trusted peer single": (LOCALNET, [X_REAL_IP], {X_REAL_IP: str(PRIVATE_IP)}, tcp_peer(LOCALHOST), PRIVATE_IP),
    "trusted peer multiple": (
        PRIVATENET, [TRUE_CLIENT_IP], {TRUE_CLIENT_IP: str(PUBLIC_IP)}, tcp_peer(PRIVATE_IP), PUBLIC_IP,
    ),
    "untrusted peer single": (LOCALNET, [X_REAL_IP], {X_REAL_IP: str(PRIVATE_IP)}, tcp_peer(PUBLIC_IP), PUBLIC_IP),
    "trusted peer multiple headers": (
        LOCALNET, [X_REAL_IP, TRUE_CLIENT_IP],
        {X_REAL_IP: str(PRIVATE_IP), TRUE_CLIENT_IP: str(PUBLIC_IP)}, tcp_peer(LOCALHOST), PRIVATE_IP,
    ),
    "trusted peer multiple header configured single provided": (
        LOCALNET, [X_REAL_IP, TRUE_CLIENT_IP, X_FORWARDED_FOR],
        {TRUE_CLIENT_IP: str(PUBLIC_IP)}, tcp_peer(LOCALHOST), PUBLIC_IP,
    ),
    "trusted peer multiple header configured none provided": (
        LOCALNET, [X_REAL_IP, TRUE_CLIENT_IP, X_FORWARDED_FOR], None, tcp_peer(LOCALHOST), LOCALHOST,
    ),
    "untrusted peer multiple headers": (
        None, None, {X_REAL_IP: str(PRIVATE_IP), TRUE_CLIENT_IP: str(LOCALHOST)}, tcp_peer(PUBLIC_IP), PUBLIC_IP,
    ),
    "untrusted peer multiple header configured single provided": (
        None, [X_REAL_IP, TRUE_CLIENT_IP, X_FORWARDED_FOR],
        {TRUE_CLIENT_IP: str(PUBLIC_IP)}, tcp_peer(PUBLIC_IP), PUBLIC_IP,
    ),
    "trusted peer malformed header": (
        LOCALNET, [X_REAL_IP, TRUE_CLIENT_IP, X_FORWARDED_FOR],
        {TRUE_CLIENT_IP: "malformed"}, tcp_peer(LOCALHOST), LOCALHOST,
    ),
    "unix": (LOCALNET, [X_REAL_IP], None, Peer(addr="unix", network="unix"), None),
    "header casing": (LOCALNET, [X_REAL_IP], {"X-Real-IP": str(PRIVATE_IP)}, tcp_peer(LOCALHOST), PRIVATE_IP),
}


def build_context(peer, headers):
    ctx = background()
    if peer is not None:
        ctx = with_peer(ctx, peer)
    if headers is not None:
        kv = [item for pair in headers.items() for item in pair]
        ctx = pairs(*kv).to_incoming(ctx)
    return ctx


@pytest.mark.parametrize("name", list(CASES))
def test_unary_interceptor(name):
    trusted, keys, headers, peer, expected = CASES[name]
    seen = []

    def handler(ctx, req):
        seen.append(from_context(ctx))
        return "resp"

    interceptor = unary_server_interceptor(trusted, keys)
    resp = interceptor(build_context(peer, headers), None, UnaryServerInfo("FakeMethod"), handler)
    assert resp == "resp"
    assert seen == [expected]


@pytest.mark.parametrize("name", list(CASES))
def test_stream_interceptor(name):
    trusted, keys, headers, peer, expected = CASES[name]
    seen = []

    def handler(srv, stream):
        seen.append(from_context(stream.context()))

    interceptor = stream_server_interceptor(trusted, keys)
    interceptor(None, FakeStream(build_context(peer, headers)), StreamServerInfo("FakeMethod"), handler)
    assert seen == [expected]


def test_stream_without_ip_passes_original_stream():
    original = FakeStream(background())
    received = []
    stream_server_interceptor(LOCALNET, [X_REAL_IP])(
        None, original, StreamServerInfo("FakeMethod"), lambda srv, s: received.append(s)
    )
    assert received == [original]


def test_trusted_peers_accept_strings():
    seen = []
    interceptor = unary_server_interceptor(["127.0.0.1/8"], [X_REAL_IP])
    ctx = build_context(tcp_peer(LOCALHOST), {X_REAL_IP: str(PRIVATE_IP)})
    interceptor(ctx, None, UnaryServerInfo("FakeMethod"), lambda c, r: seen.append(from_context(c)))
    assert seen == [PRIVATE_IP]


def test_from_context_empty():
    assert from_context(background()) is None