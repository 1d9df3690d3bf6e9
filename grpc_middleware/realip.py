"""Server interceptors that work out the real client IP of a call.

The IP is read from the remote peer address. When that peer is inside one of
the trusted networks (a proxy or load balancer known to set forwarding
headers), the configured headers are searched in order and the first one
holding a valid IP is used. Comma separated header values are supported: the
last, rightmost address is taken. Header values that are not valid IPs are
ignored, and if no header helps, the peer address is used.

Peers that are not TCP/IP addresses give no IP at all. The result is stored
in the call context and read back with :func:`from_context`.
"""

from __future__ import annotations

import ipaddress
from typing import Any, Callable, Iterable, Sequence, Union

from .core import Context, ServerStream, StreamServerInfo, UnaryServerInfo, WrappedServerStream, peer_from_context
from .metadata import extract_incoming

X_REAL_IP = "X-Real-IP"
X_FORWARDED_FOR = "X-Forwarded-For"
TRUE_CLIENT_IP = "True-Client-IP"

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]

_REALIP_KEY = object()


def from_context(ctx: Context) -> IPAddress | None:
    """Return the real client IP stored in the context, or None if there is none."""
    return ctx.value(_REALIP_KEY)


def _to_network(net: IPNetwork | str) -> IPNetwork:
    if isinstance(net, (ipaddress.IPv4Network, ipaddress.IPv6Network)):
        return net
    return ipaddress.ip_network(net, strict=False)


def _ip_in_nets(ip: IPAddress, nets: Iterable[IPNetwork]) -> bool:
    return any(ip.version == net.version and ip in net for net in nets)


def _parse_ip(text: str) -> IPAddress | None:
    try:
        return ipaddress.ip_address(text)
    except ValueError:
        return None


def _ip_from_headers(ctx: Context, headers: Iterable[str]) -> IPAddress | None:
    md = extract_incoming(ctx)
    for header in headers:
        last = md.get(header).split(",")[-1].strip()
        ip = _parse_ip(last)
        if ip is not None:
            return ip
    return None


def _get_remote_ip(ctx: Context, trusted: Sequence[IPNetwork], headers: Sequence[str]) -> IPAddress | None:
    peer = peer_from_context(ctx)
    if peer is None:
        return None
    ip = _parse_ip(peer.addr.split(":")[0])
    if ip is None:
        return None
    if not trusted or not _ip_in_nets(ip, trusted):
        return ip
    from_headers = _ip_from_headers(ctx, headers)
    if from_headers is not None:
        return from_headers
    # No usable header: the peer address is better than nothing.
    return ip


def unary_server_interceptor(
    trusted_peers: Iterable[IPNetwork | str] | None,
    headers: Iterable[str] | None,
) -> Callable[[Context, Any, UnaryServerInfo, Callable[[Context, Any], Any]], Any]:
    """Return a unary server interceptor that stores the real client IP in the context."""
    trusted = tuple(_to_network(n) for n in trusted_peers or ())
    header_keys = tuple(headers or ())

    def interceptor(ctx: Context, req: Any, info: UnaryServerInfo, handler: Callable[[Context, Any], Any]) -> Any:
        ip = _get_remote_ip(ctx, trusted, header_keys)
        if ip is not None:
            ctx = ctx.with_value(_REALIP_KEY, ip)
        return handler(ctx, req)

    return interceptor


def stream_server_interceptor(
    trusted_peers: Iterable[IPNetwork | str] | None,
    headers: Iterable[str] | None,
) -> Callable[[Any, ServerStream, StreamServerInfo, Callable[[Any, ServerStream], None]], None]:
    """Return a streaming server interceptor that stores the real client IP in the stream context."""
    trusted = tuple(_to_network(n) for n in trusted_peers or ())
    header_keys = tuple(headers or ())

    def interceptor(
        srv: Any, stream: ServerStream, info: StreamServerInfo, handler: Callable[[Any, ServerStream], None]
    ) -> None:
        ip = _get_remote_ip(stream.context(), trusted, header_keys)
        if ip is not None:
            wrapped = WrappedServerStream(stream, stream.context().with_value(_REALIP_KEY, ip))
            return handler(srv, wrapped)
        return handler(srv, stream)

    return interceptor