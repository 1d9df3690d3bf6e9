"""Call metadata and the reporter interfaces used by monitoring interceptors."""

from __future__ import annotations

import abc
import enum
from dataclasses import dataclass
from typing import Any, Callable

from .core import Code, Context, StreamDesc, StreamServerInfo


class GRPCType(str, enum.Enum):
    """Kind of call by how each side streams."""

    UNARY = "unary"
    CLIENT_STREAM = "client_stream"
    SERVER_STREAM = "server_stream"
    BIDI_STREAM = "bidi_stream"


ALL_CODES = (
    Code.OK, Code.CANCELED, Code.UNKNOWN, Code.INVALID_ARGUMENT, Code.DEADLINE_EXCEEDED, Code.NOT_FOUND,
    Code.ALREADY_EXISTS, Code.PERMISSION_DENIED, Code.UNAUTHENTICATED, Code.RESOURCE_EXHAUSTED,
    Code.FAILED_PRECONDITION, Code.ABORTED, Code.OUT_OF_RANGE, Code.UNIMPLEMENTED, Code.INTERNAL,
    Code.UNAVAILABLE, Code.DATA_LOSS,
)


@dataclass(frozen=True)
class CallMeta:
    """What an interceptor knows about a call."""

    typ: GRPCType
    service: str
    method: str
    req_or_none: Any = None
    is_client: bool = False

    def full_method(self) -> str:
        """Return the method name in "/service/method" form."""
        return f"/{self.service}/{self.method}"


def _split_full_method(full_method: str) -> tuple[str, str]:
    name = full_method.removeprefix("/")
    service, sep, method = name.partition("/")
    if not sep:
        return "unknown", "unknown"
    return service, method


def _type_from(client_streams: bool, server_streams: bool) -> GRPCType:
    if client_streams and server_streams:
        return GRPCType.BIDI_STREAM
    if client_streams:
        return GRPCType.CLIENT_STREAM
    if server_streams:
        return GRPCType.SERVER_STREAM
    return GRPCType.UNARY


def new_server_call_meta(full_method: str, stream_info: StreamServerInfo | None, req: Any) -> CallMeta:
    """Describe a server-side call; no stream info means a unary call."""
    typ = (
        GRPCType.UNARY
        if stream_info is None
        else _type_from(stream_info.is_client_stream, stream_info.is_server_stream)
    )
    service, method = _split_full_method(full_method)
    return CallMeta(typ=typ, service=service, method=method, req_or_none=req, is_client=False)


def new_client_call_meta(full_method: str, stream_desc: StreamDesc | None, req: Any) -> CallMeta:
    """Describe a client-side call; no stream description means a unary call."""
    typ = (
        GRPCType.UNARY
        if stream_desc is None
        else _type_from(stream_desc.client_streams, stream_desc.server_streams)
    )
    service, method = _split_full_method(full_method)
    return CallMeta(typ=typ, service=service, method=method, req_or_none=req, is_client=True)


class Reporter(abc.ABC):
    """Receives events about one call. Durations are seconds."""

    @abc.abstractmethod
    def post_call(self, err: BaseException | None, rpc_duration: float) -> None:
        """Called once the call has finished."""

    @abc.abstractmethod
    def post_msg_send(self, msg: Any, err: BaseException | None, send_duration: float) -> None:
        """Called after a message was sent."""

    @abc.abstractmethod
    def post_msg_receive(self, msg: Any, err: BaseException | None, recv_duration: float) -> None:
        """Called after a message was received."""


class NoopReporter(Reporter):
    """A reporter that ignores every event."""

    def post_call(self, err, rpc_duration):
        return None

    def post_msg_send(self, msg, err, send_duration):
        return None

    def post_msg_receive(self, msg, err, recv_duration):
        return None


class ServerReportable(abc.ABC):
    """Makes a reporter for each server-side call."""

    @abc.abstractmethod
    def server_reporter(self, ctx: Context, call_meta: CallMeta) -> tuple[Reporter, Context]:
        """Return the reporter for the call and the context to continue with."""


class ClientReportable(abc.ABC):
    """Makes a reporter for each client-side call."""

    @abc.abstractmethod
    def client_reporter(self, ctx: Context, call_meta: CallMeta) -> tuple[Reporter, Context]:
        """Return the reporter for the call and the context to continue with."""


class CommonReportable(ServerReportable, ClientReportable):
    """Uses one function for both client and server reporters."""

    def __init__(self, func: Callable[[Context, CallMeta], tuple[Reporter, Context]]) -> None:
        self.func = func

    def server_reporter(self, ctx, call_meta):
        return self.func(ctx, call_meta)

    def client_reporter(self, ctx, call_meta):
        return self.func(ctx, call_meta)