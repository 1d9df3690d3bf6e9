"""Call primitives shared by the interceptors: status codes, errors, contexts, peers and streams."""

from __future__ import annotations

import abc
import enum
import threading
import time
from dataclasses import dataclass
from typing import Any


class Code(enum.IntEnum):
    """Canonical RPC status codes."""

    OK = 0
    CANCELED = 1
    UNKNOWN = 2
    INVALID_ARGUMENT = 3
    DEADLINE_EXCEEDED = 4
    NOT_FOUND = 5
    ALREADY_EXISTS = 6
    PERMISSION_DENIED = 7
    RESOURCE_EXHAUSTED = 8
    FAILED_PRECONDITION = 9
    ABORTED = 10
    OUT_OF_RANGE = 11
    UNIMPLEMENTED = 12
    INTERNAL = 13
    UNAVAILABLE = 14
    DATA_LOSS = 15
    UNAUTHENTICATED = 16

    def __str__(self) -> str:
        if self is Code.OK:
            return "OK"
        return "".join(part.capitalize() for part in self.name.split("_"))


class StatusError(Exception):
    """An error carrying an RPC status code and a description."""

    def __init__(self, code: Code, message: str = "") -> None:
        super().__init__(code, message)
        self.code = Code(code)
        self.message = message

    def __str__(self) -> str:
        return f"rpc error: code = {str(self.code)} desc = {self.message}"


class ContextError(Exception):
    """Base class of the errors reported by a finished context."""


class ContextCanceled(ContextError):
    """The context was cancelled."""

    def __init__(self) -> None:
        super().__init__("context canceled")


class ContextDeadlineExceeded(ContextError):
    """The context's deadline passed."""

    def __init__(self) -> None:
        super().__init__("context deadline exceeded")


def status_code(err: BaseException | None) -> Code:
    """Return the status code of an error: OK for none, UNKNOWN for non-status errors."""
    if err is None:
        return Code.OK
    if isinstance(err, StatusError):
        return err.code
    return Code.UNKNOWN


_NO_KEY = object()


class Context:
    """An immutable chain of request-scoped values with cancellation and deadlines."""

    def __init__(
        self,
        parent: Context | None = None,
        *,
        key: Any = _NO_KEY,
        value: Any = None,
        cancellable: bool = False,
        deadline: float | None = None,
    ) -> None:
        self._parent = parent
        self._key = key
        self._value = value
        parent_deadline = parent._deadline if parent is not None else None
        parent_owner = parent._owner if parent is not None else None
        if cancellable:
            self._lock = threading.Lock()
            self._done = threading.Event()
            self._error: ContextError | None = None
            self._children: list[Context] = []
            if parent_deadline is None:
                self._deadline = deadline
            elif deadline is None:
                self._deadline = parent_deadline
            else:
                self._deadline = min(parent_deadline, deadline)
            self._owner: Context | None = self
            self._parent_owner = parent_owner
            if parent_owner is not None:
                parent_owner._register(self)
        else:
            self._deadline = parent_deadline
            self._owner = parent_owner

    def with_value(self, key: Any, value: Any) -> Context:
        """Return a child context carrying ``value`` under ``key``."""
        return Context(self, key=key, value=value)

    def value(self, key: Any) -> Any:
        """Return the nearest value stored under ``key``, or None."""
        ctx: Context | None = self
        while ctx is not None:
            if ctx._key is not _NO_KEY and ctx._key == key:
                return ctx._value
            ctx = ctx._parent
        return None

    def with_cancel(self) -> Context:
        """Return a child context that can be cancelled with ``cancel()``."""
        return Context(self, cancellable=True)

    def with_timeout(self, timeout: float) -> Context:
        """Return a cancellable child context that expires after ``timeout`` seconds."""
        return Context(self, cancellable=True, deadline=time.monotonic() + timeout)

    def cancel(self) -> None:
        """Cancel this context and every context derived from it."""
        if self._owner is not self:
            raise ValueError("context is not cancellable")
        self._finish(ContextCanceled())

    def err(self) -> ContextError | None:
        """Return why the context finished, or None while it is still live."""
        owner = self._owner
        if owner is None:
            return None
        return owner._check()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the context finishes or ``timeout`` passes; True if it finished."""
        owner = self._owner
        if owner is None:
            threading.Event().wait(timeout)
            return False
        end = None if timeout is None else time.monotonic() + timeout
        while True:
            if owner._check() is not None:
                return True
            now = time.monotonic()
            if end is not None and now >= end:
                return False
            limits = [t - now for t in (end, owner._deadline) if t is not None]
            owner._done.wait(max(min(limits), 0.0) if limits else None)

    def _register(self, child: Context) -> None:
        with self._lock:
            error = self._error
            if error is None:
                self._children.append(child)
        if error is not None:
            child._finish(error)

    def _unregister(self, child: Context) -> None:
        with self._lock:
            if child in self._children:
                self._children.remove(child)

    def _finish(self, error: ContextError) -> None:
        with self._lock:
            if self._error is not None:
                return
            self._error = error
            children, self._children = self._children, []
            self._done.set()
        for child in children:
            child._finish(error)
        if self._parent_owner is not None:
            self._parent_owner._unregister(self)

    def _check(self) -> ContextError | None:
        if self._error is None and self._deadline is not None and time.monotonic() >= self._deadline:
            self._finish(ContextDeadlineExceeded())
        return self._error


_BACKGROUND = Context()


def background() -> Context:
    """Return the empty root context, which is never cancelled."""
    return _BACKGROUND


@dataclass(frozen=True)
class Peer:
    """The remote end of a call."""

    addr: str
    network: str = "tcp"


_PEER_KEY = object()


def with_peer(ctx: Context, peer: Peer) -> Context:
    """Return a child context that records the remote peer."""
    return ctx.with_value(_PEER_KEY, peer)


def peer_from_context(ctx: Context) -> Peer | None:
    """Return the peer stored in the context, or None."""
    return ctx.value(_PEER_KEY)


@dataclass
class UnaryServerInfo:
    """Information about a unary call on the server."""

    full_method: str
    server: Any = None


@dataclass
class StreamServerInfo:
    """Information about a streaming call on the server."""

    full_method: str
    is_client_stream: bool = False
    is_server_stream: bool = False


@dataclass
class StreamDesc:
    """Description of a stream on the client side."""

    stream_name: str = ""
    client_streams: bool = False
    server_streams: bool = False


class ServerStream(abc.ABC):
    """Server side of a stream. ``recv_msg`` raises EOFError at the end of input."""

    @abc.abstractmethod
    def context(self) -> Context:
        """Return the context of the call."""

    @abc.abstractmethod
    def send_msg(self, m: Any) -> None:
        """Send a message to the client."""

    @abc.abstractmethod
    def recv_msg(self) -> Any:
        """Receive the next message from the client."""


class ClientStream(abc.ABC):
    """Client side of a stream. ``recv_msg`` raises EOFError at the end of input."""

    @abc.abstractmethod
    def context(self) -> Context:
        """Return the context of the call."""

    @abc.abstractmethod
    def send_msg(self, m: Any) -> None:
        """Send a message to the server."""

    @abc.abstractmethod
    def recv_msg(self) -> Any:
        """Receive the next message from the server."""

    @abc.abstractmethod
    def close_send(self) -> None:
        """Signal that no more messages will be sent."""

    @abc.abstractmethod
    def header(self) -> Any:
        """Return the header metadata sent by the server."""

    @abc.abstractmethod
    def trailer(self) -> Any:
        """Return the trailer metadata sent by the server."""


class WrappedServerStream(ServerStream):
    """A server stream whose context can be replaced through ``wrapped_context``."""

    def __init__(self, stream: ServerStream, wrapped_context: Context) -> None:
        self.stream = stream
        self.wrapped_context = wrapped_context

    def context(self) -> Context:
        return self.wrapped_context

    def send_msg(self, m: Any) -> None:
        self.stream.send_msg(m)

    def recv_msg(self) -> Any:
        return self.stream.recv_msg()


def wrap_server_stream(stream: ServerStream) -> WrappedServerStream:
    """Wrap a stream so its context can be overwritten; wrapped streams are returned as is."""
    if isinstance(stream, WrappedServerStream):
        return stream
    return WrappedServerStream(stream, stream.context())