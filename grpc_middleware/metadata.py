"""Convenience wrapper around call metadata stored in contexts.

Extract incoming metadata on the server and pass a filtered copy on to a client call::

    md = extract_incoming(server_ctx).clone("authorization", "custom")
    client_ctx = md.set("x-client-header", "2").set("x-another", "3").to_outgoing(ctx)
"""

from __future__ import annotations

import base64

from .core import Context

_BIN_HDR_SUFFIX = "-bin"
_INCOMING_KEY = object()
_OUTGOING_KEY = object()


def _encode_key_value(key: str, value: str) -> tuple[str, str]:
    key = key.lower()
    if key.endswith(_BIN_HDR_SUFFIX):
        return key, base64.b64encode(value.encode()).decode("ascii")
    return key, value


class MD(dict):
    """Metadata: lower-case keys mapped to lists of string values."""

    def clone(self, *copied_keys: str) -> MD:
        """Return a deep copy, limited to ``copied_keys`` (case-insensitive) when given."""
        allowed = {key.casefold() for key in copied_keys}
        return MD(
            (key, list(values))
            for key, values in self.items()
            if not allowed or key.casefold() in allowed
        )

    def to_outgoing(self, ctx: Context) -> Context:
        """Return a child context carrying this metadata for an outgoing call."""
        return ctx.with_value(_OUTGOING_KEY, self)

    def to_incoming(self, ctx: Context) -> Context:
        """Return a child context carrying this metadata as incoming metadata."""
        return ctx.with_value(_INCOMING_KEY, self)

    def get(self, key: str) -> str:  # type: ignore[override]
        """Return the first value for ``key``, or an empty string."""
        k, _ = _encode_key_value(key, "")
        values = self[k] if k in self else None
        return values[0] if values else ""

    def delete(self, key: str) -> MD:
        """Remove every value for ``key``."""
        k, _ = _encode_key_value(key, "")
        self.pop(k, None)
        return self

    def set(self, key: str, value: str) -> MD:
        """Replace every value for ``key`` with ``value``."""
        k, v = _encode_key_value(key, value)
        self[k] = [v]
        return self

    def add(self, key: str, value: str) -> MD:
        """Append ``value`` to the values for ``key``."""
        k, v = _encode_key_value(key, value)
        self.setdefault(k, []).append(v)
        return self


def pairs(*kv: str) -> MD:
    """Build metadata from alternating keys and values; keys are lower-cased."""
    if len(kv) % 2:
        raise ValueError(f"pairs got an odd number of arguments: {len(kv)}")
    md = MD()
    for key, value in zip(kv[::2], kv[1::2]):
        md.setdefault(key.lower(), []).append(value)
    return md


def _extract(ctx: Context, key: object) -> MD:
    md = ctx.value(key)
    if md is None:
        return MD()
    return MD((k.lower(), list(v)) for k, v in md.items())


def extract_incoming(ctx: Context) -> MD:
    """Return a copy of the incoming metadata of the context, empty if there is none."""
    return _extract(ctx, _INCOMING_KEY)


def extract_outgoing(ctx: Context) -> MD:
    """Return a copy of the outgoing metadata of the context, empty if there is none."""
    return _extract(ctx, _OUTGOING_KEY)