import pytest

from grpc_middleware.core import Code, StatusError, StreamDesc, StreamServerInfo, background, status_code
from grpc_middleware.reporter import (
    ALL_CODES,
    CommonReportable,
    GRPCType,
    NoopReporter,
    new_client_call_meta,
    new_server_call_meta,
)


def test_server_call_meta_unary():
    req = object()
    meta = new_server_call_meta("/pkg.Svc/Ping", None, req)
    assert meta.typ is GRPCType.UNARY
    assert meta.service == "pkg.Svc"
    assert meta.method == "Ping"
    assert meta.req_or_none is req
    assert meta.is_client is False
    assert meta.full_method() == "/pkg.Svc/Ping"


@pytest.mark.parametrize(
    "client, server, expected",
    [
        (False, False, GRPCType.UNARY),
        (True, False, GRPCType.CLIENT_STREAM),
        (False, True, GRPCType.SERVER_STREAM),
        (True, True, GRPCType.BIDI_STREAM),
    ],
)
def test_server_call_meta_stream_types(client, server, expected):
    info = StreamServerInfo("/pkg.Svc/List", is_client_stream=client, is_server_stream=server)
    assert new_server_call_meta(info.full_method, info, None).typ is expected


@pytest.mark.parametrize(
    "client, server, expected",
    [
        (False, False, GRPCType.UNARY),
        (True, False, GRPCType.CLIENT_STREAM),
        (False, True, GRPCType.SERVER_STREAM),
        (True, True, GRPCType.BIDI_STREAM),
    ],
)
def test_client_call_meta_stream_types(client, server, expected):
    desc = StreamDesc(client_streams=client, server_streams=server)
    meta = new_client_call_meta("/pkg.Svc/List", desc, None)
    assert meta.typ is expected
    assert meta.is_client is True
    assert meta.full_method() == "/pkg.Svc/List"


def test_client_call_meta_without_desc_is_unary():
    assert new_client_call_meta("/pkg.Svc/Ping", None, None).typ is GRPCType.UNARY


def test_malformed_method_name():
    meta = new_server_call_meta("FakeMethod", None, None)
    assert meta.service == meta.method == "unknown"
    assert meta.full_method() != "FakeMethod"


@pytest.mark.parametrize(
    "client, server, expected",
    [
        (False, False, "unary"),
        (True, False, "client_stream"),
        (False, True, "server_stream"),
        (True, True, "bidi_stream"),
    ],
)
def test_grpc_type_values(client, server, expected):
    info = StreamServerInfo("/pkg.Svc/List", is_client_stream=client, is_server_stream=server)
    assert new_server_call_meta(info.full_method, info, None).typ.value == expected


def test_all_codes_cover_every_code():
    assert len(set(ALL_CODES)) == len(ALL_CODES) == len(Code)
    assert ALL_CODES[0] is Code.OK
    assert [status_code(StatusError(code, "failure")) for code in ALL_CODES[1:]] == list(ALL_CODES[1:])


def test_common_reportable_serves_both_sides():
    calls = []
    reporter = NoopReporter()
    new_ctx = background().with_value("k", "v")

    def func(ctx, meta):
        calls.append(meta)
        return reporter, new_ctx

    reportable = CommonReportable(func)
    meta = new_server_call_meta("/pkg.Svc/Ping", None, None)
    assert reportable.server_reporter(background(), meta) == (reporter, new_ctx)
    assert reportable.client_reporter(background(), meta) == (reporter, new_ctx)
    assert calls == [meta, meta]