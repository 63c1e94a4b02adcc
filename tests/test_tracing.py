"""traceparent 生成のユニットテスト"""

import re

from k1s0_featureflag import TraceContext, generate_traceparent

TRACEPARENT_RE = re.compile(r"^00-[0-9a-f]{32}-[0-9a-f]{16}-01$")


def test_generate_traceparent_format() -> None:
    assert TRACEPARENT_RE.match(generate_traceparent())


def test_generate_traceparent_is_unique() -> None:
    """呼び出しごとに異なる ID が生成されること。"""
    values = {generate_traceparent() for _ in range(100)}
    assert len(values) == 100


def test_round_trip() -> None:
    ctx = TraceContext(trace_id="0af7651916cd43dd8448eb211c80319c", parent_id="b7ad6b7169203331")
    header = ctx.to_traceparent()
    assert header == "00-0af7651916cd43dd8448eb211c80319c-b7ad6b7169203331-01"
    assert TraceContext.from_traceparent(header) == ctx


def test_from_traceparent_invalid() -> None:
    assert TraceContext.from_traceparent("") is None
    assert TraceContext.from_traceparent("01-0af7651916cd43dd8448eb211c80319c-b7ad6b7169203331-01") is None
    assert TraceContext.from_traceparent("00-short-b7ad6b7169203331-01") is None
    assert TraceContext.from_traceparent("00-zzf7651916cd43dd8448eb211c80319c-b7ad6b7169203331-01") is None
