from __future__ import annotations

import asyncio

import httpx
import pytest

import netdiag.probes.http_inspect as http_inspect
from netdiag.config import Settings
from netdiag.engine.envelope import ProbeKind, ProbeOptions, ProbeRequest

ALL_HEADERS = {
    "Strict-Transport-Security": "max-age=63072000",
    "Content-Security-Policy": "default-src 'self'",
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
}


def _request(kind, target):
    return ProbeRequest(kind=kind, target=target, options=ProbeOptions())


def _mock(monkeypatch, handler):
    seen = []

    def recording(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, str(request.url)))
        return handler(request)

    def build_client(settings):
        return httpx.AsyncClient(transport=httpx.MockTransport(recording), follow_redirects=False)

    monkeypatch.setattr(http_inspect, "build_client", build_client)
    return seen


def _headers_without(*names):
    return {k: v for k, v in ALL_HEADERS.items() if k.lower() not in names}


@pytest.mark.parametrize(
    "headers,score,grade",
    [
        (ALL_HEADERS, 100, "A"),
        (_headers_without("x-frame-options"), 80, "A"),
        (_headers_without("x-frame-options", "content-security-policy"), 60, "B"),
        (_headers_without("x-frame-options", "content-security-policy", "strict-transport-security"), 40, "F"),
        ({}, 20, "F"),
    ],
)
def test_grade_headers_scores(headers, score, grade):
    report = http_inspect.grade_headers({k.lower(): v for k, v in headers.items()})
    assert report["score"] == score
    assert report["grade"] == grade
    assert len(report["missing"]) == (100 - score) // http_inspect.HEADER_PENALTY


def test_headers_grade_envelope_carries_grade(monkeypatch):
    seen = _mock(monkeypatch, lambda request: httpx.Response(200, headers=_headers_without("x-frame-options")))
    result = asyncio.run(http_inspect.probe_headers_grade(_request(ProbeKind.HEADERS_GRADE, "example.com"), Settings()))
    assert [(method, url.rstrip("/")) for method, url in seen] == [("HEAD", "https://example.com")]
    assert result.status == "success"
    assert result.grade == "A"
    assert result.data["score"] == 80
    assert result.data["missing"] == ["x-frame-options"]
    assert result.data["checks"]["strict-transport-security"] == "PASS"
    assert result.to_dict()["grade"] == "A"


def test_headers_grade_missing_everything_is_f(monkeypatch):
    _mock(monkeypatch, lambda request: httpx.Response(200))
    result = asyncio.run(http_inspect.probe_headers_grade(_request(ProbeKind.HEADERS_GRADE, "http://example.com/"), Settings()))
    assert result.grade == "F"
    assert result.data["score"] == 20


def test_headers_are_lower_cased(monkeypatch):
    _mock(monkeypatch, lambda request: httpx.Response(204, headers={"X-Powered-By": "PHP", "Server": "nginx"}))
    result = asyncio.run(http_inspect.probe_headers(_request(ProbeKind.HEADERS, "example.com/path"), Settings()))
    assert result.status == "success"
    assert result.data["status_code"] == 204
    assert result.data["url"] == "https://example.com/path"
    assert result.data["headers"]["x-powered-by"] == "PHP"
    assert "X-Powered-By" not in result.data["headers"]


def test_read_timeout_is_timeout(monkeypatch):
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    _mock(monkeypatch, handler)
    result = asyncio.run(http_inspect.probe_headers(_request(ProbeKind.HEADERS, "example.com"), Settings()))
    assert result.status == "timeout"
    assert result.message == "HTTP request timed out"


def test_connect_error_is_error(monkeypatch):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    _mock(monkeypatch, handler)
    result = asyncio.run(http_inspect.probe_headers(_request(ProbeKind.HEADERS, "example.com"), Settings()))
    assert result.status == "error"
    assert result.message == "ConnectError: connection refused"


def test_unsupported_scheme_is_rejected(monkeypatch):
    seen = _mock(monkeypatch, lambda request: httpx.Response(200))
    result = asyncio.run(http_inspect.probe_headers(_request(ProbeKind.HEADERS, "ftp://example.com"), Settings()))
    assert result.status == "error"
    assert "scheme" in result.message
    assert seen == []


def test_trace_redirect_follows_chain(monkeypatch):
    chain = {
        "http://a.test/": httpx.Response(301, headers={"Location": "https://a.test/"}),
        "https://a.test/": httpx.Response(302, headers={"Location": "/home"}),
        "https://a.test/home": httpx.Response(200),
    }
    _mock(monkeypatch, lambda request: chain[str(request.url)])
    result = asyncio.run(http_inspect.probe_trace_redirect(_request(ProbeKind.TRACE_REDIRECT, "http://a.test/"), Settings()))
    assert result.status == "success"
    data = result.data
    assert data["original_url"] == "http://a.test/"
    assert data["final_url"] == "https://a.test/home"
    assert data["status_code"] == 200
    assert data["redirect_count"] == 2
    assert [hop["status_code"] for hop in data["hops"]] == [301, 302, 200]
    assert data["hops"][1]["location"] == "/home"
    assert data["loop_detected"] is False
    assert data["max_hops_reached"] is False


def test_trace_redirect_detects_loop(monkeypatch):
    def handler(request):
        target = "https://b.test/" if str(request.url) == "https://a.test/" else "https://a.test/"
        return httpx.Response(302, headers={"Location": target})

    seen = _mock(monkeypatch, handler)
    result = asyncio.run(http_inspect.probe_trace_redirect(_request(ProbeKind.TRACE_REDIRECT, "https://a.test/"), Settings()))
    assert result.status == "success"
    assert result.data["loop_detected"] is True
    assert result.data["redirect_count"] == 1
    assert len(seen) == 2


def test_trace_redirect_stops_at_hop_ceiling(monkeypatch):
    def handler(request):
        step = int(request.url.path.strip("/") or 0)
        return httpx.Response(302, headers={"Location": f"/{step + 1}"})

    seen = _mock(monkeypatch, handler)
    settings = Settings(max_redirects=3)
    result = asyncio.run(http_inspect.probe_trace_redirect(_request(ProbeKind.TRACE_REDIRECT, "https://c.test/0"), settings))
    assert result.status == "success"
    assert result.data["max_hops_reached"] is True
    assert result.data["loop_detected"] is False
    assert result.data["redirect_count"] == 3
    assert len(seen) == 4


def test_pick_user_agent():
    assert http_inspect.pick_user_agent("probe/1.0") == "probe/1.0"
    assert http_inspect.pick_user_agent("random") in http_inspect.USER_AGENTS
    assert http_inspect.pick_user_agent(None) in http_inspect.USER_AGENTS


def test_trace_redirect_stops_at_non_http_scheme(monkeypatch):
    def handler(request):
        if request.url.scheme != "https":
            raise httpx.UnsupportedProtocol("Request URL has an unsupported protocol", request=request)
        if request.url.path == "/":
            return httpx.Response(301, headers={"Location": "/x"})
        return httpx.Response(302, headers={"Location": "ftp://files.a.test/"})

    seen = _mock(monkeypatch, handler)
    result = asyncio.run(http_inspect.probe_trace_redirect(_request(ProbeKind.TRACE_REDIRECT, "https://a.test/"), Settings()))
    assert result.status == "success"
    hops = result.data["hops"]
    assert [hop["url"] for hop in hops] == ["https://a.test/", "https://a.test/x"]
    assert hops[-1]["location"] == "ftp://files.a.test/"
    assert hops[-1]["error"] == "Unsupported redirect scheme: ftp"
    assert result.data["status_code"] == 302
    assert len(seen) == 2


def test_trace_redirect_keeps_chain_when_later_hop_fails(monkeypatch):
    def handler(request):
        if request.url.host == "down.test":
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(302, headers={"Location": "https://down.test/"})

    _mock(monkeypatch, handler)
    result = asyncio.run(http_inspect.probe_trace_redirect(_request(ProbeKind.TRACE_REDIRECT, "https://a.test/"), Settings()))
    assert result.status == "success"
    hops = result.data["hops"]
    assert hops[0] == {"url": "https://a.test/", "status_code": 302, "location": "https://down.test/"}
    assert hops[1]["url"] == "https://down.test/"
    assert hops[1]["status_code"] is None
    assert hops[1]["error"] == "ConnectError: connection refused"
    assert result.data["final_url"] == "https://down.test/"


def test_trace_redirect_first_hop_failure_is_error(monkeypatch):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    _mock(monkeypatch, handler)
    result = asyncio.run(http_inspect.probe_trace_redirect(_request(ProbeKind.TRACE_REDIRECT, "https://a.test/"), Settings()))
    assert result.status == "error"
    assert result.message == "ConnectError: connection refused"
