from __future__ import annotations

"""HTTP inspection probes: header fetch, security-header grade, redirect trace.

Every request is a `HEAD` issued through an `httpx.AsyncClient` that never
follows redirects on its own; the redirect tracer walks `Location` headers
itself so each hop is recorded.
"""

import random
from typing import Any, Dict, List, Optional, Set
from urllib.parse import urljoin, urlparse

import httpx

from ..config import Settings
from ..engine.envelope import DeadlineExceeded, NetworkError, ProbeRequest, Result, guarded
from ..engine.sockets import Deadline, race
from .targets import normalize_url

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:124.0) Gecko/20100101 Firefox/124.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_4) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.4 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
]

# Grading rubric: 100 points, 20 off per missing header.
SECURITY_HEADERS = (
    "strict-transport-security",
    "content-security-policy",
    "x-frame-options",
    "x-content-type-options",
)
HEADER_PENALTY = 20


def pick_user_agent(useragent: Optional[str]) -> str:
    if useragent and useragent.strip().lower() != "random":
        return useragent.strip()
    return random.choice(USER_AGENTS)


def build_client(settings: Settings) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        http2=True,
        verify=False,
        follow_redirects=False,
        timeout=httpx.Timeout(settings.http_timeout),
        headers={"User-Agent": pick_user_agent(settings.useragent)},
    )


def grade_for(score: int) -> str:
    if score >= 80:
        return "A"
    if score >= 60:
        return "B"
    return "F"


def grade_headers(headers: Dict[str, str]) -> Dict[str, Any]:
    present = {k.lower() for k in headers}
    checks = {name: ("PASS" if name in present else "FAIL") for name in SECURITY_HEADERS}
    missing = [name for name, verdict in checks.items() if verdict == "FAIL"]
    score = 100 - HEADER_PENALTY * len(missing)
    return {"score": score, "grade": grade_for(score), "checks": checks, "missing": missing}


def _normalized_headers(headers: httpx.Headers) -> Dict[str, str]:
    # httpx joins repeated headers with ", " and lower-cases keys here.
    return {key.lower(): value for key, value in headers.items()}


async def _head(client: httpx.AsyncClient, url: str, timeout: float) -> httpx.Response:
    try:
        return await race(client.head(url), timeout, what="HTTP request timed out")
    except httpx.TimeoutException:
        raise DeadlineExceeded("HTTP request timed out") from None
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        message = str(exc).strip()
        raise NetworkError(f"{exc.__class__.__name__}: {message}" if message else exc.__class__.__name__) from exc


@guarded
async def probe_headers(request: ProbeRequest, settings: Settings) -> Result:
    url = normalize_url(request.target)
    async with build_client(settings) as client:
        response = await _head(client, url, settings.http_timeout)
    return Result.success(
        {
            "url": str(response.url),
            "status_code": response.status_code,
            "http_version": response.http_version,
            "headers": _normalized_headers(response.headers),
        }
    )


@guarded
async def probe_headers_grade(request: ProbeRequest, settings: Settings) -> Result:
    url = normalize_url(request.target)
    async with build_client(settings) as client:
        response = await _head(client, url, settings.http_timeout)
    report = grade_headers(_normalized_headers(response.headers))
    grade = report.pop("grade")
    data = {"url": str(response.url), "status_code": response.status_code}
    data.update(report)
    return Result.success(data, grade=grade)


@guarded
async def probe_trace_redirect(request: ProbeRequest, settings: Settings) -> Result:
    original = normalize_url(request.target)
    deadline = Deadline(settings.redirect_timeout)
    hops: List[Dict[str, Any]] = []
    seen: Set[str] = set()
    url = original
    loop_detected = False
    max_hops_reached = False

    async with build_client(settings) as client:
        while True:
            seen.add(url)
            try:
                response = await _head(client, url, min(settings.http_timeout, deadline.remaining()))
            except NetworkError as exc:
                if not hops:
                    raise
                # Keep the chain walked so far; the failing hop ends it.
                hops.append({"url": url, "status_code": None, "location": None, "error": str(exc)})
                break
            location = response.headers.get("location")
            hops.append({"url": url, "status_code": response.status_code, "location": location})
            if not (response.is_redirect and location):
                break
            next_url = urljoin(url, location)
            scheme = urlparse(next_url).scheme.lower()
            if scheme not in {"http", "https"}:
                hops[-1]["error"] = f"Unsupported redirect scheme: {scheme or '-'}"
                break
            if next_url in seen:
                loop_detected = True
                break
            if len(hops) > settings.max_redirects:
                max_hops_reached = True
                break
            url = next_url

    final = hops[-1]
    return Result.success(
        {
            "original_url": original,
            "final_url": final["url"],
            "status_code": final["status_code"],
            "redirect_count": len(hops) - 1,
            "hops": hops,
            "loop_detected": loop_detected,
            "max_hops_reached": max_hops_reached,
        }
    )
