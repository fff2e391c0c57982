from __future__ import annotations

"""Connection-level probes: TCP reachability, banner capture, SMTP greeting."""

import re
from typing import Any, Dict, Optional, Tuple

from ..config import Settings
from ..engine.envelope import DeadlineExceeded, ProbeRequest, Result, guarded
from ..engine.sockets import ConnectionAttempt
from .targets import split_host_port

TCP_DEFAULT_PORT = 443
BANNER_DEFAULT_PORT = 80
SMTP_DEFAULT_PORT = 25
BANNER_MAX_BYTES = 4096
HTTP_PORTS = frozenset({80, 8000, 8008, 8080, 8888})
NO_BANNER_NOTE = "connected, no banner"

_SMTP_CODE_RE = re.compile(r"^(\d{3})[ -]")


def _resolve_target(request: ProbeRequest, default_port: int) -> Tuple[str, Optional[int]]:
    return split_host_port(request.target, request.options.port or default_port)


@guarded
async def probe_tcp(request: ProbeRequest, settings: Settings) -> Result:
    host, port = _resolve_target(request, TCP_DEFAULT_PORT)
    async with ConnectionAttempt(host, port, timeout=settings.tcp_timeout) as conn:
        latency = conn.connect_ms
    return Result.success({"status": "open", "host": host, "port": port, "latency_ms": latency})


def _http_nudge(host: str) -> bytes:
    return f"HEAD / HTTP/1.0\r\nHost: {host}\r\nUser-Agent: netdiag\r\n\r\n".encode("ascii", errors="ignore")


def _decode_banner(raw: bytes) -> Optional[str]:
    text = raw.decode("utf-8", errors="replace").strip()
    return text or None


async def _capture_banner(host: str, port: int, settings: Settings, nudge: bool) -> Dict[str, Any]:
    banner: Optional[str] = None
    async with ConnectionAttempt(host, port, timeout=settings.banner_timeout) as conn:
        if nudge and port in HTTP_PORTS:
            await conn.send(_http_nudge(host))
        try:
            banner = _decode_banner(await conn.read_first(BANNER_MAX_BYTES))
        except DeadlineExceeded:
            # Silent services are a valid outcome once connected.
            banner = None
        latency = conn.connect_ms

    data: Dict[str, Any] = {"host": host, "port": port, "connected": True, "latency_ms": latency, "banner": banner}
    if banner is None:
        data["note"] = NO_BANNER_NOTE
    return data


@guarded
async def probe_banner(request: ProbeRequest, settings: Settings) -> Result:
    host, port = _resolve_target(request, BANNER_DEFAULT_PORT)
    return Result.success(await _capture_banner(host, port, settings, nudge=True))


@guarded
async def probe_smtp(request: ProbeRequest, settings: Settings) -> Result:
    host, port = _resolve_target(request, SMTP_DEFAULT_PORT)
    data = await _capture_banner(host, port, settings, nudge=False)
    match = _SMTP_CODE_RE.match(data.get("banner") or "")
    data["reply_code"] = int(match.group(1)) if match else None
    data["smtp_ready"] = data["reply_code"] == 220
    return Result.success(data)
