from __future__ import annotations

"""Target normalization shared by probes.

All helpers raise `InputError` for input no probe could use, so a malformed
target is reported before any socket is opened.
"""

import ipaddress
import re
from typing import Optional, Tuple
from urllib.parse import urlparse

from ..engine.envelope import InputError

_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")
_LABEL_RE = re.compile(r"^[a-z0-9_-]+$")


def normalize_domain(value: str) -> Optional[str]:
    """Lower-case, IDNA-encode and validate a hostname; None when invalid.

    URLs are reduced to their host so `https://Example.com/path` works too.
    """
    host = (value or "").strip().lower()
    if not host:
        return None
    if _SCHEME_RE.match(host):
        host = (urlparse(host).hostname or "").strip()
    host = host.split("/", 1)[0].strip(".")
    if not host or " " in host:
        return None

    try:
        host = host.encode("idna").decode("ascii")
    except UnicodeError:
        return None

    if len(host) > 253:
        return None
    labels = host.split(".")
    if any(not lbl or len(lbl) > 63 for lbl in labels):
        return None
    if any(not _LABEL_RE.match(lbl) or lbl.startswith("-") or lbl.endswith("-") for lbl in labels):
        return None
    return host


def parse_ip(value: str) -> Optional[str]:
    try:
        return str(ipaddress.ip_address((value or "").strip().strip("[]")))
    except ValueError:
        return None


def require_host(value: str) -> str:
    """Return a usable host (IP literal or hostname) or raise `InputError`."""
    ip = parse_ip(value)
    if ip:
        return ip
    host = normalize_domain(value)
    if not host:
        raise InputError(f"Invalid host: {value}")
    return host


def split_host_port(value: str, default_port: Optional[int]) -> Tuple[str, Optional[int]]:
    """Split `host`, `host:port`, `[v6]:port` or a bare IPv6 literal."""
    raw = (value or "").strip()
    if _SCHEME_RE.match(raw):
        parsed = urlparse(raw)
        try:
            port = parsed.port
        except ValueError:
            raise InputError(f"Invalid port in: {value}") from None
        return require_host(parsed.hostname or ""), port or default_port

    host, port_text = raw, ""
    if raw.startswith("["):
        closing = raw.find("]")
        if closing < 0:
            raise InputError(f"Invalid host: {value}")
        host = raw[1:closing]
        rest = raw[closing + 1:]
        if rest.startswith(":"):
            port_text = rest[1:]
        elif rest:
            raise InputError(f"Invalid host: {value}")
    elif raw.count(":") == 1:
        host, port_text = raw.split(":", 1)

    port = default_port
    if port_text:
        if not port_text.isdigit() or not 1 <= int(port_text) <= 65535:
            raise InputError(f"Invalid port: {port_text}")
        port = int(port_text)
    return require_host(host), port


def normalize_url(value: str) -> str:
    """Prefix `https://` when no scheme is given; only http(s) is accepted."""
    raw = (value or "").strip()
    if not raw:
        raise InputError("Input required")
    if not _SCHEME_RE.match(raw):
        raw = f"https://{raw}"
    parsed = urlparse(raw)
    if parsed.scheme.lower() not in {"http", "https"}:
        raise InputError(f"Unsupported URL scheme: {parsed.scheme}")
    if not parsed.hostname:
        raise InputError(f"Invalid URL: {value}")
    return raw
