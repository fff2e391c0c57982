from __future__ import annotations

"""WHOIS probes against the IANA referral server.

Only the referral server is asked. Its `refer:` line is reported so a caller
can see where the authoritative record lives, but it is not followed.
"""

import re
from typing import Optional

from ..config import Settings
from ..engine.envelope import DeadlineExceeded, InputError, ProbeRequest, Result, guarded
from ..engine.sockets import ConnectionAttempt
from .targets import normalize_domain, parse_ip

_REFER_RE = re.compile(r"^\s*(?:refer|whois):\s*(\S+)\s*$", re.IGNORECASE | re.MULTILINE)
_ASN_RE = re.compile(r"^(?:as)?(\d{1,10})$", re.IGNORECASE)


def extract_referral(text: str) -> Optional[str]:
    match = _REFER_RE.search(text or "")
    return match.group(1).strip().lower() if match else None


def normalize_asn(value: str) -> str:
    match = _ASN_RE.match((value or "").strip())
    if not match or int(match.group(1)) > 4294967295:
        raise InputError(f"Invalid AS number: {value}")
    return f"AS{int(match.group(1))}"


async def query_whois(query: str, settings: Settings) -> Result:
    server = settings.whois_server
    try:
        async with ConnectionAttempt(server, settings.whois_port, timeout=settings.whois_timeout) as conn:
            await conn.send(f"{query}\r\n".encode("utf-8"))
            raw, truncated = await conn.read_until_eof(settings.whois_max_bytes)
    except DeadlineExceeded:
        return Result.timeout("WHOIS timeout")

    text = raw.decode("utf-8", errors="replace")
    return Result.success(
        {
            "query": query,
            "server": server,
            "raw": text,
            "truncated": truncated,
            "refer": extract_referral(text),
        }
    )


@guarded
async def probe_whois(request: ProbeRequest, settings: Settings) -> Result:
    query = parse_ip(request.target) or normalize_domain(request.target)
    if not query:
        raise InputError(f"Invalid domain or IP: {request.target}")
    return await query_whois(query, settings)


@guarded
async def probe_whois_asn(request: ProbeRequest, settings: Settings) -> Result:
    return await query_whois(normalize_asn(request.target), settings)
