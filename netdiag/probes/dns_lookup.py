from __future__ import annotations

"""DNS probes: record-type aware forward lookups and PTR lookups.

dnspython's blocking resolver runs in the loop's default executor, with its
own lifetime set to the probe deadline and the call raced against the same
deadline. Resolver failures are reported as-is; there is no retry here.
"""

import asyncio
from typing import Any, Dict, List, Optional, Tuple

import dns.exception
import dns.resolver
import dns.reversename

from ..config import Settings
from ..engine.envelope import DeadlineExceeded, InputError, NetworkError, ProbeRequest, Result, guarded
from ..engine.sockets import race
from .targets import normalize_domain, parse_ip

RECORD_TYPES = ("A", "AAAA", "MX", "TXT", "NS", "SOA", "CNAME", "SRV", "CAA")


def normalize_record_type(value: Optional[str]) -> str:
    text = (value or "").strip().upper()
    return text if text in RECORD_TYPES else "A"


def make_resolver(settings: Settings) -> dns.resolver.Resolver:
    resolver = dns.resolver.Resolver(configure=not settings.dns_server)
    if settings.dns_server:
        resolver.nameservers = [settings.dns_server]
    resolver.timeout = settings.dns_timeout
    resolver.lifetime = settings.dns_timeout
    return resolver


def txt_rr_to_text(rr: Any) -> str:
    chunks = getattr(rr, "strings", None)
    if isinstance(chunks, (list, tuple)) and chunks:
        parts: List[str] = []
        for chunk in chunks:
            if isinstance(chunk, (bytes, bytearray)):
                parts.append(chunk.decode("utf-8", errors="replace"))
            else:
                parts.append(str(chunk))
        return "".join(parts)

    text = str(rr).strip()
    if text.startswith('"') and text.endswith('"') and len(text) >= 2:
        text = text[1:-1]
    return text.replace('" "', "")


def _text(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return value.decode("utf-8", errors="replace")
    return str(value)


def _host(value: Any) -> str:
    return str(value).strip().rstrip(".")


def rr_to_value(rdtype: str, rr: Any) -> Any:
    """Structure one rdata the way callers consume it."""
    if rdtype == "MX":
        return {"exchange": _host(rr.exchange), "priority": int(rr.preference)}
    if rdtype == "TXT":
        return txt_rr_to_text(rr)
    if rdtype == "SOA":
        return {
            "mname": _host(rr.mname),
            "rname": _host(rr.rname),
            "serial": int(rr.serial),
            "refresh": int(rr.refresh),
            "retry": int(rr.retry),
            "expire": int(rr.expire),
            "minimum": int(rr.minimum),
        }
    if rdtype == "SRV":
        return {
            "priority": int(rr.priority),
            "weight": int(rr.weight),
            "port": int(rr.port),
            "target": _host(rr.target),
        }
    if rdtype == "CAA":
        return {"flags": int(rr.flags), "tag": _text(rr.tag), "value": _text(rr.value)}
    return _host(rr)


async def lookup(name: str, rdtype: str, settings: Settings) -> Tuple[List[Any], Optional[int]]:
    """Resolve `name`/`rdtype`; dnspython exceptions propagate unchanged.

    Returns `(values, ttl)`. The caller decides how each resolver failure is
    reported, which the blacklist probe relies on.
    """
    loop = asyncio.get_running_loop()

    def sync_resolve() -> Tuple[List[Any], Optional[int]]:
        resolver = make_resolver(settings)
        answers = resolver.resolve(name, rdtype)
        ttl = None
        if answers.rrset is not None and answers.rrset.ttl is not None:
            ttl = int(answers.rrset.ttl)
        return [rr_to_value(rdtype, rr) for rr in answers], ttl

    return await race(
        loop.run_in_executor(None, sync_resolve),
        settings.dns_timeout,
        what="DNS query timed out",
    )


async def resolve_records(name: str, rdtype: str, settings: Settings) -> Tuple[List[Any], Optional[int]]:
    """`lookup` with resolver failures mapped onto the probe error taxonomy."""
    try:
        return await lookup(name, rdtype, settings)
    except dns.exception.Timeout:
        raise DeadlineExceeded("DNS query timed out") from None
    except dns.exception.DNSException as exc:
        raise NetworkError(f"DNS Resolution failed: {exc}") from exc


@guarded
async def probe_dns(request: ProbeRequest, settings: Settings, force_type: Optional[str] = None) -> Result:
    name = normalize_domain(request.target)
    if not name:
        raise InputError(f"Invalid domain: {request.target}")

    rdtype = force_type or normalize_record_type(request.options.record_type)
    if rdtype == "TXT" and request.options.prefix:
        prefix = request.options.prefix.strip(".")
        name = normalize_domain(f"{prefix}.{name}")
        if not name:
            raise InputError(f"Invalid prefix: {request.options.prefix}")

    records, ttl = await resolve_records(name, rdtype, settings)
    data: Dict[str, Any] = {"name": name, "record_type": rdtype, "records": records, "ttl": ttl}
    return Result.success(data)


async def probe_dns_txt(request: ProbeRequest, settings: Settings) -> Result:
    return await probe_dns(request, settings, force_type="TXT")


@guarded
async def probe_ptr(request: ProbeRequest, settings: Settings) -> Result:
    ip = parse_ip(request.target)
    if not ip:
        raise InputError(f"Invalid IP address: {request.target}")

    name = dns.reversename.from_address(ip).to_text()
    hostnames, ttl = await resolve_records(name, "PTR", settings)
    return Result.success({"ip": ip, "name": name.rstrip("."), "hostnames": hostnames, "ttl": ttl})
