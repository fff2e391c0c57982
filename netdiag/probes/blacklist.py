from __future__ import annotations

"""DNS blacklist (DNSBL) probe.

Each zone is asked for `<reversed-ip>.<zone>` concurrently and the results are
joined in zone order. A lookup that cannot tell "listed" from "not listed"
(timeout, SERVFAIL, refused query) is reported as UNKNOWN rather than CLEAN.
"""

import asyncio
import ipaddress
from typing import Any, Dict, List

import dns.exception
import dns.resolver

from ..config import Settings
from ..engine.envelope import DeadlineExceeded, InputError, ProbeRequest, Result, guarded
from . import dns_lookup

LISTED = "LISTED"
CLEAN = "CLEAN"
UNKNOWN = "UNKNOWN"

# Operators answer 127.255.255.x when they refuse a query (e.g. public resolvers).
REFUSAL_NETWORK = ipaddress.ip_network("127.255.255.0/24")
LISTING_NETWORK = ipaddress.ip_network("127.0.0.0/8")


def reverse_ipv4(ip: str) -> str:
    return ".".join(reversed(ip.split(".")))


def classify_answers(codes: List[str]) -> Dict[str, Any]:
    addresses = []
    for code in codes:
        try:
            addresses.append(ipaddress.ip_address(code))
        except ValueError:
            continue
    if any(addr in REFUSAL_NETWORK for addr in addresses):
        return {"status": UNKNOWN, "return_codes": codes, "error": "query refused by zone operator"}
    if any(addr in LISTING_NETWORK for addr in addresses):
        return {"status": LISTED, "return_codes": codes}
    return {"status": UNKNOWN, "return_codes": codes, "error": "unexpected answer"}


async def check_zone(reversed_ip: str, zone: str, settings: Settings) -> Dict[str, Any]:
    query = f"{reversed_ip}.{zone}"
    entry: Dict[str, Any] = {"zone": zone, "query": query}
    try:
        codes, _ = await dns_lookup.lookup(query, "A", settings)
    except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
        entry["status"] = CLEAN
        return entry
    except (dns.exception.Timeout, DeadlineExceeded):
        entry.update({"status": UNKNOWN, "error": "lookup timed out"})
        return entry
    except dns.exception.DNSException as exc:
        entry.update({"status": UNKNOWN, "error": f"{exc.__class__.__name__}: {exc}"})
        return entry
    entry.update(classify_answers([str(c) for c in codes]))
    return entry


@guarded
async def probe_blacklist(request: ProbeRequest, settings: Settings) -> Result:
    try:
        ip = str(ipaddress.IPv4Address(request.target.strip()))
    except ValueError:
        raise InputError(f"Invalid IPv4 address: {request.target}") from None

    reversed_ip = reverse_ipv4(ip)
    results = await asyncio.gather(*(check_zone(reversed_ip, zone, settings) for zone in settings.blacklist_zones))
    listed = sum(1 for r in results if r["status"] == LISTED)
    unknown = sum(1 for r in results if r["status"] == UNKNOWN)
    return Result.success(
        {
            "ip": ip,
            "listed_count": listed,
            "unknown_count": unknown,
            "is_listed": listed > 0,
            "results": list(results),
        }
    )
