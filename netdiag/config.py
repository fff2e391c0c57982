from __future__ import annotations

"""Runtime settings for netdiag.

Layering is CLI flags > environment (`NETDIAG_*`, optionally from a `.env`
file) > built-in defaults. Probes receive a `Settings` instance and never read
the environment themselves.
"""

import os
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional, Tuple

from dotenv import load_dotenv

DEFAULT_BLACKLIST_ZONES: Tuple[str, ...] = ("zen.spamhaus.org", "bl.spamcop.net")


@dataclass(frozen=True)
class Settings:
    dns_server: Optional[str] = "8.8.8.8"
    useragent: str = "random"
    dns_timeout: float = 2.0
    tcp_timeout: float = 2.0
    banner_timeout: float = 3.0
    tls_timeout: float = 5.0
    http_timeout: float = 5.0
    redirect_timeout: float = 10.0
    whois_timeout: float = 5.0
    whois_server: str = "whois.iana.org"
    whois_port: int = 43
    whois_max_bytes: int = 16384
    max_redirects: int = 10
    blacklist_zones: Tuple[str, ...] = field(default=DEFAULT_BLACKLIST_ZONES)

    def with_overrides(self, **overrides: Any) -> "Settings":
        """Return a copy with every non-None override applied."""
        values = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **values) if values else self

    def with_timeout(self, seconds: Optional[float]) -> "Settings":
        """Apply one timeout to every probe deadline (CLI `--timeout`)."""
        if seconds is None:
            return self
        value = float(seconds)
        return replace(
            self,
            dns_timeout=value,
            tcp_timeout=value,
            banner_timeout=value,
            tls_timeout=value,
            http_timeout=value,
            redirect_timeout=value * 2,
            whois_timeout=value,
        )


def _parse_float(value: Optional[str], default: float) -> float:
    if value is None or not value.strip():
        return default
    try:
        parsed = float(value)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _parse_int(value: Optional[str], default: int) -> int:
    if value is None or not value.strip():
        return default
    try:
        parsed = int(value)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _parse_zones(value: Optional[str]) -> Optional[Tuple[str, ...]]:
    if not value:
        return None
    zones = tuple(z.strip().strip(".").lower() for z in value.split(",") if z.strip())
    return zones or None


def load_settings(env: Optional[Dict[str, str]] = None) -> Settings:
    """Build settings from the environment, reading `.env` first."""
    if env is None:
        load_dotenv()
        env = dict(os.environ)
    base = Settings()

    def get(name: str) -> Optional[str]:
        return env.get(f"NETDIAG_{name}")

    dns_server = (get("DNS") or "").strip()
    useragent = (get("USERAGENT") or "").strip()
    whois_server = (get("WHOIS_SERVER") or "").strip()
    if dns_server.lower() == "system":
        resolved_dns: Optional[str] = None
    else:
        resolved_dns = dns_server or base.dns_server
    return Settings(
        dns_server=resolved_dns,
        useragent=useragent or base.useragent,
        dns_timeout=_parse_float(get("DNS_TIMEOUT"), base.dns_timeout),
        tcp_timeout=_parse_float(get("TCP_TIMEOUT"), base.tcp_timeout),
        banner_timeout=_parse_float(get("BANNER_TIMEOUT"), base.banner_timeout),
        tls_timeout=_parse_float(get("TLS_TIMEOUT"), base.tls_timeout),
        http_timeout=_parse_float(get("HTTP_TIMEOUT"), base.http_timeout),
        redirect_timeout=_parse_float(get("REDIRECT_TIMEOUT"), base.redirect_timeout),
        whois_timeout=_parse_float(get("WHOIS_TIMEOUT"), base.whois_timeout),
        whois_server=whois_server or base.whois_server,
        whois_port=_parse_int(get("WHOIS_PORT"), base.whois_port),
        whois_max_bytes=_parse_int(get("WHOIS_MAX_BYTES"), base.whois_max_bytes),
        max_redirects=_parse_int(get("MAX_REDIRECTS"), base.max_redirects),
        blacklist_zones=_parse_zones(get("BLACKLIST_ZONES")) or base.blacklist_zones,
    )
