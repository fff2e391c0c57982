from __future__ import annotations

"""Diagnostics engine runtime.

This module owns the probe routing table and the single public entry point:
- `run_probe` (async): validate, route, return exactly one `Result`
- `NETDIAG` (sync): the same call for scripts and the CLI

Every probe enforces its own deadline; this layer adds none. It is the last
line of defence: an unexpected exception from a probe is logged and returned
as an `error` result, never raised to the caller.
"""

import asyncio
import logging
import sys
import threading
from typing import Any, Dict, Mapping, Optional, Union

from ..config import Settings, load_settings
from ..probes import blacklist, dns_lookup, http_inspect, tcp, tls, whois
from ..version import __version__
from .envelope import (
    NO_INPUT_KINDS,
    InputError,
    ProbeError,
    ProbeFn,
    ProbeKind,
    ProbeOptions,
    ProbeRequest,
    Result,
)

logger = logging.getLogger("netdiag")
logger.setLevel(logging.INFO)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s", "%H:%M:%S"))
    logger.addHandler(handler)


async def probe_health(request: ProbeRequest, settings: Settings) -> Result:
    return Result.success(
        {
            "status": "ok",
            "version": __version__,
            "kinds": [kind.value for kind in ProbeKind],
        }
    )


ROUTES: Dict[ProbeKind, ProbeFn] = {
    ProbeKind.DNS: dns_lookup.probe_dns,
    ProbeKind.DNS_TXT: dns_lookup.probe_dns_txt,
    ProbeKind.DNS_PTR: dns_lookup.probe_ptr,
    ProbeKind.TCP: tcp.probe_tcp,
    ProbeKind.PING: tcp.probe_tcp,
    ProbeKind.BANNER: tcp.probe_banner,
    ProbeKind.SMTP: tcp.probe_smtp,
    ProbeKind.SSL: tls.probe_ssl,
    ProbeKind.TLS_VERSIONS: tls.probe_tls_versions,
    ProbeKind.HEADERS: http_inspect.probe_headers,
    ProbeKind.HEADERS_GRADE: http_inspect.probe_headers_grade,
    ProbeKind.TRACE_REDIRECT: http_inspect.probe_trace_redirect,
    ProbeKind.BLACKLIST: blacklist.probe_blacklist,
    ProbeKind.WHOIS: whois.probe_whois,
    ProbeKind.WHOIS_ASN: whois.probe_whois_asn,
    ProbeKind.HEALTH: probe_health,
}

_unrouted = set(ProbeKind) - set(ROUTES)
if _unrouted:
    raise RuntimeError(f"Probe kinds without a route: {sorted(k.value for k in _unrouted)}")


def build_request(
    kind: Union[ProbeKind, str, None],
    target: Optional[str],
    options: Optional[Mapping[str, Any]] = None,
) -> ProbeRequest:
    """Validate raw call arguments; raises `InputError` before any I/O."""
    parsed = ProbeKind.parse(kind)
    if parsed is None:
        raise InputError(f"Unknown probe kind: {kind}")
    if target is not None and not isinstance(target, str):
        raise InputError("Invalid target")
    if options is not None and not isinstance(options, (Mapping, ProbeOptions)):
        raise InputError("Invalid options")
    text = (target or "").strip()
    if not text and parsed not in NO_INPUT_KINDS:
        raise InputError("Input required")
    return ProbeRequest(kind=parsed, target=text, options=ProbeOptions.from_mapping(options))


async def run_probe(
    kind: Union[ProbeKind, str, None],
    target: Optional[str] = "",
    options: Optional[Mapping[str, Any]] = None,
    settings: Optional[Settings] = None,
) -> Result:
    """Run one probe and return its single terminal `Result`."""
    try:
        request = build_request(kind, target, options)
    except ProbeError as exc:
        return exc.to_result()

    probe = ROUTES[request.kind]
    logger.debug("probe %s target=%r options=%r", request.kind.value, request.target, request.options)
    try:
        result = await probe(request, settings or load_settings())
    except ProbeError as exc:
        return exc.to_result()
    except Exception as exc:
        logger.exception("probe %s failed unexpectedly", request.kind.value)
        message = str(exc).strip()
        return Result.error(f"{exc.__class__.__name__}: {message}" if message else exc.__class__.__name__)
    logger.debug("probe %s finished with %s", request.kind.value, result.status)
    return result


def _run_coro_sync(coro: Any) -> Any:
    """Run async code from sync callers (CLI and public API).

    If already inside an event loop, execute in a helper thread to avoid
    `RuntimeError: asyncio.run() cannot be called from a running event loop`.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)

    outcome: Dict[str, Any] = {}

    def target() -> None:
        try:
            outcome["result"] = asyncio.run(coro)
        except Exception as exc:  # pragma: no cover - fallback path
            outcome["error"] = exc

    thread = threading.Thread(target=target, daemon=True)
    thread.start()
    thread.join()

    if "error" in outcome:
        raise outcome["error"]
    return outcome.get("result")


def NETDIAG(
    kind: Union[ProbeKind, str],
    target: Optional[str] = "",
    record_type: Optional[str] = None,
    prefix: Optional[str] = None,
    port: Optional[int] = None,
    settings: Optional[Settings] = None,
) -> Result:
    """Public synchronous entry point.

    Example:
    `NETDIAG("dns", "example.com", record_type="MX").to_dict()`
    """
    options = {"record_type": record_type, "prefix": prefix, "port": port}
    return _run_coro_sync(run_probe(kind, target, options, settings=settings))
