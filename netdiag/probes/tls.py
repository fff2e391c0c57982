from __future__ import annotations

"""TLS probes: certificate inspection and protocol-version support.

Certificate inspection runs in two phases sharing one deadline:
- a verifying handshake establishes the trust verdict (`authorized`)
- if verification fails, a non-verifying handshake still extracts metadata,
  because an untrusted or expired certificate is a result, not an error.
"""

import asyncio
import math
import ssl
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import OpenSSL
from cryptography import x509 as cx509

from ..config import Settings
from ..engine.envelope import DeadlineExceeded, NetworkError, ProbeError, ProbeRequest, Result, guarded
from ..engine.sockets import ConnectionAttempt, Deadline
from .targets import split_host_port

TLS_DEFAULT_PORT = 443
TLS_VERSIONS: List[Tuple[str, str]] = [
    ("TLS 1.0", "TLSv1"),
    ("TLS 1.1", "TLSv1_1"),
    ("TLS 1.2", "TLSv1_2"),
    ("TLS 1.3", "TLSv1_3"),
]
LEGACY_VERSIONS = frozenset({"TLS 1.0", "TLS 1.1"})


def _strict_context() -> ssl.SSLContext:
    ctx = ssl.create_default_context()
    ctx.check_hostname = True
    ctx.verify_mode = ssl.CERT_REQUIRED
    return ctx


def _lenient_context() -> ssl.SSLContext:
    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    return ctx


def _components(name: Any) -> Dict[str, str]:
    return {
        key.decode("utf-8", errors="replace"): value.decode("utf-8", errors="replace")
        for key, value in name.get_components()
    }


def _asn1_time(raw: Optional[bytes]) -> Optional[datetime]:
    if not raw:
        return None
    return datetime.strptime(raw.decode("ascii"), "%Y%m%d%H%M%SZ").replace(tzinfo=timezone.utc)


def days_remaining(valid_to: datetime, now: datetime) -> int:
    """Whole days until expiry, floored; negative once expired."""
    return math.floor((valid_to - now).total_seconds() / 86400)


def _subject_alt_names(cert: OpenSSL.crypto.X509) -> List[str]:
    try:
        ext = cert.to_cryptography().extensions.get_extension_for_class(cx509.SubjectAlternativeName)
    except cx509.ExtensionNotFound:
        return []
    names = list(ext.value.get_values_for_type(cx509.DNSName))
    names.extend(str(ip) for ip in ext.value.get_values_for_type(cx509.IPAddress))
    return names


def certificate_summary(der: bytes, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Describe a DER certificate; never raises for expired certificates."""
    cert = OpenSSL.crypto.load_certificate(OpenSSL.crypto.FILETYPE_ASN1, der)
    now = now or datetime.now(timezone.utc)
    subject = _components(cert.get_subject())
    issuer = _components(cert.get_issuer())
    valid_from = _asn1_time(cert.get_notBefore())
    valid_to = _asn1_time(cert.get_notAfter())

    try:
        signature_algorithm: Optional[str] = cert.get_signature_algorithm().decode("utf-8")
    except (AttributeError, ValueError):
        signature_algorithm = None

    return {
        "subject": subject,
        "issuer": issuer,
        "common_name": subject.get("CN"),
        "issuer_org": issuer.get("O") or "Unknown",
        "san": _subject_alt_names(cert),
        "serial": format(cert.get_serial_number(), "X"),
        "fingerprint_sha256": cert.digest("sha256").decode("ascii"),
        "signature_algorithm": signature_algorithm,
        "self_signed": subject == issuer,
        "valid_from": valid_from.isoformat() if valid_from else None,
        "valid_to": valid_to.isoformat() if valid_to else None,
        "days_remaining": days_remaining(valid_to, now) if valid_to else None,
        "expired": bool(valid_to and valid_to < now),
    }


async def _handshake(host: str, port: int, ctx: ssl.SSLContext, timeout: float) -> Dict[str, Any]:
    async with ConnectionAttempt(host, port, timeout=timeout, ssl_context=ctx, server_hostname=host) as conn:
        ssl_object = conn.extra_info("ssl_object")
        if ssl_object is None:
            raise NetworkError("TLS session unavailable")
        der = ssl_object.getpeercert(binary_form=True)
        cipher = ssl_object.cipher()
        return {
            "der": der,
            "protocol": ssl_object.version(),
            "cipher": cipher[0] if cipher else None,
        }


def _verification_failure(exc: NetworkError) -> Optional[str]:
    cause = exc.__cause__
    if isinstance(cause, ssl.SSLCertVerificationError):
        return getattr(cause, "verify_message", None) or str(cause)
    return None


@guarded
async def probe_ssl(request: ProbeRequest, settings: Settings) -> Result:
    host, port = split_host_port(request.target, request.options.port or TLS_DEFAULT_PORT)
    deadline = Deadline(settings.tls_timeout)

    authorization_error: Optional[str] = None
    try:
        session = await _handshake(host, port, _strict_context(), deadline.remaining())
        authorized = True
    except NetworkError as exc:
        authorization_error = _verification_failure(exc)
        if authorization_error is None:
            raise
        authorized = False
        session = await _handshake(host, port, _lenient_context(), deadline.remaining())

    if not session["der"]:
        raise NetworkError("peer presented no certificate")

    data = {"host": host, "port": port}
    data.update(certificate_summary(session["der"]))
    data.update(
        {
            "authorized": authorized,
            "authorization_error": authorization_error,
            "protocol": session["protocol"],
            "cipher": session["cipher"],
        }
    )
    return Result.success(data)


def _pinned_context(version_name: str, seclevel0: bool) -> ssl.SSLContext:
    version = getattr(ssl.TLSVersion, version_name)
    ctx = _lenient_context()
    if seclevel0:
        # OpenSSL 3 refuses TLS 1.0/1.1 at the default security level.
        ctx.set_ciphers("DEFAULT:@SECLEVEL=0")
    ctx.minimum_version = version
    ctx.maximum_version = version
    return ctx


async def _accepts_version(
    host: str, port: int, label: str, version_name: str, timeout: float
) -> Tuple[bool, Optional[ProbeError]]:
    failure: Optional[ProbeError] = None
    for seclevel0 in ((False, True) if label in LEGACY_VERSIONS else (False,)):
        try:
            ctx = _pinned_context(version_name, seclevel0)
        except (AttributeError, ValueError, ssl.SSLError):
            continue
        try:
            async with ConnectionAttempt(host, port, timeout=timeout, ssl_context=ctx, server_hostname=host):
                return True, None
        except ProbeError as exc:
            failure = exc
    return False, failure


@guarded
async def probe_tls_versions(request: ProbeRequest, settings: Settings) -> Result:
    host, port = split_host_port(request.target, request.options.port or TLS_DEFAULT_PORT)
    outcomes = await asyncio.gather(
        *(_accepts_version(host, port, label, name, settings.tls_timeout) for label, name in TLS_VERSIONS)
    )
    supported = [label for (label, _), (ok, _) in zip(TLS_VERSIONS, outcomes) if ok]

    if not supported:
        failures = [failure for _, failure in outcomes if failure is not None]
        if failures and all(isinstance(f, DeadlineExceeded) for f in failures):
            raise DeadlineExceeded("TLS handshake timed out")
        # A refused connection is not a protocol verdict.
        connection_failures = [
            f for f in failures if isinstance(f, NetworkError) and not isinstance(f.__cause__, ssl.SSLError)
        ]
        if failures and len(connection_failures) == len(failures):
            raise connection_failures[0]

    return Result.success(
        {
            "host": host,
            "port": port,
            "supported": supported,
            "legacy_enabled": any(v in LEGACY_VERSIONS for v in supported),
        }
    )
