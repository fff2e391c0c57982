from __future__ import annotations

"""Request/response contract shared by every probe.

A probe receives a `ProbeRequest` and returns exactly one `Result`. Failures
inside probes are expressed with the `ProbeError` hierarchy and converted to a
`Result` at the probe boundary by `guarded`; nothing here performs I/O.
"""

import enum
import functools
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Union


class ProbeKind(str, enum.Enum):
    DNS = "dns"
    DNS_TXT = "dns-txt"
    DNS_PTR = "dns-ptr"
    TCP = "tcp"
    PING = "ping"
    BANNER = "banner"
    SMTP = "smtp-test"
    SSL = "ssl"
    TLS_VERSIONS = "tls-check"
    HEADERS = "headers"
    HEADERS_GRADE = "headers-grade"
    TRACE_REDIRECT = "trace-redirect"
    BLACKLIST = "blacklist"
    WHOIS = "whois"
    WHOIS_ASN = "whois-asn"
    HEALTH = "health"

    @classmethod
    def parse(cls, value: Union["ProbeKind", str, None]) -> Optional["ProbeKind"]:
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        for member in cls:
            if member.value == text:
                return member
        return None


# Kinds that run without a target.
NO_INPUT_KINDS = frozenset({ProbeKind.HEALTH})


class ProbeError(Exception):
    """Base class for failures a probe reports through its `Result`."""

    def to_result(self) -> "Result":
        return Result.error(str(self) or self.__class__.__name__)


class InputError(ProbeError):
    """Missing or malformed target/options, raised before any I/O."""


class NetworkError(ProbeError):
    """Refused/reset connection, resolver or handshake failure."""


class DeadlineExceeded(ProbeError):
    """The probe's own deadline fired."""

    def __init__(self, message: str = "deadline exceeded"):
        super().__init__(message)

    def to_result(self) -> "Result":
        return Result.timeout(str(self))


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class Result:
    status: str
    timestamp: str = field(default_factory=_utc_timestamp)
    data: Any = None
    message: Optional[str] = None
    grade: Optional[str] = None

    SUCCESS = "success"
    ERROR = "error"
    TIMEOUT = "timeout"

    @classmethod
    def success(cls, data: Any, grade: Optional[str] = None) -> "Result":
        return cls(status=cls.SUCCESS, data=data, grade=grade)

    @classmethod
    def error(cls, message: str) -> "Result":
        return cls(status=cls.ERROR, message=message)

    @classmethod
    def timeout(cls, message: str = "deadline exceeded") -> "Result":
        return cls(status=cls.TIMEOUT, message=message)

    @property
    def ok(self) -> bool:
        return self.status == self.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        """Wire shape: absent fields are omitted, never sent as null."""
        out: Dict[str, Any] = {"status": self.status, "timestamp": self.timestamp}
        if self.status == self.SUCCESS:
            out["data"] = self.data
            if self.grade is not None:
                out["grade"] = self.grade
        elif self.message is not None:
            out["message"] = self.message
        return out


def _parse_port(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        port = int(str(value).strip())
    except ValueError:
        raise InputError(f"Invalid port: {value}") from None
    if port < 1 or port > 65535:
        raise InputError(f"Port out of range: {port}")
    return port


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class ProbeOptions:
    record_type: Optional[str] = None
    prefix: Optional[str] = None
    port: Optional[int] = None

    @classmethod
    def from_mapping(cls, raw: Optional[Mapping[str, Any]]) -> "ProbeOptions":
        if raw is None:
            return cls()
        if isinstance(raw, ProbeOptions):
            return raw
        record_type = raw.get("record_type", raw.get("recordType"))
        return cls(
            record_type=_optional_text(record_type),
            prefix=_optional_text(raw.get("prefix")),
            port=_parse_port(raw.get("port")),
        )


@dataclass(frozen=True)
class ProbeRequest:
    kind: ProbeKind
    target: str
    options: ProbeOptions = field(default_factory=ProbeOptions)


ProbeFn = Callable[..., Awaitable[Result]]


def guarded(fn: ProbeFn) -> ProbeFn:
    """Convert `ProbeError` raised inside a probe into that probe's `Result`."""

    @functools.wraps(fn)
    async def wrapper(*args: Any, **kwargs: Any) -> Result:
        try:
            return await fn(*args, **kwargs)
        except ProbeError as exc:
            return exc.to_result()

    return wrapper
