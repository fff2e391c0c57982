from __future__ import annotations

"""Compatibility facade for the netdiag engine.

Public imports remain stable while implementation lives in `netdiag.engine`.
"""

from .engine.envelope import (
    DeadlineExceeded,
    InputError,
    NetworkError,
    ProbeError,
    ProbeKind,
    ProbeOptions,
    ProbeRequest,
    Result,
)
from .engine.runtime import NETDIAG, ROUTES, _run_coro_sync, build_request, logger, run_probe

__all__ = [
    "NETDIAG",
    "ROUTES",
    "DeadlineExceeded",
    "InputError",
    "NetworkError",
    "ProbeError",
    "ProbeKind",
    "ProbeOptions",
    "ProbeRequest",
    "Result",
    "build_request",
    "logger",
    "run_probe",
    "_run_coro_sync",
]
