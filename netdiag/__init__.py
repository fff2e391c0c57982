"""Public package surface for netdiag.

Importing `netdiag` exposes the engine entry points (`run_probe`, `NETDIAG`),
the result envelope and the package version.
"""

from .core import NETDIAG, ProbeKind, Result, run_probe
from .version import __version__

__all__ = ["NETDIAG", "ProbeKind", "Result", "run_probe", "__version__"]
