from __future__ import annotations

"""Command-line interface for netdiag.

Translates CLI flags into settings and probe options, runs one probe through
`netdiag.core` and renders the resulting envelope. A failed probe is still a
successful command: the envelope carries the failure.
"""

import argparse
import json
import logging
import sys
from dataclasses import replace
from typing import List, Optional

from .config import Settings, load_settings
from .core import NETDIAG, ProbeKind, logger
from .output import err_console, output, print_json_output, print_kinds
from .version import __version__


def _kind_values() -> List[str]:
    return [kind.value for kind in ProbeKind]


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="netdiag",
        description=(
            f"netdiag v.{__version__} - Network diagnostic probes\n"
            "CLI options > NETDIAG_* environment (.env) > built-in defaults."
        ),
    )
    parser.add_argument("kind", nargs="?", help="Probe kind (see --list).")
    parser.add_argument("target", nargs="?", default="", help="Host, host:port, IP, URL or AS number.")

    options_group = parser.add_argument_group("Probe Options")
    options_group.add_argument("-t", "--record-type", dest="record_type", help="DNS record type (A, MX, TXT, ...).")
    options_group.add_argument("--prefix", help="TXT lookup prefix, e.g. _dmarc.")
    options_group.add_argument("-p", "--port", type=int, help="Port for connection probes.")

    runtime_group = parser.add_argument_group("Runtime Overrides (Advanced)")
    runtime_group.add_argument("--dns", help="DNS server ('system' for the host resolver).")
    runtime_group.add_argument("--timeout", type=float, help="Deadline in seconds applied to every probe.")
    runtime_group.add_argument("--useragent", help="User-Agent string or 'random'.")

    output_group = parser.add_argument_group("Output")
    output_group.add_argument("--json", help="JSON envelope output.", action="store_true")
    output_group.add_argument("--list", help="List probe kinds and exit.", action="store_true")
    output_group.add_argument("--debug", help="Log probe dispatch to stderr.", action="store_true")
    return parser


def _effective_settings(args: argparse.Namespace, base: Optional[Settings] = None) -> Settings:
    settings = (base or load_settings()).with_overrides(useragent=args.useragent)
    if args.dns:
        dns_server = args.dns.strip()
        settings = replace(settings, dns_server=None if dns_server.lower() == "system" else dns_server)
    return settings.with_timeout(args.timeout)


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entrypoint."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.list:
        if args.json:
            print(json.dumps({"kinds": _kind_values()}, indent=2))
        else:
            print_kinds(_kind_values())
        return 0

    if not args.kind:
        parser.print_help(sys.stderr)
        return 2

    if args.debug:
        logger.setLevel(logging.DEBUG)

    settings = _effective_settings(args)
    result = NETDIAG(
        args.kind,
        args.target,
        record_type=args.record_type,
        prefix=args.prefix,
        port=args.port,
        settings=settings,
    )
    if args.json:
        print_json_output(result)
    else:
        output(result, args.kind, args.target)
    return 0


def run() -> int:
    """Console-script entrypoint: `main` with Ctrl-C handled."""
    try:
        return main()
    except KeyboardInterrupt:
        err_console.print("\n[yellow]Interrupted[/yellow]")
        return 0


if __name__ == "__main__":
    sys.exit(run())
