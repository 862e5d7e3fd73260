#!/usr/bin/env python3
"""Command-line entry point for bandwidth, latency and payload sweeps.

Examples::

    BENCH_CLIENT_CMD="node lib/bench-client.js" python -m netsweep.run_sweep bandwidth
    python -m netsweep.run_sweep latency --values 10,50,200 --repeats 3 --no-sudo
    python -m netsweep.run_sweep once --client-cmd "./client" --kind snarkjs

Every flag falls back to its ``BENCH_*`` environment variable, then to the
defaults in ``netsweep.config``.
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from netsweep.commands import CommandRunner
from netsweep.config import AXES, ENGINES, TLS_VERSIONS, build_sweep_config, load_config, parse_axis
from netsweep.counters import CounterInstrumentation
from netsweep.endpoints import ManagedEndpoints
from netsweep.exceptions import ConfigurationError, NetsweepError
from netsweep.export import print_summary
from netsweep.logging_utils import configure_file_logger, get_logger
from netsweep.orchestrator import SweepOrchestrator
from netsweep.protocol import CommandRound
from netsweep.shaping import ShapingController


logger = get_logger("netsweep.cli")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Benchmark a protocol round under shaped network conditions")
    parser.add_argument("command", choices=[*AXES, "once"], help="Axis to sweep, or 'once' for a single unshaped round")
    parser.add_argument("--values", help="Comma-separated axis values (Mbps, ms or bytes)")
    parser.add_argument("--iface", help="Interface to shape (default lo)")
    parser.add_argument("--bandwidth", type=float, help="Fixed bandwidth in Mbps")
    parser.add_argument("--latency", type=float, help="Fixed latency in ms")
    parser.add_argument("--request-size", type=int, help="Request payload size in bytes")
    parser.add_argument("--response-size", type=int, help="Response payload size in bytes")
    parser.add_argument("--tls", choices=TLS_VERSIONS, help="Protocol version")
    parser.add_argument("--kind", choices=ENGINES, help="Proof engine")
    parser.add_argument("--repeats", type=int, help="Measured runs per axis value")
    parser.add_argument("--warmups", type=int, help="Unmeasured warmup rounds")
    parser.add_argument("--csv", help="CSV output path")
    parser.add_argument("--markdown", help="Optional markdown table output path")
    parser.add_argument("--xlsx", help="Optional Excel workbook output path")
    parser.add_argument("--no-sudo", action="store_true", help="Run tc/iptables without sudo")
    parser.add_argument("--show-qdisc", action="store_true", help="Log the qdisc after shaping each run")
    parser.add_argument("--client-cmd", help="Protocol client command (JSON lines on stdout)")
    parser.add_argument("--verify-cmd", help="Third-party verifier command (claim JSON on stdin)")
    parser.add_argument("--endpoints-cmd", help="Command that starts the attestor and target server")
    parser.add_argument("--log-dir", help="Also write JSON logs to a file in this directory")
    return parser.parse_args(argv)


def _overrides(args: argparse.Namespace) -> Dict[str, Any]:
    return {
        "values": parse_axis(args.values) if args.values else None,
        "iface": args.iface,
        "bandwidth_mbps": args.bandwidth,
        "latency_ms": args.latency,
        "request_size": args.request_size,
        "response_size": args.response_size,
        "tls_version": args.tls,
        "engine": args.kind,
        "repetitions": args.repeats,
        "warmup_rounds": args.warmups,
        "output_csv": Path(args.csv) if args.csv else None,
        "output_markdown": Path(args.markdown) if args.markdown else None,
        "output_xlsx": Path(args.xlsx) if args.xlsx else None,
        "use_sudo": False if args.no_sudo else None,
        "show_qdisc": True if args.show_qdisc else None,
        "client_cmd": args.client_cmd,
        "verify_cmd": args.verify_cmd,
        "endpoints_cmd": args.endpoints_cmd,
    }


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    if args.log_dir:
        path = configure_file_logger(f"sweep-{args.command}", logs_dir=Path(args.log_dir))
        logger.info("logging to file", extra={"path": str(path)})

    try:
        cfg = load_config()
        axis = "bandwidth" if args.command == "once" else args.command
        sweep = build_sweep_config(axis, cfg, **_overrides(args))
        if args.command == "once":
            sweep = replace(sweep, values=(sweep.bandwidth_mbps,), repetitions=1, warmup_rounds=0)
        if not sweep.client_cmd:
            raise ConfigurationError("a protocol client command is required (--client-cmd or BENCH_CLIENT_CMD)")
    except ConfigurationError as exc:
        logger.error("invalid configuration", extra={"error": str(exc)})
        return 2

    runner = CommandRunner(use_sudo=sweep.use_sudo)
    for tool in ("tc", "iptables"):
        if runner.available(tool) is None:
            logger.warning(f"{tool} not found in PATH; runs will fall back to degraded records", extra={"tool": tool})

    endpoints = ManagedEndpoints(
        sweep.endpoints_cmd,
        sweep.host,
        sweep.ports,
        timeout=sweep.endpoint_timeout_s,
        log_path=Path("logs") / "endpoints.log" if sweep.endpoints_cmd else None,
    )
    orchestrator = SweepOrchestrator(
        sweep,
        CommandRound(sweep.client_cmd, sweep.verify_cmd, timeout=sweep.round_timeout_s),
        ShapingController(runner),
        CounterInstrumentation(runner),
        endpoints,
    )

    try:
        if args.command == "once":
            record = orchestrator.run_single()
            print_summary([record])
            return 1 if record.failed else 0
        orchestrator.run()
    except ConfigurationError as exc:
        logger.error("invalid configuration", extra={"error": str(exc)})
        return 2
    except (NetsweepError, OSError) as exc:
        logger.error(f"{sweep.axis} sweep failed", extra={"error": str(exc), "errorType": type(exc).__name__})
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
