"""Emulated bandwidth/latency on a network interface via ``tc netem``."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional

from netsweep.commands import Runner, format_number
from netsweep.exceptions import ShapingError
from netsweep.logging_utils import get_logger


LOOPBACK_IFACE = "lo"

logger = get_logger("netsweep.shaping")


@dataclass(frozen=True)
class ShapingRule:
    interface: str
    bandwidth_mbps: float
    latency_ms: float
    delay_ms: float

    @property
    def netem_args(self) -> List[str]:
        return ["rate", f"{format_number(self.bandwidth_mbps)}mbit", "delay", f"{format_number(self.delay_ms)}ms"]


def per_direction_delay(interface: str, latency_ms: float) -> float:
    """Loopback traffic crosses the qdisc once per direction, so it gets half."""
    if interface == LOOPBACK_IFACE:
        return latency_ms / 2.0
    return latency_ms


class ShapingController:
    """Owns at most one netem rule per interface."""

    def __init__(self, runner: Runner) -> None:
        self.runner = runner
        self._active: Dict[str, ShapingRule] = {}

    def active(self, interface: str) -> Optional[ShapingRule]:
        return self._active.get(interface)

    def apply(self, interface: str, bandwidth_mbps: float, latency_ms: float) -> ShapingRule:
        self.clear(interface)
        rule = ShapingRule(
            interface=interface,
            bandwidth_mbps=bandwidth_mbps,
            latency_ms=latency_ms,
            delay_ms=per_direction_delay(interface, latency_ms),
        )
        result = self.runner.run(["tc", "qdisc", "add", "dev", interface, "root", "netem", *rule.netem_args])
        if not result.ok:
            raise ShapingError(f"failed to shape {interface}: {result.describe()}")
        self._active[interface] = rule
        logger.info(
            "netem applied",
            extra={"iface": interface, "bandwidthMbps": bandwidth_mbps, "latencyMs": latency_ms, "delayMs": rule.delay_ms},
        )
        return rule

    def clear(self, interface: str) -> None:
        self._active.pop(interface, None)
        result = self.runner.run(["tc", "qdisc", "del", "dev", interface, "root"])
        if not result.ok:
            # Indistinguishable from "no qdisc installed".
            logger.debug("netem clear reported failure", extra={"iface": interface, "detail": result.describe()})

    def inspect(self, interface: str) -> Optional[str]:
        try:
            result = self.runner.run(["tc", "qdisc", "show", "dev", interface])
        except Exception as exc:
            logger.warning("qdisc query failed", extra={"iface": interface, "error": str(exc)})
            return None
        if not result.ok:
            logger.warning("qdisc query failed", extra={"iface": interface, "detail": result.describe()})
            return None
        logger.info("qdisc state", extra={"iface": interface, "qdisc": result.stdout.strip()})
        return result.stdout

    @contextmanager
    def shaped(self, interface: str, bandwidth_mbps: float, latency_ms: float) -> Iterator[ShapingRule]:
        """Apply a rule for the duration of the block; cleared on every exit path."""
        try:
            yield self.apply(interface, bandwidth_mbps, latency_ms)
        finally:
            self.clear(interface)
