"""Per-port byte accounting with ``iptables`` rules.

Each port gets an outbound rule keyed by destination port and an inbound rule
keyed by source port. Rules carry no target; they exist only for their byte
counters. Install, read and remove are each idempotent so they can run once per
measured run for hundreds of runs without leaking rules or stale counts.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Optional, Sequence

from netsweep.commands import Runner
from netsweep.exceptions import InstrumentationError
from netsweep.logging_utils import METRICS, get_logger


OUTBOUND_CHAIN = "OUTPUT"
INBOUND_CHAIN = "INPUT"
# Upper bound on delete attempts per rule; guards against a tool that never reports absence.
MAX_DELETE_ATTEMPTS = 256

logger = get_logger("netsweep.counters")


class RuleState(Enum):
    ALREADY_PRESENT = "already-present"
    INSERTED = "inserted"


@dataclass(frozen=True)
class AccountingRule:
    chain: str
    port: int

    @property
    def match_flag(self) -> str:
        return "--dport" if self.chain == OUTBOUND_CHAIN else "--sport"

    @property
    def listing_token(self) -> str:
        return ("dpt:" if self.chain == OUTBOUND_CHAIN else "spt:") + str(self.port)

    def spec(self) -> List[str]:
        return ["-p", "tcp", self.match_flag, str(self.port)]


@dataclass(frozen=True)
class ByteCounts:
    tx_bytes: int
    rx_bytes: int


def rules_for(ports: Iterable[int]) -> List[AccountingRule]:
    rules: List[AccountingRule] = []
    for port in ports:
        rules.append(AccountingRule(OUTBOUND_CHAIN, int(port)))
        rules.append(AccountingRule(INBOUND_CHAIN, int(port)))
    return rules


def sum_listing_bytes(listing: str, tokens: Sequence[str]) -> int:
    """Sum the byte column of ``iptables -L -v -n -x`` lines matching ``tokens``.

    The first two lines are the chain header and column names. The byte count
    is the second whitespace-separated field; malformed lines are skipped.
    """
    wanted = set(tokens)
    total = 0
    for line in listing.splitlines()[2:]:
        fields = line.split()
        if len(fields) < 2:
            continue
        if not wanted.intersection(fields):
            continue
        try:
            total += int(fields[1])
        except ValueError:
            continue
    return total


class CounterWindow:
    """Byte counts for one measured run, filled in when the window closes."""

    def __init__(self, nominal: ByteCounts) -> None:
        self.nominal = nominal
        self.measured: Optional[ByteCounts] = None

    @property
    def counts(self) -> ByteCounts:
        return self.measured if self.measured is not None else self.nominal


class CounterInstrumentation:
    def __init__(self, runner: Runner) -> None:
        self.runner = runner

    def ensure_rule(self, rule: AccountingRule) -> RuleState:
        """Check-then-insert; never creates a duplicate of an existing rule."""
        check = self.runner.run(["iptables", "-C", rule.chain, *rule.spec()])
        if check.ok:
            return RuleState.ALREADY_PRESENT
        insert = self.runner.run(["iptables", "-I", rule.chain, *rule.spec()])
        if not insert.ok:
            raise InstrumentationError(f"failed to insert accounting rule: {insert.describe()}")
        return RuleState.INSERTED

    def zero(self, chains: Iterable[str] = (OUTBOUND_CHAIN, INBOUND_CHAIN)) -> None:
        for chain in chains:
            result = self.runner.run(["iptables", "-Z", chain])
            if not result.ok:
                raise InstrumentationError(f"failed to zero {chain}: {result.describe()}")

    def install(self, ports: Iterable[int]) -> Dict[AccountingRule, RuleState]:
        states = {rule: self.ensure_rule(rule) for rule in rules_for(ports)}
        self.zero()
        return states

    def read(self, ports: Iterable[int]) -> ByteCounts:
        rules = rules_for(ports)
        totals: Dict[str, int] = {}
        for chain in (OUTBOUND_CHAIN, INBOUND_CHAIN):
            result = self.runner.run(["iptables", "-L", chain, "-v", "-n", "-x"])
            if not result.ok:
                raise InstrumentationError(f"failed to list {chain}: {result.describe()}")
            tokens = [rule.listing_token for rule in rules if rule.chain == chain]
            totals[chain] = sum_listing_bytes(result.stdout, tokens)
        return ByteCounts(tx_bytes=totals[OUTBOUND_CHAIN], rx_bytes=totals[INBOUND_CHAIN])

    def remove(self, ports: Iterable[int]) -> int:
        """Delete every matching rule, repeating until none is left; return the count."""
        removed = 0
        for rule in rules_for(ports):
            for _ in range(MAX_DELETE_ATTEMPTS):
                result = self.runner.run(["iptables", "-D", rule.chain, *rule.spec()])
                if not result.ok:
                    break
                removed += 1
            else:
                raise InstrumentationError(f"accounting rule {rule} still present after {MAX_DELETE_ATTEMPTS} deletes")
        return removed

    @contextmanager
    def counting(self, ports: Sequence[int], nominal: ByteCounts) -> Iterator[CounterWindow]:
        """Fresh zeroed counters for the block; read and removed on every exit path.

        Rules left behind by an earlier crash are removed before installing so
        duplicates never double-count.
        """
        window = CounterWindow(nominal)
        installed = False
        try:
            try:
                self.remove(ports)
                self.install(ports)
                installed = True
            except InstrumentationError as exc:
                # The run still executes; its byte columns fall back to nominal sizes.
                logger.warning("counter install failed; using nominal sizes", extra={"ports": list(ports), "error": str(exc)})
            yield window
        finally:
            if installed:
                try:
                    window.measured = self.read(ports)
                except InstrumentationError as exc:
                    METRICS.counter("teardown_warnings").inc()
                    logger.warning("counter read failed; using nominal sizes", extra={"ports": list(ports), "error": str(exc)})
            try:
                self.remove(ports)
            except InstrumentationError as exc:
                METRICS.counter("teardown_warnings").inc()
                logger.warning("counter removal failed", extra={"ports": list(ports), "error": str(exc)})
