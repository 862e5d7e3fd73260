"""Fakes shared by the harness tests: an in-memory tc/iptables host and a protocol round."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import pytest

from netsweep.commands import CommandResult
from netsweep.config import SweepConfig
from netsweep.exceptions import ProtocolError
from netsweep.protocol import RoundOutcome, RoundRequest
from netsweep.steps import StepEvent


_IPT_HEADER = "Chain {chain} (policy ACCEPT 0 packets, 0 bytes)\n    pkts      bytes target     prot opt in     out     source               destination"


class FakeHost:
    """Interprets the tc/iptables argv the harness emits against in-memory state."""

    def __init__(self, interfaces: Sequence[str] = ("lo", "eth0")) -> None:
        self.interfaces = set(interfaces)
        self.qdiscs: Dict[str, List[str]] = {}
        self.chains: Dict[str, List[List]] = {"OUTPUT": [], "INPUT": []}
        self.calls: List[Tuple[str, ...]] = []
        self.fail_ops: set = set()
        self.extra_listing: Dict[str, List[str]] = {"OUTPUT": [], "INPUT": []}

    # -- Runner protocol --------------------------------------------------
    def run(self, argv: Sequence[str]) -> CommandResult:
        argv = tuple(argv)
        self.calls.append(argv)
        args = argv[1:] if argv and argv[0] == "sudo" else argv
        if args[0] == "tc":
            return self._tc(argv, args[1:])
        if args[0] == "iptables":
            return self._iptables(argv, args[1:])
        return CommandResult(argv, 127, "", "unknown tool")

    # -- tc ---------------------------------------------------------------
    def _tc(self, argv, args) -> CommandResult:
        op, iface = args[1], args[3]
        if ("tc", op) in self.fail_ops:
            return CommandResult(argv, 2, "", "RTNETLINK answers: Operation not permitted")
        if iface not in self.interfaces:
            return CommandResult(argv, 1, "", f'Cannot find device "{iface}"')
        if op == "add":
            if iface in self.qdiscs:
                return CommandResult(argv, 2, "", "Error: Exclusivity flag on, cannot modify.")
            self.qdiscs[iface] = list(args[6:])
            return CommandResult(argv, 0)
        if op == "del":
            if iface not in self.qdiscs:
                return CommandResult(argv, 2, "", "Error: Cannot delete qdisc with handle of zero.")
            del self.qdiscs[iface]
            return CommandResult(argv, 0)
        if op == "show":
            if iface not in self.qdiscs:
                return CommandResult(argv, 0, f"qdisc noqueue 0: dev {iface} root refcnt 2\n")
            rule = " ".join(self.qdiscs[iface])
            return CommandResult(argv, 0, f"qdisc netem 8001: dev {iface} root refcnt 2 limit 1000 {rule}\n")
        return CommandResult(argv, 1, "", "bad tc op")

    # -- iptables ---------------------------------------------------------
    def _iptables(self, argv, args) -> CommandResult:
        op, chain = args[0], args[1]
        if ("iptables", op) in self.fail_ops:
            return CommandResult(argv, 4, "", "iptables: Permission denied (you must be root).")
        spec = tuple(args[2:])
        rules = self.chains[chain]
        if op == "-C":
            return CommandResult(argv, 0 if any(r[0] == spec for r in rules) else 1)
        if op == "-I":
            rules.insert(0, [spec, 0, 0])
            return CommandResult(argv, 0)
        if op == "-D":
            for idx, rule in enumerate(rules):
                if rule[0] == spec:
                    del rules[idx]
                    return CommandResult(argv, 0)
            return CommandResult(argv, 1, "", "iptables: Bad rule (does a matching rule exist in that chain?).")
        if op == "-Z":
            for rule in rules:
                rule[1] = rule[2] = 0
            return CommandResult(argv, 0)
        if op == "-L":
            lines = [_IPT_HEADER.format(chain=chain)]
            for (_, _, flag, port), bytes_, pkts in rules:
                token = ("dpt:" if flag == "--dport" else "spt:") + port
                lines.append(f"{pkts:>8} {bytes_:>10}            tcp  --  *      *       0.0.0.0/0            0.0.0.0/0            tcp {token}")
            lines.extend(self.extra_listing[chain])
            return CommandResult(argv, 0, "\n".join(lines) + "\n")
        return CommandResult(argv, 2, "", "bad iptables op")

    # -- helpers ----------------------------------------------------------
    def duplicate_rule(self, chain: str, spec: Tuple[str, ...]) -> None:
        self.chains[chain].append([spec, 0, 0])

    def traffic(self, port: int, tx: int, rx: int) -> None:
        """Account ``tx`` bytes sent to ``port`` and ``rx`` bytes received from it."""
        for rule in self.chains["OUTPUT"]:
            if rule[0] == ("-p", "tcp", "--dport", str(port)):
                rule[1] += tx
                rule[2] += 1
        for rule in self.chains["INPUT"]:
            if rule[0] == ("-p", "tcp", "--sport", str(port)):
                rule[1] += rx
                rule[2] += 1

    def rule_count(self) -> int:
        return sum(len(rules) for rules in self.chains.values())


DEFAULT_STEPS = (
    ("handshake-complete", 12.345),
    ("request-response-complete", 40.0),
    ("proof-generation-batch-complete", 3),
    ("proof-generation-complete", 250.126),
    ("proof-size-known", 2048),
    ("attestor-verification-complete", 8.5),
)


class FakeRound:
    """Scriptable stand-in for the external protocol client."""

    def __init__(
        self,
        host: Optional[FakeHost] = None,
        *,
        fail_when: Callable[[RoundRequest, Optional[FakeHost]], bool] = lambda request, host: False,
        raise_on_fail: bool = True,
        early_steps: Sequence[Tuple[str, object]] = (("handshake-complete", 5.0),),
        steps: Sequence[Tuple[str, object]] = DEFAULT_STEPS,
        traffic: Tuple[int, int] = (1500, 6000),
        verifies: bool = True,
        close_error: Optional[Exception] = None,
        total_ms: Optional[float] = None,
        proof_bytes: Optional[int] = 4096,
    ) -> None:
        self.host = host
        self.fail_when = fail_when
        self.raise_on_fail = raise_on_fail
        self.early_steps = early_steps
        self.steps = steps
        self.traffic = traffic
        self.verifies = verifies
        self.close_error = close_error
        self.total_ms = total_ms
        self.proof_bytes = proof_bytes
        self.requests: List[RoundRequest] = []
        self.shaping_seen: List[Optional[List[str]]] = []
        self.closes = 0
        self.verifications = 0

    def run(self, request: RoundRequest, on_step) -> RoundOutcome:
        self.requests.append(request)
        if self.host is not None:
            self.shaping_seen.append(self.host.qdiscs.get("lo"))
            self.host.traffic(request.attestor_port, *self.traffic)
        for name, value in self.early_steps:
            on_step(StepEvent.parse(name, value))
        if self.fail_when(request, self.host):
            if self.raise_on_fail:
                raise ProtocolError("attestor rejected claim")
            return RoundOutcome(error="claim creation failed", error_code="ERROR_INVALID_CLAIM")
        for name, value in self.steps:
            on_step(StepEvent.parse(name, value))
        return RoundOutcome(total_ms=self.total_ms, proof_bytes=self.proof_bytes, claim={"id": len(self.requests)})

    def verify(self, outcome: RoundOutcome) -> bool:
        if not self.verifies:
            return False
        self.verifications += 1
        return True

    def close(self) -> None:
        self.closes += 1
        if self.close_error is not None:
            raise self.close_error


class FakeEndpoints:
    def __init__(self, error: Optional[Exception] = None) -> None:
        self.error = error
        self.started = 0
        self.stopped = 0

    def start(self) -> None:
        self.started += 1
        if self.error is not None:
            raise self.error

    def stop(self) -> None:
        self.stopped += 1


def make_sweep_config(tmp_path: Path, **overrides) -> SweepConfig:
    params = dict(
        iface="lo",
        axis="bandwidth",
        values=(10.0, 1000.0),
        bandwidth_mbps=1000.0,
        latency_ms=25.0,
        request_size=1024,
        response_size=4096,
        host="127.0.0.1",
        attestor_port=10000,
        https_port=15000,
        tls_version="TLS1_3",
        engine="gnark",
        use_sudo=False,
        repetitions=1,
        warmup_rounds=0,
        output_csv=tmp_path / "out" / "bench.csv",
    )
    params.update(overrides)
    return SweepConfig(**params)


@pytest.fixture
def host() -> FakeHost:
    return FakeHost()


@pytest.fixture
def sweep_config(tmp_path: Path) -> SweepConfig:
    return make_sweep_config(tmp_path)
