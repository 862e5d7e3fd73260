"""Phase timings reported by the protocol round while it runs."""

from __future__ import annotations

import math
from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

from netsweep.logging_utils import get_logger


logger = get_logger("netsweep.steps")


class StepKind(str, Enum):
    HANDSHAKE = "handshake-complete"
    ONLINE = "request-response-complete"
    PROOF_BATCH = "proof-generation-batch-complete"
    PROOF_GENERATED = "proof-generation-complete"
    PROOF_SIZE = "proof-size-known"
    ATTESTOR_VERIFIED = "attestor-verification-complete"


@dataclass(frozen=True)
class StepEvent:
    """One phase-completion notification.

    ``kind`` stays a plain string when the collaborator reports a phase this
    harness does not know yet.
    """

    kind: Union[StepKind, str]
    value: float

    @classmethod
    def parse(cls, name: str, value: Any) -> "StepEvent":
        try:
            kind: Union[StepKind, str] = StepKind(name)
        except ValueError:
            kind = name
        try:
            number = float(value)
        except (TypeError, ValueError):
            number = math.nan
        return cls(kind=kind, value=number)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "StepEvent":
        return cls.parse(str(payload.get("step", "")), payload.get("value"))


@dataclass
class PhaseTimings:
    tls_handshake_ms: Optional[float] = None
    online_ms: Optional[float] = None
    zk_proof_total: Optional[int] = None
    zk_generate_ms: Optional[float] = None
    zk_proof_bytes: Optional[float] = None
    zk_verify_attestor_ms: Optional[float] = None
    third_party_verify_ms: Optional[float] = None

    def captured(self) -> bool:
        return any(getattr(self, f.name) is not None for f in fields(self))

    def as_dict(self) -> Dict[str, Optional[float]]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


_FIELD_BY_KIND = {
    StepKind.HANDSHAKE: "tls_handshake_ms",
    StepKind.ONLINE: "online_ms",
    StepKind.PROOF_GENERATED: "zk_generate_ms",
    StepKind.PROOF_SIZE: "zk_proof_bytes",
    StepKind.ATTESTOR_VERIFIED: "zk_verify_attestor_ms",
}


class StepCollector:
    """Passive observer for one round; maps known phases onto ``PhaseTimings``."""

    def __init__(self) -> None:
        self.timings = PhaseTimings()
        self.ignored = 0

    def __call__(self, event: StepEvent) -> None:
        self.on_step(event)

    def on_step(self, event: StepEvent) -> None:
        try:
            kind = StepKind(event.kind)
        except ValueError:
            self.ignored += 1
            logger.debug("ignoring unknown step", extra={"step": str(event.kind)})
            return
        if not math.isfinite(event.value) or event.value < 0:
            self.ignored += 1
            logger.debug("ignoring step with unusable value", extra={"step": kind.value, "value": str(event.value)})
            return
        if kind is StepKind.PROOF_BATCH:
            # Proofs arrive in batches; the column is the total across batches.
            self.timings.zk_proof_total = (self.timings.zk_proof_total or 0) + int(event.value)
            return
        setattr(self.timings, _FIELD_BY_KIND[kind], event.value)
