"""Per-run result records and the CSV column contract."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, List, Optional


CSV_HEADER = [
    "kind",
    "name",
    "bandwidth(Mbps)",
    "latency(ms)",
    "request_size(B)",
    "response_size(B)",
    "runtime(ms)",
    "send_bytes(B)",
    "recv_bytes(B)",
    "memory_rss(MB)",
    "tls_handshake_ms",
    "online_ms",
    "zk_proof_total",
    "zk_generate_ms",
    "zk_proof_bytes",
    "zk_verify_attestor_ms",
    "third_party_verify_ms",
    "error",
]

PHASE_FIELDS = (
    "tls_handshake_ms",
    "online_ms",
    "zk_proof_total",
    "zk_generate_ms",
    "zk_proof_bytes",
    "zk_verify_attestor_ms",
    "third_party_verify_ms",
)


def round2(value: Optional[float]) -> Optional[float]:
    """Round to two decimals; absent or non-finite values stay absent."""
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return round(number, 2)


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return f"{value:.2f}".rstrip("0").rstrip(".")
    return str(value)


@dataclass
class RunRecord:
    kind: str
    name: str
    axis_value: float
    repetition: int
    bandwidth_mbps: float
    latency_ms: float
    request_size: int
    response_size: int
    runtime_ms: Optional[float]
    send_bytes: int
    recv_bytes: int
    memory_rss_mb: Optional[float]
    tls_handshake_ms: Optional[float] = None
    online_ms: Optional[float] = None
    zk_proof_total: Optional[int] = None
    zk_generate_ms: Optional[float] = None
    zk_proof_bytes: Optional[float] = None
    zk_verify_attestor_ms: Optional[float] = None
    third_party_verify_ms: Optional[float] = None
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def has_phase_timings(self) -> bool:
        return any(getattr(self, name) is not None for name in PHASE_FIELDS)

    def values(self) -> List[Any]:
        """Field values in CSV column order."""
        return [
            self.kind,
            self.name,
            self.bandwidth_mbps,
            self.latency_ms,
            self.request_size,
            self.response_size,
            self.runtime_ms,
            self.send_bytes,
            self.recv_bytes,
            self.memory_rss_mb,
            self.tls_handshake_ms,
            self.online_ms,
            self.zk_proof_total,
            self.zk_generate_ms,
            self.zk_proof_bytes,
            self.zk_verify_attestor_ms,
            self.third_party_verify_ms,
            self.error,
        ]

    def to_row(self) -> List[str]:
        return [_cell(value) for value in self.values()]

    def log_fields(self) -> dict:
        return {
            "axisValue": self.axis_value,
            "repetition": self.repetition,
            "runtimeMs": self.runtime_ms,
            "sendBytes": self.send_bytes,
            "recvBytes": self.recv_bytes,
            "memoryRssMb": self.memory_rss_mb,
            "tlsHandshakeMs": self.tls_handshake_ms,
            "onlineMs": self.online_ms,
            "zkProofTotal": self.zk_proof_total,
            "zkGenerateMs": self.zk_generate_ms,
            "zkProofByte": self.zk_proof_bytes,
            "zkVerifyAttestorMs": self.zk_verify_attestor_ms,
            "thirdPartyVerifyMs": self.third_party_verify_ms,
            "error": self.error,
        }
