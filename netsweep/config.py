"""
Sweep configuration for the network-condition benchmark harness.

Single source of truth for interface, ports, payload sizes and sweep axes.
Defaults live in ``CONFIG``; every key can be overridden from the environment
(see ``_ENV_VARS``) and, for the CLI, from command-line flags.
"""

from __future__ import annotations

import math
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from netsweep.exceptions import ConfigurationError


AXES = ("bandwidth", "latency", "payload")
TLS_VERSIONS = ("TLS1_2", "TLS1_3")
ENGINES = ("gnark", "snarkjs", "expander", "stwo")

# Payload size used by warmup rounds (bytes).
WARMUP_PAYLOAD_BYTES = 1


# Default configuration - all required keys with correct types
CONFIG: Dict[str, Any] = {
    # Interface that carries the benchmark traffic
    "IFACE": "lo",

    # Sweep axes (one of these varies per sweep)
    "BANDWIDTHS_MBPS": (10.0, 50.0, 100.0, 250.0, 1000.0),
    "LATENCIES_MS": (10.0, 25.0, 50.0, 100.0, 200.0),
    "PAYLOADS_BYTES": (256.0, 1024.0, 4096.0, 16384.0),

    # Held-fixed parameters
    "BANDWIDTH_MBPS": 1000.0,
    "LATENCY_MS": 25.0,
    "REQUEST_BYTES": 1024,
    "RESPONSE_BYTES": 4096,

    # Endpoints
    "HOST": "127.0.0.1",
    "ATTESTOR_PORT": 10000,
    "HTTPS_PORT": 15000,

    # Protocol selectors
    "TLS_VERSION": "TLS1_3",
    "ENGINE": "gnark",

    # Run control
    "USE_SUDO": True,
    "REPEATS": 10,
    "WARMUPS": 3,
    "SHOW_QDISC": False,

    # Outputs (None -> benchmarks/prover-bench-<axis>.csv)
    "OUTPUT_CSV": None,
    "OUTPUT_MARKDOWN": None,
    "OUTPUT_XLSX": None,

    # Collaborator commands (shell-style strings)
    "CLIENT_CMD": None,
    "VERIFY_CMD": None,
    "ENDPOINTS_CMD": None,
    "ENDPOINT_TIMEOUT_S": 30.0,
    "ROUND_TIMEOUT_S": 300.0,
}


# Expected type per key; "axis" keys hold tuples of floats.
_KEY_TYPES: Dict[str, str] = {
    "IFACE": "str",
    "BANDWIDTHS_MBPS": "axis",
    "LATENCIES_MS": "axis",
    "PAYLOADS_BYTES": "axis",
    "BANDWIDTH_MBPS": "float",
    "LATENCY_MS": "float",
    "REQUEST_BYTES": "int",
    "RESPONSE_BYTES": "int",
    "HOST": "str",
    "ATTESTOR_PORT": "int",
    "HTTPS_PORT": "int",
    "TLS_VERSION": "str",
    "ENGINE": "str",
    "USE_SUDO": "sudo",
    "REPEATS": "int",
    "WARMUPS": "int",
    "SHOW_QDISC": "flag",
    "OUTPUT_CSV": "optstr",
    "OUTPUT_MARKDOWN": "optstr",
    "OUTPUT_XLSX": "optstr",
    "CLIENT_CMD": "optstr",
    "VERIFY_CMD": "optstr",
    "ENDPOINTS_CMD": "optstr",
    "ENDPOINT_TIMEOUT_S": "float",
    "ROUND_TIMEOUT_S": "float",
}

# Environment variable for each overridable key
_ENV_VARS: Dict[str, str] = {
    "IFACE": "BENCH_IFACE",
    "BANDWIDTHS_MBPS": "BENCH_BANDWIDTHS_MBPS",
    "LATENCIES_MS": "BENCH_LATENCIES_MS",
    "PAYLOADS_BYTES": "BENCH_PAYLOADS_BYTES",
    "BANDWIDTH_MBPS": "BENCH_BANDWIDTH_MBPS",
    "LATENCY_MS": "BENCH_LATENCY_MS",
    "REQUEST_BYTES": "BENCH_REQUEST_BYTES",
    "RESPONSE_BYTES": "BENCH_RESPONSE_BYTES",
    "HOST": "BENCH_HOST",
    "ATTESTOR_PORT": "BENCH_ATTESTOR_PORT",
    "HTTPS_PORT": "BENCH_HTTPS_PORT",
    "TLS_VERSION": "BENCH_TLS",
    "ENGINE": "BENCH_KIND",
    "USE_SUDO": "BENCH_SUDO",
    "REPEATS": "BENCH_REPEATS",
    "WARMUPS": "BENCH_WARMUPS",
    "SHOW_QDISC": "BENCH_SHOW_QDISC",
    "OUTPUT_CSV": "BENCH_CSV",
    "OUTPUT_MARKDOWN": "BENCH_MARKDOWN",
    "OUTPUT_XLSX": "BENCH_XLSX",
    "CLIENT_CMD": "BENCH_CLIENT_CMD",
    "VERIFY_CMD": "BENCH_VERIFY_CMD",
    "ENDPOINTS_CMD": "BENCH_ENDPOINTS_CMD",
    "ENDPOINT_TIMEOUT_S": "BENCH_ENDPOINT_TIMEOUT_S",
    "ROUND_TIMEOUT_S": "BENCH_ROUND_TIMEOUT_S",
}

_AXIS_KEYS = {
    "bandwidth": "BANDWIDTHS_MBPS",
    "latency": "LATENCIES_MS",
    "payload": "PAYLOADS_BYTES",
}


def parse_axis(raw: str) -> Tuple[float, ...]:
    """Parse a comma-separated list (or a single value) into axis values.

    Blank entries are dropped; anything non-numeric raises ConfigurationError.
    """
    values = []
    for part in str(raw).split(","):
        part = part.strip()
        if not part:
            continue
        try:
            values.append(float(part))
        except ValueError:
            raise ConfigurationError(f"axis value {part!r} is not a number") from None
    return tuple(values)


def _parse_value(key: str, raw: str) -> Any:
    kind = _KEY_TYPES[key]
    text = str(raw).strip()
    try:
        if kind == "str":
            return text
        if kind == "optstr":
            return text or None
        if kind == "int":
            return int(text)
        if kind == "float":
            return float(text)
        if kind == "axis":
            return parse_axis(text)
        if kind == "sudo":
            # Escalation stays on unless explicitly disabled.
            return text != "0"
        if kind == "flag":
            return text.lower() in {"1", "true", "yes", "on"}
    except ValueError:
        raise ConfigurationError(f"Invalid {kind} value for {_ENV_VARS[key]}: {raw!r}") from None
    raise ConfigurationError(f"Unsupported type for env override: {kind}")


def _apply_env_overrides(cfg: Dict[str, Any], env: Mapping[str, str]) -> Dict[str, Any]:
    """Apply environment variable overrides to config."""
    result = dict(cfg)
    for key, env_var in _ENV_VARS.items():
        if env_var in env:
            result[key] = _parse_value(key, env[env_var])
    return result


def _check_axis(name: str, values: Any) -> None:
    if not isinstance(values, tuple) or not values:
        raise ConfigurationError(f"CONFIG[{name}] must be a non-empty list of values")
    for value in values:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigurationError(f"CONFIG[{name}] contains non-numeric value {value!r}")
        if not math.isfinite(value) or value <= 0:
            raise ConfigurationError(f"CONFIG[{name}] values must be finite and positive, got {value!r}")


def validate_config(cfg: Dict[str, Any]) -> None:
    """
    Ensure all required keys exist with correct types/ranges.
    Raise ConfigurationError("<reason>") on any violation.
    """
    missing_keys = set(_KEY_TYPES) - set(cfg)
    if missing_keys:
        raise ConfigurationError(f"CONFIG missing required keys: {', '.join(sorted(missing_keys))}")

    if not cfg["IFACE"] or not isinstance(cfg["IFACE"], str):
        raise ConfigurationError("CONFIG[IFACE] must be a non-empty interface name")
    if not cfg["HOST"] or not isinstance(cfg["HOST"], str):
        raise ConfigurationError("CONFIG[HOST] must be a non-empty host")

    for key in ("BANDWIDTHS_MBPS", "LATENCIES_MS", "PAYLOADS_BYTES"):
        _check_axis(key, cfg[key])

    for key in ("BANDWIDTH_MBPS", "LATENCY_MS", "ENDPOINT_TIMEOUT_S", "ROUND_TIMEOUT_S"):
        value = cfg[key]
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value) or value <= 0:
            raise ConfigurationError(f"CONFIG[{key}] must be a finite positive number, got {value!r}")

    for key in ("REQUEST_BYTES", "RESPONSE_BYTES", "REPEATS"):
        value = cfg[key]
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise ConfigurationError(f"CONFIG[{key}] must be a positive integer, got {value!r}")
    if isinstance(cfg["WARMUPS"], bool) or not isinstance(cfg["WARMUPS"], int) or cfg["WARMUPS"] < 0:
        raise ConfigurationError(f"CONFIG[WARMUPS] must be >= 0, got {cfg['WARMUPS']!r}")

    for key in ("ATTESTOR_PORT", "HTTPS_PORT"):
        port = cfg[key]
        if isinstance(port, bool) or not isinstance(port, int) or not (1 <= port <= 65535):
            raise ConfigurationError(f"CONFIG[{key}] must be valid port (1-65535), got {port!r}")
    if cfg["ATTESTOR_PORT"] == cfg["HTTPS_PORT"]:
        raise ConfigurationError("CONFIG[ATTESTOR_PORT] and CONFIG[HTTPS_PORT] must differ")

    if cfg["TLS_VERSION"] not in TLS_VERSIONS:
        raise ConfigurationError(f"CONFIG[TLS_VERSION] must be one of {', '.join(TLS_VERSIONS)}, got {cfg['TLS_VERSION']!r}")
    if cfg["ENGINE"] not in ENGINES:
        raise ConfigurationError(f"CONFIG[ENGINE] must be one of {', '.join(ENGINES)}, got {cfg['ENGINE']!r}")


def load_config(env: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Return validated defaults with environment overrides applied."""
    cfg = _apply_env_overrides(CONFIG, os.environ if env is None else env)
    validate_config(cfg)
    return cfg


@dataclass(frozen=True)
class SweepConfig:
    """Immutable parameters for one sweep invocation."""

    iface: str
    axis: str
    values: Tuple[float, ...]
    bandwidth_mbps: float
    latency_ms: float
    request_size: int
    response_size: int
    host: str
    attestor_port: int
    https_port: int
    tls_version: str
    engine: str
    use_sudo: bool
    repetitions: int
    warmup_rounds: int
    output_csv: Path
    output_markdown: Optional[Path] = None
    output_xlsx: Optional[Path] = None
    show_qdisc: bool = False
    client_cmd: Optional[str] = None
    verify_cmd: Optional[str] = None
    endpoints_cmd: Optional[str] = None
    endpoint_timeout_s: float = 30.0
    round_timeout_s: float = 300.0

    @property
    def name(self) -> str:
        return f"{self.tls_version}-{self.engine}"

    @property
    def ports(self) -> Tuple[int, int]:
        return (self.attestor_port, self.https_port)

    def point(self, value: float) -> Tuple[float, float, int, int]:
        """Resolve (bandwidth, latency, request size, response size) for an axis value."""
        if self.axis == "bandwidth":
            return value, self.latency_ms, self.request_size, self.response_size
        if self.axis == "latency":
            return self.bandwidth_mbps, value, self.request_size, self.response_size
        return self.bandwidth_mbps, self.latency_ms, self.request_size, int(value)

    def validate(self) -> None:
        if self.axis not in AXES:
            raise ConfigurationError(f"unknown sweep axis {self.axis!r}; expected one of {', '.join(AXES)}")
        _check_axis(_AXIS_KEYS[self.axis], self.values)
        if self.axis == "payload":
            for value in self.values:
                if not float(value).is_integer():
                    raise ConfigurationError(f"payload sizes must be whole bytes, got {value!r}")
        for name in ("bandwidth_mbps", "latency_ms"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value) or value <= 0:
                raise ConfigurationError(f"{name} must be a finite positive number, got {value!r}")
        for name in ("request_size", "response_size"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")
        if self.repetitions < 1:
            raise ConfigurationError(f"repetitions must be >= 1, got {self.repetitions}")
        if self.warmup_rounds < 0:
            raise ConfigurationError(f"warmup rounds must be >= 0, got {self.warmup_rounds}")


def build_sweep_config(axis: str, cfg: Optional[Dict[str, Any]] = None, **overrides: Any) -> SweepConfig:
    """Build the frozen ``SweepConfig`` for ``axis`` from a validated CONFIG dict.

    ``overrides`` are SweepConfig field names (e.g. from CLI flags); ``None``
    values are ignored so unset flags keep the environment/default value.
    """
    if axis not in AXES:
        raise ConfigurationError(f"unknown sweep axis {axis!r}; expected one of {', '.join(AXES)}")
    cfg = load_config() if cfg is None else cfg

    output_csv = cfg["OUTPUT_CSV"] or str(Path("benchmarks") / f"prover-bench-{axis}.csv")
    sweep = SweepConfig(
        iface=cfg["IFACE"],
        axis=axis,
        values=tuple(cfg[_AXIS_KEYS[axis]]),
        bandwidth_mbps=float(cfg["BANDWIDTH_MBPS"]),
        latency_ms=float(cfg["LATENCY_MS"]),
        request_size=cfg["REQUEST_BYTES"],
        response_size=cfg["RESPONSE_BYTES"],
        host=cfg["HOST"],
        attestor_port=cfg["ATTESTOR_PORT"],
        https_port=cfg["HTTPS_PORT"],
        tls_version=cfg["TLS_VERSION"],
        engine=cfg["ENGINE"],
        use_sudo=cfg["USE_SUDO"],
        repetitions=cfg["REPEATS"],
        warmup_rounds=cfg["WARMUPS"],
        output_csv=Path(output_csv),
        output_markdown=Path(cfg["OUTPUT_MARKDOWN"]) if cfg["OUTPUT_MARKDOWN"] else None,
        output_xlsx=Path(cfg["OUTPUT_XLSX"]) if cfg["OUTPUT_XLSX"] else None,
        show_qdisc=cfg["SHOW_QDISC"],
        client_cmd=cfg["CLIENT_CMD"],
        verify_cmd=cfg["VERIFY_CMD"],
        endpoints_cmd=cfg["ENDPOINTS_CMD"],
        endpoint_timeout_s=float(cfg["ENDPOINT_TIMEOUT_S"]),
        round_timeout_s=float(cfg["ROUND_TIMEOUT_S"]),
    )
    changes = {k: v for k, v in overrides.items() if v is not None}
    if changes:
        sweep = replace(sweep, **changes)
    if sweep.tls_version not in TLS_VERSIONS:
        raise ConfigurationError(f"tls version must be one of {', '.join(TLS_VERSIONS)}, got {sweep.tls_version!r}")
    if sweep.engine not in ENGINES:
        raise ConfigurationError(f"engine must be one of {', '.join(ENGINES)}, got {sweep.engine!r}")
    sweep.validate()
    return sweep
