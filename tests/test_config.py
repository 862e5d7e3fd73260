"""
Tests for sweep configuration: defaults, environment overrides and validation.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from netsweep.config import CONFIG, build_sweep_config, load_config, parse_axis, validate_config
from netsweep.exceptions import ConfigurationError


def test_defaults_validate() -> None:
    cfg = load_config(env={})
    assert cfg["IFACE"] == "lo"
    assert cfg["BANDWIDTHS_MBPS"] == (10.0, 50.0, 100.0, 250.0, 1000.0)
    assert cfg["ATTESTOR_PORT"] == 10000
    assert cfg["HTTPS_PORT"] == 15000
    assert cfg["USE_SUDO"] is True


def test_env_overrides_are_parsed() -> None:
    cfg = load_config(env={
        "BENCH_BANDWIDTHS_MBPS": "10, 1000",
        "BENCH_LATENCY_MS": "40",
        "BENCH_SUDO": "0",
        "BENCH_KIND": "snarkjs",
        "BENCH_SHOW_QDISC": "yes",
        "BENCH_CLIENT_CMD": "node client.js",
    })
    assert cfg["BANDWIDTHS_MBPS"] == (10.0, 1000.0)
    assert cfg["LATENCY_MS"] == 40.0
    assert cfg["USE_SUDO"] is False
    assert cfg["ENGINE"] == "snarkjs"
    assert cfg["SHOW_QDISC"] is True
    assert cfg["CLIENT_CMD"] == "node client.js"


def test_sudo_stays_on_unless_zero() -> None:
    assert load_config(env={"BENCH_SUDO": "false"})["USE_SUDO"] is True
    assert load_config(env={"BENCH_SUDO": "0"})["USE_SUDO"] is False


def test_parse_axis_drops_blanks() -> None:
    assert parse_axis("256,,1024, ") == (256.0, 1024.0)
    assert parse_axis("25") == (25.0,)


def test_parse_axis_rejects_non_numbers() -> None:
    with pytest.raises(ConfigurationError):
        parse_axis("10,fast")


@pytest.mark.parametrize("raw", ["", " , ", "0", "10,-5"])
def test_empty_or_non_positive_axis_rejected(raw: str) -> None:
    with pytest.raises(ConfigurationError):
        load_config(env={"BENCH_LATENCIES_MS": raw})


def test_invalid_int_env_value() -> None:
    with pytest.raises(ConfigurationError, match="BENCH_REPEATS"):
        load_config(env={"BENCH_REPEATS": "many"})


def test_missing_keys_rejected() -> None:
    cfg = dict(CONFIG)
    del cfg["IFACE"]
    with pytest.raises(ConfigurationError, match="IFACE"):
        validate_config(cfg)


def test_ports_must_differ() -> None:
    with pytest.raises(ConfigurationError):
        load_config(env={"BENCH_HTTPS_PORT": "10000"})


def test_unknown_tls_version_rejected() -> None:
    with pytest.raises(ConfigurationError):
        load_config(env={"BENCH_TLS": "SSL3"})


def test_configuration_error_is_value_error() -> None:
    with pytest.raises(ValueError):
        parse_axis("x")


def test_build_sweep_config_defaults_output_per_axis() -> None:
    sweep = build_sweep_config("latency", load_config(env={}))
    assert sweep.values == (10.0, 25.0, 50.0, 100.0, 200.0)
    assert sweep.output_csv == Path("benchmarks") / "prover-bench-latency.csv"
    assert sweep.name == "TLS1_3-gnark"
    assert sweep.ports == (10000, 15000)


def test_build_sweep_config_ignores_unset_overrides() -> None:
    sweep = build_sweep_config("bandwidth", load_config(env={}), values=(10.0, 1000.0), iface=None, repetitions=2)
    assert sweep.values == (10.0, 1000.0)
    assert sweep.iface == "lo"
    assert sweep.repetitions == 2


def test_build_sweep_config_rejects_empty_values() -> None:
    with pytest.raises(ConfigurationError):
        build_sweep_config("bandwidth", load_config(env={}), values=())


def test_build_sweep_config_rejects_unknown_axis() -> None:
    with pytest.raises(ConfigurationError):
        build_sweep_config("jitter", load_config(env={}))


def test_build_sweep_config_rejects_unknown_engine() -> None:
    with pytest.raises(ConfigurationError):
        build_sweep_config("bandwidth", load_config(env={}), engine="groth")


def test_point_per_axis() -> None:
    cfg = load_config(env={})
    assert build_sweep_config("bandwidth", cfg).point(50.0) == (50.0, 25.0, 1024, 4096)
    assert build_sweep_config("latency", cfg).point(200.0) == (1000.0, 200.0, 1024, 4096)
    # Payload sweeps vary the response size only.
    assert build_sweep_config("payload", cfg).point(16384.0) == (1000.0, 25.0, 1024, 16384)


@pytest.mark.parametrize(
    "overrides",
    [
        {"latency_ms": -5.0},
        {"latency_ms": float("nan")},
        {"bandwidth_mbps": 0.0},
        {"bandwidth_mbps": float("inf")},
        {"request_size": -1},
        {"response_size": 0},
        {"request_size": 10.5},
    ],
)
def test_held_fixed_overrides_are_validated(overrides) -> None:
    with pytest.raises(ConfigurationError):
        build_sweep_config("bandwidth", load_config(env={}), **overrides)


def test_fractional_payload_sizes_rejected() -> None:
    with pytest.raises(ConfigurationError, match="whole bytes"):
        build_sweep_config("payload", load_config(env={}), values=(256.0, 0.5))


def test_integral_payload_sizes_accepted() -> None:
    sweep = build_sweep_config("payload", load_config(env={}), values=(256.0, 1024.0))
    assert sweep.point(1024.0)[3] == 1024
