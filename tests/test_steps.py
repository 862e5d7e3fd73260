"""
Tests for step event parsing and phase timing collection.
"""

from __future__ import annotations

import math

from netsweep.steps import PhaseTimings, StepCollector, StepEvent, StepKind


def test_parse_known_and_unknown_names() -> None:
    assert StepEvent.parse("handshake-complete", "12.5") == StepEvent(StepKind.HANDSHAKE, 12.5)
    unknown = StepEvent.parse("key-update-complete", 1)
    assert unknown.kind == "key-update-complete"
    assert not isinstance(unknown.kind, StepKind)


def test_parse_bad_value_is_nan() -> None:
    assert math.isnan(StepEvent.parse("proof-size-known", "n/a").value)
    assert math.isnan(StepEvent.from_payload({"step": "proof-size-known"}).value)


def test_collector_maps_every_phase() -> None:
    collector = StepCollector()
    for name, value in [
        ("handshake-complete", 12.3),
        ("request-response-complete", 40),
        ("proof-generation-complete", 250),
        ("proof-size-known", 2048),
        ("attestor-verification-complete", 8.5),
    ]:
        collector(StepEvent.parse(name, value))
    assert collector.timings == PhaseTimings(
        tls_handshake_ms=12.3,
        online_ms=40.0,
        zk_generate_ms=250.0,
        zk_proof_bytes=2048.0,
        zk_verify_attestor_ms=8.5,
    )


def test_unknown_steps_are_ignored() -> None:
    collector = StepCollector()
    collector(StepEvent.parse("key-update-complete", 3))
    collector(StepEvent("also-new", 1.0))
    assert collector.ignored == 2
    assert not collector.timings.captured()


def test_plain_string_kind_is_accepted() -> None:
    collector = StepCollector()
    collector(StepEvent("handshake-complete", 7.0))
    assert collector.timings.tls_handshake_ms == 7.0


def test_proof_batches_accumulate() -> None:
    collector = StepCollector()
    for count in (3, 2, 1):
        collector(StepEvent.parse("proof-generation-batch-complete", count))
    assert collector.timings.zk_proof_total == 6


def test_unusable_values_are_ignored() -> None:
    collector = StepCollector()
    collector(StepEvent.parse("online", 1))
    collector(StepEvent.parse("request-response-complete", "soon"))
    collector(StepEvent.parse("request-response-complete", -4))
    collector(StepEvent.parse("request-response-complete", float("inf")))
    assert collector.timings.online_ms is None
    assert collector.ignored == 4


def test_later_step_overwrites_earlier() -> None:
    collector = StepCollector()
    collector(StepEvent.parse("handshake-complete", 10))
    collector(StepEvent.parse("handshake-complete", 11))
    assert collector.timings.tls_handshake_ms == 11.0


def test_as_dict_lists_all_fields() -> None:
    assert set(PhaseTimings().as_dict()) == {
        "tls_handshake_ms",
        "online_ms",
        "zk_proof_total",
        "zk_generate_ms",
        "zk_proof_bytes",
        "zk_verify_attestor_ms",
        "third_party_verify_ms",
    }
