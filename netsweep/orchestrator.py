"""Sweep orchestration: warmup, then shaped + counted measured runs per axis value.

Exactly one measured run is in flight at a time. Shaping and accounting
rules are acquired with context managers, so teardown runs on every exit path
and the next run never starts with a stale rule or counter.
"""

from __future__ import annotations

import contextlib
import time
from enum import Enum
from typing import Callable, ContextManager, List, Optional

import psutil

from netsweep.config import WARMUP_PAYLOAD_BYTES, SweepConfig
from netsweep.counters import ByteCounts, CounterInstrumentation, CounterWindow
from netsweep.endpoints import ManagedEndpoints
from netsweep.exceptions import ProtocolError
from netsweep.export import export_excel, print_summary, write_csv, write_markdown_table
from netsweep.logging_utils import METRICS, get_logger
from netsweep.protocol import ProtocolRound, RoundOutcome, RoundRequest, is_benign_termination
from netsweep.records import RunRecord, round2
from netsweep.shaping import ShapingController
from netsweep.steps import PhaseTimings, StepCollector


MIB = 1024 * 1024

logger = get_logger("netsweep.orchestrator")


class SweepPhase(Enum):
    INIT = "init"
    WARMUP = "warmup"
    SHAPE = "shape"
    INSTRUMENT = "instrument"
    EXECUTE = "execute"
    TEARDOWN = "teardown"
    EXPORT = "export"
    DONE = "done"


def harness_rss_bytes() -> int:
    try:
        return psutil.Process().memory_info().rss
    except psutil.Error:
        return 0


def _discard_step(_event) -> None:
    return None


class SweepOrchestrator:
    def __init__(
        self,
        config: SweepConfig,
        protocol: ProtocolRound,
        shaping: ShapingController,
        counters: CounterInstrumentation,
        endpoints: Optional[ManagedEndpoints] = None,
        *,
        memory_probe: Callable[[], int] = harness_rss_bytes,
        clock: Callable[[], float] = time.perf_counter,
        export: bool = True,
    ) -> None:
        self.config = config
        self.protocol = protocol
        self.shaping = shaping
        self.counters = counters
        self.endpoints = endpoints
        self.memory_probe = memory_probe
        self.clock = clock
        self.export_enabled = export
        self.records: List[RunRecord] = []
        self.phase = SweepPhase.INIT

    # -- lifecycle -----------------------------------------------------------

    def run(self) -> List[RunRecord]:
        """Run the whole sweep and return one record per intended run."""
        self.phase = SweepPhase.INIT
        self.config.validate()
        logger.info(
            f"starting {self.config.axis} sweep",
            extra={
                "iface": self.config.iface,
                "axis": self.config.axis,
                "values": list(self.config.values),
                "bandwidthMbps": self.config.bandwidth_mbps,
                "latencyMs": self.config.latency_ms,
                "requestSizeBytes": self.config.request_size,
                "responseSizeBytes": self.config.response_size,
                "tlsVersion": self.config.tls_version,
                "zkEngine": self.config.engine,
                "repetitions": self.config.repetitions,
            },
        )
        if self.endpoints is not None:
            self.endpoints.start()
        try:
            self.phase = SweepPhase.WARMUP
            self.warmup()
            for value in self.config.values:
                for repetition in range(1, self.config.repetitions + 1):
                    self.records.append(self.measure(value, repetition))
            self.phase = SweepPhase.EXPORT
            if self.export_enabled:
                self.export()
        finally:
            if self.endpoints is not None:
                self.endpoints.stop()
        self.phase = SweepPhase.DONE
        return self.records

    def run_single(self) -> RunRecord:
        """One unshaped, uncounted round at the configured fixed parameters."""
        self.config.validate()
        if self.endpoints is not None:
            self.endpoints.start()
        try:
            record = self.measure(self.config.values[0], 1, shape=False, count=False)
        finally:
            if self.endpoints is not None:
                self.endpoints.stop()
        self.records.append(record)
        self.phase = SweepPhase.DONE
        return record

    def warmup(self) -> None:
        request = self._request(WARMUP_PAYLOAD_BYTES, WARMUP_PAYLOAD_BYTES)
        for idx in range(self.config.warmup_rounds):
            try:
                outcome = self.protocol.run(request, _discard_step)
                if outcome.failed:
                    logger.warning("warmup round failed", extra={"round": idx + 1, "error": outcome.error})
            except Exception as exc:
                logger.warning("warmup round failed", extra={"round": idx + 1, "error": str(exc)})
            finally:
                self._terminate_round(strict=False)

    def export(self) -> None:
        path = write_csv(self.records, self.config.output_csv)
        logger.info("wrote results", extra={"path": str(path), "rows": len(self.records)})
        if self.config.output_markdown is not None:
            write_markdown_table(self.records, self.config.output_markdown)
        if self.config.output_xlsx is not None:
            export_excel(self.records, self.config.output_xlsx)
        print_summary(self.records)

    # -- one measured run ----------------------------------------------------

    def measure(self, value: float, repetition: int, *, shape: bool = True, count: bool = True) -> RunRecord:
        """SHAPE -> INSTRUMENT -> EXECUTE -> TEARDOWN; failures become an error record."""
        cfg = self.config
        bandwidth, latency, request_size, response_size = cfg.point(value)
        nominal = ByteCounts(tx_bytes=request_size, rx_bytes=response_size)
        request = self._request(request_size, response_size)
        collector = StepCollector()

        outcome: Optional[RoundOutcome] = None
        window: Optional[CounterWindow] = None
        third_party_ms: Optional[float] = None
        error: Optional[str] = None
        ended_at: Optional[float] = None
        rss_end: Optional[int] = None

        rss_before = self.memory_probe()
        started = self.clock()
        try:
            self.phase = SweepPhase.SHAPE
            with self._shaping_scope(shape, bandwidth, latency):
                if shape and cfg.show_qdisc:
                    self.shaping.inspect(cfg.iface)
                self.phase = SweepPhase.INSTRUMENT
                with self._counting_scope(count, nominal) as window:
                    self.phase = SweepPhase.EXECUTE
                    try:
                        outcome = self.protocol.run(request, collector)
                        ended_at = self.clock()
                        rss_end = self.memory_probe()
                        if outcome.failed:
                            raise ProtocolError(outcome.error or "protocol round failed", code=outcome.error_code)
                        third_party_ms = self._verify(outcome)
                        self._terminate_round(strict=True)
                    except Exception:
                        self._terminate_round(strict=False)
                        raise
                    finally:
                        if ended_at is None:
                            ended_at = self.clock()
                            rss_end = self.memory_probe()
                        self.phase = SweepPhase.TEARDOWN
        except Exception as exc:
            error = str(exc) or type(exc).__name__
            METRICS.counter("runs_failed").inc()
            logger.error(
                "prover run failed",
                extra={"axis": cfg.axis, "axisValue": value, "repetition": repetition, "error": error,
                       "errorType": type(exc).__name__},
            )
        METRICS.counter("runs_total").inc()

        if ended_at is None:
            ended_at = self.clock()
            rss_end = self.memory_probe()
        elapsed_ms = (ended_at - started) * 1000.0

        timings = PhaseTimings()
        counts = nominal
        if error is None and outcome is not None:
            timings = collector.timings
            if timings.zk_proof_bytes is None and outcome.proof_bytes is not None:
                timings.zk_proof_bytes = float(outcome.proof_bytes)
            timings.third_party_verify_ms = third_party_ms
            if not timings.captured():
                error = "protocol round reported no phase timings"
                timings = PhaseTimings()
            elif window is not None:
                counts = window.counts
        elif window is not None and window.measured is not None:
            logger.info(
                "bytes observed during failed run",
                extra={"txBytes": window.measured.tx_bytes, "rxBytes": window.measured.rx_bytes},
            )

        runtime_ms = elapsed_ms
        if error is None and outcome is not None and outcome.total_ms is not None:
            runtime_ms = outcome.total_ms
        peak_child = outcome.peak_rss_bytes if outcome is not None and outcome.peak_rss_bytes else 0
        memory_mb = ((rss_end or 0) + peak_child - rss_before) / MIB

        record = RunRecord(
            kind=cfg.engine,
            name=cfg.name,
            axis_value=value,
            repetition=repetition,
            bandwidth_mbps=bandwidth,
            latency_ms=latency,
            request_size=request_size,
            response_size=response_size,
            runtime_ms=round2(runtime_ms),
            send_bytes=counts.tx_bytes,
            recv_bytes=counts.rx_bytes,
            memory_rss_mb=round2(memory_mb),
            tls_handshake_ms=round2(timings.tls_handshake_ms),
            online_ms=round2(timings.online_ms),
            zk_proof_total=timings.zk_proof_total,
            zk_generate_ms=round2(timings.zk_generate_ms),
            zk_proof_bytes=round2(timings.zk_proof_bytes),
            zk_verify_attestor_ms=round2(timings.zk_verify_attestor_ms),
            third_party_verify_ms=round2(timings.third_party_verify_ms),
            error=error,
        )
        if record.runtime_ms is not None:
            METRICS.gauge("last_runtime_ms").set(record.runtime_ms)
        logger.info(f"finished one {cfg.axis} run", extra={"axis": cfg.axis, **record.log_fields()})
        return record

    # -- helpers -------------------------------------------------------------

    def _request(self, request_size: int, response_size: int) -> RoundRequest:
        cfg = self.config
        return RoundRequest(
            host=cfg.host,
            attestor_port=cfg.attestor_port,
            https_port=cfg.https_port,
            request_size=request_size,
            response_size=response_size,
            tls_version=cfg.tls_version,
            engine=cfg.engine,
        )

    def _shaping_scope(self, enabled: bool, bandwidth: float, latency: float) -> ContextManager:
        if not enabled:
            return contextlib.nullcontext()
        return self.shaping.shaped(self.config.iface, bandwidth, latency)

    def _counting_scope(self, enabled: bool, nominal: ByteCounts) -> ContextManager[Optional[CounterWindow]]:
        if not enabled:
            return contextlib.nullcontext()
        return self.counters.counting(list(self.config.ports), nominal)

    def _verify(self, outcome: RoundOutcome) -> Optional[float]:
        started = self.clock()
        if not self.protocol.verify(outcome):
            return None
        return (self.clock() - started) * 1000.0

    def _terminate_round(self, strict: bool) -> None:
        try:
            self.protocol.close()
        except Exception as exc:
            if is_benign_termination(exc):
                logger.debug("benign connection termination", extra={"code": getattr(exc, "code", None)})
                return
            if strict:
                raise
            logger.warning("failed to terminate protocol round", extra={"error": str(exc)})
