"""Boundary to the external protocol client.

The harness never implements the protocol itself. It asks a ``ProtocolRound``
to run one round, receives ``StepEvent`` notifications while it runs, and gets
back a terminal ``RoundOutcome``. ``CommandRound`` is the stock adapter: it runs
a client command that prints JSON lines on stdout.
"""

from __future__ import annotations

import json
import shlex
import subprocess
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol

import psutil

from netsweep.exceptions import ProtocolError
from netsweep.logging_utils import get_logger
from netsweep.steps import StepEvent


# Collaborator status codes that accompany an orderly connection shutdown.
BENIGN_TERMINATION_CODES = frozenset({"ERROR_NO_ERROR"})

RSS_SAMPLE_INTERVAL_S = 0.05

StepListener = Callable[[StepEvent], None]

logger = get_logger("netsweep.protocol")


def is_benign_termination(exc: BaseException) -> bool:
    """True when ``exc`` reports an orderly shutdown rather than a failure."""
    return isinstance(exc, ProtocolError) and exc.code in BENIGN_TERMINATION_CODES


@dataclass(frozen=True)
class RoundRequest:
    host: str
    attestor_port: int
    https_port: int
    request_size: int
    response_size: int
    tls_version: str
    engine: str

    @property
    def attestor_url(self) -> str:
        return f"ws://{self.host}:{self.attestor_port}/ws"

    @property
    def https_url(self) -> str:
        return f"https://localhost:{self.https_port}/me"

    def cli_args(self) -> List[str]:
        return [
            "--attestor-url", self.attestor_url,
            "--https-url", self.https_url,
            "--request-size", str(self.request_size),
            "--response-size", str(self.response_size),
            "--tls", self.tls_version,
            "--engine", self.engine,
        ]


@dataclass
class RoundOutcome:
    total_ms: Optional[float] = None
    proof_bytes: Optional[int] = None
    claim: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    peak_rss_bytes: Optional[int] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class ProtocolRound(Protocol):
    """Contract the orchestrator relies on."""

    def run(self, request: RoundRequest, on_step: StepListener) -> RoundOutcome:
        """Execute one round, reporting phases through ``on_step``."""

    def verify(self, outcome: RoundOutcome) -> bool:
        """Third-party verification of a successful round.

        Returns False when no verifier is available; raises ProtocolError when
        verification fails.
        """

    def close(self) -> None:
        """Release any connection held between rounds."""


class _RssSampler(threading.Thread):
    """Track the peak RSS of a child process tree while it runs."""

    def __init__(self, pid: int, interval: float = RSS_SAMPLE_INTERVAL_S) -> None:
        super().__init__(name=f"rss-sampler-{pid}", daemon=True)
        self.interval = interval
        self.peak = 0
        self._stop_event = threading.Event()
        try:
            self._proc: Optional[psutil.Process] = psutil.Process(pid)
        except psutil.Error:
            self._proc = None

    def sample(self) -> None:
        if self._proc is None:
            return
        try:
            total = self._proc.memory_info().rss
            for child in self._proc.children(recursive=True):
                try:
                    total += child.memory_info().rss
                except psutil.Error:
                    continue
        except psutil.Error:
            return
        self.peak = max(self.peak, total)

    def run(self) -> None:
        while not self._stop_event.is_set():
            self.sample()
            self._stop_event.wait(self.interval)

    def stop(self) -> int:
        self._stop_event.set()
        self.join(timeout=1.0)
        return self.peak


def _decode_line(line: str) -> Optional[Dict[str, Any]]:
    text = line.strip()
    if not text.startswith("{"):
        return None
    try:
        payload = json.loads(text)
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


def _optional_float(value: Any) -> Optional[float]:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


class CommandRound:
    """Run the protocol client as a subprocess speaking JSON lines.

    Each stdout line is one of::

        {"step": "<phase>", "value": <number>}
        {"result": {"total_ms": ..., "proof_bytes": ..., "claim": {...}}}
        {"error": "<message>", "code": "<collaborator code>"}

    Anything else is passed through to the debug log.
    """

    def __init__(self, command: str, verify_command: Optional[str] = None, timeout: float = 300.0) -> None:
        self.command = shlex.split(command)
        if not self.command:
            raise ValueError("client command must not be empty")
        self.verify_command = shlex.split(verify_command) if verify_command else None
        self.timeout = timeout
        self._proc: Optional[subprocess.Popen] = None

    def run(self, request: RoundRequest, on_step: StepListener) -> RoundOutcome:
        argv = self.command + request.cli_args()
        outcome = RoundOutcome()
        result: Optional[Dict[str, Any]] = None
        timed_out = threading.Event()

        try:
            proc = subprocess.Popen(argv, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, text=True)
        except OSError as exc:
            raise ProtocolError(f"failed to launch client {argv[0]}: {exc}") from exc
        self._proc = proc

        def _expire() -> None:
            timed_out.set()
            proc.kill()

        watchdog = threading.Timer(self.timeout, _expire)
        watchdog.daemon = True
        sampler = _RssSampler(proc.pid)
        sampler.start()
        watchdog.start()
        try:
            for line in proc.stdout or ():
                payload = _decode_line(line)
                if payload is None:
                    if line.strip():
                        logger.debug("client output", extra={"line": line.rstrip()})
                    continue
                if "step" in payload:
                    on_step(StepEvent.from_payload(payload))
                elif "result" in payload:
                    result = payload["result"] if isinstance(payload["result"], dict) else {}
                elif "error" in payload:
                    err = ProtocolError(str(payload["error"]), code=payload.get("code"))
                    if result is not None and is_benign_termination(err):
                        logger.debug("benign termination after result", extra={"code": err.code})
                        continue
                    outcome.error = str(err)
                    outcome.error_code = err.code
            proc.wait()
        finally:
            watchdog.cancel()
            outcome.peak_rss_bytes = sampler.stop() or None
            if proc.poll() is None:
                proc.kill()
                proc.wait()
            if proc.stdout is not None:
                proc.stdout.close()
            self._proc = None

        if timed_out.is_set():
            outcome.error = f"client timed out after {self.timeout:.1f}s"
        elif outcome.error is None and proc.returncode != 0:
            outcome.error = f"client exited with code {proc.returncode}"
        elif outcome.error is None and result is None:
            outcome.error = "client produced no result"

        if result is not None:
            outcome.total_ms = _optional_float(result.get("total_ms"))
            proof_bytes = _optional_float(result.get("proof_bytes"))
            outcome.proof_bytes = int(proof_bytes) if proof_bytes is not None else None
            claim = result.get("claim")
            outcome.claim = claim if isinstance(claim, dict) else None
        return outcome

    def verify(self, outcome: RoundOutcome) -> bool:
        if self.verify_command is None:
            return False
        try:
            proc = subprocess.run(
                self.verify_command,
                input=json.dumps(outcome.claim or {}),
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise ProtocolError(f"verifier failed to run: {exc}") from exc
        if proc.returncode != 0:
            detail = (proc.stderr or proc.stdout).strip()
            raise ProtocolError(f"third-party verification failed ({proc.returncode}): {detail}")
        return True

    def close(self) -> None:
        proc = self._proc
        if proc is not None and proc.poll() is None:
            proc.terminate()
            try:
                proc.wait(timeout=2)
            except subprocess.TimeoutExpired:
                proc.kill()
        self._proc = None
