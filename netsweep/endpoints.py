"""Lifecycle of the attestor and mock HTTPS target used by the sweep."""

from __future__ import annotations

import shlex
import socket
import subprocess
import time
from pathlib import Path
from typing import IO, Optional, Sequence

from netsweep.exceptions import EndpointStartupError
from netsweep.logging_utils import get_logger


logger = get_logger("netsweep.endpoints")


def port_open(host: str, port: int, timeout: float = 0.5) -> bool:
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


class ManagedEndpoints:
    """Launch the endpoint command (if any) and wait until its ports accept TCP.

    Without a command the endpoints are assumed to be run by someone else and
    only the readiness check is performed.
    """

    def __init__(
        self,
        command: Optional[str],
        host: str,
        ports: Sequence[int],
        *,
        timeout: float = 30.0,
        log_path: Optional[Path] = None,
        poll_interval: float = 0.2,
    ) -> None:
        self.command = shlex.split(command) if command else None
        self.host = host
        self.ports = tuple(ports)
        self.timeout = timeout
        self.log_path = log_path
        self.poll_interval = poll_interval
        self._proc: Optional[subprocess.Popen] = None
        self._log: Optional[IO[str]] = None

    def start(self) -> None:
        if self.command:
            try:
                if self.log_path is not None:
                    self.log_path.parent.mkdir(parents=True, exist_ok=True)
                    self._log = open(self.log_path, "w", encoding="utf-8", buffering=1)
                    self._proc = subprocess.Popen(self.command, stdout=self._log, stderr=subprocess.STDOUT)
                else:
                    self._proc = subprocess.Popen(self.command, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
            except OSError as exc:
                self.stop()
                raise EndpointStartupError(f"failed to launch endpoints: {exc}") from exc
            logger.info("endpoints launched", extra={"cmd": self.command, "pid": self._proc.pid})

        deadline = time.monotonic() + self.timeout
        pending = list(self.ports)
        while pending:
            pending = [port for port in pending if not port_open(self.host, port)]
            if not pending:
                break
            if self._proc is not None and self._proc.poll() is not None:
                code = self._proc.returncode
                self.stop()
                raise EndpointStartupError(f"endpoint process exited with code {code} before ports {pending} opened")
            if time.monotonic() >= deadline:
                self.stop()
                raise EndpointStartupError(f"ports {pending} on {self.host} not reachable after {self.timeout:.1f}s")
            time.sleep(self.poll_interval)
        logger.info("endpoints up", extra={"host": self.host, "ports": list(self.ports)})

    def stop(self) -> None:
        proc = self._proc
        if proc is not None:
            if proc.poll() is None:
                proc.terminate()
                try:
                    proc.wait(timeout=3)
                except subprocess.TimeoutExpired:
                    logger.warning("endpoints unresponsive; killing", extra={"pid": proc.pid})
                    proc.kill()
                    proc.wait()
            self._proc = None
        if self._log is not None:
            self._log.close()
            self._log = None

    def __enter__(self) -> "ManagedEndpoints":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()
