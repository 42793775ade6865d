"""
Port-forward tunnel — a temporary local route to an in-cluster service.

The Rollout Verifier only relies on the ``Tunnel`` shape: ``open()``
returns a base URL and ``close()`` tears the route down. ``close()``
is idempotent and safe to call on a tunnel that never opened.
"""

from __future__ import annotations

import logging
import socket
import subprocess
import time
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


class TunnelError(Exception):
    """Raised when a tunnel cannot be established."""


class Tunnel(Protocol):
    def open(self) -> str: ...

    def close(self) -> None: ...


class PortForward:
    """``kubectl port-forward svc/<service> <local>:<remote>`` as a context manager.

    Usage::

        with PortForward(kubeconfig, "default", "app-service", 80, 18080) as base_url:
            ...
    """

    def __init__(
        self,
        kubeconfig: Path,
        namespace: str,
        service: str,
        remote_port: int,
        local_port: int,
        ready_timeout: float = 15.0,
    ):
        self.kubeconfig = kubeconfig
        self.namespace = namespace
        self.service = service
        self.remote_port = remote_port
        self.local_port = local_port
        self.ready_timeout = ready_timeout
        self._proc: subprocess.Popen | None = None

    @property
    def base_url(self) -> str:
        return f"http://127.0.0.1:{self.local_port}"

    @property
    def command(self) -> list[str]:
        return [
            "kubectl",
            "--kubeconfig", str(self.kubeconfig),
            "-n", self.namespace,
            "port-forward",
            f"svc/{self.service}",
            f"{self.local_port}:{self.remote_port}",
        ]

    def open(self) -> str:
        """Start the port-forward and wait until the local port accepts connections."""
        logger.info("Opening tunnel to svc/%s on port %d", self.service, self.local_port)
        try:
            self._proc = subprocess.Popen(
                self.command,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                text=True,
            )
        except FileNotFoundError as e:
            raise TunnelError("'kubectl' not found on PATH") from e

        deadline = time.monotonic() + self.ready_timeout
        while time.monotonic() < deadline:
            if self._proc.poll() is not None:
                stderr = self._proc.stderr.read().strip() if self._proc.stderr else ""
                self.close()
                raise TunnelError(f"port-forward exited early: {stderr or 'no output'}")
            try:
                with socket.create_connection(("127.0.0.1", self.local_port), timeout=0.5):
                    return self.base_url
            except OSError:
                time.sleep(0.25)

        self.close()
        raise TunnelError(f"port-forward not ready after {self.ready_timeout:.0f}s")

    def close(self) -> None:
        """Terminate the port-forward process, if any."""
        proc, self._proc = self._proc, None
        if proc is None:
            return
        if proc.poll() is None:
            proc.terminate()
            try:
                proc.wait(timeout=5)
            except subprocess.TimeoutExpired:
                proc.kill()
                proc.wait()
        if proc.stderr:
            proc.stderr.close()
        logger.debug("Tunnel to svc/%s closed", self.service)

    def __enter__(self) -> str:
        return self.open()

    def __exit__(self, *exc) -> None:
        self.close()
