"""Port-forward tunnels and the HTTP reachability probe.

A tunnel is a ``kubectl port-forward`` subprocess scoped by a context
manager: it is validated with a health probe before use and terminated on
every exit path, including interrupts.
"""

import logging
import subprocess
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, List, Optional

import requests

from src.common.errors import TunnelError
from src.common.settings import HarnessSettings
from src.harness.clock import wall_clock_ms

logger = logging.getLogger(__name__)

TERMINATE_TIMEOUT = 5


@dataclass(frozen=True)
class ProbeSample:
    """One health probe: status 0 means the request never got a response."""

    timestamp_ms: int
    status_code: int
    latency_ms: float

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


def sample_health(url: str, timeout: float = 2.0, session: Optional[requests.Session] = None) -> ProbeSample:
    """GET ``url`` once and record status and latency."""
    getter = session or requests
    timestamp_ms = wall_clock_ms()
    start = time.perf_counter()
    try:
        response = getter.get(url, timeout=timeout)
        status_code = response.status_code
    except requests.RequestException as e:
        logger.debug(f"Probe {url} failed: {e}")
        status_code = 0
    latency_ms = (time.perf_counter() - start) * 1000
    return ProbeSample(timestamp_ms=timestamp_ms, status_code=status_code, latency_ms=round(latency_ms, 2))


def probe_health(url: str, timeout: float = 2.0) -> bool:
    """True iff ``url`` answers with a 2xx status."""
    return sample_health(url, timeout=timeout).ok


@dataclass
class Tunnel:
    """An open port-forward."""

    namespace: str
    service: str
    local_port: int
    process: subprocess.Popen

    @property
    def base_url(self) -> str:
        return f"http://localhost:{self.local_port}"


def port_forward_command(namespace: str, service: str, local_port: int, remote_port: int) -> List[str]:
    return [
        "kubectl",
        "port-forward",
        "-n",
        namespace,
        f"svc/{service}",
        f"{local_port}:{remote_port}",
    ]


def _stop(process: subprocess.Popen) -> None:
    if process.poll() is not None:
        return
    process.terminate()
    try:
        process.wait(timeout=TERMINATE_TIMEOUT)
    except subprocess.TimeoutExpired:
        process.kill()
        process.wait(timeout=TERMINATE_TIMEOUT)


@contextmanager
def open_tunnel(
    namespace: str,
    service: str,
    local_port: int,
    settings: Optional[HarnessSettings] = None,
) -> Iterator[Tunnel]:
    """Start a port-forward, wait until the health endpoint answers, yield it.

    Raises:
        TunnelError: kubectl is missing, exits early, or the probe never succeeds.
    """
    settings = settings or HarnessSettings()
    cmd = port_forward_command(namespace, service, local_port, settings.tunnel_remote_port)
    logger.info(f"Starting port-forward {namespace}/svc/{service} -> :{local_port}")

    try:
        process = subprocess.Popen(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
    except FileNotFoundError as e:
        raise TunnelError("kubectl not found on PATH") from e

    tunnel = Tunnel(namespace=namespace, service=service, local_port=local_port, process=process)
    try:
        health_url = f"{tunnel.base_url}{settings.health_path}"
        for attempt in range(1, settings.tunnel_probe_attempts + 1):
            if process.poll() is not None:
                raise TunnelError(f"port-forward for {namespace}/{service} exited with {process.returncode}")
            if probe_health(health_url, timeout=settings.probe_timeout):
                break
            logger.debug(f"Probe {attempt}/{settings.tunnel_probe_attempts} of {health_url} failed")
            time.sleep(settings.tunnel_probe_interval)
        else:
            raise TunnelError(f"{health_url} not reachable")

        logger.info(f"Ready ({namespace}=:{local_port})")
        yield tunnel
    finally:
        _stop(process)
        logger.debug(f"Stopped port-forward {namespace}/svc/{service}")
