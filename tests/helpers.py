"""Test doubles and mock-object factories shared by the test modules."""

import itertools
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence
from unittest.mock import MagicMock

from src.harness.models import Instance, ManagedResource, ReadyCondition


class FakeClock:
    """Deterministic clock: ``sleep`` advances time instantly."""

    def __init__(self, start_ms: int = 0):
        self.ms = start_ms
        self.sleeps: List[float] = []

    def now_ms(self) -> int:
        return self.ms

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.ms += int(round(seconds * 1000))


class ScriptedPoller:
    """Replays a fixed sequence of snapshots.

    Exception instances in the script are raised instead of returned. Once the
    script runs out the last entry repeats, unless ``cycle`` is set.
    """

    def __init__(self, script: Sequence[Any], cycle: bool = False, ready: bool = True):
        self.script = list(script)
        self._source = itertools.cycle(self.script) if cycle else iter(self.script)
        self._last: Any = ()
        self.ready = ready
        self.snapshots = 0
        self.ready_checks = 0

    def snapshot(self, resource: ManagedResource):
        self.snapshots += 1
        try:
            self._last = next(self._source)
        except StopIteration:
            pass
        if isinstance(self._last, Exception):
            raise self._last
        return self._last

    def wait_for_ready(self, resource: ManagedResource, timeout: float, interval: float = 1.0, clock=None) -> bool:
        self.ready_checks += 1
        return self.ready


class RecordingScaler:
    """Records replica changes instead of patching anything."""

    def __init__(self):
        self.calls: List[int] = []

    def set_replicas(self, resource: ManagedResource, replicas: int) -> None:
        self.calls.append(replicas)


def make_instance(name: str, ready: bool = True, terminating: bool = False) -> Instance:
    return Instance(
        identity=name,
        ready_condition=ReadyCondition.TRUE if ready else ReadyCondition.FALSE,
        terminating=terminating,
    )


def make_pod(
    name: str,
    ready: Optional[str] = "True",
    terminating: bool = False,
    requests: Optional[Dict[str, str]] = None,
    limits: Optional[Dict[str, str]] = None,
) -> MagicMock:
    """Mock V1Pod with a Ready condition and one container."""
    pod = MagicMock()
    pod.metadata.name = name
    pod.metadata.deletion_timestamp = datetime.now() if terminating else None
    pod.status.conditions = [] if ready is None else [MagicMock(type="Ready", status=ready)]
    container = MagicMock()
    container.resources.requests = requests
    container.resources.limits = limits
    pod.spec.containers = [container]
    return pod


def pod_list(pods: Iterable[MagicMock]) -> MagicMock:
    result = MagicMock()
    result.items = list(pods)
    return result

