"""Trial drivers for cold-start and forced-delete recovery measurements.

Each trial is a bounded state machine:

    Cold start:    ScalingDown -> Drained -> Triggered -> WaitingReady -> Done | TimedOut
    Availability:  Stabilizing -> IdentifyVictim -> Triggered
                   -> WaitingReplacementReady -> Done | TimedOut

The waiting phases run through ``PollLoop``: sleep a fixed interval, take one
snapshot, ask a predicate. The poll budget is never reset and a timeout is a
recorded result, not an error. Trials run strictly one after another and the
driver returns them as a ``TrialSet``.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, List, Optional

from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError as TransportError

from src.common.errors import ClusterUnreachableError, HarnessError, TransientReadError
from src.common.settings import HarnessSettings
from src.harness.clock import Clock, MonotonicClock
from src.harness.models import ManagedResource, Snapshot, Trial, TrialKind, TrialSet
from src.harness.predicates import (
    Decision,
    Predicate,
    is_cold_start_complete,
    is_drained,
    is_settled,
    pick_victim,
    replacement_ready,
)

logger = logging.getLogger(__name__)

# Called with the trial index once the resource serves, before the trigger.
Preflight = Callable[[int], None]


@dataclass(frozen=True)
class PollOutcome:
    """Result of one bounded wait."""

    completed: bool
    ticks: int
    completed_at_ms: Optional[int] = None


class PollLoop:
    """Fixed-interval poll of a resource against a predicate."""

    def __init__(self, poller: Any, clock: Clock):
        self.poller = poller
        self.clock = clock

    def observe(self, resource: ManagedResource) -> Optional[Snapshot]:
        """One snapshot, or None when the read failed transiently."""
        try:
            return self.poller.snapshot(resource)
        except TransientReadError as e:
            logger.debug(f"No match this tick: {e}")
            return None

    def run(
        self,
        resource: ManagedResource,
        predicate: Predicate,
        max_polls: int,
        interval: float,
        sleep_first: bool = True,
    ) -> PollOutcome:
        for tick in range(1, max_polls + 1):
            if sleep_first:
                self.clock.sleep(interval)

            snapshot = self.observe(resource)
            observed_ms = self.clock.now_ms()

            if predicate(snapshot) is Decision.COMPLETE:
                return PollOutcome(completed=True, ticks=tick, completed_at_ms=observed_ms)

            if not sleep_first:
                self.clock.sleep(interval)

        return PollOutcome(completed=False, ticks=max_polls)


class TrialDriver(ABC):
    """Runs N trials of one transition type and returns them as a TrialSet."""

    kind: TrialKind

    def __init__(
        self,
        resource: ManagedResource,
        scaler: Any,
        poller: Any,
        settings: Optional[HarnessSettings] = None,
        clock: Optional[Clock] = None,
    ):
        self.resource = resource
        self.scaler = scaler
        self.poller = poller
        self.settings = settings or HarnessSettings()
        self.clock = clock or MonotonicClock()
        self.loop = PollLoop(poller, self.clock)

    def prepare(self) -> None:
        """Bring the resource into the state the first trial expects."""

    @abstractmethod
    def measure(self, index: int) -> Trial:
        """Run trial ``index`` and return it, timed out or not."""

    def restore(self) -> None:
        """Put the resource back into a serving state after the run."""
        replicas = self.settings.restore_replicas
        self.scaler.set_replicas(self.resource, replicas)
        if replicas > 0 and not self.poller.wait_for_ready(
            self.resource, timeout=self.settings.restore_timeout, clock=self.clock
        ):
            logger.warning(f"WARNING: {self.resource.name} not ready after restoring {replicas} replica(s)")
            return
        logger.info(f"Restored to {replicas} replica(s). Done.")

    def run(self, runs: int) -> TrialSet:
        """Execute ``runs`` trials sequentially. Always yields ``runs`` trials."""
        if runs < 1:
            raise ValueError(f"Run count must be >= 1, got {runs}")

        trials: List[Trial] = []
        self.prepare()
        try:
            for index in range(1, runs + 1):
                trial = self.measure(index)
                trials.append(trial)
                suffix = "" if trial.timed_out else "ms"
                logger.info(f"Run {index}/{runs}: {trial.result}{suffix}")
        finally:
            self._safe_restore()

        return TrialSet(
            kind=self.kind,
            resource=self.resource,
            runs=runs,
            poll_interval=self.settings.poll_interval,
            trials=trials,
        )

    def _safe_restore(self) -> None:
        try:
            self.restore()
        except HarnessError as e:
            logger.warning(f"Restore failed: {e}")

    def _record(self, index: int, started_at: datetime, trigger_ms: int, outcome: PollOutcome) -> Trial:
        if outcome.completed and outcome.completed_at_ms is not None:
            return Trial.completed(
                index=index,
                trigger_ms=trigger_ms,
                completion_ms=outcome.completed_at_ms,
                started_at=started_at,
                polls=outcome.ticks,
            )
        return Trial.timeout(index=index, trigger_ms=trigger_ms, started_at=started_at, polls=outcome.ticks)


class ColdStartDriver(TrialDriver):
    """Scale 0 -> 1 and time until a live pod reports Ready."""

    kind = TrialKind.COLDSTART

    def measure(self, index: int) -> Trial:
        started_at = datetime.now()

        # ScalingDown
        self.scaler.set_replicas(self.resource, 0)
        drained = self.loop.run(
            self.resource,
            is_drained,
            max_polls=self.settings.drain_max_polls,
            interval=self.settings.drain_interval,
            sleep_first=False,
        )
        if not drained.completed:
            logger.warning("WARNING: Timed out waiting for pods to terminate")

        # Triggered
        trigger_ms = self.clock.now_ms()
        self.scaler.set_replicas(self.resource, 1)

        # WaitingReady
        outcome = self.loop.run(
            self.resource,
            is_cold_start_complete,
            max_polls=self.settings.coldstart_max_polls,
            interval=self.settings.poll_interval,
        )
        return self._record(index, started_at, trigger_ms, outcome)


class AvailabilityDriver(TrialDriver):
    """Force-delete the serving pod and time until a different pod is Ready.

    ``preflight`` runs once per trial after the resource serves and before
    stabilizing, outside every timed poll loop.
    """

    kind = TrialKind.AVAILABILITY

    def __init__(
        self,
        resource: ManagedResource,
        scaler: Any,
        poller: Any,
        cluster: Any,
        preflight: Optional[Preflight] = None,
        **kwargs,
    ):
        super().__init__(resource, scaler, poller, **kwargs)
        self.cluster = cluster
        self.preflight = preflight

    def prepare(self) -> None:
        logger.info(f"Scaling {self.resource.name} to replica 1...")
        self.scaler.set_replicas(self.resource, 1)
        self.clock.sleep(self.settings.settle_seconds)
        self._wait_ready()

    def measure(self, index: int) -> Trial:
        self._wait_ready()
        self.clock.sleep(self.settings.settle_seconds)
        if self.preflight:
            self.preflight(index)
        started_at = datetime.now()

        # Stabilizing
        settled = self.loop.run(
            self.resource,
            is_settled,
            max_polls=self.settings.stabilize_max_polls,
            interval=self.settings.stabilize_interval,
            sleep_first=False,
        )
        if not settled.completed:
            logger.warning("WARNING: Terminating pods still present, measuring anyway")

        # IdentifyVictim
        victim = pick_victim(self.loop.observe(self.resource))
        if victim is None:
            logger.warning("WARNING: No running pod to delete, recording timeout")
            trial = Trial.timeout(index=index, trigger_ms=self.clock.now_ms(), started_at=started_at)
        else:
            # Triggered
            trigger_ms = self.clock.now_ms()
            self._force_delete(victim)

            # WaitingReplacementReady
            outcome = self.loop.run(
                self.resource,
                replacement_ready(victim),
                max_polls=self.settings.recovery_max_polls,
                interval=self.settings.poll_interval,
            )
            trial = self._record(index, started_at, trigger_ms, outcome)

        self.clock.sleep(self.settings.cooldown_seconds)
        return trial

    def _wait_ready(self) -> None:
        if not self.poller.wait_for_ready(self.resource, timeout=self.settings.ready_timeout, clock=self.clock):
            logger.warning(f"WARNING: {self.resource.name} not ready after {self.settings.ready_timeout:.0f}s")

    def _force_delete(self, victim: str) -> None:
        try:
            self.cluster.delete_instance(self.resource.namespace, victim, force=True, grace_period=0)
        except ApiException as e:
            # A failed delete leaves the victim in place; the trial then times out.
            logger.warning(f"WARNING: Deleting pod {victim} failed: {e.status} {e.reason}")
        except TransportError as e:
            raise ClusterUnreachableError(f"Kubernetes API unreachable while deleting {victim}: {e}") from e
