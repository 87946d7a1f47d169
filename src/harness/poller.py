"""State poller: one listing of a resource's pods mapped to Instances."""

import logging
from datetime import datetime
from typing import Any, Optional

from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError as TransportError

from src.common.errors import ClusterUnreachableError, TransientReadError
from src.harness.clock import Clock, MonotonicClock
from src.harness.cluster import KubernetesCluster
from src.harness.models import Instance, ManagedResource, ReadyCondition, Snapshot

logger = logging.getLogger(__name__)


def ready_condition_of(pod: Any) -> ReadyCondition:
    """Status of the pod's ``Ready`` condition; a missing list means Unknown."""
    conditions = getattr(pod.status, "conditions", None) or []
    ready = next((c for c in conditions if c.type == "Ready"), None)
    if ready is None:
        return ReadyCondition.UNKNOWN
    if ready.status == "True":
        return ReadyCondition.TRUE
    if ready.status == "False":
        return ReadyCondition.FALSE
    return ReadyCondition.UNKNOWN


def instance_from_pod(pod: Any, observed_at: Optional[datetime] = None) -> Instance:
    return Instance(
        identity=pod.metadata.name,
        ready_condition=ready_condition_of(pod),
        terminating=pod.metadata.deletion_timestamp is not None,
        observed_at=observed_at or datetime.now(),
    )


class StatePoller:
    """Samples the current pods of a managed resource.

    ``snapshot`` performs exactly one read and never sleeps; callers pace
    repeated calls themselves.
    """

    def __init__(self, cluster: KubernetesCluster):
        self.cluster = cluster

    def snapshot(self, resource: ManagedResource) -> Snapshot:
        """List the resource's pods in listing order.

        Raises:
            TransientReadError: The API answered with an error status.
            ClusterUnreachableError: The API server could not be reached.
        """
        try:
            pods = self.cluster.list_instances(resource.namespace, resource.label_selector)
        except ApiException as e:
            raise TransientReadError(f"Listing pods for {resource.name} failed: {e.status} {e.reason}") from e
        except TransportError as e:
            raise ClusterUnreachableError(f"Kubernetes API unreachable: {e}") from e

        observed_at = datetime.now()
        return tuple(instance_from_pod(pod, observed_at) for pod in (pods.items or []))

    def wait_for_ready(
        self,
        resource: ManagedResource,
        timeout: float,
        interval: float = 1.0,
        clock: Optional[Clock] = None,
    ) -> bool:
        """Wait until every non-terminating pod is Ready (and at least one exists).

        Transient read errors count as "not yet"; returns False on timeout.
        """
        clock = clock or MonotonicClock()
        deadline = clock.now_ms() + int(timeout * 1000)

        while True:
            try:
                live = [i for i in self.snapshot(resource) if not i.terminating]
                if live and all(i.is_ready for i in live):
                    return True
            except TransientReadError as e:
                logger.debug(f"Readiness check skipped: {e}")

            if clock.now_ms() >= deadline:
                return False
            clock.sleep(interval)
