"""Declarative replica-count changes."""

import logging

from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError as TransportError

from src.common.errors import ClusterUnreachableError, ScaleError
from src.harness.cluster import KubernetesCluster
from src.harness.models import ManagedResource

logger = logging.getLogger(__name__)


class ScaleController:
    """Issues replica changes for SpinApps and Deployments through one call.

    The patch is idempotent and returns as soon as the API server accepts it;
    convergence is observed separately by the poller.
    """

    def __init__(self, cluster: KubernetesCluster):
        self.cluster = cluster

    def set_replicas(self, resource: ManagedResource, replicas: int) -> None:
        if replicas < 0:
            raise ValueError(f"Replica count must be >= 0, got {replicas}")

        try:
            self.cluster.patch_replicas(resource, replicas)
        except ApiException as e:
            raise ScaleError(resource.name, replicas, f"{e.status} {e.reason}") from e
        except TransportError as e:
            raise ClusterUnreachableError(f"Kubernetes API unreachable while scaling {resource.name}: {e}") from e

        logger.debug(f"Requested {replicas} replica(s) for {resource.kind.value}/{resource.name}")
