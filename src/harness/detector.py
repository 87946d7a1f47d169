"""Resource-type detection: SpinApp (Wasm) or Deployment (container)."""

import logging

from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError as TransportError

from src.harness.cluster import KubernetesCluster
from src.harness.models import ManagedResource, ResourceKind

logger = logging.getLogger(__name__)


def selector_for(cluster: KubernetesCluster, kind: ResourceKind, name: str) -> str:
    """Label selector matching the pods owned by a resource of ``kind``."""
    if kind is ResourceKind.SPINAPP:
        return f"{cluster.settings.spinapp_label_key}={name}"
    return f"{cluster.settings.deployment_label_key}={name}"


def detect_resource(cluster: KubernetesCluster, namespace: str, name: str) -> ManagedResource:
    """Identify which resource kind manages ``name`` in ``namespace``.

    Looks up a SpinApp once. Any error, including a transport failure, is
    treated as "not found" and the service is assumed to be a Deployment.
    """
    kind = ResourceKind.DEPLOYMENT
    try:
        cluster.get_resource(ResourceKind.SPINAPP, name, namespace)
        kind = ResourceKind.SPINAPP
    except ApiException as e:
        if e.status != 404:
            logger.debug(f"SpinApp lookup for {namespace}/{name} failed ({e.status}), assuming Deployment")
    except TransportError as e:
        logger.debug(f"SpinApp lookup for {namespace}/{name} failed ({e}), assuming Deployment")

    resource = ManagedResource(
        kind=kind,
        name=name,
        namespace=namespace,
        label_selector=selector_for(cluster, kind, name),
    )
    logger.info(f"Detected {kind.display_name} ({kind.substrate})")
    return resource
