"""Thin wrapper over the Kubernetes API used by the measurement engine.

Only the operations the harness consumes are exposed: reading a resource,
listing pods, patching replica counts, deleting a pod and reading
metrics-server usage.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from kubernetes import client, config as k8s_config
from kubernetes.config.config_exception import ConfigException
from urllib3.exceptions import HTTPError as TransportError

from src.common.errors import ClusterUnreachableError
from src.common.settings import HarnessSettings
from src.harness.models import ManagedResource, ResourceKind

logger = logging.getLogger(__name__)

METRICS_GROUP = "metrics.k8s.io"
METRICS_VERSION = "v1beta1"


class KubernetesCluster:
    """Kubernetes API client bundle (core, apps and custom objects)."""

    def __init__(
        self,
        core: Any,
        apps: Any,
        custom: Any,
        settings: Optional[HarnessSettings] = None,
    ):
        self.core = core
        self.apps = apps
        self.custom = custom
        self.settings = settings or HarnessSettings()

    @classmethod
    def from_kubeconfig(
        cls,
        kubeconfig: Optional[Path] = None,
        context: Optional[str] = None,
        settings: Optional[HarnessSettings] = None,
    ) -> "KubernetesCluster":
        """Load kubeconfig (or in-cluster config) and build the API clients.

        Raises:
            ClusterUnreachableError: If no usable configuration is found.
        """
        try:
            k8s_config.load_kube_config(
                config_file=str(kubeconfig) if kubeconfig else None,
                context=context,
            )
            logger.debug(f"Loaded kubeconfig {kubeconfig or '(default)'}")
        except (ConfigException, OSError) as e:
            try:
                k8s_config.load_incluster_config()
                logger.debug("Using in-cluster config")
            except ConfigException:
                raise ClusterUnreachableError(f"Cannot load Kubernetes configuration: {e}") from e

        return cls(
            core=client.CoreV1Api(),
            apps=client.AppsV1Api(),
            custom=client.CustomObjectsApi(),
            settings=settings,
        )

    def check_connection(self) -> str:
        """Return the server version, raising if the API server is unreachable."""
        try:
            version = client.VersionApi(self.core.api_client).get_code()
        except TransportError as e:
            raise ClusterUnreachableError(f"Kubernetes API unreachable: {e}") from e
        return f"{version.major}.{version.minor}"

    def get_resource(self, kind: ResourceKind, name: str, namespace: str) -> Dict[str, Any]:
        """Read a SpinApp or Deployment. Errors propagate to the caller."""
        if kind is ResourceKind.SPINAPP:
            return self.custom.get_namespaced_custom_object(
                group=self.settings.spinapp_group,
                version=self.settings.spinapp_version,
                namespace=namespace,
                plural=self.settings.spinapp_plural,
                name=name,
            )
        return self.apps.read_namespaced_deployment(name=name, namespace=namespace)

    def list_instances(self, namespace: str, label_selector: str = "") -> Any:
        return self.core.list_namespaced_pod(namespace=namespace, label_selector=label_selector)

    def patch_replicas(self, resource: ManagedResource, replicas: int) -> Any:
        """Merge-patch ``spec.replicas`` only; returns once the API accepts it."""
        body = {"spec": {"replicas": replicas}}
        if resource.kind is ResourceKind.SPINAPP:
            return self.custom.patch_namespaced_custom_object(
                group=self.settings.spinapp_group,
                version=self.settings.spinapp_version,
                namespace=resource.namespace,
                plural=self.settings.spinapp_plural,
                name=resource.name,
                body=body,
            )
        return self.apps.patch_namespaced_deployment_scale(
            name=resource.name,
            namespace=resource.namespace,
            body=body,
        )

    def delete_instance(
        self,
        namespace: str,
        name: str,
        force: bool = True,
        grace_period: int = 0,
    ) -> Any:
        """Delete a pod. ``force`` with a zero grace period skips graceful shutdown."""
        grace = 0 if force else grace_period
        return self.core.delete_namespaced_pod(
            name=name,
            namespace=namespace,
            grace_period_seconds=grace,
            body=client.V1DeleteOptions(grace_period_seconds=grace),
        )

    def list_pod_metrics(self, namespace: str) -> Dict[str, Any]:
        """Actual pod usage from metrics-server (``kubectl top pods``)."""
        return self.custom.list_namespaced_custom_object(
            group=METRICS_GROUP,
            version=METRICS_VERSION,
            namespace=namespace,
            plural="pods",
        )
