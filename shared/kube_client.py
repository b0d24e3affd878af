"""
Kubernetes cluster access for the fencer.

Wraps the official kubernetes client with the handful of reads and deletes the
fencing core needs. API failures are raised as KubernetesError; a missing
object is raised as NotFoundError so callers can treat it as benign.
"""

import logging
from typing import List, Optional

from kubernetes import client, config
from kubernetes.client.rest import ApiException

logger = logging.getLogger(__name__)

# Per-call timeout (connect, read) for cluster api requests.
REQUEST_TIMEOUT = (5, 20)


class KubernetesError(Exception):
    """Raised when a cluster api call fails."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class NotFoundError(KubernetesError):
    """Raised when the requested object does not exist."""


def _wrap(e: ApiException, what: str) -> KubernetesError:
    if e.status == 404:
        return NotFoundError(f"{what} not found", 404)
    return KubernetesError(f"{what}: {e.status} {e.reason}", e.status)


def load_config(kubeconfig_path: Optional[str] = None) -> None:
    """Load in-cluster config, falling back to a kubeconfig file."""
    if kubeconfig_path:
        config.load_kube_config(kubeconfig_path)
        return
    try:
        config.load_incluster_config()
    except config.ConfigException:
        logger.warning("Failed to load in-cluster config, trying kubeconfig")
        config.load_kube_config()


class KubeClient:
    """
    Cluster operations used by the fencing core.

    Pods are looked up by node with a server-side ``spec.nodeName`` field
    selector. VolumeAttachments don't support that selector, so they are
    listed once and filtered by node in the client.
    """

    def __init__(self, api_client: Optional[client.ApiClient] = None, request_timeout=REQUEST_TIMEOUT):
        self.core_v1 = client.CoreV1Api(api_client)
        self.storage_v1 = client.StorageV1Api(api_client)
        self.request_timeout = request_timeout

    # Nodes

    def node_exists(self, name: str) -> bool:
        try:
            self.core_v1.read_node(name, _request_timeout=self.request_timeout)
        except ApiException as e:
            if e.status == 404:
                return False
            raise _wrap(e, f"node {name}")
        return True

    # Pods

    def list_pods_on_node(self, node_name: str) -> List[client.V1Pod]:
        try:
            pods = self.core_v1.list_pod_for_all_namespaces(
                field_selector=f"spec.nodeName={node_name}",
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            raise _wrap(e, f"pods on node {node_name}")
        return list(pods.items or [])

    def delete_pod(self, name: str, namespace: str, grace_period_seconds: int = 0) -> None:
        try:
            self.core_v1.delete_namespaced_pod(
                name,
                namespace,
                grace_period_seconds=grace_period_seconds,
                body=client.V1DeleteOptions(grace_period_seconds=grace_period_seconds),
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            raise _wrap(e, f"pod {namespace}/{name}")

    # Claims and volumes

    def get_claim(self, name: str, namespace: str) -> client.V1PersistentVolumeClaim:
        try:
            return self.core_v1.read_namespaced_persistent_volume_claim(
                name, namespace, _request_timeout=self.request_timeout
            )
        except ApiException as e:
            raise _wrap(e, f"pvc {namespace}/{name}")

    def get_volume_record(self, name: str) -> client.V1PersistentVolume:
        try:
            return self.core_v1.read_persistent_volume(name, _request_timeout=self.request_timeout)
        except ApiException as e:
            raise _wrap(e, f"pv {name}")

    # Attachments

    def list_attachments_on_node(self, node_name: str) -> List[client.V1VolumeAttachment]:
        try:
            attachments = self.storage_v1.list_volume_attachment(_request_timeout=self.request_timeout)
        except ApiException as e:
            raise _wrap(e, "volume attachments")
        return [va for va in (attachments.items or []) if va.spec and va.spec.node_name == node_name]

    def delete_attachment(self, name: str, grace_period_seconds: int = 0) -> None:
        try:
            self.storage_v1.delete_volume_attachment(
                name,
                grace_period_seconds=grace_period_seconds,
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            raise _wrap(e, f"volume attachment {name}")
