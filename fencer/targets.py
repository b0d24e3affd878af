"""
Fence target resolution.

Works out which pods on a failed node may be fenced. A pod qualifies when:
- it carries the fencing label with a true value
- it mounts at least one bound StorageOS volume claim
- every StorageOS volume it uses has a healthy master

Pods, claims and attachments are read fresh on every call. Nothing is cached
because all three change independently of node health.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from kubernetes import client

from fencer.config import DRIVER_NAME, FENCING_LABEL, PROVISIONER_ANNOTATION
from fencer.errors import AggregateError
from shared.kube_client import KubernetesError

logger = logging.getLogger(__name__)

_TRUE_VALUES = ("1", "t", "T", "TRUE", "true", "True")
_FALSE_VALUES = ("0", "f", "F", "FALSE", "false", "False")


def parse_bool(value: str) -> bool:
    """Parse a label value as a boolean. Raises ValueError if it isn't one."""
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"invalid boolean value: {value!r}")


def pod_ref(pod: client.V1Pod) -> str:
    return f"{pod.metadata.namespace}/{pod.metadata.name}"


@dataclass
class FenceTarget:
    """A pod that may be fenced, with its StorageOS claims and their attachments."""
    pod: client.V1Pod
    claims: List[client.V1PersistentVolumeClaim] = field(default_factory=list)
    attachments: Dict[str, Optional[client.V1VolumeAttachment]] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.pod.metadata.name

    @property
    def namespace(self) -> str:
        return self.pod.metadata.namespace

    def attachment_for(self, claim: client.V1PersistentVolumeClaim) -> Optional[client.V1VolumeAttachment]:
        return self.attachments.get(claim.metadata.name)


class TargetResolver:
    def __init__(self, cluster, api, label: str = FENCING_LABEL, driver: str = DRIVER_NAME):
        """
        Args:
            cluster: KubeClient (or compatible) for pod, claim and attachment reads
            api: StorageOS client providing get_volume(namespace, name)
            label: Pod label that opts a pod in to fencing
            driver: CSI driver name that identifies StorageOS volumes
        """
        self.cluster = cluster
        self.api = api
        self.label = label
        self.driver = driver

    def resolve(self, node_name: str, on_skip: Optional[Callable[[client.V1Pod, str], None]] = None) -> List[FenceTarget]:
        """
        Return the pods on ``node_name`` that are safe to fence.

        ``on_skip`` is called with (pod, reason) for every opted-in pod that is
        left running. Cluster list failures propagate.
        """
        pods = self.cluster.list_pods_on_node(node_name)
        attachments = self.cluster.list_attachments_on_node(node_name)

        targets = []
        for pod in pods:
            if not self.fencing_enabled(pod):
                logger.debug(f"Skipping pod {pod_ref(pod)} without {self.label}=true label set")
                continue

            reason = None
            try:
                target = self._resolve_pod(pod, attachments)
            except Exception as e:
                target = None
                reason = f"failed to resolve volumes: {e}"
                logger.error(f"Failed to resolve volumes for pod {pod_ref(pod)}: {e}")
            else:
                if target is None:
                    reason = "not all StorageOS volumes are healthy"

            if target is None:
                if reason and on_skip:
                    on_skip(pod, reason)
                continue
            if not target.claims:
                logger.info(f"Skipping pod {pod_ref(pod)} with no StorageOS volume claims")
                continue
            targets.append(target)

        return targets

    def fencing_enabled(self, pod: client.V1Pod) -> bool:
        labels = pod.metadata.labels or {}
        if self.label not in labels:
            return False
        try:
            return parse_bool(labels[self.label])
        except ValueError:
            logger.error(
                f"Pod {pod_ref(pod)} has invalid {self.label} label value {labels[self.label]!r}, expected true/false"
            )
            return False

    def _resolve_pod(self, pod: client.V1Pod, attachments: List[client.V1VolumeAttachment]) -> Optional[FenceTarget]:
        """None means the pod has StorageOS volumes that aren't ready to fail over."""
        claims = [c for c in self.backend_claims(pod) if c.spec and c.spec.volume_name]
        target = FenceTarget(pod=pod, claims=claims)
        if not claims:
            return target

        # All volume masters must be healthy for the pod to fail over, so a
        # single unhealthy or unreadable volume leaves the pod where it is.
        for claim in claims:
            volume = self.api.get_volume(claim.metadata.namespace, claim.spec.volume_name)
            if not volume.is_healthy():
                logger.info(
                    f"Pod {pod_ref(pod)} is labeled for fencing but volume {volume.name} "
                    f"is not healthy, leaving pod running"
                )
                return None

        for claim in claims:
            target.attachments[claim.metadata.name] = claim_attachment(claim, attachments)
        return target

    def backend_claims(self, pod: client.V1Pod) -> List[client.V1PersistentVolumeClaim]:
        """
        Return the pod's StorageOS claims.

        Claims provisioned dynamically carry the provisioner annotation.
        Statically provisioned claims are identified by the CSI driver of the
        bound PV. Claim read failures are collected and raised together once
        every volume has been looked at.
        """
        claims = []
        errors = []
        for volume in (pod.spec.volumes or []) if pod.spec else []:
            source = volume.persistent_volume_claim
            if source is None or not source.claim_name:
                continue
            try:
                claim = self.cluster.get_claim(source.claim_name, pod.metadata.namespace)
            except KubernetesError as e:
                errors.append(e)
                continue
            if self.owns_claim(claim):
                claims.append(claim)

        if errors:
            raise AggregateError(errors)
        return claims

    def owns_claim(self, claim: client.V1PersistentVolumeClaim) -> bool:
        annotations = claim.metadata.annotations or {}
        if PROVISIONER_ANNOTATION in annotations:
            return annotations[PROVISIONER_ANNOTATION] == self.driver

        volume_name = claim.spec.volume_name if claim.spec else None
        if not volume_name:
            return False
        try:
            pv = self.cluster.get_volume_record(volume_name)
        except KubernetesError as e:
            # Without a PV the claim can't be mounted, so whether it is a
            # StorageOS volume doesn't matter.
            logger.info(f"Ignoring claim {claim.metadata.namespace}/{claim.metadata.name}: no pv {volume_name} ({e})")
            return False
        csi = pv.spec.csi if pv.spec else None
        return csi is not None and csi.driver == self.driver


def claim_attachment(claim: client.V1PersistentVolumeClaim,
                     attachments: List[client.V1VolumeAttachment]) -> Optional[client.V1VolumeAttachment]:
    """Return the attachment whose source PV is the claim's bound volume."""
    for va in attachments:
        source = va.spec.source if va.spec else None
        if source is not None and source.persistent_volume_name == claim.spec.volume_name:
            return va
    return None
