"""
Fencing executor.

Deletes a target pod so it can be rescheduled, then removes the
VolumeAttachments of its StorageOS volumes so the replacement pod doesn't
have to wait for the attachment to time out on the dead node.
"""

import logging

from fencer.config import DRIVER_NAME
from fencer.errors import AggregateError, FencingError, UnexpectedVolumeAttacherError
from fencer.targets import FenceTarget
from shared.kube_client import KubernetesError, NotFoundError

logger = logging.getLogger(__name__)

# The kubelet on a failed node won't respond, so don't wait for it.
GRACE_PERIOD_SECONDS = 0


class FencingExecutor:
    def __init__(self, cluster, driver: str = DRIVER_NAME):
        self.cluster = cluster
        self.driver = driver

    def fence(self, target: FenceTarget) -> None:
        """
        Fence a single pod.

        Safe to repeat: objects that are already gone count as deleted.
        Raises FencingError if the pod could not be deleted, in which case no
        attachment is touched, or AggregateError listing every attachment that
        could not be removed.
        """
        ref = f"{target.namespace}/{target.name}"
        logger.info(f"Pod {ref} has fencing enabled and healthy volumes, deleting pod")
        try:
            self.cluster.delete_pod(target.name, target.namespace, grace_period_seconds=GRACE_PERIOD_SECONDS)
        except NotFoundError:
            logger.debug(f"Pod {ref} already deleted")
        except KubernetesError as e:
            raise FencingError(f"failed to delete pod {ref}: {e}") from e

        errors = []
        for claim in target.claims:
            claim_name = claim.metadata.name
            va = target.attachment_for(claim)
            if va is None:
                logger.info(f"No volume attachment for pvc {claim.metadata.namespace}/{claim_name}, skipping removal")
                continue

            if va.spec.attacher != self.driver:
                # Only StorageOS claims get here, so this shouldn't happen.
                err = UnexpectedVolumeAttacherError(
                    f"volume attachment {va.metadata.name} has attacher {va.spec.attacher!r}, expected {self.driver!r}"
                )
                logger.error(f"Skipping volume attachment removal for pvc {claim_name}: {err}")
                continue

            try:
                self.cluster.delete_attachment(va.metadata.name, grace_period_seconds=GRACE_PERIOD_SECONDS)
                logger.info(f"Deleted volume attachment {va.metadata.name} for pvc {claim_name}")
            except NotFoundError:
                logger.debug(f"Volume attachment {va.metadata.name} already deleted")
            except KubernetesError as e:
                logger.error(f"Failed to delete volume attachment {va.metadata.name}: {e}")
                errors.append(e)

        if errors:
            raise AggregateError(errors)
