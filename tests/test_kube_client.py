from unittest.mock import MagicMock

import pytest
from kubernetes import client
from kubernetes.client.rest import ApiException

from shared.kube_client import KubeClient, KubernetesError, NotFoundError
from tests.fakes import make_attachment, make_pod


@pytest.fixture
def kube():
    kube = KubeClient.__new__(KubeClient)
    kube.core_v1 = MagicMock()
    kube.storage_v1 = MagicMock()
    kube.request_timeout = (1, 2)
    return kube


def test_node_exists(kube):
    assert kube.node_exists("n1") is True

    kube.core_v1.read_node.side_effect = ApiException(status=404, reason="Not Found")
    assert kube.node_exists("n1") is False

    kube.core_v1.read_node.side_effect = ApiException(status=500, reason="Internal Server Error")
    with pytest.raises(KubernetesError) as exc_info:
        kube.node_exists("n1")
    assert not isinstance(exc_info.value, NotFoundError)
    assert exc_info.value.status == 500


def test_list_pods_uses_node_field_selector(kube):
    kube.core_v1.list_pod_for_all_namespaces.return_value = client.V1PodList(items=[make_pod("p1", "n1")])

    pods = kube.list_pods_on_node("n1")
    assert [p.metadata.name for p in pods] == ["p1"]
    _, kwargs = kube.core_v1.list_pod_for_all_namespaces.call_args
    assert kwargs["field_selector"] == "spec.nodeName=n1"
    assert kwargs["_request_timeout"] == (1, 2)


def test_delete_pod_zero_grace(kube):
    kube.delete_pod("p1", "default")
    args, kwargs = kube.core_v1.delete_namespaced_pod.call_args
    assert args == ("p1", "default")
    assert kwargs["grace_period_seconds"] == 0
    assert kwargs["body"].grace_period_seconds == 0


def test_delete_pod_not_found(kube):
    kube.core_v1.delete_namespaced_pod.side_effect = ApiException(status=404, reason="Not Found")
    with pytest.raises(NotFoundError):
        kube.delete_pod("p1", "default")


def test_list_attachments_filters_by_node(kube):
    kube.storage_v1.list_volume_attachment.return_value = client.V1VolumeAttachmentList(items=[
        make_attachment("va-1", "pv-1", "n1"),
        make_attachment("va-2", "pv-2", "n2"),
    ])
    assert [va.metadata.name for va in kube.list_attachments_on_node("n1")] == ["va-1"]


def test_get_claim_error(kube):
    kube.core_v1.read_namespaced_persistent_volume_claim.side_effect = ApiException(status=403, reason="Forbidden")
    with pytest.raises(KubernetesError) as exc_info:
        kube.get_claim("data", "default")
    assert exc_info.value.status == 403


def test_delete_attachment(kube):
    kube.delete_attachment("va-1")
    args, kwargs = kube.storage_v1.delete_volume_attachment.call_args
    assert args == ("va-1",)
    assert kwargs["grace_period_seconds"] == 0
