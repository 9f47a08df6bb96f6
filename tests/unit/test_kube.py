"""Tests for the kubernetes-backed cluster client, using a mocked dynamic client."""

from unittest.mock import MagicMock

import pytest
from kubernetes.client.exceptions import ApiException

from network_operator.exceptions import ClusterApiError, ConflictError, NotFoundError
from network_operator.kube import KubernetesCluster, _translate
from network_operator.models.objects import KubeObject, ObjectMeta


def _result(data):
    result = MagicMock()
    result.to_dict.return_value = data
    return result


def _config_map(resource_version="1"):
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": "mtu", "namespace": "ns", "resourceVersion": resource_version},
        "data": {"mtu": "9001"},
    }


@pytest.fixture
def resource():
    return MagicMock()


@pytest.fixture
def cluster(resource):
    dynamic = MagicMock()
    dynamic.resources.get.return_value = resource
    return KubernetesCluster(dynamic)


@pytest.mark.parametrize(
    "status,expected",
    [(404, NotFoundError), (409, ConflictError), (500, ClusterApiError)],
)
def test_translate(status, expected):
    error = _translate(ApiException(status=status, reason="reason"), "ConfigMap ns/mtu")

    assert type(error) is expected
    assert error.details == "reason"


def test_get(cluster, resource):
    resource.get.return_value = _result(_config_map())

    obj = cluster.get("v1", "ConfigMap", "mtu", "ns")

    assert obj.attributes["data"] == {"mtu": "9001"}
    resource.get.assert_called_once_with(name="mtu", namespace="ns")


def test_get_cluster_scoped_uses_no_namespace(cluster, resource):
    resource.get.return_value = _result(
        {"apiVersion": "v1", "kind": "Node", "metadata": {"name": "worker-0"}}
    )

    cluster.get("v1", "Node", "worker-0")

    resource.get.assert_called_once_with(name="worker-0", namespace=None)


def test_get_not_found(cluster, resource):
    resource.get.side_effect = ApiException(status=404, reason="Not Found")

    with pytest.raises(NotFoundError):
        cluster.get("v1", "ConfigMap", "mtu", "ns")


def test_list_with_selector(cluster, resource):
    resource.get.return_value = _result({"items": [_config_map()]})

    objects = cluster.list("v1", "ConfigMap", "ns", label_selector={"app": "x", "tier": "y"})

    assert [o.name for o in objects] == ["mtu"]
    resource.get.assert_called_once_with(namespace="ns", label_selector="app=x,tier=y")


def test_apply_reports_change(cluster, resource):
    resource.get.return_value = _result(_config_map("1"))
    resource.server_side_apply.return_value = _result(_config_map("2"))
    obj = KubeObject.from_manifest(_config_map(""))

    assert cluster.apply(obj, "operconfig") is True

    kwargs = resource.server_side_apply.call_args.kwargs
    assert kwargs["field_manager"] == "operconfig"
    assert kwargs["force_conflicts"] is True
    assert kwargs["body"]["data"] == {"mtu": "9001"}


def test_apply_unchanged(cluster, resource):
    resource.get.return_value = _result(_config_map("1"))
    resource.server_side_apply.return_value = _result(_config_map("1"))

    assert cluster.apply(KubeObject.from_manifest(_config_map("")), "operconfig") is False


def test_apply_creates(cluster, resource):
    resource.get.side_effect = ApiException(status=404, reason="Not Found")
    resource.server_side_apply.return_value = _result(_config_map("1"))

    assert cluster.apply(KubeObject.from_manifest(_config_map("")), "operconfig") is True


def test_apply_conflict(cluster, resource):
    resource.get.return_value = _result(_config_map("1"))
    resource.server_side_apply.side_effect = ApiException(status=409, reason="Conflict")

    with pytest.raises(ConflictError):
        cluster.apply(KubeObject.from_manifest(_config_map("1")), "operconfig")


def _cluster_operator(resource_version="1"):
    return {
        "apiVersion": "config.openshift.io/v1",
        "kind": "ClusterOperator",
        "metadata": {"name": "network", "resourceVersion": resource_version},
    }


def _status_only():
    return KubeObject(
        api_version="config.openshift.io/v1",
        kind="ClusterOperator",
        metadata=ObjectMeta(name="network"),
        attributes={"status": {"conditions": [{"type": "Degraded", "status": "False"}]}},
    )


def test_apply_status_goes_through_subresource(cluster, resource):
    resource.get.return_value = _result(_cluster_operator("1"))
    resource.status.server_side_apply.return_value = _result(_cluster_operator("2"))

    assert cluster.apply(_status_only(), "operconfig") is True

    resource.server_side_apply.assert_not_called()
    kwargs = resource.status.server_side_apply.call_args.kwargs
    assert kwargs["name"] == "network"
    assert kwargs["namespace"] is None
    assert kwargs["field_manager"] == "operconfig"
    assert kwargs["body"]["status"] == {"conditions": [{"type": "Degraded", "status": "False"}]}
    assert kwargs["body"]["metadata"] == {"name": "network"}


def test_apply_status_creates_missing_object_first(cluster, resource):
    resource.get.side_effect = ApiException(status=404, reason="Not Found")
    resource.server_side_apply.return_value = _result(_cluster_operator("1"))
    resource.status.server_side_apply.return_value = _result(_cluster_operator("2"))

    assert cluster.apply(_status_only(), "operconfig") is True

    assert "status" not in resource.server_side_apply.call_args.kwargs["body"]
    resource.status.server_side_apply.assert_called_once()


def test_apply_spec_and_status_writes_both(cluster, resource):
    resource.get.return_value = _result(_cluster_operator("1"))
    resource.server_side_apply.return_value = _result(_cluster_operator("2"))
    resource.status.server_side_apply.return_value = _result(_cluster_operator("3"))
    obj = _status_only()
    obj.attributes["spec"] = {"managementState": "Managed"}

    assert cluster.apply(obj, "operconfig") is True

    assert resource.server_side_apply.call_args.kwargs["body"]["spec"] == {
        "managementState": "Managed"
    }
    assert "spec" not in resource.status.server_side_apply.call_args.kwargs["body"]


def test_update(cluster, resource):
    resource.replace.return_value = _result(_config_map("5"))
    obj = KubeObject(
        api_version="v1",
        kind="ConfigMap",
        metadata=ObjectMeta(name="mtu", namespace="ns", resource_version="4"),
    )

    updated = cluster.update(obj)

    assert updated.metadata.resource_version == "5"
    assert resource.replace.call_args.kwargs["body"]["metadata"]["resourceVersion"] == "4"


def test_delete(cluster, resource):
    cluster.delete("batch/v1", "Job", "mtu-prober", "ns")

    resource.delete.assert_called_once_with(name="mtu-prober", namespace="ns")


def test_resource_for(cluster, resource):
    resource.name = "networkattachmentdefinitions"

    assert cluster.resource_for("k8s.cni.cncf.io/v1", "NetworkAttachmentDefinition") == (
        "networkattachmentdefinitions"
    )


def test_watch(cluster, resource):
    resource.watch.return_value = iter(
        [
            {"type": "ADDED", "raw_object": _config_map("1")},
            {"type": "MODIFIED", "raw_object": _config_map("2")},
        ]
    )

    events = list(cluster.watch("v1", "ConfigMap", "ns"))

    assert [(t, o.metadata.resource_version) for t, o in events] == [
        ("ADDED", "1"),
        ("MODIFIED", "2"),
    ]


def test_watch_translates_errors(cluster, resource):
    resource.watch.side_effect = ApiException(status=500, reason="Internal Server Error")

    with pytest.raises(ClusterApiError):
        list(cluster.watch("v1", "ConfigMap", "ns"))
