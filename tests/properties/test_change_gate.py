"""Property-based tests for the change-safety gate.

Property: A rejected change leaves the applied record and every rendered
object as they were; an allowed change is applied.
"""

from conftest import BINDATA, cluster_config, infrastructure, node, operator_config
from hypothesis import assume, given, settings
from hypothesis import strategies as st

from network_operator import names
from network_operator.client import InMemoryCluster
from network_operator.config import OperatorSettings
from network_operator.engine import Outcome, ReconcileEngine
from network_operator.merger import merge_config
from network_operator.models.cluster import ClusterNetworkConfig
from network_operator.models.spec import DesiredSpec
from network_operator.render import get_applied_configuration
from network_operator.safety import diff_specs, find_violations
from network_operator.status import StatusManager

CLUSTER = ClusterNetworkConfig.from_manifest(cluster_config().attributes["spec"])


def _applied_cluster():
    client = InMemoryCluster([operator_config(), cluster_config(), infrastructure(), node()])
    engine = ReconcileEngine(
        client, StatusManager(client), settings=OperatorSettings(manifest_root=str(BINDATA))
    )
    assert engine.reconcile("cluster").outcome == Outcome.RESYNC
    return client, engine


def _edit_ovn_config(client, **fields):
    obj = client.get(names.OPERATOR_API_VERSION, names.OPERATOR_KIND, "cluster")
    obj.attributes["spec"]["defaultNetwork"]["ovnKubernetesConfig"].update(fields)
    client.update(obj)


def _rendered_state(client):
    return [
        obj
        for obj in client.objects()
        if obj.kind in ("DaemonSet", "ConfigMap") and obj.namespace != names.APPLIED_NAMESPACE
    ]


@settings(max_examples=20, deadline=None)
@given(port=st.integers(min_value=1, max_value=65535))
def test_property_immutable_change_is_rejected(port):
    """
    Property: Immutable field changes never reach the cluster

    For any new tunnel port, changing it on an applied configuration
    without a declared migration is rejected and nothing is re-applied.
    """
    assume(port != 6081)
    client, engine = _applied_cluster()
    applied = get_applied_configuration(client)
    rendered = _rendered_state(client)

    _edit_ovn_config(client, genevePort=port)
    result = engine.reconcile("cluster")

    assert result.outcome == Outcome.RETRY
    assert engine.status.conditions()["OperatorConfig"].degraded_reason == "InvalidOperatorConfig"
    assert get_applied_configuration(client) == applied
    assert _rendered_state(client) == rendered


@settings(max_examples=20, deadline=None)
@given(log_level=st.sampled_from(["Normal", "Debug", "Trace", "TraceAll"]))
def test_property_free_change_is_applied(log_level):
    """
    Property: Free field changes are applied

    For any log level, changing it on an applied configuration succeeds
    and becomes the new applied configuration.
    """
    client, engine = _applied_cluster()
    obj = client.get(names.OPERATOR_API_VERSION, names.OPERATOR_KIND, "cluster")
    obj.attributes["spec"]["logLevel"] = log_level
    client.update(obj)

    result = engine.reconcile("cluster")

    assert result.outcome == Outcome.RESYNC
    assert get_applied_configuration(client).log_level == log_level


@given(
    geneve_port=st.none() | st.integers(min_value=1, max_value=65535),
    log_level=st.none() | st.sampled_from(["Normal", "Debug"]),
    host_mtu=st.none() | st.integers(min_value=1400, max_value=9100),
)
def test_property_unchanged_spec_has_no_violations(geneve_port, log_level, host_mtu):
    """
    Property: A spec compared with itself is always safe

    For any merged spec, the gate finds no field changes and no violations
    against an identical applied spec.
    """
    data = {"defaultNetwork": {"type": "OVNKubernetes", "ovnKubernetesConfig": {}}}
    if geneve_port is not None:
        data["defaultNetwork"]["ovnKubernetesConfig"]["genevePort"] = geneve_port
    if log_level is not None:
        data["logLevel"] = log_level
    spec = merge_config(DesiredSpec.from_manifest(data), CLUSTER, None, host_mtu)

    assert diff_specs(spec, spec) == []
    assert find_violations(spec, spec) == []
