"""Property-based tests for migration feature gating.

Property: A migration converts exactly the features it enables.
"""

from hypothesis import given
from hypothesis import strategies as st

from network_operator.client import InMemoryCluster
from network_operator.migration import (
    OVN_API_VERSION,
    OVN_MULTICAST_ANNOTATION,
    SDN_API_VERSION,
    SDN_MULTICAST_ANNOTATION,
    MigrationExecutor,
)
from network_operator.models.objects import KubeObject
from network_operator.models.spec import DesiredSpec

namespace_name = st.text(alphabet="abcdefghijklmnopqrstuvwxyz", min_size=1, max_size=12)
feature_switch = st.none() | st.booleans()


def _sdn_cluster(namespaces):
    objects = []
    for ns in namespaces:
        objects.append(
            KubeObject.from_manifest(
                {
                    "apiVersion": SDN_API_VERSION,
                    "kind": "NetNamespace",
                    "metadata": {
                        "name": ns,
                        "annotations": {SDN_MULTICAST_ANNOTATION: "true"},
                    },
                    "netname": ns,
                    "egressIPs": ["192.168.10.5"],
                }
            )
        )
        objects.append(
            KubeObject.from_manifest(
                {
                    "apiVersion": SDN_API_VERSION,
                    "kind": "EgressNetworkPolicy",
                    "metadata": {"name": "policy", "namespace": ns},
                    "spec": {"egress": [{"type": "Deny", "to": {"cidrSelector": "0.0.0.0/0"}}]},
                }
            )
        )
        objects.append(
            KubeObject.from_manifest(
                {"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": ns}}
            )
        )
    return InMemoryCluster(objects)


@given(
    namespaces=st.sets(namespace_name, min_size=1, max_size=4),
    egress_firewall=feature_switch,
    multicast=feature_switch,
    egress_ip=feature_switch,
)
def test_property_only_enabled_features_migrate(namespaces, egress_firewall, multicast, egress_ip):
    """
    Property: Migration gating

    For any combination of feature switches, a feature is converted
    unless its switch is explicitly false.
    """
    features = {}
    for key, value in (
        ("egressFirewall", egress_firewall),
        ("multicast", multicast),
        ("egressIP", egress_ip),
    ):
        if value is not None:
            features[key] = value
    spec = DesiredSpec.from_manifest(
        {"migration": {"networkType": "OVNKubernetes", "features": features}}
    )
    client = _sdn_cluster(namespaces)

    completed = MigrationExecutor().run(spec, client)

    assert ("egress_firewall" in completed) == (egress_firewall is not False)
    assert ("multicast" in completed) == (multicast is not False)
    assert ("egress_ip" in completed) == (egress_ip is not False)

    firewalls = client.list(OVN_API_VERSION, "EgressFirewall")
    assert len(firewalls) == (len(namespaces) if egress_firewall is not False else 0)

    egress_ips = client.list(OVN_API_VERSION, "EgressIP")
    assert len(egress_ips) == (len(namespaces) if egress_ip is not False else 0)

    for ns in client.list("v1", "Namespace"):
        enabled = ns.metadata.annotations.get(OVN_MULTICAST_ANNOTATION) == "true"
        assert enabled == (multicast is not False)


@given(namespaces=st.sets(namespace_name, min_size=1, max_size=4))
def test_property_migration_is_repeatable(namespaces):
    """
    Property: Re-running a migration changes nothing

    For any cluster, a second run of the same migration performs no writes.
    """
    spec = DesiredSpec.from_manifest({"migration": {"networkType": "OVNKubernetes"}})
    client = _sdn_cluster(namespaces)
    executor = MigrationExecutor()
    executor.run(spec, client)
    writes = client.write_count

    executor.run(spec, client)

    assert client.write_count == writes
