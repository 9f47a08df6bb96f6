"""Property-based tests for reconciliation idempotence.

Property: A cycle that follows a successful cycle, with no external
change in between, performs no writes.
"""

from conftest import BINDATA, FakeProber, cluster_config, infrastructure, node, operator_config
from hypothesis import given, settings
from hypothesis import strategies as st

from network_operator.client import InMemoryCluster
from network_operator.config import OperatorSettings
from network_operator.engine import Outcome, ReconcileEngine
from network_operator.status import StatusManager


@st.composite
def desired_spec(draw):
    """Generate valid administrator specs for the OVN-Kubernetes implementation."""
    spec = {"defaultNetwork": {"type": "OVNKubernetes"}}
    ovn = {}
    if draw(st.booleans()):
        ovn["ipsecConfig"] = draw(st.sampled_from([{}, {"mode": "Full"}, {"mode": "Disabled"}]))
    if draw(st.booleans()):
        ovn["genevePort"] = draw(st.integers(min_value=1024, max_value=65535))
    if ovn:
        spec["defaultNetwork"]["ovnKubernetesConfig"] = ovn
    log_level = draw(st.none() | st.sampled_from(["Normal", "Debug", "Trace", "TraceAll"]))
    if log_level:
        spec["logLevel"] = log_level
    if draw(st.booleans()):
        spec["disableMultiNetwork"] = True
    return spec


def _engine(client, host_mtu):
    status = StatusManager(client)
    return ReconcileEngine(
        client,
        status,
        settings=OperatorSettings(manifest_root=str(BINDATA)),
        prober=FakeProber(host_mtu),
    )


@settings(max_examples=25, deadline=None)
@given(
    spec=desired_spec(),
    host_mtu=st.integers(min_value=1400, max_value=9100),
    hosted=st.booleans(),
)
def test_property_second_cycle_is_a_no_op(spec, host_mtu, hosted):
    """
    Property: Reconciliation is idempotent

    For any valid desired spec, host MTU and topology, once a cycle has
    succeeded, running another cycle leaves every object untouched.
    """
    client = InMemoryCluster(
        [operator_config(spec), cluster_config(), infrastructure(hosted=hosted), node()]
    )
    engine = _engine(client, host_mtu)

    first = engine.reconcile("cluster")
    assert first.outcome == Outcome.RESYNC, first.error

    writes = client.write_count
    second = engine.reconcile("cluster")

    assert second.outcome == Outcome.RESYNC
    assert client.write_count == writes


@settings(max_examples=10, deadline=None)
@given(spec=desired_spec(), cycles=st.integers(min_value=2, max_value=4))
def test_property_repeated_cycles_converge(spec, cycles):
    """
    Property: Repeated cycles converge after the first

    However many cycles run, only the first one writes.
    """
    client = InMemoryCluster([operator_config(spec), cluster_config(), infrastructure(), node()])
    engine = _engine(client, 1500)
    engine.reconcile("cluster")
    writes = client.write_count

    for _ in range(cycles):
        engine.reconcile("cluster")

    assert client.write_count == writes
