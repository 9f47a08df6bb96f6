"""Property-based tests for best-effort apply and conflict handling.

Property: Every rendered object is attempted regardless of earlier
failures; version conflicts retry the cycle without reporting degraded.
"""

from conftest import BINDATA, cluster_config, infrastructure, node, operator_config
from hypothesis import given, settings
from hypothesis import strategies as st

from network_operator.client import InMemoryCluster
from network_operator.config import OperatorSettings
from network_operator.engine import Outcome, ReconcileEngine
from network_operator.exceptions import ClusterApiError, ConflictError
from network_operator.status import ComponentCondition, StatusManager

# Objects rendered for the default OVN-Kubernetes configuration, in apply order.
RENDERED = [
    "openshift-host-network",
    "cluster-network-config",
    "openshift-multus",
    "multus",
    "openshift-ovn-kubernetes",
    "ovnkube-config",
    "ovnkube-node",
]


class RecordingCluster(InMemoryCluster):
    """In-memory cluster that fails apply for chosen names and records attempts."""

    def __init__(self, objects, failures):
        super().__init__(objects)
        self.failures = failures
        self.attempted = []

    def apply(self, obj, field_manager):
        self.attempted.append(obj.name)
        if obj.name in self.failures:
            raise self.failures[obj.name]
        return super().apply(obj, field_manager)


def _run(failures):
    client = RecordingCluster(
        [operator_config(), cluster_config(), infrastructure(), node()], failures
    )
    status = StatusManager(client)
    engine = ReconcileEngine(
        client, status, settings=OperatorSettings(manifest_root=str(BINDATA))
    )
    return client, status, engine.reconcile("cluster")


failing_names = st.sets(st.sampled_from(RENDERED), min_size=1)


@settings(max_examples=30, deadline=None)
@given(failing=failing_names)
def test_property_every_object_is_attempted(failing):
    """
    Property: Best-effort apply

    For any set of failing objects, every rendered object is still
    attempted and the reported failure is the last one in apply order.
    """
    client, status, result = _run(
        {name: ClusterApiError(f"{name} rejected by admission") for name in failing}
    )

    assert result.outcome == Outcome.RETRY
    assert all(name in client.attempted for name in RENDERED)

    condition = status.conditions()["OperatorConfig"]
    assert condition.degraded_reason == "ApplyOperatorConfig"
    last = [name for name in RENDERED if name in failing][-1]
    assert f"{last} rejected by admission" in condition.degraded_message


@settings(max_examples=30, deadline=None)
@given(conflicting=failing_names)
def test_property_conflicts_are_not_degraded(conflicting):
    """
    Property: Conflict transparency

    For any set of objects losing a version race, the cycle is retried,
    every other object is applied and no degraded condition is reported.
    """
    client, status, result = _run(
        {name: ConflictError("the object has been modified") for name in conflicting}
    )

    assert result.outcome == Outcome.RETRY
    assert isinstance(result.error, ConflictError)
    assert status.conditions().get("OperatorConfig", ComponentCondition()).degraded is False
    stored = {obj.name for obj in client.objects()}
    assert all(name in stored for name in RENDERED if name not in conflicting)


@settings(max_examples=30, deadline=None)
@given(conflicting=failing_names, failing=failing_names)
def test_property_failures_win_over_conflicts(conflicting, failing):
    """
    Property: A real failure is reported even when conflicts also occurred

    For any mix of conflicts and failures, the cycle reports degraded.
    """
    failures = {name: ConflictError("modified") for name in conflicting}
    failures.update({name: ClusterApiError("rejected") for name in failing})

    _, status, result = _run(failures)

    assert result.outcome == Outcome.RETRY
    assert status.conditions()["OperatorConfig"].degraded_reason == "ApplyOperatorConfig"
