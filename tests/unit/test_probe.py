"""Tests for the bootstrap probe."""

import pytest
from conftest import infrastructure, node

from network_operator import names
from network_operator.client import InMemoryCluster
from network_operator.exceptions import ProbeError
from network_operator.models.cluster import InfraStatus, NodeInfo
from network_operator.models.objects import KubeObject, ObjectMeta
from network_operator.models.spec import DesiredSpec
from network_operator.probe import (
    ClusterBootstrapper,
    JobMTUProber,
    gather_infra_status,
    read_mtu_record,
    should_probe,
)


def _mtu_record(value: str) -> KubeObject:
    return KubeObject(
        api_version="v1",
        kind="ConfigMap",
        metadata=ObjectMeta(name=names.MTU_CM_NAME, namespace=names.MTU_CM_NAMESPACE),
        attributes={"data": {"mtu": value}},
    )


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.now += seconds


def test_gather_infra_status():
    cordoned = node("worker-1")
    cordoned.attributes["spec"] = {"unschedulable": True}
    client = InMemoryCluster([infrastructure(), node("worker-0"), cordoned])

    infra = gather_infra_status(client)

    assert infra.platform_type == "AWS"
    assert infra.platform_region == "us-east-1"
    assert infra.infra_name == "test-x7k2p"
    assert infra.hosted_control_plane is False
    assert [n.name for n in infra.schedulable_nodes] == ["worker-0"]


def test_gather_infra_status_hosted():
    client = InMemoryCluster([infrastructure(hosted=True)])

    assert gather_infra_status(client).hosted_control_plane is True


def test_bootstrapper_returns_infra():
    client = InMemoryCluster([infrastructure(), node()])

    result = ClusterBootstrapper().bootstrap(DesiredSpec(), client)

    assert result.infra.platform_type == "AWS"


def test_read_mtu_record():
    assert read_mtu_record(InMemoryCluster()) is None
    assert read_mtu_record(InMemoryCluster([_mtu_record("9001")])) == 9001
    assert read_mtu_record(InMemoryCluster([_mtu_record("jumbo")])) is None


def test_should_probe_without_record():
    infra = InfraStatus(nodes=[NodeInfo(name="worker-0")])

    assert should_probe(None, DesiredSpec(), None, infra) is True
    assert should_probe(None, DesiredSpec(), 1500, infra) is False


def test_should_not_probe_hosted_control_plane():
    infra = InfraStatus(hosted_control_plane=True)

    assert should_probe(None, DesiredSpec(), None, infra) is False


def test_should_probe_on_mtu_relevant_change():
    previous = DesiredSpec.from_manifest({"defaultNetwork": {"type": "OpenShiftSDN"}})
    candidate = DesiredSpec.from_manifest({"defaultNetwork": {"type": "OVNKubernetes"}})

    assert should_probe(previous, candidate, 1500, InfraStatus()) is True


def test_job_prober_requires_schedulable_nodes():
    prober = JobMTUProber(InMemoryCluster())

    with pytest.raises(ProbeError):
        prober.probe(InfraStatus(nodes=[NodeInfo(name="worker-0", schedulable=False)]))


def test_job_prober_waits_for_record_and_cleans_up():
    client = InMemoryCluster([_mtu_record("1400")])
    clock = FakeClock()
    polls = []

    def sleep(seconds):
        polls.append(seconds)
        # The job reports back after the first poll.
        client.apply(_mtu_record("9001"), "mtu-prober")
        clock.sleep(seconds)

    prober = JobMTUProber(client, sleep=sleep, clock=clock)

    mtu = prober.probe(InfraStatus(nodes=[NodeInfo(name="worker-0")]))

    assert mtu == 9001
    assert len(polls) == 1
    assert client.list("batch/v1", "Job") == []


def test_job_prober_times_out():
    client = InMemoryCluster()
    clock = FakeClock()
    prober = JobMTUProber(client, timeout=10, poll_interval=2, sleep=clock.sleep, clock=clock)

    with pytest.raises(ProbeError) as exc_info:
        prober.probe(InfraStatus(nodes=[NodeInfo(name="worker-0")]))

    assert "did not report" in exc_info.value.message
    assert client.list("batch/v1", "Job") == []


class LaunchRecordingCluster(InMemoryCluster):
    """In-memory cluster noting whether a prober job already existed at launch."""

    def __init__(self, objects=None):
        super().__init__(objects)
        self.launches = []

    def apply(self, obj, field_manager):
        if obj.kind == "Job":
            self.launches.append(bool(self.list("batch/v1", "Job", obj.namespace)))
        return super().apply(obj, field_manager)


def test_job_prober_relaunches_after_timeout():
    client = LaunchRecordingCluster()
    clock = FakeClock()
    prober = JobMTUProber(client, timeout=4, poll_interval=2, sleep=clock.sleep, clock=clock)
    infra = InfraStatus(nodes=[NodeInfo(name="worker-0")])

    for _ in range(2):
        with pytest.raises(ProbeError):
            prober.probe(infra)

    assert client.launches == [False, False]
    assert client.list("batch/v1", "Job") == []


def test_job_prober_replaces_leftover_job():
    leftover = KubeObject(
        api_version="batch/v1",
        kind="Job",
        metadata=ObjectMeta(name=names.MTU_PROBER_JOB, namespace=names.APPLIED_NAMESPACE),
        attributes={"status": {"succeeded": 1}},
    )
    client = LaunchRecordingCluster([leftover])
    clock = FakeClock()

    def sleep(seconds):
        client.apply(_mtu_record("9001"), "mtu-prober")
        clock.sleep(seconds)

    prober = JobMTUProber(client, sleep=sleep, clock=clock)

    assert prober.probe(InfraStatus(nodes=[NodeInfo(name="worker-0")])) == 9001
    assert client.launches == [False]
