"""Pytest configuration and shared fixtures."""

from pathlib import Path

import pytest
from hypothesis import Verbosity, settings

from network_operator import names
from network_operator.client import InMemoryCluster
from network_operator.config import OperatorSettings
from network_operator.engine import ReconcileEngine
from network_operator.models.cluster import InfraStatus
from network_operator.models.objects import KubeObject
from network_operator.status import StatusManager

# Configure Hypothesis for property-based testing
settings.register_profile("default", max_examples=100, verbosity=Verbosity.normal)
settings.register_profile("ci", max_examples=1000, verbosity=Verbosity.verbose)
settings.register_profile("dev", max_examples=10, verbosity=Verbosity.verbose)

# Load the default profile
settings.load_profile("default")

BINDATA = Path(__file__).resolve().parent.parent / "bindata"


class FakeProber:
    """MTU prober that reports a fixed value and counts calls."""

    def __init__(self, mtu: int = 9001):
        self.mtu = mtu
        self.calls = 0

    def probe(self, infra: InfraStatus) -> int:
        self.calls += 1
        return self.mtu


def operator_config(spec: dict | None = None, name: str = names.OPERATOR_CONFIG) -> KubeObject:
    return KubeObject.from_manifest(
        {
            "apiVersion": names.OPERATOR_API_VERSION,
            "kind": names.OPERATOR_KIND,
            "metadata": {"name": name},
            "spec": spec if spec is not None else {"defaultNetwork": {"type": "OVNKubernetes"}},
        }
    )


def cluster_config(network_type: str = "OVNKubernetes") -> KubeObject:
    return KubeObject.from_manifest(
        {
            "apiVersion": names.CLUSTER_CONFIG_API_VERSION,
            "kind": names.CLUSTER_CONFIG_KIND,
            "metadata": {"name": names.CLUSTER_CONFIG},
            "spec": {
                "clusterNetwork": [{"cidr": "10.128.0.0/14", "hostPrefix": 23}],
                "serviceNetwork": ["172.30.0.0/16"],
                "networkType": network_type,
            },
        }
    )


def infrastructure(hosted: bool = False) -> KubeObject:
    status = {
        "platformStatus": {"type": "AWS", "aws": {"region": "us-east-1"}},
        "infrastructureName": "test-x7k2p",
        "apiServerURL": "https://api.test.example.com:6443",
    }
    if hosted:
        status["controlPlaneTopology"] = "External"
    return KubeObject.from_manifest(
        {
            "apiVersion": names.CLUSTER_CONFIG_API_VERSION,
            "kind": names.INFRASTRUCTURE_KIND,
            "metadata": {"name": names.INFRASTRUCTURE_NAME},
            "status": status,
        }
    )


def node(name: str = "worker-0", labels: dict | None = None) -> KubeObject:
    return KubeObject.from_manifest(
        {
            "apiVersion": "v1",
            "kind": "Node",
            "metadata": {"name": name, "labels": labels or {"node-role.kubernetes.io/worker": ""}},
            "spec": {},
        }
    )


@pytest.fixture
def cluster():
    """In-memory cluster with the operator config, cluster config, infra and one node."""
    return InMemoryCluster([operator_config(), cluster_config(), infrastructure(), node()])


@pytest.fixture
def operator_settings():
    """Settings pointing at the shipped manifest templates."""
    return OperatorSettings(manifest_root=str(BINDATA))


@pytest.fixture
def prober():
    return FakeProber()


@pytest.fixture
def make_engine(operator_settings):
    """Factory building an engine and status manager around a cluster."""

    def _make(client, **kwargs):
        status = StatusManager(client)
        kwargs.setdefault("settings", operator_settings)
        return ReconcileEngine(client, status, **kwargs), status

    return _make


@pytest.fixture
def sample_spec_data():
    """Sample desired spec in wire form."""
    return {
        "clusterNetwork": [{"cidr": "10.128.0.0/14", "hostPrefix": 23}],
        "serviceNetwork": ["172.30.0.0/16"],
        "defaultNetwork": {"type": "OVNKubernetes"},
    }
