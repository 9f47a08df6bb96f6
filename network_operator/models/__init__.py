"""Data models for network configuration, cluster facts and API objects."""

from network_operator.models.cluster import (
    BootstrapResult,
    ClusterNetworkConfig,
    ClusterNetworkStatus,
    InfraStatus,
    NodeInfo,
    ObjectReference,
    RelatedClusterObject,
)
from network_operator.models.objects import (
    KubeObject,
    MachineConfigObject,
    ObjectMeta,
    OwnerReference,
    WorkloadObject,
)
from network_operator.models.spec import (
    ClusterNetworkEntry,
    DesiredSpec,
    FieldPolicy,
    MigrationFeatures,
    Mutability,
    NetworkMigration,
)

__all__ = [
    "BootstrapResult",
    "ClusterNetworkConfig",
    "ClusterNetworkEntry",
    "ClusterNetworkStatus",
    "DesiredSpec",
    "FieldPolicy",
    "InfraStatus",
    "KubeObject",
    "MachineConfigObject",
    "MigrationFeatures",
    "Mutability",
    "NetworkMigration",
    "NodeInfo",
    "ObjectMeta",
    "ObjectReference",
    "OwnerReference",
    "RelatedClusterObject",
    "WorkloadObject",
]
