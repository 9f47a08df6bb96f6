"""Data models for cluster-wide network facts and infrastructure state."""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from network_operator.models.spec import ClusterNetworkEntry


class ClusterModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ClusterNetworkConfig(ClusterModel):
    """Authoritative cluster network facts (the cluster-config object's spec)."""

    cluster_network: list[ClusterNetworkEntry] = Field(default_factory=list)
    service_network: list[str] = Field(default_factory=list)
    network_type: str = ""
    external_ip: dict | None = Field(default=None, alias="externalIP")
    network_diagnostics: dict | None = None

    @classmethod
    def from_manifest(cls, data: dict | None) -> "ClusterNetworkConfig":
        """Parse from the object's spec section."""
        return cls.model_validate(data or {})


class ClusterNetworkStatus(ClusterModel):
    """Status written back onto the cluster-config object."""

    cluster_network: list[ClusterNetworkEntry] = Field(default_factory=list)
    service_network: list[str] = Field(default_factory=list)
    network_type: str = ""
    cluster_network_mtu: int | None = Field(default=None, alias="clusterNetworkMTU")
    migration: dict | None = None

    def to_manifest(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class NodeInfo(BaseModel):
    """A node as seen by the bootstrap probe."""

    name: str
    labels: dict[str, str] = Field(default_factory=dict)
    schedulable: bool = True


class InfraStatus(BaseModel):
    """Per-cycle infrastructure facts. Never persisted."""

    platform_type: str = "None"
    platform_region: str = ""
    infra_name: str = ""
    api_server_url: str = ""
    hosted_control_plane: bool = False
    nodes: list[NodeInfo] = Field(default_factory=list)

    @property
    def schedulable_nodes(self) -> list[NodeInfo]:
        return [n for n in self.nodes if n.schedulable]


class BootstrapResult(BaseModel):
    """Output of the bootstrap collaborator, handed on to render and status."""

    infra: InfraStatus
    extra: dict = Field(default_factory=dict)


class ObjectReference(BaseModel):
    """Reference to an object owned by the configuration."""

    model_config = ConfigDict(frozen=True)

    group: str = ""
    resource: str
    name: str
    namespace: str = ""


class RelatedClusterObject(ObjectReference):
    """Reference to an object that lives in another cluster."""

    cluster_name: str
