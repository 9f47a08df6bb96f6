"""Data models for the administrator-declared network configuration."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

OVN_KUBERNETES = "OVNKubernetes"
OPENSHIFT_SDN = "OpenShiftSDN"

# Implementations a migration may target.
MIGRATION_TARGETS = (OPENSHIFT_SDN, OVN_KUBERNETES)


class SpecModel(BaseModel):
    """Base for spec models: camelCase on the wire, unknown fields kept."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class ClusterNetworkEntry(SpecModel):
    """Pod address range and the per-node prefix carved out of it."""

    cidr: str
    host_prefix: int | None = None


class IPsecConfig(SpecModel):
    """IPsec settings; an empty object is the legacy spelling of mode Full."""

    mode: str | None = None


class GatewayConfig(SpecModel):
    routing_via_host: bool | None = None


class OVNKubernetesConfig(SpecModel):
    """OVN-Kubernetes implementation settings."""

    mtu: int | None = None
    geneve_port: int | None = None
    ipsec_config: IPsecConfig | None = None
    gateway_config: GatewayConfig | None = None
    v4_internal_subnet: str | None = None


class OpenShiftSDNConfig(SpecModel):
    """OpenShift SDN implementation settings."""

    mode: str | None = None
    vxlan_port: int | None = None
    mtu: int | None = None
    enable_unidling: bool | None = None


class DefaultNetwork(SpecModel):
    """The cluster's default pod network implementation."""

    type: str = ""
    ovn_kubernetes_config: OVNKubernetesConfig | None = None
    openshift_sdn_config: OpenShiftSDNConfig | None = Field(
        default=None, alias="openshiftSDNConfig"
    )


class AdditionalNetwork(SpecModel):
    name: str
    namespace: str = "default"
    type: str = "Raw"
    raw_cni_config: str | None = Field(default=None, alias="rawCNIConfig")


class KubeProxyConfig(SpecModel):
    iptables_sync_period: str | None = None
    bind_address: str | None = None
    proxy_arguments: dict[str, list[str]] = Field(default_factory=dict)


class MTUMigrationValues(SpecModel):
    from_: int | None = Field(default=None, alias="from")
    to: int | None = None


class MTUMigration(SpecModel):
    """MTU change in flight; network is the pod MTU, machine the host MTU."""

    network: MTUMigrationValues | None = None
    machine: MTUMigrationValues | None = None


class MigrationFeatures(SpecModel):
    """Per-feature migration switches. Unset means migrate."""

    egress_firewall: bool | None = None
    multicast: bool | None = None
    egress_ip: bool | None = Field(default=None, alias="egressIP")


class NetworkMigration(SpecModel):
    """Declared intent to move between network implementations."""

    network_type: str = ""
    mtu: MTUMigration | None = None
    features: MigrationFeatures | None = None


class DesiredSpec(SpecModel):
    """Administrator-facing network configuration (the singleton's spec)."""

    management_state: str = "Managed"
    log_level: str | None = None
    operator_log_level: str | None = None
    cluster_network: list[ClusterNetworkEntry] = Field(default_factory=list)
    service_network: list[str] = Field(default_factory=list)
    default_network: DefaultNetwork = Field(default_factory=DefaultNetwork)
    additional_networks: list[AdditionalNetwork] = Field(default_factory=list)
    disable_multi_network: bool | None = None
    use_multi_network_policy: bool | None = None
    deploy_kube_proxy: bool | None = None
    kube_proxy_config: KubeProxyConfig | None = None
    disable_network_diagnostics: bool | None = None
    migration: NetworkMigration | None = None

    @field_validator("management_state")
    @classmethod
    def validate_management_state(cls, v: str) -> str:
        """Validate management state is one of the allowed values."""
        allowed = ["Managed", "Unmanaged", "Force", "Removed"]
        if v not in allowed:
            raise ValueError(f"managementState must be one of {allowed}, got '{v}'")
        return v

    @property
    def network_type(self) -> str:
        return self.default_network.type

    def implementation_mtu(self) -> int | None:
        """MTU of the active implementation, if one is configured."""
        dn = self.default_network
        if dn.type == OVN_KUBERNETES and dn.ovn_kubernetes_config:
            return dn.ovn_kubernetes_config.mtu
        if dn.type == OPENSHIFT_SDN and dn.openshift_sdn_config:
            return dn.openshift_sdn_config.mtu
        return None

    def has_active_migration(self) -> bool:
        return self.migration is not None and bool(
            self.migration.network_type or self.migration.mtu
        )

    def to_manifest(self) -> dict:
        """Convert to the wire (camelCase) representation."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")

    @classmethod
    def from_manifest(cls, data: dict | None) -> "DesiredSpec":
        """Parse from the wire representation."""
        return cls.model_validate(data or {})


class Mutability(str, Enum):
    """How a spec field may change once a configuration has been applied."""

    IMMUTABLE = "immutable"
    MIRRORED = "mirrored"
    FREE = "free"


class FieldPolicy(BaseModel):
    """Change policy for one spec field path.

    covered_by names the migration kinds that permit a change to an
    immutable field. append_only lets a mirrored list grow but never
    rewrite its existing entries.
    """

    model_config = ConfigDict(frozen=True)

    mutability: Mutability
    covered_by: tuple[str, ...] = ()
    append_only: bool = False


_IMMUTABLE = FieldPolicy(mutability=Mutability.IMMUTABLE)
_IMPLEMENTATION = FieldPolicy(mutability=Mutability.IMMUTABLE, covered_by=("network_type",))
_IMPLEMENTATION_MTU = FieldPolicy(
    mutability=Mutability.IMMUTABLE, covered_by=("network_type", "mtu")
)
_FREE = FieldPolicy(mutability=Mutability.FREE)

# Keyed by dotted field path; the longest matching prefix wins.
# Paths without an entry are unclassified and never allowed to change.
FIELD_POLICIES: dict[str, FieldPolicy] = {
    "management_state": _FREE,
    "log_level": _FREE,
    "operator_log_level": _FREE,
    "cluster_network": FieldPolicy(mutability=Mutability.MIRRORED, append_only=True),
    "service_network": FieldPolicy(mutability=Mutability.MIRRORED),
    "default_network.type": _IMPLEMENTATION,
    "default_network.ovn_kubernetes_config": _IMPLEMENTATION,
    "default_network.ovn_kubernetes_config.mtu": _IMPLEMENTATION_MTU,
    "default_network.ovn_kubernetes_config.ipsec_config": _FREE,
    "default_network.ovn_kubernetes_config.gateway_config": _FREE,
    "default_network.openshift_sdn_config": _IMPLEMENTATION,
    "default_network.openshift_sdn_config.mtu": _IMPLEMENTATION_MTU,
    "default_network.openshift_sdn_config.enable_unidling": _FREE,
    "additional_networks": _FREE,
    "disable_multi_network": _IMMUTABLE,
    "use_multi_network_policy": _FREE,
    "deploy_kube_proxy": _FREE,
    "kube_proxy_config": _FREE,
    "disable_network_diagnostics": _FREE,
    "migration": _FREE,
}

# Fields whose change requires a fresh host MTU measurement.
MTU_RELEVANT_FIELDS = (
    "default_network.type",
    "migration.mtu",
)


def policy_for(path: str) -> FieldPolicy | None:
    """Look up the change policy governing a dotted field path."""
    candidate = path
    while candidate:
        policy = FIELD_POLICIES.get(candidate)
        if policy is not None:
            return policy
        if "." not in candidate:
            return None
        candidate = candidate.rsplit(".", 1)[0]
    return None


def flatten_spec(spec: DesiredSpec | None) -> dict:
    """Flatten a spec into dotted field paths; lists and scalars are leaves."""
    if spec is None:
        return {}
    flat: dict = {}

    def walk(prefix: str, value) -> None:
        if isinstance(value, dict):
            for key, sub in value.items():
                walk(f"{prefix}.{key}" if prefix else key, sub)
        else:
            flat[prefix] = value

    walk("", spec.model_dump(exclude_none=True, mode="json"))
    return flat
