"""Config merger: builds the fully defaulted desired spec.

Precedence, highest first:
1. fields set on the live desired spec,
2. fields mirrored from the cluster network config (these win over 1 for
   the fields they govern),
3. computed defaults: values carried over from the applied snapshot, then
   the recorded host MTU, then static defaults.

Everything here is a pure function of its inputs.
"""

from network_operator.models.cluster import ClusterNetworkConfig
from network_operator.models.spec import (
    OPENSHIFT_SDN,
    OVN_KUBERNETES,
    DesiredSpec,
    GatewayConfig,
    KubeProxyConfig,
    OpenShiftSDNConfig,
    OVNKubernetesConfig,
)

GENEVE_OVERHEAD = 100
IPSEC_OVERHEAD = 46
VXLAN_OVERHEAD = 50

DEFAULT_GENEVE_PORT = 6081
DEFAULT_VXLAN_PORT = 4789
DEFAULT_V4_INTERNAL_SUBNET = "100.64.0.0/16"
DEFAULT_SDN_MODE = "NetworkPolicy"
DEFAULT_LOG_LEVEL = "Normal"

_NETWORK_TYPE_SPELLINGS = {
    OVN_KUBERNETES.lower(): OVN_KUBERNETES,
    OPENSHIFT_SDN.lower(): OPENSHIFT_SDN,
}

_SDN_MODE_SPELLINGS = {
    "networkpolicy": "NetworkPolicy",
    "multitenant": "Multitenant",
    "subnet": "Subnet",
}


def canonical_network_type(value: str) -> str:
    """Return the canonical spelling of a known network type."""
    return _NETWORK_TYPE_SPELLINGS.get(value.lower(), value) if value else value


def canonicalize(spec: DesiredSpec) -> DesiredSpec:
    """Rewrite deprecated spellings into their canonical form."""
    spec = spec.model_copy(deep=True)
    dn = spec.default_network
    dn.type = canonical_network_type(dn.type)

    if spec.migration is not None:
        spec.migration.network_type = canonical_network_type(spec.migration.network_type)

    if dn.openshift_sdn_config and dn.openshift_sdn_config.mode:
        mode = dn.openshift_sdn_config.mode
        dn.openshift_sdn_config.mode = _SDN_MODE_SPELLINGS.get(mode.lower(), mode)

    # An empty ipsecConfig is the legacy way of asking for full IPsec.
    ovn = dn.ovn_kubernetes_config
    if ovn and ovn.ipsec_config is not None and ovn.ipsec_config.mode is None:
        ovn.ipsec_config.mode = "Full"

    return spec


def mirror_cluster_config(spec: DesiredSpec, cluster_config: ClusterNetworkConfig) -> DesiredSpec:
    """Copy the fields the cluster network config is authoritative for."""
    spec = spec.model_copy(deep=True)
    spec.cluster_network = [e.model_copy() for e in cluster_config.cluster_network]
    spec.service_network = list(cluster_config.service_network)
    if cluster_config.network_type:
        spec.default_network.type = canonical_network_type(cluster_config.network_type)
    return spec


def _carry(value, previous_value, default):
    if value is not None:
        return value
    if previous_value is not None:
        return previous_value
    return default


def _host_mtu_default(host_mtu: int | None, overhead: int) -> int | None:
    if not host_mtu:
        return None
    return host_mtu - overhead


def fill_defaults(
    spec: DesiredSpec, previous: DesiredSpec | None, host_mtu: int | None = None
) -> DesiredSpec:
    """Fill every unset field.

    Args:
        spec: Spec to default (not modified)
        previous: Last applied spec; its values win over static defaults
        host_mtu: Recorded or probed host MTU, None when unknown

    Returns:
        A defaulted copy of spec
    """
    spec = spec.model_copy(deep=True)
    dn = spec.default_network

    if spec.log_level is None:
        spec.log_level = DEFAULT_LOG_LEVEL
    if spec.operator_log_level is None:
        spec.operator_log_level = DEFAULT_LOG_LEVEL
    spec.disable_multi_network = _carry(
        spec.disable_multi_network, previous.disable_multi_network if previous else None, False
    )
    if spec.use_multi_network_policy is None:
        spec.use_multi_network_policy = False
    if spec.disable_network_diagnostics is None:
        spec.disable_network_diagnostics = False

    same_type = previous is not None and previous.default_network.type == dn.type
    prev_dn = previous.default_network if same_type else None

    if dn.type == OVN_KUBERNETES:
        ovn = dn.ovn_kubernetes_config or OVNKubernetesConfig()
        prev = (prev_dn.ovn_kubernetes_config if prev_dn else None) or OVNKubernetesConfig()
        overhead = GENEVE_OVERHEAD
        if ovn.ipsec_config is not None and ovn.ipsec_config.mode == "Full":
            overhead += IPSEC_OVERHEAD
        ovn.mtu = _carry(ovn.mtu, prev.mtu, _host_mtu_default(host_mtu, overhead))
        ovn.geneve_port = _carry(ovn.geneve_port, prev.geneve_port, DEFAULT_GENEVE_PORT)
        ovn.v4_internal_subnet = _carry(
            ovn.v4_internal_subnet, prev.v4_internal_subnet, DEFAULT_V4_INTERNAL_SUBNET
        )
        if ovn.gateway_config is None:
            ovn.gateway_config = GatewayConfig(routing_via_host=False)
        elif ovn.gateway_config.routing_via_host is None:
            ovn.gateway_config.routing_via_host = False
        dn.ovn_kubernetes_config = ovn
    elif dn.type == OPENSHIFT_SDN:
        sdn = dn.openshift_sdn_config or OpenShiftSDNConfig()
        prev = (prev_dn.openshift_sdn_config if prev_dn else None) or OpenShiftSDNConfig()
        sdn.mode = _carry(sdn.mode, prev.mode, DEFAULT_SDN_MODE)
        sdn.vxlan_port = _carry(sdn.vxlan_port, prev.vxlan_port, DEFAULT_VXLAN_PORT)
        sdn.mtu = _carry(sdn.mtu, prev.mtu, _host_mtu_default(host_mtu, VXLAN_OVERHEAD))
        if sdn.enable_unidling is None:
            sdn.enable_unidling = True
        dn.openshift_sdn_config = sdn

    if spec.deploy_kube_proxy is None:
        # The built-in implementations ship their own service proxy.
        spec.deploy_kube_proxy = dn.type not in (OVN_KUBERNETES, OPENSHIFT_SDN)
    if spec.deploy_kube_proxy:
        kp = spec.kube_proxy_config or KubeProxyConfig()
        kp.bind_address = kp.bind_address or "0.0.0.0"
        kp.iptables_sync_period = kp.iptables_sync_period or "30s"
        spec.kube_proxy_config = kp

    return spec


def merge_config(
    live: DesiredSpec,
    cluster_config: ClusterNetworkConfig,
    applied: DesiredSpec | None,
    host_mtu: int | None = None,
) -> DesiredSpec:
    """Produce the fully defaulted desired spec.

    Args:
        live: Spec as fetched from the desired-config object
        cluster_config: Cluster network facts
        applied: Last applied spec, None before the first successful cycle
        host_mtu: Recorded or freshly probed host MTU

    Returns:
        The merged, canonical, defaulted spec
    """
    merged = mirror_cluster_config(canonicalize(live), cluster_config)
    previous = canonicalize(applied) if applied is not None else None
    return fill_defaults(merged, previous, host_mtu)


def upconvert_applied(
    applied: DesiredSpec | None, host_mtu: int | None = None
) -> DesiredSpec | None:
    """Default an older applied snapshot so it compares field-for-field with new specs."""
    if applied is None:
        return None
    canonical = canonicalize(applied)
    return fill_defaults(canonical, canonical, host_mtu)
