"""Static validation of a desired spec.

Checks that need no knowledge of the previously applied configuration.
Every problem found is collected so the administrator sees all of them
at once.
"""

import ipaddress

from network_operator.exceptions import ValidationError
from network_operator.logging_config import get_logger
from network_operator.models.spec import OPENSHIFT_SDN, OVN_KUBERNETES, DesiredSpec

logger = get_logger(__name__)

MIN_MTU_V4 = 576
MIN_MTU_V6 = 1280
MAX_MTU = 65536

_SDN_MODES = ("NetworkPolicy", "Multitenant", "Subnet")
_IPSEC_MODES = ("Disabled", "External", "Full")


def _parse_network(value: str, what: str, errors: list[str]):
    try:
        return ipaddress.ip_network(value, strict=True)
    except ValueError as e:
        errors.append(f"{what} '{value}' is not a valid CIDR: {e}")
        return None


def _validate_ip_pools(spec: DesiredSpec, errors: list[str]) -> list:
    pools = []

    if not spec.cluster_network:
        errors.append("clusterNetwork cannot be empty")
    for entry in spec.cluster_network:
        net = _parse_network(entry.cidr, "clusterNetwork", errors)
        if net is None:
            continue
        if entry.host_prefix is not None:
            limit = 32 if net.version == 4 else 128
            if not net.prefixlen <= entry.host_prefix <= limit:
                errors.append(
                    f"clusterNetwork {entry.cidr}: hostPrefix {entry.host_prefix} must be "
                    f"between {net.prefixlen} and {limit}"
                )
        elif spec.network_type in (OVN_KUBERNETES, OPENSHIFT_SDN):
            errors.append(f"clusterNetwork {entry.cidr}: hostPrefix is required")
        pools.append(("clusterNetwork", net))

    if not spec.service_network:
        errors.append("serviceNetwork cannot be empty")
    if len(spec.service_network) > 2:
        errors.append("serviceNetwork must have at most one IPv4 and one IPv6 range")
    for cidr in spec.service_network:
        net = _parse_network(cidr, "serviceNetwork", errors)
        if net is not None:
            pools.append(("serviceNetwork", net))

    for i, (name_a, a) in enumerate(pools):
        for name_b, b in pools[i + 1 :]:
            if a.version == b.version and a.overlaps(b):
                errors.append(f"{name_a} {a} overlaps with {name_b} {b}")

    return pools


def _validate_mtu(mtu: int | None, has_v6: bool, errors: list[str]) -> None:
    if mtu is None:
        return
    minimum = MIN_MTU_V6 if has_v6 else MIN_MTU_V4
    if not minimum <= mtu <= MAX_MTU:
        errors.append(f"mtu {mtu} must be between {minimum} and {MAX_MTU}")


def _validate_port(port: int | None, what: str, errors: list[str]) -> None:
    if port is not None and not 1 <= port <= 65535:
        errors.append(f"{what} {port} must be between 1 and 65535")


def _validate_default_network(spec: DesiredSpec, has_v6: bool, errors: list[str]) -> None:
    dn = spec.default_network
    if not dn.type:
        errors.append("defaultNetwork.type must be set")
        return

    if dn.type == OVN_KUBERNETES:
        ovn = dn.ovn_kubernetes_config
        if ovn is None:
            return
        _validate_mtu(ovn.mtu, has_v6, errors)
        _validate_port(ovn.geneve_port, "genevePort", errors)
        if ovn.ipsec_config and ovn.ipsec_config.mode not in (None, *_IPSEC_MODES):
            errors.append(f"ipsecConfig.mode must be one of {list(_IPSEC_MODES)}")
        if ovn.v4_internal_subnet:
            internal = _parse_network(ovn.v4_internal_subnet, "v4InternalSubnet", errors)
            for entry in spec.cluster_network:
                try:
                    net = ipaddress.ip_network(entry.cidr)
                except ValueError:
                    continue
                if internal is not None and net.version == 4 and net.overlaps(internal):
                    errors.append(
                        f"v4InternalSubnet {internal} overlaps with clusterNetwork {entry.cidr}"
                    )
    elif dn.type == OPENSHIFT_SDN:
        sdn = dn.openshift_sdn_config
        if has_v6:
            errors.append("OpenShiftSDN does not support IPv6")
        if sdn is None:
            return
        _validate_mtu(sdn.mtu, has_v6, errors)
        _validate_port(sdn.vxlan_port, "vxlanPort", errors)
        if sdn.mode is not None and sdn.mode not in _SDN_MODES:
            errors.append(f"openshiftSDNConfig.mode must be one of {list(_SDN_MODES)}")


def _validate_additional_networks(spec: DesiredSpec, errors: list[str]) -> None:
    seen = set()
    for net in spec.additional_networks:
        key = (net.namespace, net.name)
        if key in seen:
            errors.append(f"additionalNetworks: duplicate {net.namespace}/{net.name}")
        seen.add(key)
        if net.type == "Raw" and not net.raw_cni_config:
            errors.append(f"additionalNetworks {net.name}: rawCNIConfig is required for type Raw")
    if spec.disable_multi_network and spec.additional_networks:
        errors.append("additionalNetworks cannot be set when disableMultiNetwork is true")
    if spec.disable_multi_network and spec.use_multi_network_policy:
        errors.append("useMultiNetworkPolicy requires multi-network support")


def _validate_kube_proxy(spec: DesiredSpec, errors: list[str]) -> None:
    if spec.deploy_kube_proxy is False and spec.kube_proxy_config is not None:
        if spec.kube_proxy_config.proxy_arguments:
            errors.append("kubeProxyConfig.proxyArguments set but deployKubeProxy is false")
    if spec.deploy_kube_proxy and spec.network_type == OVN_KUBERNETES:
        errors.append("deployKubeProxy is not supported with OVNKubernetes")


def collect_errors(spec: DesiredSpec) -> list[str]:
    """Return every validation problem found in spec."""
    errors: list[str] = []
    pools = _validate_ip_pools(spec, errors)
    has_v6 = any(net.version == 6 for _, net in pools)
    _validate_default_network(spec, has_v6, errors)
    _validate_additional_networks(spec, errors)
    _validate_kube_proxy(spec, errors)
    return errors


def validate_spec(spec: DesiredSpec) -> None:
    """Validate a desired spec.

    Raises:
        ValidationError: If any check fails; errors lists each problem
    """
    errors = collect_errors(spec)
    if errors:
        logger.debug(f"Spec validation found {len(errors)} problems")
        raise ValidationError("; ".join(errors), errors=errors)
