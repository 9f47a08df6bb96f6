"""Render collaborator contract, manifest-directory renderer and applied record.

Rendering expands a desired spec into an ordered list of API objects.
The engine treats it as a black box behind the Renderer protocol; the
ManifestRenderer shipped here expands ``${Name}`` placeholders in the
YAML templates found under the manifest root.
"""

import json
from pathlib import Path
from string import Template
from typing import Protocol

import yaml

from network_operator import names
from network_operator.client import ClusterClient
from network_operator.exceptions import NotFoundError, RenderError
from network_operator.logging_config import get_logger
from network_operator.models.cluster import BootstrapResult, ClusterNetworkConfig
from network_operator.models.objects import KubeObject, ObjectMeta
from network_operator.models.spec import OPENSHIFT_SDN, OVN_KUBERNETES, DesiredSpec

logger = get_logger(__name__)

APPLIED_DATA_KEY = "applied"


class Renderer(Protocol):
    def render(
        self,
        spec: DesiredSpec,
        cluster_config: ClusterNetworkConfig,
        manifest_root: str,
        client: ClusterClient,
        feature_gates: dict[str, bool],
        bootstrap: BootstrapResult,
    ) -> tuple[list[KubeObject], bool]:
        """Return the ordered objects and whether rendering is still progressing.

        Raises RenderError on failure.
        """
        ...


def template_data(
    spec: DesiredSpec,
    cluster_config: ClusterNetworkConfig,
    bootstrap: BootstrapResult,
    feature_gates: dict[str, bool],
) -> dict[str, str]:
    """Values available to manifest templates."""
    infra = bootstrap.infra
    first_pool = spec.cluster_network[0] if spec.cluster_network else None
    data = {
        "NetworkType": spec.network_type,
        "MTU": str(spec.implementation_mtu() or ""),
        "ClusterNetworkCIDR": first_pool.cidr if first_pool else "",
        "HostPrefix": str(first_pool.host_prefix or "") if first_pool else "",
        "ServiceNetworkCIDR": spec.service_network[0] if spec.service_network else "",
        "AppliedNamespace": names.APPLIED_NAMESPACE,
        "InfraName": infra.infra_name,
        "PlatformType": infra.platform_type,
        "PlatformRegion": infra.platform_region,
        "APIServerURL": infra.api_server_url,
        "ExternalIPPolicy": json.dumps(cluster_config.external_ip or {}, sort_keys=True),
        "HyperShiftEnabled": "true" if infra.hosted_control_plane else "false",
        "LogLevel": spec.log_level or "Normal",
    }
    ovn = spec.default_network.ovn_kubernetes_config
    if ovn is not None:
        data["GenevePort"] = str(ovn.geneve_port or "")
        data["V4InternalSubnet"] = ovn.v4_internal_subnet or ""
        data["IPsecMode"] = ovn.ipsec_config.mode if ovn.ipsec_config else "Disabled"
    sdn = spec.default_network.openshift_sdn_config
    if sdn is not None:
        data["VXLANPort"] = str(sdn.vxlan_port or "")
        data["SDNMode"] = sdn.mode or ""
    for gate, enabled in feature_gates.items():
        data[f"FeatureGate{gate}"] = "true" if enabled else "false"
    return data


class ManifestRenderer:
    """Renders YAML templates from manifest_root/network/<component>/."""

    def components(self, spec: DesiredSpec) -> list[str]:
        """Template directories to render, in apply order."""
        components = ["common"]
        if not spec.disable_multi_network:
            components.append("multus")
        if spec.network_type == OVN_KUBERNETES:
            components.append("ovn-kubernetes")
        elif spec.network_type == OPENSHIFT_SDN:
            components.append("openshift-sdn")
        if spec.deploy_kube_proxy:
            components.append("kube-proxy")
        return components

    def render_dir(self, directory: Path, data: dict[str, str]) -> list[KubeObject]:
        objects = []
        for path in sorted(directory.glob("*.yaml")):
            try:
                text = Template(path.read_text()).safe_substitute(data)
                for manifest in yaml.safe_load_all(text):
                    if manifest:
                        objects.append(KubeObject.from_manifest(manifest))
            except (OSError, yaml.YAMLError, KeyError, ValueError) as e:
                raise RenderError(f"Failed to render {path}: {e}") from e
        return objects

    def render(
        self,
        spec: DesiredSpec,
        cluster_config: ClusterNetworkConfig,
        manifest_root: str,
        client: ClusterClient,
        feature_gates: dict[str, bool],
        bootstrap: BootstrapResult,
    ) -> tuple[list[KubeObject], bool]:
        root = Path(manifest_root) / "network"
        if not root.is_dir():
            raise RenderError(
                f"Manifest directory not found: {root}",
                "Set manifest_root in the operator settings",
            )

        data = template_data(spec, cluster_config, bootstrap, feature_gates)
        objects: list[KubeObject] = []
        for component in self.components(spec):
            directory = root / component
            if not directory.is_dir():
                logger.debug(f"No templates for component {component}")
                continue
            rendered = self.render_dir(directory, data)
            logger.debug(f"Rendered {len(rendered)} objects for {component}")
            objects.extend(rendered)

        # While an MTU migration is in flight nodes are still being rolled out.
        progressing = spec.migration is not None and spec.migration.mtu is not None
        return objects, progressing


def applied_configuration(
    spec: DesiredSpec, name: str = names.OPERATOR_CONFIG, resource_version: str = ""
) -> KubeObject:
    """Build the record of the configuration being applied this cycle.

    Passing the resource version read at cycle start makes the write fail
    with a conflict if another writer replaced the record meanwhile.
    """
    try:
        payload = json.dumps(spec.to_manifest(), sort_keys=True)
    except (TypeError, ValueError) as e:
        raise RenderError(f"Failed to serialize applied configuration: {e}") from e
    return KubeObject(
        api_version="v1",
        kind="ConfigMap",
        metadata=ObjectMeta(
            name=names.APPLIED_PREFIX + name,
            namespace=names.APPLIED_NAMESPACE,
            resource_version=resource_version,
        ),
        attributes={"data": {APPLIED_DATA_KEY: payload}},
    )


def read_applied_record(
    client: ClusterClient, name: str = names.OPERATOR_CONFIG
) -> tuple[DesiredSpec | None, str]:
    """Read the last applied configuration and the record's resource version.

    Returns (None, "") when nothing was applied yet.

    Raises:
        ClusterApiError: If the record cannot be read
        ValueError: If the record is corrupt
    """
    try:
        record = client.get("v1", "ConfigMap", names.APPLIED_PREFIX + name, names.APPLIED_NAMESPACE)
    except NotFoundError:
        return None, ""
    payload = (record.attributes.get("data") or {}).get(APPLIED_DATA_KEY)
    if not payload:
        return None, record.metadata.resource_version
    return DesiredSpec.from_manifest(json.loads(payload)), record.metadata.resource_version


def get_applied_configuration(
    client: ClusterClient, name: str = names.OPERATOR_CONFIG
) -> DesiredSpec | None:
    """Read the last applied configuration, None if nothing was applied yet."""
    spec, _ = read_applied_record(client, name)
    return spec
