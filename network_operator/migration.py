"""Migration executor.

Moves per-namespace network features between the two built-in network
implementations while a migration is declared. Each feature conversion
is idempotent: it reads the source implementation's objects and applies
their counterparts, so re-running it after a partial failure is safe.
"""

from dataclasses import dataclass
from typing import Callable

from network_operator.client import ClusterClient
from network_operator.exceptions import ClusterApiError, MigrationError
from network_operator.logging_config import get_logger
from network_operator.models.objects import KubeObject, ObjectMeta
from network_operator.models.spec import (
    MIGRATION_TARGETS,
    OVN_KUBERNETES,
    DesiredSpec,
)

logger = get_logger(__name__)

SDN_API_VERSION = "network.openshift.io/v1"
OVN_API_VERSION = "k8s.ovn.org/v1"

SDN_MULTICAST_ANNOTATION = "netnamespace.network.openshift.io/multicast-enabled"
OVN_MULTICAST_ANNOTATION = "k8s.ovn.org/multicast-enabled"
NAMESPACE_NAME_LABEL = "kubernetes.io/metadata.name"

# Both implementations only honour a policy object with this name.
EGRESS_FIREWALL_NAME = "default"


@dataclass(frozen=True)
class MigrationTask:
    """What the declared migration asks for: target plus per-feature switches."""

    target: str
    egress_firewall: bool = True
    multicast: bool = True
    egress_ip: bool = True

    @classmethod
    def from_spec(cls, spec: DesiredSpec) -> "MigrationTask | None":
        """Build the task for spec, None when no implementation migration is declared.

        Raises:
            MigrationError: If the declared target is not a known implementation
        """
        migration = spec.migration
        if migration is None or not migration.network_type:
            return None
        if migration.network_type not in MIGRATION_TARGETS:
            raise MigrationError(
                f"Invalid migration target {migration.network_type!r}",
                f"migration.networkType must be one of {', '.join(MIGRATION_TARGETS)}",
            )
        features = migration.features
        if features is None:
            return cls(target=migration.network_type)
        return cls(
            target=migration.network_type,
            egress_firewall=features.egress_firewall is not False,
            multicast=features.multicast is not False,
            egress_ip=features.egress_ip is not False,
        )

    def enabled_features(self) -> list[str]:
        return [name for name, _ in FEATURES if getattr(self, name)]


def _convert_rules(rules: list[dict], keep_ports: bool) -> list[dict]:
    converted = []
    for rule in rules:
        out = {"type": rule.get("type", "Deny"), "to": dict(rule.get("to") or {})}
        if keep_ports and rule.get("ports"):
            out["ports"] = rule["ports"]
        converted.append(out)
    return converted


def migrate_egress_firewall(target: str, client: ClusterClient, field_manager: str) -> int:
    """Convert egress policies into the target implementation's kind."""
    if target == OVN_KUBERNETES:
        source_version, source_kind = SDN_API_VERSION, "EgressNetworkPolicy"
        dest_version, dest_kind = OVN_API_VERSION, "EgressFirewall"
    else:
        source_version, source_kind = OVN_API_VERSION, "EgressFirewall"
        dest_version, dest_kind = SDN_API_VERSION, "EgressNetworkPolicy"

    count = 0
    for policy in client.list(source_version, source_kind):
        rules = (policy.attributes.get("spec") or {}).get("egress") or []
        converted = KubeObject(
            api_version=dest_version,
            kind=dest_kind,
            metadata=ObjectMeta(name=EGRESS_FIREWALL_NAME, namespace=policy.namespace),
            # EgressNetworkPolicy has no port matching.
            attributes={
                "spec": {"egress": _convert_rules(rules, keep_ports=target == OVN_KUBERNETES)}
            },
        )
        client.apply(converted, field_manager)
        count += 1
    return count


def migrate_multicast(target: str, client: ClusterClient, field_manager: str) -> int:
    """Carry per-namespace multicast enablement over to the target implementation."""
    count = 0
    if target == OVN_KUBERNETES:
        for netns in client.list(SDN_API_VERSION, "NetNamespace"):
            if netns.metadata.annotations.get(SDN_MULTICAST_ANNOTATION) != "true":
                continue
            namespace = netns.attributes.get("netname") or netns.name
            client.apply(
                KubeObject(
                    api_version="v1",
                    kind="Namespace",
                    metadata=ObjectMeta(
                        name=namespace, annotations={OVN_MULTICAST_ANNOTATION: "true"}
                    ),
                ),
                field_manager,
            )
            count += 1
    else:
        for namespace in client.list("v1", "Namespace"):
            if namespace.metadata.annotations.get(OVN_MULTICAST_ANNOTATION) != "true":
                continue
            client.apply(
                KubeObject(
                    api_version=SDN_API_VERSION,
                    kind="NetNamespace",
                    metadata=ObjectMeta(
                        name=namespace.name, annotations={SDN_MULTICAST_ANNOTATION: "true"}
                    ),
                    attributes={"netname": namespace.name},
                ),
                field_manager,
            )
            count += 1
    return count


def migrate_egress_ip(target: str, client: ClusterClient, field_manager: str) -> int:
    """Convert per-namespace egress IP assignments."""
    count = 0
    if target == OVN_KUBERNETES:
        for netns in client.list(SDN_API_VERSION, "NetNamespace"):
            egress_ips = netns.attributes.get("egressIPs") or []
            if not egress_ips:
                continue
            namespace = netns.attributes.get("netname") or netns.name
            client.apply(
                KubeObject(
                    api_version=OVN_API_VERSION,
                    kind="EgressIP",
                    metadata=ObjectMeta(name=f"egressip-{namespace}"),
                    attributes={
                        "spec": {
                            "egressIPs": list(egress_ips),
                            "namespaceSelector": {
                                "matchLabels": {NAMESPACE_NAME_LABEL: namespace}
                            },
                        }
                    },
                ),
                field_manager,
            )
            count += 1
    else:
        for egress_ip in client.list(OVN_API_VERSION, "EgressIP"):
            spec = egress_ip.attributes.get("spec") or {}
            selector = (spec.get("namespaceSelector") or {}).get("matchLabels") or {}
            namespace = selector.get(NAMESPACE_NAME_LABEL)
            if not namespace:
                logger.warning(
                    f"Skipping EgressIP {egress_ip.name}: only single-namespace "
                    "selectors can be converted"
                )
                continue
            client.apply(
                KubeObject(
                    api_version=SDN_API_VERSION,
                    kind="NetNamespace",
                    metadata=ObjectMeta(name=namespace),
                    attributes={
                        "netname": namespace,
                        "egressIPs": list(spec.get("egressIPs") or []),
                    },
                ),
                field_manager,
            )
            count += 1
    return count


Converter = Callable[[str, ClusterClient, str], int]

# Run order; the first failing feature stops the rest for the cycle.
FEATURES: list[tuple[str, Converter]] = [
    ("egress_firewall", migrate_egress_firewall),
    ("multicast", migrate_multicast),
    ("egress_ip", migrate_egress_ip),
]


class MigrationExecutor:
    """Runs the feature conversions a declared migration enables."""

    def __init__(self, field_manager: str = "operconfig"):
        self.field_manager = field_manager

    def run(self, spec: DesiredSpec, client: ClusterClient) -> list[str]:
        """Run enabled conversions in order.

        Returns:
            Names of the features that were migrated, empty without a migration

        Raises:
            MigrationError: If the target is invalid or a conversion fails
        """
        task = MigrationTask.from_spec(spec)
        if task is None:
            return []

        completed = []
        for name in task.enabled_features():
            converter = dict(FEATURES)[name]
            try:
                count = converter(task.target, client, self.field_manager)
            except ClusterApiError as e:
                logger.error(f"Could not migrate {name} to {task.target}: {e}")
                raise MigrationError(
                    f"Could not migrate {name} to {task.target}: {e.message}", e.details
                ) from e
            logger.info(f"Migrated {count} {name} objects to {task.target}")
            completed.append(name)
        return completed

