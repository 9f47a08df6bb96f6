"""Generic cluster objects and the typed variants the engine inspects.

Any API kind is represented by KubeObject: its (group, version, kind) tag
plus a free-form attribute map for everything outside metadata. Kinds the
engine reads directly (replicated workloads, machine configs) get a
typed subclass, picked by from_manifest().
"""

import copy
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from network_operator import names


class MetaModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OwnerReference(MetaModel):
    api_version: str
    kind: str
    name: str
    uid: str = ""
    controller: bool = True
    block_owner_deletion: bool = True


class ObjectMeta(MetaModel):
    name: str
    namespace: str = ""
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    owner_references: list[OwnerReference] = Field(default_factory=list)
    resource_version: str = ""
    uid: str = ""


class KubeObject(BaseModel):
    """An API object of any kind."""

    api_version: str
    kind: str
    metadata: ObjectMeta
    attributes: dict[str, Any] = Field(default_factory=dict)

    @property
    def group(self) -> str:
        return self.api_version.rsplit("/", 1)[0] if "/" in self.api_version else ""

    @property
    def version(self) -> str:
        return self.api_version.rsplit("/", 1)[-1]

    @property
    def gvk(self) -> tuple[str, str, str]:
        return (self.group, self.version, self.kind)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def key(self) -> tuple[str, str, str, str]:
        """Identity of the object in a cluster."""
        return (self.api_version, self.kind, self.metadata.namespace, self.metadata.name)

    @property
    def cluster_name(self) -> str:
        """Foreign cluster this object belongs to, or "" for the local one."""
        return self.metadata.annotations.get(names.CLUSTER_NAME_ANNOTATION, "")

    @property
    def ignore_errors(self) -> bool:
        return names.IGNORE_OBJECT_ERROR_ANNOTATION in self.metadata.annotations

    def describe(self) -> str:
        """Short human readable identity used in log and error messages."""
        gvk = f"{self.group}/{self.version}, Kind={self.kind}"
        return f"({gvk}) {self.metadata.namespace}/{self.metadata.name}"

    def set_owner(self, owner: OwnerReference) -> None:
        """Make owner the controlling owner, replacing any previous controller."""
        refs = [r for r in self.metadata.owner_references if not r.controller]
        refs.append(owner)
        self.metadata.owner_references = refs

    def to_manifest(self) -> dict:
        """Convert to the wire representation."""
        manifest = {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "metadata": self.metadata.model_dump(by_alias=True, exclude_defaults=True),
        }
        manifest.update(copy.deepcopy(self.attributes))
        return manifest

    @classmethod
    def from_manifest(cls, data: dict) -> "KubeObject":
        """Parse a wire representation into the matching variant."""
        data = copy.deepcopy(data)
        api_version = data.pop("apiVersion")
        kind = data.pop("kind")
        metadata = ObjectMeta.model_validate(data.pop("metadata", {}))
        group = api_version.rsplit("/", 1)[0] if "/" in api_version else ""
        version = api_version.rsplit("/", 1)[-1]
        target = TYPED_VARIANTS.get((group, version, kind), cls)
        if cls is not KubeObject and not issubclass(target, cls):
            target = cls
        return target(api_version=api_version, kind=kind, metadata=metadata, attributes=data)


class WorkloadObject(KubeObject):
    """One of the replicated workload kinds (DaemonSet, Deployment, StatefulSet)."""


class MachineConfigObject(KubeObject):
    """A machine config rendered for node-level network settings."""

    @property
    def role(self) -> str:
        return self.metadata.labels.get(names.MACHINE_CONFIG_ROLE_LABEL, "")


WORKLOAD_KINDS = ("DaemonSet", "Deployment", "StatefulSet")

TYPED_VARIANTS: dict[tuple[str, str, str], type[KubeObject]] = {
    ("apps", "v1", "DaemonSet"): WorkloadObject,
    ("apps", "v1", "Deployment"): WorkloadObject,
    ("apps", "v1", "StatefulSet"): WorkloadObject,
    ("machineconfiguration.openshift.io", "v1", "MachineConfig"): MachineConfigObject,
}


def plural_resource(kind: str) -> str:
    """Derive the lowercase plural resource name for a kind."""
    lower = kind.lower()
    if lower.endswith("y") and len(lower) > 1 and lower[-2] not in "aeiou":
        return lower[:-1] + "ies"
    if lower.endswith(("s", "x", "ch", "sh")):
        return lower + "es"
    return lower + "s"
