"""Cluster client contract and an in-memory implementation.

The engine talks to the cluster only through ClusterClient. InMemoryCluster
implements it with optimistic concurrency on resourceVersion, so offline
cycles (state files, tests) behave like a live API server.
"""

from __future__ import annotations

import copy
import itertools
import threading
import uuid
from typing import Protocol

from network_operator.exceptions import ConflictError, NotFoundError
from network_operator.logging_config import get_logger
from network_operator.models.objects import KubeObject, plural_resource

logger = get_logger(__name__)


class ClusterClient(Protocol):
    """Operations the operator needs from a cluster API."""

    def get(self, api_version: str, kind: str, name: str, namespace: str = "") -> KubeObject:
        """Fetch one object. Raises NotFoundError when absent."""
        ...

    def list(
        self,
        api_version: str,
        kind: str,
        namespace: str = "",
        label_selector: dict[str, str] | None = None,
    ) -> list[KubeObject]:
        """List objects of a kind, optionally within a namespace."""
        ...

    def apply(self, obj: KubeObject, field_manager: str) -> bool:
        """Create or merge-update an object. Returns True when anything changed.

        Raises ConflictError when obj carries a stale resourceVersion.
        """
        ...

    def update(self, obj: KubeObject) -> KubeObject:
        """Replace an object guarded by its resourceVersion."""
        ...

    def delete(self, api_version: str, kind: str, name: str, namespace: str = "") -> None:
        """Delete one object. Raises NotFoundError when absent."""
        ...

    def resource_for(self, api_version: str, kind: str) -> str:
        """Plural resource name of a kind."""
        ...


def _merge(existing: dict, desired: dict) -> dict:
    """Overlay desired onto existing; nested maps merge, everything else replaces."""
    merged = copy.deepcopy(existing)
    for key, value in desired.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _prune(existing: dict, previous: dict, desired: dict) -> dict:
    """Drop from existing the fields a manager applied before and no longer applies."""
    pruned = copy.deepcopy(existing)
    for key, value in previous.items():
        if key not in desired:
            pruned.pop(key, None)
        elif (
            isinstance(value, dict)
            and isinstance(desired[key], dict)
            and isinstance(pruned.get(key), dict)
        ):
            pruned[key] = _prune(pruned[key], value, desired[key])
    return pruned


class InMemoryCluster:
    """Thread-safe in-memory object store speaking the ClusterClient contract.

    Like server-side apply, each field manager owns what it last applied:
    fields it drops from a later apply are removed from the object.
    """

    def __init__(
        self,
        objects: list[KubeObject] | None = None,
        applied_fields: list[dict] | None = None,
    ):
        self._lock = threading.RLock()
        self._objects: dict[tuple[str, str, str, str], KubeObject] = {}
        # (object key, field manager) -> attributes that manager last applied
        self._applied: dict[tuple[tuple[str, str, str, str], str], dict] = {}
        self._versions = itertools.count(1)
        self.write_count = 0
        for obj in objects or []:
            self.create(obj)
        for entry in applied_fields or []:
            key = (entry["apiVersion"], entry["kind"], entry.get("namespace", ""), entry["name"])
            self._applied[(key, entry["manager"])] = copy.deepcopy(entry.get("fields") or {})

    def create(self, obj: KubeObject) -> KubeObject:
        """Insert a new object, assigning uid and resourceVersion."""
        with self._lock:
            stored = obj.model_copy(deep=True)
            stored.metadata.uid = stored.metadata.uid or str(uuid.uuid4())
            stored.metadata.resource_version = str(next(self._versions))
            self._objects[stored.key] = stored
            self.write_count += 1
            return stored.model_copy(deep=True)

    def get(self, api_version: str, kind: str, name: str, namespace: str = "") -> KubeObject:
        with self._lock:
            obj = self._objects.get((api_version, kind, namespace, name))
            if obj is None:
                raise NotFoundError(f'{kind} "{name}" not found')
            return obj.model_copy(deep=True)

    def list(
        self,
        api_version: str,
        kind: str,
        namespace: str = "",
        label_selector: dict[str, str] | None = None,
    ) -> list[KubeObject]:
        with self._lock:
            found = []
            for (av, k, ns, _), obj in sorted(self._objects.items()):
                if av != api_version or k != kind:
                    continue
                if namespace and ns != namespace:
                    continue
                labels = obj.metadata.labels
                selector = label_selector or {}
                if any(labels.get(lk) != lv for lk, lv in selector.items()):
                    continue
                found.append(obj.model_copy(deep=True))
            return found

    def apply(self, obj: KubeObject, field_manager: str) -> bool:
        with self._lock:
            existing = self._objects.get(obj.key)
            if existing is None:
                logger.debug(f"Creating {obj.describe()} as {field_manager}")
                self.create(obj)
                self._applied[(obj.key, field_manager)] = copy.deepcopy(obj.attributes)
                return True

            wanted_rv = obj.metadata.resource_version
            if wanted_rv and wanted_rv != existing.metadata.resource_version:
                raise ConflictError(
                    f"Operation cannot be fulfilled on {obj.describe()}: "
                    "the object has been modified; please apply your changes to the latest version"
                )

            previous = self._applied.get((obj.key, field_manager), {})
            merged = existing.model_copy(deep=True)
            merged.attributes = _merge(
                _prune(existing.attributes, previous, obj.attributes), obj.attributes
            )
            self._applied[(obj.key, field_manager)] = copy.deepcopy(obj.attributes)
            merged.metadata.labels = {**existing.metadata.labels, **obj.metadata.labels}
            merged.metadata.annotations = {
                **existing.metadata.annotations,
                **obj.metadata.annotations,
            }
            if obj.metadata.owner_references:
                merged.metadata.owner_references = [
                    r.model_copy() for r in obj.metadata.owner_references
                ]

            if merged == existing:
                return False

            merged.metadata.resource_version = str(next(self._versions))
            self._objects[obj.key] = merged
            self.write_count += 1
            logger.debug(f"Updated {obj.describe()} as {field_manager}")
            return True

    def update(self, obj: KubeObject) -> KubeObject:
        with self._lock:
            existing = self._objects.get(obj.key)
            if existing is None:
                raise NotFoundError(f"{obj.kind} \"{obj.name}\" not found")
            wanted_rv = obj.metadata.resource_version
            if wanted_rv and wanted_rv != existing.metadata.resource_version:
                raise ConflictError(
                    f"Operation cannot be fulfilled on {obj.describe()}: "
                    "the object has been modified; please apply your changes to the latest version"
                )
            stored = obj.model_copy(deep=True)
            stored.metadata.uid = existing.metadata.uid
            stored.metadata.resource_version = existing.metadata.resource_version
            if stored == existing:
                return stored.model_copy(deep=True)
            stored.metadata.resource_version = str(next(self._versions))
            self._objects[obj.key] = stored
            self.write_count += 1
            return stored.model_copy(deep=True)

    def delete(self, api_version: str, kind: str, name: str, namespace: str = "") -> None:
        with self._lock:
            key = (api_version, kind, namespace, name)
            if self._objects.pop(key, None) is None:
                raise NotFoundError(f'{kind} "{name}" not found')
            self._applied = {k: v for k, v in self._applied.items() if k[0] != key}
            self.write_count += 1

    def resource_for(self, api_version: str, kind: str) -> str:
        return plural_resource(kind)

    def objects(self) -> list[KubeObject]:
        """Snapshot of every stored object, in a stable order."""
        with self._lock:
            return [obj.model_copy(deep=True) for _, obj in sorted(self._objects.items())]

    def applied_fields(self) -> list[dict]:
        """What each field manager last applied, in the form the constructor accepts."""
        with self._lock:
            return [
                {
                    "apiVersion": key[0],
                    "kind": key[1],
                    "namespace": key[2],
                    "name": key[3],
                    "manager": manager,
                    "fields": copy.deepcopy(fields),
                }
                for (key, manager), fields in sorted(self._applied.items())
            ]
