"""Status aggregator.

Keeps per-component degraded/progressing state for one reconciliation
cycle and publishes it onto the operator status object. Only keys written
during the cycle change; every other key keeps its persisted value.
"""

import threading
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel

from network_operator import names
from network_operator.client import ClusterClient
from network_operator.exceptions import ClusterApiError, NotFoundError, StatusError
from network_operator.logging_config import get_logger
from network_operator.models.cluster import ObjectReference, RelatedClusterObject
from network_operator.models.objects import KubeObject, MachineConfigObject, ObjectMeta

logger = get_logger(__name__)

STATUS_API_VERSION = "config.openshift.io/v1"
STATUS_KIND = "ClusterOperator"
MACHINE_CONFIG_POOL_API_VERSION = "machineconfiguration.openshift.io/v1"


class StatusKey(str, Enum):
    """Components reporting status."""

    OPERATOR_CONFIG = "OperatorConfig"
    OPERATOR_RENDER = "OperatorRender"
    MACHINE_CONFIG = "MachineConfig"


class ComponentCondition(BaseModel):
    """Degraded and progressing state of one component."""

    degraded: bool = False
    degraded_reason: str = ""
    degraded_message: str = ""
    progressing: bool = False
    progressing_reason: str = ""
    progressing_message: str = ""


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class StatusManager:
    """Aggregates component conditions and related objects into one status object."""

    def __init__(
        self,
        client: ClusterClient,
        name: str = names.CLUSTER_OPERATOR_NAME,
        field_manager: str = "operconfig",
    ):
        self.client = client
        self.name = name
        self.field_manager = field_manager
        self._lock = threading.Lock()
        self._pending: dict[str, dict] = {}
        self._related_objects: list[ObjectReference] | None = None
        self._related_cluster_objects: list[RelatedClusterObject] | None = None
        self._machine_configs: list[str] | None = None

    def begin_cycle(self) -> None:
        """Forget writes from the previous cycle."""
        with self._lock:
            self._pending = {}
            self._related_objects = None
            self._related_cluster_objects = None
            self._machine_configs = None

    def _write(self, key: StatusKey | str, **fields) -> None:
        with self._lock:
            self._pending.setdefault(str(getattr(key, "value", key)), {}).update(fields)

    def set_degraded(self, key: StatusKey | str, reason: str, message: str) -> None:
        logger.debug(f"Setting {getattr(key, 'value', key)} degraded: {reason}")
        self._write(key, degraded=True, degraded_reason=reason, degraded_message=message)

    def set_not_degraded(self, key: StatusKey | str) -> None:
        self._write(key, degraded=False, degraded_reason="", degraded_message="")

    def set_progressing(self, key: StatusKey | str, reason: str, message: str) -> None:
        self._write(key, progressing=True, progressing_reason=reason, progressing_message=message)

    def unset_progressing(self, key: StatusKey | str) -> None:
        self._write(key, progressing=False, progressing_reason="", progressing_message="")

    def set_related_objects(self, refs: list[ObjectReference]) -> None:
        """Replace the related object index."""
        with self._lock:
            self._related_objects = list(refs)

    def set_related_cluster_objects(self, refs: list[RelatedClusterObject]) -> None:
        """Replace the index of objects owned through another cluster."""
        with self._lock:
            self._related_cluster_objects = list(refs)

    def set_machine_configs(self, configs: list[MachineConfigObject]) -> None:
        """Track rendered machine configs and whether their pools picked them up.

        Raises:
            StatusError: If the machine config pools cannot be read
        """
        rolling_out = []
        for mc in configs:
            if not mc.role:
                continue
            try:
                pool = self.client.get(
                    MACHINE_CONFIG_POOL_API_VERSION, "MachineConfigPool", mc.role
                )
            except NotFoundError:
                rolling_out.append(mc.name)
                continue
            except ClusterApiError as e:
                raise StatusError(
                    f"Failed to read MachineConfigPool {mc.role}: {e.message}", e.details
                ) from e
            source = ((pool.attributes.get("status") or {}).get("configuration") or {}).get(
                "source"
            ) or []
            if not any(s.get("name") == mc.name for s in source):
                rolling_out.append(mc.name)

        with self._lock:
            self._machine_configs = sorted(mc.name for mc in configs)
        if rolling_out:
            self.set_progressing(
                StatusKey.MACHINE_CONFIG,
                "MachineConfigRollout",
                f"Waiting for machine config pools to roll out: {', '.join(sorted(rolling_out))}",
            )
        else:
            self.unset_progressing(StatusKey.MACHINE_CONFIG)

    def _load(self) -> KubeObject | None:
        try:
            return self.client.get(STATUS_API_VERSION, STATUS_KIND, self.name)
        except NotFoundError:
            return None

    def conditions(self) -> dict[str, ComponentCondition]:
        """Persisted per-component conditions with this cycle's writes overlaid."""
        existing = self._load()
        return self._merged_conditions(existing)

    def _merged_conditions(self, existing: KubeObject | None) -> dict[str, ComponentCondition]:
        extension = {}
        if existing is not None:
            extension = (existing.attributes.get("status") or {}).get("extension") or {}
        merged = {
            key: ComponentCondition.model_validate(value)
            for key, value in (extension.get("conditions") or {}).items()
        }
        with self._lock:
            pending = {k: dict(v) for k, v in self._pending.items()}
        for key, fields in pending.items():
            current = merged.get(key, ComponentCondition())
            merged[key] = current.model_copy(update=fields)
        return merged

    @staticmethod
    def _aggregate(
        conditions: dict[str, ComponentCondition], previous: list[dict]
    ) -> list[dict]:
        degraded = sorted(k for k, c in conditions.items() if c.degraded)
        progressing = sorted(k for k, c in conditions.items() if c.progressing)

        def condition(ctype: str, keys: list[str], field: str) -> dict:
            active = bool(keys)
            if active:
                reason = conditions[keys[0]].model_dump()[f"{field}_reason"]
                message = "\n".join(
                    f"{k}: {conditions[k].model_dump()[f'{field}_message']}" for k in keys
                )
            else:
                reason, message = "AsExpected", ""
            return {"type": ctype, "status": "True" if active else "False", "reason": reason,
                    "message": message}

        result = [
            condition("Degraded", degraded, "degraded"),
            condition("Progressing", progressing, "progressing"),
        ]
        result.append(
            {
                "type": "Available",
                "status": "False" if degraded else "True",
                "reason": "Degraded" if degraded else "AsExpected",
                "message": "",
            }
        )

        # Keep transition times stable unless the status actually flipped.
        previous_by_type = {c.get("type"): c for c in previous}
        for c in result:
            old = previous_by_type.get(c["type"])
            if old is not None and old.get("status") == c["status"] and old.get(
                "lastTransitionTime"
            ):
                c["lastTransitionTime"] = old["lastTransitionTime"]
            else:
                c["lastTransitionTime"] = _now()
        return result

    def publish(self) -> None:
        """Write the merged status to the status object.

        Raises:
            StatusError: If the status object cannot be read or written
        """
        try:
            existing = self._load()
            conditions = self._merged_conditions(existing)
            prior_status = (existing.attributes.get("status") or {}) if existing else {}

            with self._lock:
                related = self._related_objects
                related_cluster = self._related_cluster_objects
                machine_configs = self._machine_configs

            extension = dict(prior_status.get("extension") or {})
            extension["conditions"] = {k: c.model_dump() for k, c in sorted(conditions.items())}
            if related_cluster is not None:
                extension["relatedClusterObjects"] = [
                    r.model_dump(by_alias=False) for r in related_cluster
                ]
            if machine_configs is not None:
                extension["machineConfigs"] = machine_configs

            status = {
                "conditions": self._aggregate(conditions, prior_status.get("conditions") or []),
                "extension": extension,
                "relatedObjects": prior_status.get("relatedObjects") or [],
            }
            if related is not None:
                status["relatedObjects"] = [r.model_dump() for r in related]

            obj = KubeObject(
                api_version=STATUS_API_VERSION,
                kind=STATUS_KIND,
                metadata=ObjectMeta(name=self.name),
                attributes={"status": status},
            )
            if self.client.apply(obj, self.field_manager):
                logger.debug(f"Published status for {len(conditions)} components")
        except ClusterApiError as e:
            logger.error(f"Failed to publish status: {e}")
            raise StatusError(f"Failed to publish operator status: {e.message}", e.details) from e
