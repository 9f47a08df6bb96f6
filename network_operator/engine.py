"""Reconciliation engine.

One call to ReconcileEngine.reconcile() runs a full cycle for the
singleton configuration:

    fetch -> merge -> validate -> safety check -> bootstrap -> probe
    -> render -> post-process -> apply -> migrate -> publish

A failing stage records a degraded condition with a stable reason code
and ends the cycle; work already applied stays in place. reconcile()
never raises: the outcome (resync, no requeue, retry) is returned to the
caller, which owns scheduling and backoff.
"""

import itertools
import time
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from network_operator import names
from network_operator.client import ClusterClient
from network_operator.config import OperatorSettings
from network_operator.exceptions import (
    ApplyError,
    ClusterApiError,
    ConflictError,
    CycleCancelled,
    NetworkOperatorError,
    NotFoundError,
    StatusError,
)
from network_operator.logging_config import cycle_context, get_logger
from network_operator.merger import merge_config, upconvert_applied
from network_operator.migration import MigrationExecutor
from network_operator.models.cluster import (
    BootstrapResult,
    ClusterNetworkConfig,
    ClusterNetworkStatus,
    ObjectReference,
    RelatedClusterObject,
)
from network_operator.models.objects import (
    WORKLOAD_KINDS,
    KubeObject,
    MachineConfigObject,
    ObjectMeta,
    OwnerReference,
    WorkloadObject,
)
from network_operator.models.spec import DesiredSpec
from network_operator.probe import (
    ClusterBootstrapper,
    MTUProber,
    read_mtu_record,
    should_probe,
)
from network_operator.render import (
    ManifestRenderer,
    Renderer,
    applied_configuration,
    read_applied_record,
)
from network_operator.safety import check_change_safe
from network_operator.status import StatusKey, StatusManager
from network_operator.validation import validate_spec

logger = get_logger(__name__)

CONFIG_EDIT_HINT = "Use 'oc edit network.operator.openshift.io cluster' to fix."
INVALID_CONFIG_MESSAGE = f"The operator configuration is invalid. {CONFIG_EDIT_HINT}"
UNSAFE_CHANGE_MESSAGE = f"Not applying unsafe configuration change. {CONFIG_EDIT_HINT}"
NAD_NAMESPACE_HINT = (
    "Namespace error for network attachment definition, consider possible solutions: "
    "(1) Edit config files to include existing namespace "
    "(2) Create non-existent namespace "
    "(3) Delete erroneous network-attachment-definition"
)


class Outcome(str, Enum):
    RESYNC = "resync"
    NO_REQUEUE = "no_requeue"
    RETRY = "retry"


@dataclass
class ReconcileResult:
    """What the scheduler should do after a cycle."""

    outcome: Outcome
    requeue_after: float | None = None
    error: Exception | None = None

    @classmethod
    def resync(cls, after: float) -> "ReconcileResult":
        return cls(Outcome.RESYNC, requeue_after=after)

    @classmethod
    def done(cls) -> "ReconcileResult":
        return cls(Outcome.NO_REQUEUE)

    @classmethod
    def retry(cls, error: Exception) -> "ReconcileResult":
        return cls(Outcome.RETRY, error=error)


class _StageFailed(Exception):
    """A stage failed; the cycle reports degraded with this reason."""

    def __init__(self, reason: str, message: str, error: Exception):
        super().__init__(message)
        self.reason = reason
        self.message = message
        self.error = error


class _Skip(Exception):
    """End the cycle without touching the cluster."""


@contextmanager
def _stage(reason: str, message: str):
    """Turn stage errors into _StageFailed; conflicts and cancellation pass through."""
    try:
        yield
    except (ConflictError, CycleCancelled):
        raise
    except (NetworkOperatorError, ValueError) as e:
        logger.error(f"{message}: {e}")
        raise _StageFailed(reason, f"{message}: {e}", e) from e


class ReconcileEngine:
    """Drives the desired network configuration onto the cluster."""

    def __init__(
        self,
        client: ClusterClient,
        status: StatusManager,
        settings: OperatorSettings | None = None,
        renderer: Renderer | None = None,
        bootstrapper: ClusterBootstrapper | None = None,
        prober: MTUProber | None = None,
        migrator: MigrationExecutor | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.status = status
        self.settings = settings or OperatorSettings()
        self.renderer = renderer or ManifestRenderer()
        self.bootstrapper = bootstrapper or ClusterBootstrapper()
        self.prober = prober
        self.migrator = migrator or MigrationExecutor(self.settings.field_manager)
        self._clock = clock
        self._cycles = itertools.count(1)

    def reconcile(self, key: str, deadline: float | None = None) -> ReconcileResult:
        """Run one cycle for key.

        Args:
            key: Name of the desired-config object that triggered the cycle
            deadline: Monotonic time after which the cycle stops, None for no limit

        Returns:
            The scheduling outcome; never raises
        """
        if key != names.OPERATOR_CONFIG:
            logger.info(f"Ignoring operator configuration {key!r} without the default name")
            return ReconcileResult.done()

        with cycle_context(key, next(self._cycles)):
            return self._reconcile(key, deadline)

    def _reconcile(self, key: str, deadline: float | None) -> ReconcileResult:
        logger.info(f"Reconciling operator configuration {key}")
        self.status.begin_cycle()
        try:
            result = self._run(key, deadline)
        except _Skip:
            return ReconcileResult.done()
        except _StageFailed as failure:
            self.status.set_degraded(StatusKey.OPERATOR_CONFIG, failure.reason, failure.message)
            result = ReconcileResult.retry(failure.error)
        except ConflictError as e:
            logger.info(f"Conflict while reconciling, will retry: {e.message}")
            result = ReconcileResult.retry(e)
        except CycleCancelled as e:
            logger.warning(f"Reconcile cancelled: {e.message}")
            return ReconcileResult.retry(e)
        except Exception as e:
            logger.exception("Unexpected error while reconciling operator configuration")
            self.status.set_degraded(
                StatusKey.OPERATOR_CONFIG,
                "InternalError",
                "Internal error while reconciling operator configuration",
            )
            result = ReconcileResult.retry(e)

        try:
            self.status.publish()
        except StatusError as e:
            if result.outcome != Outcome.RETRY:
                result = ReconcileResult.retry(e)
        logger.info(f"Reconcile of {key} finished: {result.outcome.value}")
        return result

    def _check_deadline(self, deadline: float | None, stage: str) -> None:
        if deadline is not None and self._clock() >= deadline:
            raise CycleCancelled(f"Deadline exceeded before {stage}")

    def _run(self, key: str, deadline: float | None) -> ReconcileResult:
        operator_config = self._fetch_operator_config(key)
        if operator_config is None:
            return ReconcileResult.done()
        with _stage("InvalidOperatorConfig", INVALID_CONFIG_MESSAGE):
            live = DesiredSpec.from_manifest(operator_config.attributes.get("spec"))
        if live.management_state == "Unmanaged":
            logger.info("Operator configuration is Unmanaged, skipping reconciliation")
            raise _Skip()

        with _stage("MergeClusterConfig", "Could not read the cluster network configuration"):
            cluster_config_obj = self.client.get(
                names.CLUSTER_CONFIG_API_VERSION, names.CLUSTER_CONFIG_KIND, names.CLUSTER_CONFIG
            )
            cluster_config = ClusterNetworkConfig.from_manifest(
                cluster_config_obj.attributes.get("spec")
            )

        with _stage("InternalError", "Could not read the previously applied configuration"):
            applied, applied_version = read_applied_record(self.client, key)
            recorded_mtu = read_mtu_record(self.client)

        spec = merge_config(live, cluster_config, applied, recorded_mtu)

        with _stage("InvalidOperatorConfig", INVALID_CONFIG_MESSAGE):
            validate_spec(spec)

        previous = upconvert_applied(applied, recorded_mtu)
        with _stage("InvalidOperatorConfig", UNSAFE_CHANGE_MESSAGE):
            check_change_safe(previous, spec)

        self._check_deadline(deadline, "bootstrap")
        with _stage("BootstrapError", "Internal error while reconciling platform networking"):
            bootstrap = self.bootstrapper.bootstrap(spec, self.client)

        if self.prober is not None and should_probe(previous, spec, recorded_mtu, bootstrap.infra):
            self._check_deadline(deadline, "MTU probe")
            with _stage("MTUProbeFailed", "Failed to probe MTU"):
                mtu = self.prober.probe(bootstrap.infra)
                logger.info(f"Using detected MTU {mtu}")
                self._record_mtu(mtu)
            spec = merge_config(live, cluster_config, applied, mtu)
            with _stage("InvalidOperatorConfig", INVALID_CONFIG_MESSAGE):
                validate_spec(spec)
                check_change_safe(previous, spec)

        self._check_deadline(deadline, "spec update")
        if spec.to_manifest() != live.to_manifest():
            with _stage(
                "UpdateOperatorConfig", "Internal error while updating operator configuration"
            ):
                operator_config.attributes["spec"] = spec.to_manifest()
                operator_config = self.client.update(operator_config)
            logger.info("Updated operator configuration with merged defaults")

        self._check_deadline(deadline, "render")
        with _stage("RenderError", "Internal error while rendering operator configuration"):
            objects, progressing = self.renderer.render(
                spec,
                cluster_config,
                self.settings.manifest_root,
                self.client,
                self.settings.feature_gates,
                bootstrap,
            )
            objects = [applied_configuration(spec, key, applied_version)] + list(objects)

        if progressing:
            self.status.set_progressing(
                StatusKey.OPERATOR_RENDER, "RenderProgressing", "Waiting to render manifests"
            )
        else:
            self.status.unset_progressing(StatusKey.OPERATOR_RENDER)

        machine_configs = self._post_process(objects, operator_config, bootstrap)
        with _stage(
            "MachineConfigError", "Internal error while processing rendered Machine Configs"
        ):
            self.status.set_machine_configs(machine_configs)

        with _stage("ApplyOperatorConfig", "Error while updating operator configuration"):
            self._apply_objects(objects, deadline)

        self._check_deadline(deadline, "migration")
        with _stage("MigrationError", "Could not migrate network features"):
            self.migrator.run(spec, self.client)

        with _stage("StatusError", "Could not update cluster configuration status"):
            self._apply_cluster_status(spec)

        self.status.set_not_degraded(StatusKey.OPERATOR_CONFIG)
        return ReconcileResult.resync(self.settings.resync_period)

    def _fetch_operator_config(self, key: str) -> KubeObject | None:
        try:
            return self.client.get(names.OPERATOR_API_VERSION, names.OPERATOR_KIND, key)
        except NotFoundError:
            logger.info(f"Operator configuration {key} not found")
            self.status.set_degraded(
                StatusKey.OPERATOR_CONFIG,
                "NoOperatorConfig",
                f"Operator configuration {key} was deleted",
            )
            return None
        except ConflictError:
            raise
        except ClusterApiError as e:
            logger.error(f"Unable to retrieve operator configuration: {e}")
            raise _StageFailed(
                "InternalError", f"Unable to retrieve operator configuration: {e}", e
            ) from e

    def _record_mtu(self, mtu: int) -> None:
        self.client.apply(
            KubeObject(
                api_version="v1",
                kind="ConfigMap",
                metadata=ObjectMeta(name=names.MTU_CM_NAME, namespace=names.MTU_CM_NAMESPACE),
                attributes={"data": {"mtu": str(mtu)}},
            ),
            self.settings.field_manager,
        )

    def _post_process(
        self, objects: list[KubeObject], owner: KubeObject, bootstrap: BootstrapResult
    ) -> list[MachineConfigObject]:
        """Label, own and index the rendered objects; return the machine configs among them."""
        owner_ref = OwnerReference(
            api_version=owner.api_version,
            kind=owner.kind,
            name=owner.name,
            uid=owner.metadata.uid,
        )
        scope = (
            bootstrap.infra.infra_name
            if bootstrap.infra.hosted_control_plane
            else names.STANDALONE_CLUSTER_NAME
        )

        related: list[ObjectReference] = []
        related_cluster: list[RelatedClusterObject] = []
        machine_configs: list[MachineConfigObject] = []
        for obj in objects:
            if isinstance(obj, WorkloadObject) or (
                obj.group == "apps" and obj.kind in WORKLOAD_KINDS
            ):
                # An explicit empty value opts the workload out of status reporting.
                if obj.metadata.labels.get(names.GENERATE_STATUS_LABEL) != "":
                    obj.metadata.labels[names.GENERATE_STATUS_LABEL] = scope

            if not obj.cluster_name:
                obj.set_owner(owner_ref)

            try:
                resource = self.client.resource_for(obj.api_version, obj.kind)
            except ClusterApiError as e:
                logger.warning(f"Failed to get resource mapping for {obj.describe()}: {e.message}")
                continue

            if obj.cluster_name:
                related_cluster.append(
                    RelatedClusterObject(
                        group=obj.group,
                        resource=resource,
                        name=obj.name,
                        namespace=obj.namespace,
                        cluster_name=obj.cluster_name,
                    )
                )
                continue
            related.append(
                ObjectReference(
                    group=obj.group, resource=resource, name=obj.name, namespace=obj.namespace
                )
            )
            if isinstance(obj, MachineConfigObject):
                machine_configs.append(obj)

        related.extend(
            [
                ObjectReference(resource="namespaces", name=names.APPLIED_NAMESPACE),
                ObjectReference(
                    group="operator.openshift.io", resource="networks", name=names.OPERATOR_CONFIG
                ),
                ObjectReference(resource="namespaces", name=names.CLOUD_NETWORK_CONFIG_NAMESPACE),
            ]
        )
        self.status.set_related_objects(related)
        self.status.set_related_cluster_objects(related_cluster)
        return machine_configs

    def _apply_objects(self, objects: list[KubeObject], deadline: float | None) -> None:
        """Apply every object in order, continuing past failures.

        Raises:
            ApplyError: With the last failure's message if any object failed
            ConflictError: If only version conflicts occurred
        """
        conflict: ConflictError | None = None
        last_failure: str | None = None
        failures = 0
        for obj in objects:
            self._check_deadline(deadline, f"applying {obj.describe()}")
            try:
                self.client.apply(obj, self.settings.field_manager)
            except ClusterApiError as e:
                message = f"could not apply {obj.describe()}: {e.message}"
                if obj.kind == "NetworkAttachmentDefinition" and "namespace" in str(e).lower():
                    message = f"{message}; {NAD_NAMESPACE_HINT}"
                if obj.ignore_errors:
                    logger.info(f"{message} (object has ignore-errors annotation set, continuing)")
                    continue
                if isinstance(e, ConflictError):
                    logger.info(f"Conflict applying {obj.describe()}, will retry: {e.message}")
                    conflict = e
                    continue
                logger.error(message)
                failures += 1
                last_failure = message

        if last_failure is not None:
            raise ApplyError(last_failure, failures=failures)
        if conflict is not None:
            raise conflict
        logger.debug(f"Applied {len(objects)} objects")

    def _apply_cluster_status(self, spec: DesiredSpec) -> None:
        migration = None
        if spec.migration is not None:
            migration = spec.migration.model_dump(by_alias=True, exclude_none=True, mode="json")
            migration.pop("features", None)
        status = ClusterNetworkStatus(
            cluster_network=spec.cluster_network,
            service_network=spec.service_network,
            network_type=spec.network_type,
            cluster_network_mtu=spec.implementation_mtu(),
            migration=migration or None,
        )
        # No owner reference: the cluster config is not ours to garbage collect.
        self.client.apply(
            KubeObject(
                api_version=names.CLUSTER_CONFIG_API_VERSION,
                kind=names.CLUSTER_CONFIG_KIND,
                metadata=ObjectMeta(name=names.CLUSTER_CONFIG),
                attributes={"status": status.to_manifest()},
            ),
            self.settings.field_manager,
        )
