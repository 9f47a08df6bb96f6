"""Bootstrap probe: infrastructure facts and host MTU measurement."""

import time
from typing import Callable, Protocol

from network_operator import names
from network_operator.client import ClusterClient
from network_operator.exceptions import ClusterApiError, NotFoundError, ProbeError
from network_operator.logging_config import get_logger
from network_operator.models.cluster import BootstrapResult, InfraStatus, NodeInfo
from network_operator.models.objects import KubeObject, ObjectMeta
from network_operator.models.spec import DesiredSpec
from network_operator.safety import mtu_relevant_change

logger = get_logger(__name__)


def gather_infra_status(client: ClusterClient) -> InfraStatus:
    """Collect platform facts and the node inventory.

    Raises:
        ClusterApiError: If the infrastructure object or nodes cannot be read
    """
    infra = client.get(
        names.CLUSTER_CONFIG_API_VERSION, names.INFRASTRUCTURE_KIND, names.INFRASTRUCTURE_NAME
    )
    status = infra.attributes.get("status") or {}
    platform_status = status.get("platformStatus") or {}
    platform_type = platform_status.get("type") or status.get("platform") or "None"

    # Region lives under the platform's own key, e.g. platformStatus.aws.region
    region = ""
    for key, value in platform_status.items():
        if key != "type" and isinstance(value, dict) and value.get("region"):
            region = value["region"]
            break

    nodes = [
        NodeInfo(
            name=node.name,
            labels=dict(node.metadata.labels),
            schedulable=not (node.attributes.get("spec") or {}).get("unschedulable", False),
        )
        for node in client.list("v1", "Node")
    ]

    return InfraStatus(
        platform_type=platform_type,
        platform_region=region,
        infra_name=status.get("infrastructureName", ""),
        api_server_url=status.get("apiServerURL", ""),
        hosted_control_plane=status.get("controlPlaneTopology") == "External",
        nodes=nodes,
    )


class ClusterBootstrapper:
    """Default bootstrap collaborator: gathers infra facts for render."""

    def bootstrap(self, spec: DesiredSpec, client: ClusterClient) -> BootstrapResult:
        return BootstrapResult(infra=gather_infra_status(client))


def read_mtu_record(client: ClusterClient) -> int | None:
    """Return the recorded host MTU, or None when no record exists yet."""
    try:
        record = client.get("v1", "ConfigMap", names.MTU_CM_NAME, names.MTU_CM_NAMESPACE)
    except NotFoundError:
        return None
    value = (record.attributes.get("data") or {}).get("mtu")
    try:
        return int(value) if value is not None else None
    except ValueError:
        logger.warning(f"Ignoring malformed MTU record value: {value!r}")
        return None


def should_probe(
    previous: DesiredSpec | None,
    candidate: DesiredSpec,
    recorded_mtu: int | None,
    infra: InfraStatus,
) -> bool:
    """Decide whether this cycle has to measure the host MTU.

    A probe is needed when the delta touches MTU-relevant fields, or when
    nothing was ever recorded and there are nodes to probe from (hosted
    control planes have none).
    """
    if mtu_relevant_change(previous, candidate):
        return True
    return recorded_mtu is None and not infra.hosted_control_plane


class MTUProber(Protocol):
    def probe(self, infra: InfraStatus) -> int:
        """Measure the host MTU. Raises ProbeError on failure."""
        ...


class JobMTUProber:
    """Measures the host MTU by running a one-shot Job on a cluster node.

    The job writes its result into the MTU record; the prober waits for
    the record to appear and removes the job afterwards.
    """

    def __init__(
        self,
        client: ClusterClient,
        image: str = "quay.io/openshift/origin-cluster-network-operator:latest",
        timeout: float = 120.0,
        poll_interval: float = 2.0,
        field_manager: str = "operconfig",
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.image = image
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.field_manager = field_manager
        self._sleep = sleep
        self._clock = clock

    def _job(self) -> KubeObject:
        return KubeObject(
            api_version="batch/v1",
            kind="Job",
            metadata=ObjectMeta(
                name=names.MTU_PROBER_JOB,
                namespace=names.APPLIED_NAMESPACE,
                labels={"app": names.MTU_PROBER_JOB},
            ),
            attributes={
                "spec": {
                    "backoffLimit": 3,
                    "template": {
                        "metadata": {"labels": {"app": names.MTU_PROBER_JOB}},
                        "spec": {
                            "restartPolicy": "Never",
                            "hostNetwork": True,
                            "serviceAccountName": "cluster-network-operator",
                            "containers": [
                                {
                                    "name": "prober",
                                    "image": self.image,
                                    "command": ["cluster-network-operator", "mtu-prober"],
                                    "env": [
                                        {"name": "CM_NAME", "value": names.MTU_CM_NAME},
                                        {"name": "CM_NAMESPACE", "value": names.MTU_CM_NAMESPACE},
                                    ],
                                }
                            ],
                        },
                    },
                }
            },
        )

    def _cleanup_job(self) -> None:
        try:
            self.client.delete("batch/v1", "Job", names.MTU_PROBER_JOB, names.APPLIED_NAMESPACE)
        except NotFoundError:
            pass
        except ClusterApiError as e:
            logger.warning(f"Failed to remove MTU prober job: {e}")

    def probe(self, infra: InfraStatus) -> int:
        if not infra.schedulable_nodes:
            raise ProbeError(
                "No schedulable nodes available to run the MTU prober",
                "Make sure at least one node is Ready and schedulable",
            )

        try:
            # A stale record would satisfy the wait below before the job ran.
            try:
                self.client.delete("v1", "ConfigMap", names.MTU_CM_NAME, names.MTU_CM_NAMESPACE)
            except NotFoundError:
                pass
            try:
                self.client.delete("batch/v1", "Job", names.MTU_PROBER_JOB, names.APPLIED_NAMESPACE)
            except NotFoundError:
                pass
            self.client.apply(self._job(), self.field_manager)
        except ClusterApiError as e:
            raise ProbeError(f"Failed to launch MTU prober job: {e.message}", e.details) from e

        logger.info("Launched MTU prober job, waiting for result")
        try:
            return self._wait_for_record()
        finally:
            self._cleanup_job()

    def _wait_for_record(self) -> int:
        deadline = self._clock() + self.timeout
        while True:
            try:
                mtu = read_mtu_record(self.client)
            except ClusterApiError as e:
                raise ProbeError(f"Failed to read MTU record: {e.message}", e.details) from e
            if mtu is not None:
                return mtu
            if self._clock() >= deadline:
                raise ProbeError(
                    f"MTU prober did not report a result within {self.timeout:.0f}s",
                    "The prober job was removed and is relaunched on the next probe",
                )
            self._sleep(self.poll_interval)


class StaticMTUProber:
    """Reports a fixed host MTU. Used for offline cycles where no job can run."""

    def __init__(self, mtu: int):
        self.mtu = mtu

    def probe(self, infra: InfraStatus) -> int:
        return self.mtu
