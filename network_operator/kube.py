"""Cluster client backed by the kubernetes dynamic client."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from network_operator.exceptions import ClusterApiError, ConflictError, NotFoundError
from network_operator.logging_config import get_logger
from network_operator.models.objects import KubeObject

logger = get_logger(__name__)

_ENVELOPE_KEYS = frozenset({"apiVersion", "kind", "metadata"})


def _translate(error: Exception, what: str) -> ClusterApiError:
    """Map a kubernetes client error onto the operator's error taxonomy."""
    status = getattr(error, "status", None)
    reason = getattr(error, "reason", None) or str(error)
    if status == 404:
        return NotFoundError(f"{what} not found", reason)
    if status == 409:
        return ConflictError(f"Conflict on {what}", reason)
    return ClusterApiError(f"API request for {what} failed (status {status})", reason)


class KubernetesCluster:
    """ClusterClient implementation talking to a live API server."""

    def __init__(self, dynamic_client: Any):
        """Initialize the client.

        Args:
            dynamic_client: A kubernetes.dynamic.DynamicClient
        """
        self._dynamic = dynamic_client

    @classmethod
    def from_kubeconfig(cls, kubeconfig: str | Path | None = None) -> KubernetesCluster:
        """Build a client from a kubeconfig file, or in-cluster config when None."""
        from kubernetes import client, config
        from kubernetes.config.config_exception import ConfigException
        from kubernetes.dynamic import DynamicClient

        try:
            if kubeconfig:
                config.load_kube_config(config_file=str(kubeconfig))
            else:
                try:
                    config.load_incluster_config()
                except ConfigException:
                    config.load_kube_config()
        except (ConfigException, OSError) as e:
            raise ClusterApiError(
                f"Failed to load kubeconfig: {e}",
                "Pass --kubeconfig or run inside the cluster with a service account",
            ) from e

        return cls(DynamicClient(client.ApiClient()))

    def _resource(self, api_version: str, kind: str):
        from kubernetes.dynamic.exceptions import ResourceNotFoundError

        try:
            return self._dynamic.resources.get(api_version=api_version, kind=kind)
        except ResourceNotFoundError as e:
            raise ClusterApiError(
                f"No API resource for {api_version} {kind}",
                "The kind may not be installed in this cluster",
            ) from e

    def _call(self, what: str, fn, *args, **kwargs):
        from kubernetes.client.exceptions import ApiException
        from kubernetes.dynamic.exceptions import DynamicApiError

        try:
            return fn(*args, **kwargs)
        except (ApiException, DynamicApiError) as e:
            raise _translate(e, what) from e

    def get(self, api_version: str, kind: str, name: str, namespace: str = "") -> KubeObject:
        resource = self._resource(api_version, kind)
        result = self._call(
            f"{kind} {namespace}/{name}", resource.get, name=name, namespace=namespace or None
        )
        return KubeObject.from_manifest(result.to_dict())

    def list(
        self,
        api_version: str,
        kind: str,
        namespace: str = "",
        label_selector: dict[str, str] | None = None,
    ) -> list[KubeObject]:
        resource = self._resource(api_version, kind)
        selector = ",".join(f"{k}={v}" for k, v in (label_selector or {}).items()) or None
        result = self._call(
            f"{kind} list", resource.get, namespace=namespace or None, label_selector=selector
        )
        return [KubeObject.from_manifest(item) for item in result.to_dict().get("items", [])]

    def apply(self, obj: KubeObject, field_manager: str) -> bool:
        """Server-side apply obj. A status stanza goes through the status subresource.

        The main resource is only written when the object is missing or
        carries more than its status.
        """
        resource = self._resource(obj.api_version, obj.kind)
        what = obj.describe()
        namespace = obj.namespace or None
        try:
            current = self.get(obj.api_version, obj.kind, obj.name, obj.namespace)
            before = current.metadata.resource_version
        except NotFoundError:
            before = ""

        body = obj.to_manifest()
        status = body.pop("status", None)
        result = None
        if status is None or not before or set(body) - _ENVELOPE_KEYS:
            result = self._call(
                what,
                resource.server_side_apply,
                body=body,
                name=obj.name,
                namespace=namespace,
                field_manager=field_manager,
                force_conflicts=True,
            )
        if status is not None:
            status_body = {key: body[key] for key in _ENVELOPE_KEYS}
            status_body["status"] = status
            result = self._call(
                f"{what} status",
                resource.status.server_side_apply,
                body=status_body,
                name=obj.name,
                namespace=namespace,
                field_manager=field_manager,
                force_conflicts=True,
            )
        after = (result.to_dict().get("metadata") or {}).get("resourceVersion", "")
        return before != after

    def update(self, obj: KubeObject) -> KubeObject:
        resource = self._resource(obj.api_version, obj.kind)
        result = self._call(
            obj.describe(),
            resource.replace,
            body=obj.to_manifest(),
            namespace=obj.namespace or None,
        )
        return KubeObject.from_manifest(result.to_dict())

    def delete(self, api_version: str, kind: str, name: str, namespace: str = "") -> None:
        resource = self._resource(api_version, kind)
        what = f"{kind} {namespace}/{name}"
        self._call(what, resource.delete, name=name, namespace=namespace or None)

    def resource_for(self, api_version: str, kind: str) -> str:
        return self._resource(api_version, kind).name

    def watch(self, api_version: str, kind: str, namespace: str = "", timeout: int = 300):
        """Yield (event type, object) pairs until the server closes the stream."""
        from kubernetes.client.exceptions import ApiException
        from kubernetes.dynamic.exceptions import DynamicApiError

        resource = self._resource(api_version, kind)
        try:
            for event in resource.watch(namespace=namespace or None, timeout=timeout):
                yield event["type"], KubeObject.from_manifest(event["raw_object"])
        except (ApiException, DynamicApiError) as e:
            raise _translate(e, f"{kind} watch") from e
