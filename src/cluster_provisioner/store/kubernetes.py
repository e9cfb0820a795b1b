"""KubernetesObjectStore: the object store protocol over a live API server.

Uses the official ``kubernetes`` Python client's dynamic client, so any
kind the server serves can be read and written without generated classes.
Reads are always direct API calls (no cache).

Requires: ``pip install cluster-provisioner[k8s]``
"""

from __future__ import annotations

from typing import Any

from cluster_provisioner.gvk import GroupVersionKind
from cluster_provisioner.store.base import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
    StoreError,
)


def _check_kubernetes_available() -> None:
    """Raise ImportError with helpful message if kubernetes is not installed."""
    try:
        import kubernetes  # noqa: F401
    except ImportError:
        raise ImportError(
            "The 'kubernetes' package is required for KubernetesObjectStore. "
            "Install it with: pip install cluster-provisioner[k8s]"
        ) from None


def translate_api_error(exc: Exception, what: str) -> Exception:
    """Map a kubernetes ``ApiException`` onto the store error classes."""
    status = getattr(exc, "status", None)
    if status == 404:
        return NotFoundError(f"{what} not found")
    if status == 409:
        reason = str(getattr(exc, "reason", "") or "")
        if "AlreadyExists" in reason or "already exists" in str(exc):
            return AlreadyExistsError(f"{what} already exists")
        return ConflictError(f"{what} was modified: {reason}")
    return StoreError(f"{what}: API error ({status}): {getattr(exc, 'reason', exc)}")


class KubernetesObjectStore:
    """Object store backed by a Kubernetes API server.

    Connection setup mirrors the usual client precedence: an explicit
    ``api_client``, else in-cluster config, else the default kubeconfig
    (optionally a specific file/context).
    """

    def __init__(
        self,
        api_client: Any | None = None,
        kubeconfig: str | None = None,
        context: str | None = None,
        in_cluster: bool = False,
    ) -> None:
        _check_kubernetes_available()
        self._api_client = api_client
        self._kubeconfig = kubeconfig
        self._context = context
        self._in_cluster = in_cluster
        self._dynamic: Any = None

    # --- Protocol ---

    def get(self, gvk: GroupVersionKind, namespace: str, name: str) -> dict[str, Any]:
        resource = self._resource(gvk)
        try:
            result = resource.get(name=name, namespace=namespace or None)
        except Exception as exc:
            raise self._translate(exc, f"{gvk.kind} {namespace}/{name}") from exc
        return result.to_dict()

    def list(
        self,
        gvk: GroupVersionKind,
        namespace: str | None = None,
        labels: dict[str, str] | None = None,
    ) -> list[dict[str, Any]]:
        resource = self._resource(gvk)
        kwargs: dict[str, Any] = {}
        if namespace:
            kwargs["namespace"] = namespace
        if labels:
            kwargs["label_selector"] = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        try:
            result = resource.get(**kwargs)
        except Exception as exc:
            raise self._translate(exc, f"{gvk.kind} list") from exc
        return list(result.to_dict().get("items") or [])

    def create(self, obj: dict[str, Any]) -> dict[str, Any]:
        gvk = GroupVersionKind.of(obj)
        resource = self._resource(gvk)
        namespace = obj.get("metadata", {}).get("namespace") or None
        try:
            result = resource.create(body=obj, namespace=namespace)
        except Exception as exc:
            raise self._translate(exc, f"{gvk.kind} {obj['metadata'].get('name')}") from exc
        return result.to_dict()

    def update(self, obj: dict[str, Any]) -> dict[str, Any]:
        gvk = GroupVersionKind.of(obj)
        resource = self._resource(gvk)
        namespace = obj.get("metadata", {}).get("namespace") or None
        try:
            result = resource.replace(body=obj, namespace=namespace)
        except Exception as exc:
            raise self._translate(exc, f"{gvk.kind} {obj['metadata'].get('name')}") from exc
        return result.to_dict()

    def delete(self, gvk: GroupVersionKind, namespace: str, name: str) -> None:
        resource = self._resource(gvk)
        try:
            resource.delete(name=name, namespace=namespace or None)
        except Exception as exc:
            raise self._translate(exc, f"{gvk.kind} {namespace}/{name}") from exc

    # --- Private ---

    def _translate(self, exc: Exception, what: str) -> Exception:
        # Detect kubernetes ApiException by class name to avoid import
        if type(exc).__name__ == "ApiException":
            return translate_api_error(exc, what)
        return exc

    def _resource(self, gvk: GroupVersionKind) -> Any:
        return self._get_dynamic_client().resources.get(
            api_version=gvk.api_version, kind=gvk.kind,
        )

    def _get_dynamic_client(self) -> Any:
        if self._dynamic is None:
            from kubernetes import dynamic

            self._dynamic = dynamic.DynamicClient(self._get_api_client())
        return self._dynamic

    def _get_api_client(self) -> Any:
        from kubernetes import client, config

        if self._api_client is not None:
            return self._api_client
        if self._in_cluster:
            config.load_incluster_config()
        else:
            kwargs: dict[str, Any] = {}
            if self._kubeconfig:
                kwargs["config_file"] = self._kubeconfig
            if self._context:
                kwargs["context"] = self._context
            config.load_kube_config(**kwargs)
        return client.ApiClient()
