"""KubernetesApplier: applies object sets to a remote cluster.

Types are resolved dynamically through the API server's discovery
(``DynamicClient.resources.get``), so manifests may contain any kind the
target cluster serves. Objects are written with server-side apply and
pruned by set-id label selector.

Requires: ``pip install cluster-provisioner[k8s]``
"""

from __future__ import annotations

import copy
import logging
from typing import Any

import yaml

from cluster_provisioner.apply.applier import OWNER_ANNOTATION, SET_ID_LABEL, ApplyError
from cluster_provisioner.gvk import GroupVersionKind

logger = logging.getLogger(__name__)

FIELD_MANAGER = "cluster-provisioner"


def _check_kubernetes_available() -> None:
    """Raise ImportError with helpful message if kubernetes is not installed."""
    try:
        import kubernetes  # noqa: F401
    except ImportError:
        raise ImportError(
            "The 'kubernetes' package is required for KubernetesApplier. "
            "Install it with: pip install cluster-provisioner[k8s]"
        ) from None


class KubernetesApplier:
    """Applier over a kubernetes ``ApiClient``."""

    def __init__(self, api_client: Any, field_manager: str = FIELD_MANAGER) -> None:
        _check_kubernetes_available()
        self._api_client = api_client
        self._field_manager = field_manager
        self._dynamic: Any = None

    @classmethod
    def from_kubeconfig(cls, data: bytes | str) -> KubernetesApplier:
        """Build an applier for the cluster described by a kubeconfig document."""
        _check_kubernetes_available()
        from kubernetes import config

        try:
            kubeconfig = yaml.safe_load(data)
        except yaml.YAMLError as exc:
            raise ApplyError(f"Invalid kubeconfig: {exc}") from exc
        if not isinstance(kubeconfig, dict):
            raise ApplyError("Invalid kubeconfig: expected a YAML mapping")
        return cls(config.new_client_from_config_dict(kubeconfig))

    def apply(
        self,
        objects: list[dict[str, Any]],
        set_id: str,
        owner: str | None = None,
    ) -> None:
        dyn = self._get_dynamic_client()
        desired: set[tuple[str, str, str, str]] = set()
        resources: dict[tuple[str, str], Any] = {}

        for raw in objects:
            obj = copy.deepcopy(raw)
            gvk = GroupVersionKind.of(obj)
            meta = obj.setdefault("metadata", {})
            meta.setdefault("labels", {})[SET_ID_LABEL] = set_id
            if owner:
                meta.setdefault("annotations", {})[OWNER_ANNOTATION] = owner

            resource = resources.get((gvk.api_version, gvk.kind))
            if resource is None:
                resource = dyn.resources.get(api_version=gvk.api_version, kind=gvk.kind)
                resources[(gvk.api_version, gvk.kind)] = resource

            namespace = meta.get("namespace") or None
            if getattr(resource, "namespaced", False) and namespace is None:
                namespace = "default"
                meta["namespace"] = namespace

            desired.add((gvk.api_version, gvk.kind, namespace or "", meta["name"]))
            logger.debug("Applying %s %s/%s", gvk.kind, namespace or "", meta["name"])
            try:
                resource.server_side_apply(
                    body=obj,
                    name=meta["name"],
                    namespace=namespace,
                    field_manager=self._field_manager,
                    force_conflicts=True,
                )
            except Exception as exc:
                raise ApplyError(
                    f"Failed to apply {gvk.kind} {namespace or ''}/{meta['name']}: {exc}"
                ) from exc

        self._prune(resources, desired, set_id, owner)

    def _prune(
        self,
        resources: dict[tuple[str, str], Any],
        desired: set[tuple[str, str, str, str]],
        set_id: str,
        owner: str | None,
    ) -> None:
        for (api_version, kind), resource in resources.items():
            listed = resource.get(label_selector=f"{SET_ID_LABEL}={set_id}").to_dict()
            for item in listed.get("items") or []:
                meta = item.get("metadata", {})
                annotations = meta.get("annotations") or {}
                if owner and annotations.get(OWNER_ANNOTATION) != owner:
                    continue
                identity = (api_version, kind, meta.get("namespace") or "", meta.get("name", ""))
                if identity in desired:
                    continue
                logger.info("Pruning %s %s/%s", kind, identity[2], identity[3])
                resource.delete(name=identity[3], namespace=identity[2] or None)

    def _get_dynamic_client(self) -> Any:
        if self._dynamic is None:
            from kubernetes import dynamic

            self._dynamic = dynamic.DynamicClient(self._api_client)
        return self._dynamic
