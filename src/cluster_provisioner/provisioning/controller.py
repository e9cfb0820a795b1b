"""Cluster reconcile dispatcher.

Handles the control-plane object (endpoint defaulting, readiness) and
the cluster declaration's generated object set, and keeps the reverse
index from node config references to the clusters using them so that an
out-of-band change to a node config re-generates its clusters.
"""

from __future__ import annotations

import logging
from typing import Any

from cluster_provisioner import gvk
from cluster_provisioner.gvk import GroupVersionKind
from cluster_provisioner.models import (
    Cluster,
    ClusterStatus,
    Endpoint,
    ObjectReference,
    RKECluster,
    RKEClusterStatus,
)
from cluster_provisioner.provisioning import template
from cluster_provisioner.store.base import ObjectStore

logger = logging.getLogger(__name__)

BY_NODE_INFRA = "by-node-infra"
SET_ID = "rke-cluster"
CACHE_TYPES = [
    gvk.CAPI_CLUSTER,
    gvk.MACHINE_DEPLOYMENT,
    gvk.RKE_CLUSTER,
    gvk.RKE_BOOTSTRAP_TEMPLATE,
]

DEFAULT_ENDPOINT_HOST = "localhost"
DEFAULT_ENDPOINT_PORT = 6443


def to_infra_ref_key(ref: ObjectReference, namespace: str) -> str:
    api_version = ref.api_version or gvk.DEFAULT_NODE_CONFIG_API_VERSION
    return f"{api_version}/{ref.kind}/{namespace}/{ref.name}"


def by_node_infra_index(obj: dict[str, Any]) -> list[str]:
    """Index function: node config reference keys of a cluster's pools."""
    cluster = Cluster.model_validate(obj)
    if not cluster.status.cluster_name or cluster.spec.rke_config is None:
        return []
    return [
        to_infra_ref_key(pool.node_config, cluster.namespace)
        for pool in cluster.spec.rke_config.node_pools
        if pool.node_config is not None
    ]


def match_node_config(kind: GroupVersionKind) -> bool:
    return kind.group == "rancher.cattle.io" and kind.kind.endswith("Config")


def _active_conditions() -> list[dict[str, Any]]:
    return [
        {"type": "Reconciling", "status": "False"},
        {"type": "Stalled", "status": "False"},
    ]


class RKEClusterHandler:
    """Handlers for ``RKECluster`` and the cluster declaration.

    Args:
        clusters: Indexed store holding cluster declarations.
        store: Where node configs and schemas are read from.
        enqueue: ``enqueue(namespace, name)`` for cluster declarations.
    """

    def __init__(self, clusters: Any, store: ObjectStore, enqueue: Any) -> None:
        self._clusters = clusters
        self._store = store
        self._enqueue = enqueue

    def update_spec(self, key: str, cluster: RKECluster | None) -> RKECluster | None:
        if cluster is None:
            return None
        if cluster.spec.control_plane_endpoint is not None:
            return cluster

        cluster = cluster.model_copy(deep=True)
        cluster.spec.control_plane_endpoint = Endpoint(
            host=DEFAULT_ENDPOINT_HOST, port=DEFAULT_ENDPOINT_PORT,
        )
        logger.info("Defaulting control plane endpoint of %s", key)
        return cluster

    def on_status(self, obj: RKECluster, status: RKEClusterStatus | None) -> RKEClusterStatus:
        status = status or RKEClusterStatus()
        status.ready = True
        status.conditions = _active_conditions()
        return status

    def infra_watch(self, obj: dict[str, Any] | None) -> dict[str, Any] | None:
        """Re-queue every cluster whose node pools reference *obj*."""
        if obj is None:
            return None
        meta = obj.get("metadata", {})
        namespace = meta.get("namespace") or ""
        key = to_infra_ref_key(
            ObjectReference(
                api_version=obj.get("apiVersion", ""),
                kind=obj.get("kind", ""),
                namespace=namespace,
                name=meta.get("name", ""),
            ),
            namespace,
        )
        for cluster in self._clusters.get_by_index(gvk.PROVISIONING_CLUSTER, BY_NODE_INFRA, key):
            cluster_meta = cluster["metadata"]
            logger.debug("Node config %s changed, re-queueing %s", key, cluster_meta["name"])
            self._enqueue(cluster_meta.get("namespace", ""), cluster_meta["name"])
        return obj

    def on_rancher_cluster_change(
        self,
        cluster: Cluster,
        status: ClusterStatus,
    ) -> tuple[list[dict[str, Any]] | None, ClusterStatus]:
        if cluster.spec.rke_config is None or not cluster.status.cluster_name:
            return None, status
        return template.objects(cluster, self._store), status
