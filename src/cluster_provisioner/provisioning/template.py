"""Object graph generator.

Turns one cluster declaration into the ordered set of lower-level objects
the apply engine reconciles:

1. the control-plane object (``RKECluster``)
2. the Cluster-API ``Cluster`` wrapping it
3. the shared ``RKEBootstrapTemplate`` (when any node pool is valid)
4. per valid node pool: a machine template and a ``MachineDeployment``

The output is a pure function of the declaration, the referenced node
config objects and their schemas. Any lookup or encoding failure aborts
the whole call; callers retry the entire reconcile.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from cluster_provisioner import gvk
from cluster_provisioner.errors import FatalError
from cluster_provisioner.gvk import GroupVersionKind, to_object
from cluster_provisioner.models import (
    Bootstrap,
    CAPICluster,
    CAPIClusterSpec,
    Cluster,
    MachineDeployment,
    MachineDeploymentSpec,
    MachineDeploymentStrategy,
    MachineSpec,
    MachineTemplateSpec,
    NodePool,
    ObjectMeta,
    ObjectReference,
    RKEBootstrapTemplate,
    RKECluster,
    RKEClusterSpec,
)
from cluster_provisioner.names import safe_concat_name
from cluster_provisioner.provisioning.sanitizer import prune_by_schema
from cluster_provisioner.store.base import ObjectStore

logger = logging.getLogger(__name__)

ETCD_ROLE_LABEL = "rke.cattle.io/etcd-role"
CONTROL_PLANE_ROLE_LABEL = "rke.cattle.io/control-plane-role"
MACHINE_CONTROL_PLANE_LABEL = "cluster.x-k8s.io/control-plane"
LABELS_ANNOTATION = "rke.cattle.io/labels"
TAINTS_ANNOTATION = "rke.cattle.io/taints"


class EncodingError(FatalError):
    """Raised when pool labels or taints cannot be JSON-encoded."""


def objects(
    cluster: Cluster,
    store: ObjectStore,
    schemas: ObjectStore | None = None,
) -> list[dict[str, Any]]:
    """Generate the full object set for *cluster*.

    Args:
        cluster: The cluster declaration.
        store: Where referenced node config objects are read from.
        schemas: Where ``DynamicSchema`` records are read from
            (defaults to *store*).
    """
    rke = rke_cluster(cluster)
    capi = capi_cluster(cluster, rke)
    result = [to_object(rke), to_object(capi)]
    result.extend(machine_deployments(cluster, capi, store, schemas or store))
    return result


def rke_cluster(cluster: Cluster) -> RKECluster:
    return RKECluster(
        metadata=ObjectMeta(name=cluster.name, namespace=cluster.namespace),
        spec=RKEClusterSpec(
            cloud_credential_secret_name=cluster.spec.cloud_credential_secret_name,
            kubernetes_version=cluster.spec.kubernetes_version,
            management_cluster_name=cluster.status.cluster_name,
            upgrade_strategy={},
        ),
    )


def capi_cluster(cluster: Cluster, rke: RKECluster) -> CAPICluster:
    # raises TypeRegistrationError: a missing entry is a build defect
    rke_gvk = gvk.gvk_for(rke)
    return CAPICluster(
        metadata=ObjectMeta(name=cluster.name, namespace=cluster.namespace),
        spec=CAPIClusterSpec(
            infrastructure_ref=ObjectReference(
                kind=rke_gvk.kind,
                namespace=rke.metadata.namespace,
                name=rke.metadata.name,
                api_version=rke_gvk.api_version,
            ),
        ),
    )


def is_valid_pool(pool: NodePool) -> bool:
    ref = pool.node_config
    return bool(pool.name and ref is not None and ref.name and ref.kind)


def bootstrap_template_name(cluster_name: str) -> str:
    return safe_concat_name(cluster_name, "bootstrap", "template")


def node_pool_name(cluster_name: str, pool_name: str) -> str:
    return safe_concat_name(cluster_name, "nodepool", pool_name)


def machine_template_kind(node_config_kind: str) -> str:
    return node_config_kind.removesuffix("Config") + "MachineTemplate"


def to_machine_template(
    pool_name: str,
    cluster: Cluster,
    pool: NodePool,
    store: ObjectStore,
    schemas: ObjectStore,
) -> dict[str, Any]:
    """Build the machine template for one pool from its node config object."""
    ref = pool.node_config
    assert ref is not None
    api_version = ref.api_version or gvk.DEFAULT_NODE_CONFIG_API_VERSION
    node_gvk = GroupVersionKind.from_api_version_and_kind(api_version, ref.kind)

    data = store.get(node_gvk, cluster.namespace, ref.name)
    prune_by_schema(node_gvk.kind, data, schemas)
    data["common"] = pool.common_config()

    return {
        "kind": machine_template_kind(ref.kind),
        "apiVersion": gvk.MACHINE_TEMPLATE_API_VERSION,
        "metadata": {
            "name": pool_name,
            "namespace": cluster.namespace,
        },
        "spec": {
            "template": {
                "spec": data,
            },
        },
    }


def machine_deployments(
    cluster: Cluster,
    capi: CAPICluster,
    store: ObjectStore,
    schemas: ObjectStore,
) -> list[dict[str, Any]]:
    pools = cluster.spec.rke_config.node_pools if cluster.spec.rke_config else []
    valid = []
    for pool in pools:
        if is_valid_pool(pool):
            valid.append(pool)
        else:
            logger.debug(
                "Skipping node pool %r of %s/%s: incomplete node config reference",
                pool.name, cluster.namespace, cluster.name,
            )

    if not valid:
        return []

    bootstrap_name = bootstrap_template_name(cluster.name)
    bootstrap_gvk = gvk.RKE_BOOTSTRAP_TEMPLATE
    result: list[dict[str, Any]] = [
        to_object(RKEBootstrapTemplate(
            metadata=ObjectMeta(name=bootstrap_name, namespace=cluster.namespace),
        )),
    ]

    for pool in valid:
        pool_name = node_pool_name(cluster.name, pool.name)
        template = to_machine_template(pool_name, cluster, pool, store, schemas)
        result.append(template)

        deployment = MachineDeployment(
            metadata=ObjectMeta(name=pool_name, namespace=cluster.namespace),
            spec=MachineDeploymentSpec(
                cluster_name=capi.metadata.name,
                replicas=pool.quantity,
                paused=pool.paused or None,
                template=MachineTemplateSpec(
                    spec=MachineSpec(
                        cluster_name=capi.metadata.name,
                        bootstrap=Bootstrap(
                            config_ref=ObjectReference(
                                kind=bootstrap_gvk.kind,
                                namespace=cluster.namespace,
                                name=bootstrap_name,
                                api_version=bootstrap_gvk.api_version,
                            ),
                        ),
                        infrastructure_ref=ObjectReference(
                            kind=template["kind"],
                            namespace=cluster.namespace,
                            name=pool_name,
                            api_version=gvk.MACHINE_TEMPLATE_API_VERSION,
                        ),
                    ),
                ),
            ),
        )

        if pool.rolling_update is not None:
            deployment.spec.strategy = MachineDeploymentStrategy(
                type="RollingUpdate",
                rolling_update=pool.rolling_update.model_copy(),
            )

        labels = deployment.spec.template.metadata.labels
        annotations = deployment.spec.template.metadata.annotations

        if _default_true(pool.etcd_role):
            labels[ETCD_ROLE_LABEL] = "true"

        if _default_true(pool.control_plane_role):
            labels[CONTROL_PLANE_ROLE_LABEL] = "true"
            labels[MACHINE_CONTROL_PLANE_LABEL] = "true"

        if pool.labels:
            _assign(annotations, LABELS_ANNOTATION, pool.labels, sort_keys=True)

        if pool.taints:
            _assign(annotations, TAINTS_ANNOTATION, [t.to_wire() for t in pool.taints])

        result.append(to_object(deployment))

    return result


def _default_true(value: bool | None) -> bool:
    if value is None:
        return True
    return value


def _assign(annotations: dict[str, str], key: str, value: Any, sort_keys: bool = False) -> None:
    # maps encode with sorted keys, structs in field order
    try:
        annotations[key] = json.dumps(value, sort_keys=sort_keys, separators=(",", ":"))
    except (TypeError, ValueError) as exc:
        raise EncodingError(f"Cannot encode {key}: {exc}") from exc
