"""Group/version/kind identifiers and the static type table.

Every typed object the generator emits is looked up here to get its wire
``apiVersion``/``kind``. The table is explicit: a missing entry is a build
defect, reported as ``TypeRegistrationError`` and never retried.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from cluster_provisioner.errors import FatalError
from cluster_provisioner.models import (
    CAPICluster,
    MachineDeployment,
    RKEBootstrapTemplate,
    RKECluster,
)


class TypeRegistrationError(FatalError):
    """Raised when a type has no entry in the static type table."""


@dataclass(frozen=True)
class GroupVersionKind:
    group: str
    version: str
    kind: str

    @property
    def api_version(self) -> str:
        if not self.group:
            return self.version
        return f"{self.group}/{self.version}"

    @classmethod
    def from_api_version_and_kind(cls, api_version: str, kind: str) -> GroupVersionKind:
        group, _, version = api_version.rpartition("/")
        return cls(group=group, version=version, kind=kind)

    @classmethod
    def of(cls, obj: dict[str, Any]) -> GroupVersionKind:
        """Read the GVK of a Kubernetes-style object dict."""
        return cls.from_api_version_and_kind(obj.get("apiVersion", ""), obj.get("kind", ""))

    def __str__(self) -> str:
        return f"{self.api_version}, Kind={self.kind}"


# --- Well-known kinds ---

SECRET = GroupVersionKind("", "v1", "Secret")
DEPLOYMENT = GroupVersionKind("apps", "v1", "Deployment")
DAEMONSET = GroupVersionKind("apps", "v1", "DaemonSet")

PROVISIONING_CLUSTER = GroupVersionKind("rancher.cattle.io", "v1", "Cluster")

MANAGEMENT_CLUSTER = GroupVersionKind("management.cattle.io", "v3", "Cluster")
REGISTRATION_TOKEN = GroupVersionKind("management.cattle.io", "v3", "ClusterRegistrationToken")
USER = GroupVersionKind("management.cattle.io", "v3", "User")
TOKEN = GroupVersionKind("management.cattle.io", "v3", "Token")
SETTING = GroupVersionKind("management.cattle.io", "v3", "Setting")
DYNAMIC_SCHEMA = GroupVersionKind("management.cattle.io", "v3", "DynamicSchema")

RKE_CLUSTER = GroupVersionKind("rke.cattle.io", "v1", "RKECluster")
RKE_BOOTSTRAP_TEMPLATE = GroupVersionKind("rke.cattle.io", "v1", "RKEBootstrapTemplate")

CAPI_CLUSTER = GroupVersionKind("cluster.x-k8s.io", "v1alpha4", "Cluster")
MACHINE_DEPLOYMENT = GroupVersionKind("cluster.x-k8s.io", "v1alpha4", "MachineDeployment")

MACHINE_TEMPLATE_API_VERSION = "rke-node.cattle.io/v1"
DEFAULT_NODE_CONFIG_API_VERSION = "rancher.cattle.io/v1"

# --- Static type table ---

TYPE_TABLE: dict[type[BaseModel], GroupVersionKind] = {
    RKECluster: RKE_CLUSTER,
    RKEBootstrapTemplate: RKE_BOOTSTRAP_TEMPLATE,
    CAPICluster: CAPI_CLUSTER,
    MachineDeployment: MACHINE_DEPLOYMENT,
}


def gvk_for(obj: BaseModel | type[BaseModel]) -> GroupVersionKind:
    """Return the registered GVK of a typed object or type.

    Raises:
        TypeRegistrationError: If the type is not in ``TYPE_TABLE``.
    """
    cls = obj if isinstance(obj, type) else type(obj)
    try:
        return TYPE_TABLE[cls]
    except KeyError:
        raise TypeRegistrationError(
            f"No group/version/kind registered for type {cls.__name__}"
        ) from None


def to_object(obj: BaseModel) -> dict[str, Any]:
    """Render a typed object as a wire dict with ``apiVersion`` and ``kind`` set."""
    gvk = gvk_for(obj)
    data = obj.model_dump(mode="json", by_alias=True, exclude_none=True)
    return {"apiVersion": gvk.api_version, "kind": gvk.kind, **data}


def validate_registry(types: list[type[BaseModel]] | None = None) -> list[GroupVersionKind]:
    """Check that every type the generator emits resolves to a GVK.

    Called once at startup; raises ``TypeRegistrationError`` on the first
    unregistered type.
    """
    wanted = types if types is not None else [
        RKECluster, CAPICluster, RKEBootstrapTemplate, MachineDeployment,
    ]
    return [gvk_for(cls) for cls in wanted]
