"""Core data models for cluster-provisioner.

Defines the schemas for:
- The user-facing cluster declaration (spec and status)
- Node pools and their infrastructure references
- The typed objects the generator emits (control plane, Cluster-API
  cluster, machine deployments, bootstrap template)

All models serialise with camelCase wire names
(``model_dump(by_alias=True)``) and accept either spelling on input.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class KubeModel(BaseModel):
    """Base for models that mirror Kubernetes-style wire objects."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Shared ---


class ObjectMeta(KubeModel):
    name: str = ""
    namespace: str = ""
    generate_name: str | None = None
    uid: str | None = None
    resource_version: str | None = None
    generation: int | None = None
    labels: dict[str, str] | None = None
    annotations: dict[str, str] | None = None


class ObjectReference(KubeModel):
    api_version: str = ""
    kind: str = ""
    namespace: str = ""
    name: str = ""


# --- Cluster declaration ---


class RollingUpdate(KubeModel):
    """Rolling-update bounds; ints or percentage strings such as ``"25%"``."""

    max_unavailable: int | str | None = None
    max_surge: int | str | None = None


class Taint(KubeModel):
    key: str
    value: str = ""
    effect: str
    time_added: str | None = None

    def to_wire(self) -> dict[str, Any]:
        data = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        if not data.get("value"):
            data.pop("value", None)
        return data


class NodePool(KubeModel):
    """A named group of machines sharing infrastructure config and role.

    ``etcd_role`` and ``control_plane_role`` default to true when unset.
    ``labels``, ``taints`` and ``cloud_credential_secret_name`` are the
    settings shared by every node of the pool.
    """

    name: str = ""
    node_config: ObjectReference | None = None
    quantity: int | None = None
    etcd_role: bool | None = None
    control_plane_role: bool | None = None
    worker_role: bool | None = None
    paused: bool = False
    rolling_update: RollingUpdate | None = None
    labels: dict[str, str] = Field(default_factory=dict)
    taints: list[Taint] = Field(default_factory=list)
    cloud_credential_secret_name: str = ""

    def common_config(self) -> dict[str, Any]:
        """Encode the shared node settings, dropping empty values."""
        data: dict[str, Any] = {}
        if self.labels:
            data["labels"] = dict(self.labels)
        if self.taints:
            data["taints"] = [t.to_wire() for t in self.taints]
        if self.cloud_credential_secret_name:
            data["cloudCredentialSecretName"] = self.cloud_credential_secret_name
        return data


class RKEConfig(KubeModel):
    node_pools: list[NodePool] = Field(default_factory=list)


class ImportedConfig(KubeModel):
    kube_config_secret_name: str = ""


class ClusterAPIConfig(KubeModel):
    cluster_name: str = ""


class ClusterSpec(KubeModel):
    cloud_credential_secret_name: str = ""
    kubernetes_version: str = ""
    imported_config: ImportedConfig | None = None
    cluster_api_config: ClusterAPIConfig | None = Field(default=None, alias="clusterAPIConfig")
    rke_config: RKEConfig | None = None


class ClusterStatus(KubeModel):
    cluster_name: str = ""
    agent_deployed: bool = False
    ready: bool = False
    observed_generation: int | None = None


class Cluster(KubeModel):
    """The top-level user-facing cluster declaration."""

    api_version: str = "rancher.cattle.io/v1"
    kind: str = "Cluster"
    metadata: ObjectMeta
    spec: ClusterSpec = Field(default_factory=ClusterSpec)
    status: ClusterStatus = Field(default_factory=ClusterStatus)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace


# --- Generated objects ---


class Endpoint(KubeModel):
    host: str
    port: int


class RKEClusterSpec(KubeModel):
    cloud_credential_secret_name: str = ""
    kubernetes_version: str = ""
    management_cluster_name: str = ""
    upgrade_strategy: dict[str, Any] = Field(default_factory=dict)
    control_plane_endpoint: Endpoint | None = None


class RKEClusterStatus(KubeModel):
    ready: bool = False
    conditions: list[dict[str, Any]] = Field(default_factory=list)


class RKECluster(KubeModel):
    """Control-plane object projected from the cluster declaration."""

    metadata: ObjectMeta
    spec: RKEClusterSpec = Field(default_factory=RKEClusterSpec)
    status: RKEClusterStatus | None = None


class CAPIClusterSpec(KubeModel):
    infrastructure_ref: ObjectReference | None = None


class CAPICluster(KubeModel):
    """Provider-agnostic cluster handle the machine deployments attach to."""

    metadata: ObjectMeta
    spec: CAPIClusterSpec = Field(default_factory=CAPIClusterSpec)


class MachineDeploymentStrategy(KubeModel):
    type: str = "RollingUpdate"
    rolling_update: RollingUpdate | None = None


class Bootstrap(KubeModel):
    config_ref: ObjectReference | None = None


class MachineSpec(KubeModel):
    cluster_name: str
    bootstrap: Bootstrap
    infrastructure_ref: ObjectReference


class TemplateMeta(KubeModel):
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)


class MachineTemplateSpec(KubeModel):
    metadata: TemplateMeta = Field(default_factory=TemplateMeta)
    spec: MachineSpec


class MachineDeploymentSpec(KubeModel):
    cluster_name: str
    replicas: int | None = None
    template: MachineTemplateSpec
    strategy: MachineDeploymentStrategy | None = None
    paused: bool | None = None


class MachineDeployment(KubeModel):
    metadata: ObjectMeta
    spec: MachineDeploymentSpec


class RKEBootstrapTemplate(KubeModel):
    metadata: ObjectMeta
    spec: dict[str, Any] = Field(default_factory=dict)
