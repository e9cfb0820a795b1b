"""Managed-cluster creation and the import/registration handshake.

The handshake has no persisted state field. Every invocation infers how
far it got from the cluster status and from what exists in the store:

1. waiting for the managed-cluster record
2. waiting for a registration token (one is created)
3. waiting for the token's value
4. fetching the agent manifest and applying it to the target cluster
5. ``agentDeployed`` is set; nothing further happens

Each waiting step schedules a re-check after ``requeue_delay`` seconds
and returns without error.
"""

from __future__ import annotations

import base64
import logging
import ssl
import urllib.error
import urllib.request
from collections.abc import Callable
from typing import Any

import yaml

from cluster_provisioner import gvk
from cluster_provisioner.apply.applier import Applier
from cluster_provisioner.config import DEFAULT_REQUEUE_DELAY
from cluster_provisioner.errors import ProvisionerError, SkipError
from cluster_provisioner.kubeconfig.manager import KubeconfigManager
from cluster_provisioner.models import Cluster, ClusterStatus, ImportedConfig
from cluster_provisioner.names import kubeconfig_secret_name, management_cluster_name
from cluster_provisioner.store.base import NotFoundError, ObjectStore

logger = logging.getLogger(__name__)

SET_ID = "cluster-create"
AGENT_SET_ID = "cluster-agent-setup"
CACHE_TYPES = [gvk.MANAGEMENT_CLUSTER, gvk.SECRET]
DESCRIPTION_ANNOTATION = "field.cattle.io/description"


class ManifestFetchError(ProvisionerError):
    """Raised when the agent manifest cannot be downloaded or parsed."""


def _default_applier_factory(kubeconfig: bytes) -> Applier:
    from cluster_provisioner.apply.kubernetes import KubernetesApplier

    return KubernetesApplier.from_kubeconfig(kubeconfig)


def ssl_context_for_ca(ca: str) -> ssl.SSLContext:
    """TLS context trusting *ca* only, or the default trust store when empty."""
    if not ca:
        return ssl.create_default_context()
    return ssl.create_default_context(cadata=ca)


def fetch_manifest(url: str, ca: str, timeout: float = 30.0) -> list[dict[str, Any]]:
    """GET a multi-document YAML manifest and return its non-empty documents."""
    req = urllib.request.Request(url, headers={"Accept": "application/yaml"}, method="GET")
    try:
        with urllib.request.urlopen(req, timeout=timeout, context=ssl_context_for_ca(ca)) as resp:
            body = resp.read().decode("utf-8")
    except urllib.error.HTTPError as exc:
        raise ManifestFetchError(f"GET {_redact(url)} returned HTTP {exc.code}") from exc
    except (urllib.error.URLError, OSError) as exc:
        raise ManifestFetchError(f"GET {_redact(url)} failed: {exc}") from exc

    try:
        docs = list(yaml.safe_load_all(body))
    except yaml.YAMLError as exc:
        raise ManifestFetchError(f"Invalid manifest from {_redact(url)}: {exc}") from exc
    return [doc for doc in docs if isinstance(doc, dict) and doc]


def _redact(url: str) -> str:
    # the token is the last path segment
    head, _, _ = url.rpartition("/")
    return head + "/***.yaml"


class ClusterHandler:
    """Generating handler for cluster declarations.

    Args:
        store: Object store holding managed clusters, tokens and secrets.
        manager: Credential and kubeconfig manager.
        enqueue_after: ``enqueue_after(namespace, name, delay)`` for
            cluster declarations.
        requeue_delay: Seconds between handshake re-checks.
        applier_factory: Builds an applier for a target cluster from its
            kubeconfig bytes.
        fetch: Manifest fetcher, ``fetch(url, ca) -> documents``.
    """

    def __init__(
        self,
        store: ObjectStore,
        manager: KubeconfigManager,
        enqueue_after: Callable[[str, str, float], None],
        requeue_delay: float = DEFAULT_REQUEUE_DELAY,
        applier_factory: Callable[[bytes], Applier] | None = None,
        fetch: Callable[[str, str], list[dict[str, Any]]] | None = None,
    ) -> None:
        self._store = store
        self._manager = manager
        self._enqueue_after = enqueue_after
        self._requeue_delay = requeue_delay
        self._applier_factory = applier_factory or _default_applier_factory
        self._fetch = fetch or fetch_manifest

    def on_cluster_change(
        self,
        cluster: Cluster,
        status: ClusterStatus,
    ) -> tuple[list[dict[str, Any]] | None, ClusterStatus]:
        if cluster.spec.cluster_api_config is not None:
            return self.capi_cluster(cluster, status)
        if cluster.spec.imported_config is not None:
            return self.import_cluster(cluster, status)
        return self.create_cluster(cluster, status, {})

    def create_cluster(
        self,
        cluster: Cluster,
        status: ClusterStatus,
        spec: dict[str, Any],
    ) -> tuple[list[dict[str, Any]], ClusterStatus]:
        """Emit the managed-cluster record and the cluster's kubeconfig secret."""
        name = management_cluster_name(cluster.namespace, cluster.name)
        annotations = cluster.metadata.annotations or {}
        record = {
            "apiVersion": gvk.MANAGEMENT_CLUSTER.api_version,
            "kind": gvk.MANAGEMENT_CLUSTER.kind,
            "metadata": {
                "name": name,
                "labels": dict(cluster.metadata.labels or {}),
            },
            "spec": {
                **spec,
                "displayName": cluster.name,
                "description": annotations.get(DESCRIPTION_ANNOTATION, ""),
                "fleetWorkspaceName": cluster.namespace,
            },
        }
        objects = [record]

        status.cluster_name = name
        status.observed_generation = cluster.metadata.generation
        status.ready = self._managed_cluster_ready(name)

        secret = self._manager.get_kubeconfig(cluster, status)
        if secret is not None:
            objects.append(secret)
        return objects, status

    def capi_cluster(
        self,
        cluster: Cluster,
        status: ClusterStatus,
    ) -> tuple[list[dict[str, Any]], ClusterStatus]:
        """Adopt a Cluster-API cluster through the kubeconfig secret it writes."""
        assert cluster.spec.cluster_api_config is not None
        cluster = cluster.model_copy(deep=True)
        cluster.spec.imported_config = ImportedConfig(
            kube_config_secret_name=kubeconfig_secret_name(
                cluster.spec.cluster_api_config.cluster_name,
            ),
        )
        cluster.spec.cluster_api_config = None
        return self.import_cluster(cluster, status)

    def import_cluster(
        self,
        cluster: Cluster,
        status: ClusterStatus,
    ) -> tuple[list[dict[str, Any]], ClusterStatus]:
        objects, status = self.create_cluster(cluster, status, {"importedConfig": {}})
        if status.agent_deployed or not status.cluster_name:
            return objects, status

        status.agent_deployed = self.deploy_agent(cluster, status)
        return objects, status

    def deploy_agent(self, cluster: Cluster, status: ClusterStatus) -> bool:
        """Advance the handshake one step; ``True`` once the agent is applied."""
        try:
            self._store.get(gvk.MANAGEMENT_CLUSTER, "", status.cluster_name)
        except NotFoundError:
            logger.debug("Waiting for managed cluster %s", status.cluster_name)
            self._requeue(cluster)
            return False

        tokens = self._store.list(gvk.REGISTRATION_TOKEN, namespace=status.cluster_name)
        if not tokens:
            logger.info("Creating registration token for %s", status.cluster_name)
            self._store.create({
                "apiVersion": gvk.REGISTRATION_TOKEN.api_version,
                "kind": gvk.REGISTRATION_TOKEN.kind,
                "metadata": {
                    "generateName": "import-",
                    "namespace": status.cluster_name,
                },
                "spec": {"clusterName": status.cluster_name},
            })
            self._requeue(cluster)
            return False

        token = (tokens[0].get("status") or {}).get("token") or ""
        if not token:
            logger.debug("Waiting for registration token value of %s", status.cluster_name)
            self._requeue(cluster)
            return False

        assert cluster.spec.imported_config is not None
        self.deploy(
            cluster,
            cluster.namespace,
            cluster.spec.imported_config.kube_config_secret_name,
            token,
        )
        return True

    def deploy(self, cluster: Cluster, secret_namespace: str, secret_name: str, token: str) -> None:
        """Fetch the agent manifest and apply it to the target cluster.

        Raises:
            SkipError: The target cluster's kubeconfig secret is missing or
                empty; a re-check has been scheduled.
            ManifestFetchError: The manifest download failed.
        """
        try:
            secret = self._store.get(gvk.SECRET, secret_namespace, secret_name)
        except NotFoundError:
            self._requeue(cluster)
            raise SkipError(f"Kubeconfig secret {secret_namespace}/{secret_name} not found") from None

        data = secret.get("data") or {}
        if not data:
            self._requeue(cluster)
            raise SkipError(f"Kubeconfig secret {secret_namespace}/{secret_name} is empty")

        kubeconfig = base64.b64decode(data.get("value") or "")
        applier = self._applier_factory(kubeconfig)

        server_url, ca = self._manager.get_server_url_and_ca()
        objects = self._fetch(f"{server_url}/v3/import/{token}.yaml", ca)

        logger.info(
            "Applying %d agent objects to cluster %s/%s",
            len(objects), cluster.namespace, cluster.name,
        )
        applier.apply(objects, AGENT_SET_ID)

    def _requeue(self, cluster: Cluster) -> None:
        self._enqueue_after(cluster.namespace, cluster.name, self._requeue_delay)

    def _managed_cluster_ready(self, name: str) -> bool:
        try:
            record = self._store.get(gvk.MANAGEMENT_CLUSTER, "", name)
        except NotFoundError:
            return False
        for condition in (record.get("status") or {}).get("conditions") or []:
            if condition.get("type") == "Ready":
                return condition.get("status") == "True"
        return False
