"""Credential and kubeconfig manager.

Issues bearer tokens for a deterministic per-cluster service principal
and assembles the kubeconfig secret an agent (or an operator) uses to
reach a cluster through the controlling server.

Token records are never renewed in place: issuance deletes the user's
previous token and creates a new one. Because that delete/create cycle
is not safe against a stale cache, ``get_token`` re-reads the saved
kubeconfig secret uncached before it mints anything.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import secrets
from typing import Any

import yaml

from cluster_provisioner import gvk
from cluster_provisioner.config import ProvisionerConfig
from cluster_provisioner.models import Cluster, ClusterStatus
from cluster_provisioner.names import kubeconfig_secret_name
from cluster_provisioner.settings import Settings
from cluster_provisioner.store.base import NotFoundError, ObjectStore

logger = logging.getLogger(__name__)

USER_ID_LABEL = "authn.management.cattle.io/token-userId"
TOKEN_KIND_LABEL = "authn.management.cattle.io/kind"
TOKEN_HASHED_ANNOTATION = "authn.management.cattle.io/token-hashed"

HASH_VERSION = 2
TOKEN_LENGTH = 54
TOKEN_CHARS = "bcdfghjklmnpqrstvwxz2456789"
SALT_LENGTH = 8
MAX_LABEL_LENGTH = 63


class TokenHashError(ValueError):
    """Raised when a stored token hash is malformed."""


# --- Principal helpers ---


def principal_id(namespace: str, cluster_name: str) -> str:
    return f"system://provisioning/{namespace}/{cluster_name}"


def user_name_for_principal(principal: str) -> str:
    """Stable short user name: ``u-`` + 10 lower-case base32 chars of SHA-256."""
    digest = hashlib.sha256(principal.encode("utf-8")).digest()
    encoded = base64.b32encode(digest).decode("ascii").rstrip("=")
    return "u-" + encoded[:10].lower()


def labels_for_user(principal: str) -> dict[str, str]:
    """Reverse-lookup label carrying the encoded principal id."""
    encoded = base64.b32hexencode(principal.encode("utf-8"))
    key = encoded.decode("ascii").rstrip("=")[:MAX_LABEL_LENGTH]
    return {key: "hashed-principal-name"}


# --- Token values ---


def generate_token() -> str:
    return "".join(secrets.choice(TOKEN_CHARS) for _ in range(TOKEN_LENGTH))


def create_sha256_hash(token: str, salt: bytes | None = None) -> str:
    """Hash *token* as ``$2:<base64 salt>:<base64 sha256(salt + token)>``."""
    if salt is None:
        salt = secrets.token_bytes(SALT_LENGTH)
    digest = hashlib.sha256(salt + token.encode("utf-8")).digest()
    return f"${HASH_VERSION}:{_b64(salt)}:{_b64(digest)}"


def verify_sha256_hash(hashed: str, token: str) -> bool:
    """Check *token* against a value produced by ``create_sha256_hash``.

    Raises:
        TokenHashError: If *hashed* is not a version 2 hash.
    """
    parts = hashed.split(":")
    if len(parts) != 3 or parts[0] != f"${HASH_VERSION}":
        raise TokenHashError(f"Unsupported token hash format: {hashed[:4]!r}...")
    try:
        salt = _unb64(parts[1])
    except ValueError as exc:
        raise TokenHashError(f"Invalid salt encoding: {exc}") from exc
    return hmac.compare_digest(create_sha256_hash(token, salt), hashed)


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii").rstrip("=")


def _unb64(data: str) -> bytes:
    return base64.b64decode(data + "=" * (-len(data) % 4), validate=True)


def secret_value(secret: dict[str, Any], key: str) -> str:
    """Decode one base64 ``data`` entry of a secret (``""`` when absent)."""
    raw = (secret.get("data") or {}).get(key)
    if not raw:
        return ""
    return base64.b64decode(raw).decode("utf-8")


class KubeconfigManager:
    """Issues cluster credentials and builds kubeconfig secrets.

    Args:
        store: Authoritative reads and all writes.
        settings: Runtime settings (server URL, CA, token hashing).
        cache: Optional cached view of *store* for the first-tier secret
            read. Defaults to *store*.
    """

    def __init__(
        self,
        store: ObjectStore,
        settings: Settings,
        cache: ObjectStore | None = None,
    ) -> None:
        self._store = store
        self._settings = settings
        self._cache = cache or store

    @property
    def config(self) -> ProvisionerConfig:
        return self._settings.config

    # --- Tokens ---

    def get_token(self, namespace: str, cluster_name: str) -> str:
        """Return the ``user:token`` credential for a cluster, minting one if needed."""
        secret_name = kubeconfig_secret_name(cluster_name)

        token = self._saved_token(self._cache, namespace, secret_name)
        if token:
            return token

        token = self._saved_token(self._store, namespace, secret_name)
        if token:
            return token

        user_name = self.ensure_user(namespace, cluster_name)
        return self.create_user_token(user_name)

    def ensure_user(self, namespace: str, cluster_name: str) -> str:
        """Create the cluster's service user if absent; return its name."""
        principal = principal_id(namespace, cluster_name)
        user_name = user_name_for_principal(principal)
        try:
            self._cache.get(gvk.USER, "", user_name)
        except NotFoundError:
            logger.info("Creating service user %s for %s", user_name, principal)
            self._store.create({
                "apiVersion": gvk.USER.api_version,
                "kind": gvk.USER.kind,
                "metadata": {
                    "name": user_name,
                    "labels": labels_for_user(principal),
                },
                "principalIds": [principal],
            })
        return user_name

    def create_user_token(self, user_name: str) -> str:
        """Replace the user's token and return the cleartext ``user:token``."""
        try:
            self._store.delete(gvk.TOKEN, "", user_name)
            logger.debug("Deleted previous token for %s", user_name)
        except NotFoundError:
            pass

        value = generate_token()
        record: dict[str, Any] = {
            "apiVersion": gvk.TOKEN.api_version,
            "kind": gvk.TOKEN.kind,
            "metadata": {
                "name": user_name,
                "labels": {
                    USER_ID_LABEL: user_name,
                    TOKEN_KIND_LABEL: "provisioning",
                },
                "annotations": {},
            },
            "userId": user_name,
            "authProvider": "local",
            "isDerived": True,
            "token": value,
        }

        if self._settings.token_hashing():
            record["token"] = create_sha256_hash(value)
            record["metadata"]["annotations"][TOKEN_HASHED_ANNOTATION] = "true"

        self._store.create(record)
        return f"{user_name}:{value}"

    def _saved_token(self, store: ObjectStore, namespace: str, secret_name: str) -> str:
        try:
            secret = store.get(gvk.SECRET, namespace, secret_name)
        except NotFoundError:
            return ""
        return secret_value(secret, "token")

    # --- Server URL and kubeconfig ---

    def get_server_url_and_ca(self) -> tuple[str, str]:
        """Resolve the server base URL and CA bundle.

        The in-cluster service address wins when the server deployment is
        scaled up or a server daemonset exists; otherwise the configured
        public URL and CA apply.
        """
        cfg = self.config
        if self._internal_server_running():
            url = f"https://{cfg.service_name}.{cfg.system_namespace}"
            secret = self._cache.get(gvk.SECRET, cfg.system_namespace, cfg.internal_ca_secret)
            return url, secret_value(secret, "tls.crt")
        return self._settings.server_url_and_ca()

    def _internal_server_running(self) -> bool:
        cfg = self.config
        try:
            deployment = self._cache.get(gvk.DEPLOYMENT, cfg.system_namespace, cfg.service_name)
        except NotFoundError:
            pass
        else:
            replicas = (deployment.get("spec") or {}).get("replicas")
            if replicas is not None and replicas != 0:
                return True

        try:
            self._cache.get(gvk.DAEMONSET, cfg.system_namespace, cfg.service_name)
        except NotFoundError:
            return False
        return True

    def get_kubeconfig(self, cluster: Cluster, status: ClusterStatus) -> dict[str, Any] | None:
        """Build the ``{cluster}-kubeconfig`` secret for *cluster*.

        Returns ``None`` when the cluster already imports a user-supplied
        secret of that name.
        """
        name = kubeconfig_secret_name(cluster.name)
        imported = cluster.spec.imported_config
        if imported is not None and imported.kube_config_secret_name == name:
            return None

        token = self.get_token(cluster.namespace, cluster.name)
        server_url, ca = self.get_server_url_and_ca()
        document = build_kubeconfig(
            f"{server_url}/k8s/clusters/{status.cluster_name}", ca, token,
        )

        return {
            "apiVersion": gvk.SECRET.api_version,
            "kind": gvk.SECRET.kind,
            "metadata": {
                "name": name,
                "namespace": cluster.namespace,
            },
            "data": {
                "value": base64.b64encode(document.encode("utf-8")).decode("ascii"),
                "token": base64.b64encode(token.encode("utf-8")).decode("ascii"),
            },
        }


def build_kubeconfig(server: str, ca: str, token: str) -> str:
    """Render a single-cluster, single-context kubeconfig document."""
    cluster: dict[str, Any] = {"server": server}
    ca = ca.strip()
    if ca:
        cluster["certificate-authority-data"] = base64.b64encode(ca.encode("utf-8")).decode("ascii")

    config = {
        "apiVersion": "v1",
        "kind": "Config",
        "clusters": [{"name": "cluster", "cluster": cluster}],
        "users": [{"name": "user", "user": {"token": token}}],
        "contexts": [{"name": "default", "context": {"cluster": "cluster", "user": "user"}}],
        "current-context": "default",
        "preferences": {},
    }
    return yaml.safe_dump(config, default_flow_style=False, sort_keys=False)
