"""Runtime settings read from ``Setting`` records.

A ``Setting`` record (``management.cattle.io/v3``) carries ``value`` and
``default``; the effective value is ``value`` when non-empty, else
``default``. When no record exists the injected ``ProvisionerConfig``
supplies the fallback. Every accessor re-reads the store so a changed
setting takes effect on the next call.
"""

from __future__ import annotations

from cluster_provisioner import gvk
from cluster_provisioner.config import ProvisionerConfig
from cluster_provisioner.store.base import NotFoundError, ObjectStore

SERVER_URL = "server-url"
CACERTS = "cacerts"
TOKEN_HASHING = "token-hashing"


class Settings:
    """Setting lookups layered over a ``ProvisionerConfig``."""

    def __init__(self, store: ObjectStore, config: ProvisionerConfig) -> None:
        self._store = store
        self._config = config

    @property
    def config(self) -> ProvisionerConfig:
        return self._config

    def get(self, name: str, fallback: str = "") -> str:
        try:
            setting = self._store.get(gvk.SETTING, "", name)
        except NotFoundError:
            return fallback
        value = setting.get("value") or setting.get("default") or ""
        return value or fallback

    def get_bool(self, name: str, fallback: bool = False) -> bool:
        value = self.get(name, "")
        if not value:
            return fallback
        return value.strip().lower() == "true"

    def token_hashing(self) -> bool:
        return self.get_bool(TOKEN_HASHING, self._config.token_hashing)

    def server_url_and_ca(self) -> tuple[str, str]:
        """Return the configured public server URL and CA bundle."""
        server_url = self.get(SERVER_URL, self._config.server_url).rstrip("/")
        ca = self.get(CACERTS, "") or self._config.read_cacerts()
        return server_url, ca
