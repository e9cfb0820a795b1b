"""Config file loading and auto-discovery for cluster-provisioner.

Searches for ``provisioner.yaml`` in the current directory and parent
directories, parses it, and resolves relative paths against the config
file's location.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

CONFIG_FILENAME = "provisioner.yaml"

DEFAULT_REQUEUE_DELAY = 2.0


@dataclass(frozen=True)
class ProvisionerConfig:
    """Parsed cluster-provisioner configuration.

    These are the defaults injected into the credential manager and the
    handlers. ``Setting`` records in the object store override the
    server URL, CA bundle and token hashing flag at runtime.
    """

    config_path: Path | None = None
    server_url: str = ""
    cacerts_file: str | None = None
    token_hashing: bool = False
    requeue_delay: float = DEFAULT_REQUEUE_DELAY
    system_namespace: str = "cattle-system"
    service_name: str = "rancher"
    internal_ca_secret: str = "tls-rancher-internal-ca"
    retry_base_delay: float = 0.5
    retry_max_delay: float = 60.0

    def read_cacerts(self) -> str:
        """Return the configured CA bundle PEM, or ``""`` when none is set."""
        if not self.cacerts_file:
            return ""
        return Path(self.cacerts_file).read_text(encoding="utf-8")


def find_config(start: Path | None = None) -> Path | None:
    """Return the nearest ``provisioner.yaml`` at or above *start* (default cwd)."""
    origin = (start or Path.cwd()).resolve()
    for directory in (origin, *origin.parents):
        candidate = directory / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
    return None


def load_config(
    path: str | Path | None = None,
    *,
    auto_discover: bool = True,
) -> ProvisionerConfig:
    """Load provisioner settings.

    An explicit *path* must exist. Without one, the nearest
    ``provisioner.yaml`` is used when *auto_discover* is set; failing
    that, every field keeps its default.
    """
    if path is None:
        found = find_config() if auto_discover else None
        return _parse_config(found) if found is not None else ProvisionerConfig()

    config_path = Path(path).resolve()
    if not config_path.is_file():
        raise FileNotFoundError(f"Config file not found: {config_path}")
    return _parse_config(config_path)


def _parse_config(config_path: Path) -> ProvisionerConfig:
    data = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    if data is None:
        data = {}
    elif not isinstance(data, dict):
        raise ValueError(
            f"{config_path}: top level must be a YAML mapping, not {type(data).__name__}"
        )

    defaults = ProvisionerConfig()
    cacerts = data.get("cacerts_file")

    def _float(key: str) -> float:
        return float(data.get(key, getattr(defaults, key)))

    def _str(key: str) -> str:
        return str(data.get(key, getattr(defaults, key)))

    return ProvisionerConfig(
        config_path=config_path,
        server_url=_str("server_url").rstrip("/"),
        cacerts_file=str((config_path.parent / cacerts).resolve()) if cacerts else None,
        token_hashing=bool(data.get("token_hashing", defaults.token_hashing)),
        requeue_delay=_float("requeue_delay"),
        system_namespace=_str("system_namespace"),
        service_name=_str("service_name"),
        internal_ca_secret=_str("internal_ca_secret"),
        retry_base_delay=_float("retry_base_delay"),
        retry_max_delay=_float("retry_max_delay"),
    )
