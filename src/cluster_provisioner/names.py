"""Deterministic object names."""

from __future__ import annotations

import base64
import hashlib

MAX_NAME_LENGTH = 63


def safe_concat_name(*parts: str) -> str:
    """Join name parts with ``-``, keeping the result a valid object name.

    Names over 63 characters are cut to 57 and suffixed with ``-`` and the
    first five hex characters of the SHA-256 of the full name, so distinct
    long inputs stay distinct.
    """
    full = "-".join(parts)
    if len(full) <= MAX_NAME_LENGTH:
        return full
    digest = hashlib.sha256(full.encode("utf-8")).hexdigest()
    return f"{full[:57]}-{digest[:5]}"


def kubeconfig_secret_name(cluster_name: str) -> str:
    return cluster_name + "-kubeconfig"


def management_cluster_name(namespace: str, name: str) -> str:
    """Derive the managed-cluster id for a cluster: ``c-m-`` + 8 base32 chars."""
    digest = hashlib.sha256(f"{namespace}/{name}".encode()).digest()
    encoded = base64.b32encode(digest).decode("ascii").rstrip("=").lower()
    return f"c-m-{encoded[:8]}"
