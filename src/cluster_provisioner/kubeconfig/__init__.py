"""Cluster credentials and kubeconfig secrets."""

from cluster_provisioner.kubeconfig.manager import (
    KubeconfigManager,
    create_sha256_hash,
    principal_id,
    user_name_for_principal,
    verify_sha256_hash,
)

__all__ = [
    "KubeconfigManager",
    "create_sha256_hash",
    "principal_id",
    "user_name_for_principal",
    "verify_sha256_hash",
]
