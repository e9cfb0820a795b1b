"""Object store backends."""

from cluster_provisioner.store.base import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
    ObjectStore,
    StoreError,
)
from cluster_provisioner.store.memory import InMemoryObjectStore

__all__ = [
    "AlreadyExistsError",
    "ConflictError",
    "InMemoryObjectStore",
    "NotFoundError",
    "ObjectStore",
    "StoreError",
]
