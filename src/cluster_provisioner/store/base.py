"""Object store protocol and error types.

The store is the substrate the handlers read and write: Kubernetes-style
object dicts addressed by group/version/kind, namespace and name.
Cluster-scoped objects use the empty namespace.

Built-in backends: InMemoryObjectStore (indexes, change listeners) and
KubernetesObjectStore (requires the optional ``kubernetes`` package).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from cluster_provisioner.gvk import GroupVersionKind


class StoreError(Exception):
    """Raised when the object store cannot complete an operation."""


class NotFoundError(StoreError):
    """Raised when the requested object does not exist."""


class AlreadyExistsError(StoreError):
    """Raised when creating an object whose name is taken."""


class ConflictError(StoreError):
    """Raised when an update carries a stale ``resourceVersion``."""


@runtime_checkable
class ObjectStore(Protocol):
    """Protocol for object store backends.

    Objects returned are copies; mutating them has no effect until they
    are passed back to ``create()`` or ``update()``.
    """

    def get(self, gvk: GroupVersionKind, namespace: str, name: str) -> dict[str, Any]:
        """Return one object.

        Raises:
            NotFoundError: If no such object exists.
        """
        ...

    def list(
        self,
        gvk: GroupVersionKind,
        namespace: str | None = None,
        labels: dict[str, str] | None = None,
    ) -> list[dict[str, Any]]:
        """List objects of a kind, optionally filtered by namespace and labels."""
        ...

    def create(self, obj: dict[str, Any]) -> dict[str, Any]:
        """Create an object, honouring ``metadata.generateName``.

        Raises:
            AlreadyExistsError: If the name is already taken.
        """
        ...

    def update(self, obj: dict[str, Any]) -> dict[str, Any]:
        """Replace an existing object.

        Raises:
            NotFoundError: If the object does not exist.
            ConflictError: If ``metadata.resourceVersion`` is stale.
        """
        ...

    def delete(self, gvk: GroupVersionKind, namespace: str, name: str) -> None:
        """Delete an object.

        Raises:
            NotFoundError: If the object does not exist.
        """
        ...


def object_key(obj: dict[str, Any]) -> str:
    """Return ``namespace/name`` (or ``name`` when cluster scoped)."""
    meta = obj.get("metadata", {})
    namespace = meta.get("namespace") or ""
    name = meta.get("name") or ""
    return f"{namespace}/{name}" if namespace else name


def split_key(key: str) -> tuple[str, str]:
    """Inverse of ``object_key``: ``"ns/name"`` -> ``("ns", "name")``."""
    namespace, _, name = key.rpartition("/")
    return namespace, name


def matches_labels(obj: dict[str, Any], selector: dict[str, str] | None) -> bool:
    if not selector:
        return True
    labels = obj.get("metadata", {}).get("labels") or {}
    return all(labels.get(k) == v for k, v in selector.items())
