"""In-memory object store with custom indexes and change listeners.

All state lives in process memory and is thread-safe via a single lock.
Objects are deep-copied on the way in and out so callers can never mutate
stored state by accident.

Indexes are inverted maps maintained alongside the primary store: on
every write of an object its index keys are recomputed, stale entries
removed and new ones added, so ``get_by_index()`` always reflects the
latest version of every indexed object.
"""

from __future__ import annotations

import copy
import itertools
import secrets
import threading
import uuid
from collections.abc import Callable
from typing import Any

from cluster_provisioner.gvk import GroupVersionKind
from cluster_provisioner.store.base import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
    matches_labels,
    object_key,
)

IndexFunc = Callable[[dict[str, Any]], list[str]]
Listener = Callable[[str, dict[str, Any]], None]

_NAME_SUFFIX_CHARS = "bcdfghjklmnpqrstvwxz2456789"

# (group, kind)
_TypeKey = tuple[str, str]


def _type_key(gvk: GroupVersionKind) -> _TypeKey:
    return (gvk.group, gvk.kind)


class InMemoryObjectStore:
    """Object store backed by dicts.

    Change listeners receive ``(event, obj)`` where event is one of
    ``"create"``, ``"update"``, ``"delete"``. They run after the lock is
    released, in registration order.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._objects: dict[_TypeKey, dict[str, dict[str, Any]]] = {}
        self._indexers: dict[_TypeKey, dict[str, IndexFunc]] = {}
        self._indexes: dict[tuple[_TypeKey, str], dict[str, set[str]]] = {}
        self._indexed_keys: dict[tuple[_TypeKey, str], dict[str, list[str]]] = {}
        self._listeners: list[Listener] = []
        self._versions = itertools.count(1)

    # --- Protocol ---

    def get(self, gvk: GroupVersionKind, namespace: str, name: str) -> dict[str, Any]:
        key = f"{namespace}/{name}" if namespace else name
        with self._lock:
            obj = self._objects.get(_type_key(gvk), {}).get(key)
            if obj is None:
                raise NotFoundError(f"{gvk.kind} {key!r} not found")
            return copy.deepcopy(obj)

    def list(
        self,
        gvk: GroupVersionKind,
        namespace: str | None = None,
        labels: dict[str, str] | None = None,
    ) -> list[dict[str, Any]]:
        with self._lock:
            objs = list(self._objects.get(_type_key(gvk), {}).values())
        result = []
        for obj in objs:
            if namespace is not None and obj["metadata"].get("namespace", "") != namespace:
                continue
            if not matches_labels(obj, labels):
                continue
            result.append(copy.deepcopy(obj))
        return sorted(result, key=object_key)

    def create(self, obj: dict[str, Any]) -> dict[str, Any]:
        obj = copy.deepcopy(obj)
        type_key = _type_key(GroupVersionKind.of(obj))
        meta = obj.setdefault("metadata", {})

        with self._lock:
            bucket = self._objects.setdefault(type_key, {})
            if not meta.get("name") and meta.get("generateName"):
                meta["name"] = self._generate_name(bucket, meta)
            if not meta.get("name"):
                raise ValueError("metadata.name or metadata.generateName is required")

            key = object_key(obj)
            if key in bucket:
                raise AlreadyExistsError(f"{obj['kind']} {key!r} already exists")

            meta["uid"] = str(uuid.uuid4())
            meta["resourceVersion"] = str(next(self._versions))
            meta["generation"] = 1
            values = self._index_values(type_key, obj)
            bucket[key] = obj
            self._reindex(type_key, key, values)
            stored = copy.deepcopy(obj)

        self._notify("create", stored)
        return copy.deepcopy(stored)

    def update(self, obj: dict[str, Any]) -> dict[str, Any]:
        obj = copy.deepcopy(obj)
        type_key = _type_key(GroupVersionKind.of(obj))
        key = object_key(obj)
        meta = obj.setdefault("metadata", {})

        with self._lock:
            bucket = self._objects.get(type_key, {})
            current = bucket.get(key)
            if current is None:
                raise NotFoundError(f"{obj.get('kind')} {key!r} not found")

            current_meta = current["metadata"]
            version = meta.get("resourceVersion")
            if version and version != current_meta["resourceVersion"]:
                raise ConflictError(
                    f"{obj.get('kind')} {key!r} was modified "
                    f"(have {version}, current {current_meta['resourceVersion']})"
                )

            meta["uid"] = current_meta["uid"]
            meta["resourceVersion"] = str(next(self._versions))
            generation = current_meta.get("generation", 1)
            if obj.get("spec") != current.get("spec"):
                generation += 1
            meta["generation"] = generation

            values = self._index_values(type_key, obj)
            bucket[key] = obj
            self._reindex(type_key, key, values)
            stored = copy.deepcopy(obj)

        self._notify("update", stored)
        return copy.deepcopy(stored)

    def delete(self, gvk: GroupVersionKind, namespace: str, name: str) -> None:
        type_key = _type_key(gvk)
        key = f"{namespace}/{name}" if namespace else name
        with self._lock:
            obj = self._objects.get(type_key, {}).pop(key, None)
            if obj is None:
                raise NotFoundError(f"{gvk.kind} {key!r} not found")
            self._reindex(type_key, key, {})

        self._notify("delete", obj)

    # --- Indexes ---

    def add_indexer(self, gvk: GroupVersionKind, name: str, fn: IndexFunc) -> None:
        """Register an index over objects of *gvk* and build it from current state.

        If *fn* raises on any existing object the indexer is not registered.
        """
        type_key = _type_key(gvk)
        with self._lock:
            built: dict[str, set[str]] = {}
            indexed: dict[str, list[str]] = {}
            for key, obj in self._objects.get(type_key, {}).items():
                values = list(fn(copy.deepcopy(obj)) or [])
                for value in values:
                    built.setdefault(value, set()).add(key)
                indexed[key] = values

            self._indexers.setdefault(type_key, {})[name] = fn
            self._indexes[(type_key, name)] = built
            self._indexed_keys[(type_key, name)] = indexed

    def get_by_index(self, gvk: GroupVersionKind, name: str, value: str) -> list[dict[str, Any]]:
        """Return every object of *gvk* whose index function emitted *value*."""
        type_key = _type_key(gvk)
        with self._lock:
            index = self._indexes.get((type_key, name))
            if index is None:
                raise KeyError(f"No index {name!r} registered for {gvk.kind}")
            bucket = self._objects.get(type_key, {})
            keys = sorted(index.get(value, set()))
            return [copy.deepcopy(bucket[k]) for k in keys if k in bucket]

    def _index_values(self, type_key: _TypeKey, obj: dict[str, Any]) -> dict[str, list[str]]:
        # Runs before any write so a failing index function leaves state untouched.
        return {
            name: list(fn(copy.deepcopy(obj)) or [])
            for name, fn in self._indexers.get(type_key, {}).items()
        }

    def _reindex(self, type_key: _TypeKey, key: str, values: dict[str, list[str]]) -> None:
        for name in self._indexers.get(type_key, {}):
            index = self._indexes[(type_key, name)]
            indexed_keys = self._indexed_keys[(type_key, name)]
            for value in indexed_keys.pop(key, []):
                members = index.get(value)
                if members is not None:
                    members.discard(key)
                    if not members:
                        del index[value]

            if name not in values:
                continue
            for value in values[name]:
                index.setdefault(value, set()).add(key)
            indexed_keys[key] = values[name]

    # --- Listeners ---

    def add_listener(self, fn: Listener) -> None:
        self._listeners.append(fn)

    def _notify(self, event: str, obj: dict[str, Any]) -> None:
        for listener in list(self._listeners):
            listener(event, copy.deepcopy(obj))

    @staticmethod
    def _generate_name(bucket: dict[str, dict[str, Any]], meta: dict[str, Any]) -> str:
        namespace = meta.get("namespace") or ""
        while True:
            suffix = "".join(secrets.choice(_NAME_SUFFIX_CHARS) for _ in range(5))
            name = meta["generateName"] + suffix
            key = f"{namespace}/{name}" if namespace else name
            if key not in bucket:
                return name
