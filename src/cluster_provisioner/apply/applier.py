"""Applier protocol and the built-in StoreApplier.

An applier takes a desired object set tagged with a set id and makes the
target match it: missing objects are created, changed objects updated,
and objects previously applied under the same set id (and owner) that
are no longer desired are pruned.
"""

from __future__ import annotations

import copy
import json
import logging
from typing import Any, Protocol, runtime_checkable

from cluster_provisioner.gvk import GroupVersionKind
from cluster_provisioner.store.base import NotFoundError, ObjectStore

logger = logging.getLogger(__name__)

SET_ID_LABEL = "objectset.cattle.io/id"
OWNER_ANNOTATION = "objectset.cattle.io/owner"
APPLIED_ANNOTATION = "objectset.cattle.io/applied"


class ApplyError(Exception):
    """Raised when a desired object set cannot be applied."""


@runtime_checkable
class Applier(Protocol):
    """Protocol for declarative apply backends.

    Any object with an ``apply(objects, set_id, owner)`` method satisfies
    this protocol.
    """

    def apply(
        self,
        objects: list[dict[str, Any]],
        set_id: str,
        owner: str | None = None,
    ) -> None:
        """Create/update *objects* and prune the rest of the set."""
        ...


def three_way_merge(
    live: dict[str, Any],
    last: dict[str, Any],
    desired: dict[str, Any],
) -> dict[str, Any]:
    """Merge *desired* into *live*, dropping keys only *last* had.

    Keys nobody ever applied (written by other actors) are kept; keys the
    previous apply wrote but the new desired state omits are removed.
    Nested dicts merge recursively; everything else is replaced.
    """
    result = dict(live)
    for key in last:
        if key not in desired:
            result.pop(key, None)
    for key, value in desired.items():
        live_value = live.get(key)
        if isinstance(value, dict) and isinstance(live_value, dict):
            last_value = last.get(key)
            result[key] = three_way_merge(
                live_value,
                last_value if isinstance(last_value, dict) else {},
                value,
            )
        else:
            result[key] = copy.deepcopy(value)
    return result


def _prepare(obj: dict[str, Any], set_id: str, owner: str | None) -> dict[str, Any]:
    obj = copy.deepcopy(obj)
    obj.pop("status", None)
    meta = obj.setdefault("metadata", {})
    labels = meta.setdefault("labels", {})
    labels[SET_ID_LABEL] = set_id
    annotations = meta.setdefault("annotations", {})
    if owner:
        annotations[OWNER_ANNOTATION] = owner
    annotations.pop(APPLIED_ANNOTATION, None)
    annotations[APPLIED_ANNOTATION] = json.dumps(obj, sort_keys=True)
    return obj


def _identity(obj: dict[str, Any]) -> tuple[str, str, str, str]:
    gvk = GroupVersionKind.of(obj)
    meta = obj.get("metadata", {})
    return (gvk.group, gvk.kind, meta.get("namespace") or "", meta.get("name") or "")


class StoreApplier:
    """Applies object sets to an ``ObjectStore``.

    ``cache_types`` lists kinds that are pruned even when the current
    desired set holds none of them, so a set that shrinks to zero objects
    of a kind still cleans that kind up.
    """

    def __init__(
        self,
        store: ObjectStore,
        cache_types: list[GroupVersionKind] | None = None,
    ) -> None:
        self._store = store
        self._cache_types = list(cache_types or [])

    def with_cache_types(self, *types: GroupVersionKind) -> StoreApplier:
        return StoreApplier(self._store, [*self._cache_types, *types])

    def apply(
        self,
        objects: list[dict[str, Any]],
        set_id: str,
        owner: str | None = None,
    ) -> None:
        desired: set[tuple[str, str, str, str]] = set()
        kinds: dict[tuple[str, str], GroupVersionKind] = {
            (t.group, t.kind): t for t in self._cache_types
        }

        for raw in objects:
            obj = _prepare(raw, set_id, owner)
            gvk = GroupVersionKind.of(obj)
            kinds.setdefault((gvk.group, gvk.kind), gvk)
            desired.add(_identity(obj))
            self._apply_one(gvk, obj)

        for gvk in kinds.values():
            for live in self._store.list(gvk, labels={SET_ID_LABEL: set_id}):
                annotations = live["metadata"].get("annotations") or {}
                if owner and annotations.get(OWNER_ANNOTATION) != owner:
                    continue
                if _identity(live) in desired:
                    continue
                meta = live["metadata"]
                logger.info(
                    "Pruning %s %s/%s from set %s",
                    gvk.kind, meta.get("namespace", ""), meta["name"], set_id,
                )
                try:
                    self._store.delete(gvk, meta.get("namespace") or "", meta["name"])
                except NotFoundError:
                    pass

    def _apply_one(self, gvk: GroupVersionKind, obj: dict[str, Any]) -> None:
        meta = obj["metadata"]
        namespace = meta.get("namespace") or ""
        try:
            live = self._store.get(gvk, namespace, meta["name"])
        except NotFoundError:
            logger.debug("Creating %s %s/%s", gvk.kind, namespace, meta["name"])
            self._store.create(obj)
            return

        live_annotations = live["metadata"].get("annotations") or {}
        last = json.loads(live_annotations.get(APPLIED_ANNOTATION) or "{}")
        merged = three_way_merge(live, last, obj)
        if merged != live:
            logger.debug("Updating %s %s/%s", gvk.kind, namespace, meta["name"])
            self._store.update(merged)
