"""Per-kind controller: a work queue plus an ordered handler chain.

Three handler shapes are supported, run in registration order on every
sync of a key:

- change handlers ``fn(key, obj) -> obj | None``: a returned object whose
  spec differs from the input has its spec persisted.
- status handlers ``fn(obj, status) -> status``: a changed status is
  persisted.
- generating handlers ``fn(obj, status) -> (objects | None, status)``:
  the objects are applied under a set id owned by this object (``None``
  skips the apply), then a changed status is persisted.

Error handling per sync: ``SkipError`` is dropped silently (the handler
already scheduled a re-check), ``FatalError`` is logged and dropped, and
anything else re-queues the key with exponential backoff.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from cluster_provisioner.apply.applier import Applier
from cluster_provisioner.errors import FatalError, SkipError
from cluster_provisioner.gvk import GroupVersionKind
from cluster_provisioner.runtime.queue import WorkQueue
from cluster_provisioner.store.base import NotFoundError, ObjectStore, object_key, split_key

logger = logging.getLogger(__name__)

ChangeHandler = Callable[[str, Any], Any]
StatusHandler = Callable[[Any, Any], Any]
GeneratingHandler = Callable[[Any, Any], tuple[list[dict[str, Any]] | None, Any]]


@dataclass
class _Registration:
    name: str
    shape: str  # "change", "status" or "generate"
    fn: Callable[..., Any]
    applier: Applier | None = None
    set_id: str = ""


def _dump(model: BaseModel | None) -> dict[str, Any] | None:
    if model is None:
        return None
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


class Controller:
    """Drives the handlers registered for one kind."""

    def __init__(
        self,
        gvk: GroupVersionKind,
        model: type[BaseModel],
        store: ObjectStore,
        queue: WorkQueue | None = None,
    ) -> None:
        self._gvk = gvk
        self._model = model
        self._store = store
        self._queue = queue if queue is not None else WorkQueue()
        self._handlers: list[_Registration] = []

    @property
    def gvk(self) -> GroupVersionKind:
        return self._gvk

    @property
    def queue(self) -> WorkQueue:
        return self._queue

    # --- Registration ---

    def on_change(self, name: str, fn: ChangeHandler) -> None:
        self._handlers.append(_Registration(name, "change", fn))

    def on_status(self, name: str, fn: StatusHandler) -> None:
        self._handlers.append(_Registration(name, "status", fn))

    def on_generate(
        self,
        name: str,
        fn: GeneratingHandler,
        applier: Applier,
        set_id: str,
    ) -> None:
        self._handlers.append(_Registration(name, "generate", fn, applier, set_id))

    # --- Queueing ---

    def enqueue(self, namespace: str, name: str) -> None:
        self._queue.add(f"{namespace}/{name}" if namespace else name)

    def enqueue_after(self, namespace: str, name: str, delay: float) -> None:
        self._queue.add_after(f"{namespace}/{name}" if namespace else name, delay)

    def handles(self, gvk: GroupVersionKind) -> bool:
        return (gvk.group, gvk.kind) == (self._gvk.group, self._gvk.kind)

    def on_event(self, event: str, obj: dict[str, Any]) -> None:
        """Store listener: queue the key of every changed object of this kind."""
        if event == "delete" or not self.handles(GroupVersionKind.of(obj)):
            return
        self._queue.add(object_key(obj))

    # --- Processing ---

    def process_next(self) -> bool:
        """Sync one due key. Returns ``False`` when nothing was due."""
        key = self._queue.get()
        if key is None:
            return False
        try:
            self.sync(key)
        except SkipError:
            logger.debug("Skipped %s %s: not ready", self._gvk.kind, key)
        except FatalError:
            logger.exception("Dropping %s %s after fatal error", self._gvk.kind, key)
            self._queue.forget(key)
        except Exception:
            delay = self._queue.add_rate_limited(key)
            logger.exception(
                "Error syncing %s %s, retrying in %.1fs", self._gvk.kind, key, delay,
            )
        else:
            self._queue.forget(key)
        finally:
            self._queue.done(key)
        return True

    def sync(self, key: str) -> None:
        namespace, name = split_key(key)
        try:
            raw = self._store.get(self._gvk, namespace, name)
        except NotFoundError:
            logger.debug("%s %s no longer exists", self._gvk.kind, key)
            return

        for reg in self._handlers:
            obj = self._model.model_validate(raw)
            if reg.shape == "change":
                result = reg.fn(key, obj)
                if result is not None and _dump(result.spec) != _dump(obj.spec):
                    raw["spec"] = _dump(result.spec)
                    raw = self._store.update(raw)
                continue

            status = obj.status.model_copy(deep=True) if obj.status is not None else None
            if reg.shape == "status":
                new_status = reg.fn(obj, status)
            else:
                objects, new_status = reg.fn(obj, status)
                if objects is not None:
                    assert reg.applier is not None
                    reg.applier.apply(
                        objects,
                        reg.set_id,
                        owner=f"{self._gvk.group}/{self._gvk.kind}/{key}",
                    )
            raw = self._persist_status(raw, obj.status, new_status)

    def _persist_status(
        self,
        raw: dict[str, Any],
        old: BaseModel | None,
        new: BaseModel | None,
    ) -> dict[str, Any]:
        if new is None or _dump(new) == _dump(old):
            return raw
        logger.debug("Updating status of %s %s", self._gvk.kind, object_key(raw))
        raw["status"] = _dump(new)
        return self._store.update(raw)
