"""Tests for InMemoryObjectStore."""

from __future__ import annotations

from typing import Any

import pytest

from cluster_provisioner import gvk
from cluster_provisioner.store import (
    AlreadyExistsError,
    ConflictError,
    InMemoryObjectStore,
    NotFoundError,
    ObjectStore,
)
from cluster_provisioner.store.base import matches_labels, object_key, split_key


def _secret(name: str, namespace: str = "ns1", **labels: str) -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": {"name": name, "namespace": namespace, "labels": dict(labels)},
        "data": {},
    }


class TestCRUD:
    def test_satisfies_protocol(self) -> None:
        assert isinstance(InMemoryObjectStore(), ObjectStore)

    def test_create_and_get(self) -> None:
        store = InMemoryObjectStore()
        created = store.create(_secret("a"))
        assert created["metadata"]["uid"]
        assert created["metadata"]["generation"] == 1
        assert store.get(gvk.SECRET, "ns1", "a") == created

    def test_get_missing(self) -> None:
        with pytest.raises(NotFoundError):
            InMemoryObjectStore().get(gvk.SECRET, "ns1", "a")

    def test_duplicate_create(self) -> None:
        store = InMemoryObjectStore()
        store.create(_secret("a"))
        with pytest.raises(AlreadyExistsError):
            store.create(_secret("a"))

    def test_same_name_different_namespace(self) -> None:
        store = InMemoryObjectStore()
        store.create(_secret("a", "ns1"))
        store.create(_secret("a", "ns2"))
        assert len(store.list(gvk.SECRET)) == 2

    def test_kinds_with_same_name_are_separate(self) -> None:
        store = InMemoryObjectStore()
        store.create({"apiVersion": "rancher.cattle.io/v1", "kind": "Cluster", "metadata": {"name": "demo", "namespace": "ns1"}})
        store.create({"apiVersion": "cluster.x-k8s.io/v1alpha4", "kind": "Cluster", "metadata": {"name": "demo", "namespace": "ns1"}})
        assert store.get(gvk.PROVISIONING_CLUSTER, "ns1", "demo")["apiVersion"] == "rancher.cattle.io/v1"
        assert store.get(gvk.CAPI_CLUSTER, "ns1", "demo")["apiVersion"] == "cluster.x-k8s.io/v1alpha4"

    def test_generate_name(self) -> None:
        store = InMemoryObjectStore()
        obj = {"apiVersion": "management.cattle.io/v3", "kind": "ClusterRegistrationToken",
               "metadata": {"generateName": "import-", "namespace": "c-m-1"}}
        first = store.create(obj)
        second = store.create(obj)
        assert first["metadata"]["name"].startswith("import-")
        assert len(first["metadata"]["name"]) == len("import-") + 5
        assert first["metadata"]["name"] != second["metadata"]["name"]

    def test_name_required(self) -> None:
        with pytest.raises(ValueError):
            InMemoryObjectStore().create({"apiVersion": "v1", "kind": "Secret", "metadata": {}})

    def test_returned_objects_are_copies(self) -> None:
        store = InMemoryObjectStore()
        created = store.create(_secret("a"))
        created["data"]["x"] = "y"
        assert store.get(gvk.SECRET, "ns1", "a")["data"] == {}

    def test_update_bumps_generation_on_spec_change(self) -> None:
        store = InMemoryObjectStore()
        obj = store.create({"apiVersion": "v1", "kind": "Secret", "metadata": {"name": "a"}, "spec": {"x": 1}})
        obj["status"] = {"ready": True}
        obj = store.update(obj)
        assert obj["metadata"]["generation"] == 1
        obj["spec"] = {"x": 2}
        assert store.update(obj)["metadata"]["generation"] == 2

    def test_update_conflict(self) -> None:
        store = InMemoryObjectStore()
        stale = store.create(_secret("a"))
        store.update(stale)
        with pytest.raises(ConflictError):
            store.update(stale)

    def test_update_missing(self) -> None:
        with pytest.raises(NotFoundError):
            InMemoryObjectStore().update(_secret("a"))

    def test_delete(self) -> None:
        store = InMemoryObjectStore()
        store.create(_secret("a"))
        store.delete(gvk.SECRET, "ns1", "a")
        with pytest.raises(NotFoundError):
            store.get(gvk.SECRET, "ns1", "a")
        with pytest.raises(NotFoundError):
            store.delete(gvk.SECRET, "ns1", "a")

    def test_list_filters(self) -> None:
        store = InMemoryObjectStore()
        store.create(_secret("b", "ns1", app="x"))
        store.create(_secret("a", "ns1", app="y"))
        store.create(_secret("c", "ns2", app="x"))
        assert [o["metadata"]["name"] for o in store.list(gvk.SECRET, namespace="ns1")] == ["a", "b"]
        assert [o["metadata"]["name"] for o in store.list(gvk.SECRET, labels={"app": "x"})] == ["b", "c"]


class TestIndexes:
    def _by_app(self, obj: dict[str, Any]) -> list[str]:
        app = obj["metadata"].get("labels", {}).get("app")
        return [app] if app else []

    def test_lookup(self) -> None:
        store = InMemoryObjectStore()
        store.add_indexer(gvk.SECRET, "by-app", self._by_app)
        store.create(_secret("a", app="x"))
        store.create(_secret("b", app="x"))
        store.create(_secret("c", app="y"))
        assert [o["metadata"]["name"] for o in store.get_by_index(gvk.SECRET, "by-app", "x")] == ["a", "b"]

    def test_indexer_added_after_objects(self) -> None:
        store = InMemoryObjectStore()
        store.create(_secret("a", app="x"))
        store.add_indexer(gvk.SECRET, "by-app", self._by_app)
        assert len(store.get_by_index(gvk.SECRET, "by-app", "x")) == 1

    def test_rebuilt_on_update_and_delete(self) -> None:
        store = InMemoryObjectStore()
        store.add_indexer(gvk.SECRET, "by-app", self._by_app)
        obj = store.create(_secret("a", app="x"))
        obj["metadata"]["labels"]["app"] = "y"
        store.update(obj)
        assert store.get_by_index(gvk.SECRET, "by-app", "x") == []
        assert len(store.get_by_index(gvk.SECRET, "by-app", "y")) == 1
        store.delete(gvk.SECRET, "ns1", "a")
        assert store.get_by_index(gvk.SECRET, "by-app", "y") == []

    def test_failing_index_function_rejects_create(self) -> None:
        store = InMemoryObjectStore()
        store.add_indexer(gvk.SECRET, "by-app", self._by_app)
        store.create(_secret("a", app="x"))

        def picky(obj: dict[str, Any]) -> list[str]:
            if obj["metadata"]["name"] == "bad":
                raise ValueError("cannot index")
            return []

        store.add_indexer(gvk.SECRET, "picky", picky)
        with pytest.raises(ValueError):
            store.create(_secret("bad", app="x"))

        with pytest.raises(NotFoundError):
            store.get(gvk.SECRET, "ns1", "bad")
        assert [o["metadata"]["name"] for o in store.get_by_index(gvk.SECRET, "by-app", "x")] == ["a"]
        store.create(_secret("bad2", app="x"))
        assert len(store.get_by_index(gvk.SECRET, "by-app", "x")) == 2

    def test_failing_index_function_rejects_update(self) -> None:
        store = InMemoryObjectStore()

        def by_app_strict(obj: dict[str, Any]) -> list[str]:
            app = obj["metadata"]["labels"]["app"]
            if app == "boom":
                raise ValueError("cannot index")
            return [app]

        store.add_indexer(gvk.SECRET, "by-app", by_app_strict)
        obj = store.create(_secret("a", app="x"))
        obj["metadata"]["labels"]["app"] = "boom"
        with pytest.raises(ValueError):
            store.update(obj)

        current = store.get(gvk.SECRET, "ns1", "a")
        assert current["metadata"]["labels"]["app"] == "x"
        assert current["metadata"]["resourceVersion"] == obj["metadata"]["resourceVersion"]
        assert len(store.get_by_index(gvk.SECRET, "by-app", "x")) == 1

    def test_failing_index_function_not_registered(self) -> None:
        store = InMemoryObjectStore()
        store.create(_secret("a", app="x"))

        def broken(obj: dict[str, Any]) -> list[str]:
            raise ValueError("cannot index")

        with pytest.raises(ValueError):
            store.add_indexer(gvk.SECRET, "broken", broken)
        with pytest.raises(KeyError):
            store.get_by_index(gvk.SECRET, "broken", "x")
        store.create(_secret("b", app="x"))

    def test_unknown_index(self) -> None:
        with pytest.raises(KeyError):
            InMemoryObjectStore().get_by_index(gvk.SECRET, "nope", "x")


class TestListeners:
    def test_events(self) -> None:
        store = InMemoryObjectStore()
        events: list[tuple[str, str]] = []
        store.add_listener(lambda event, obj: events.append((event, obj["metadata"]["name"])))
        obj = store.create(_secret("a"))
        store.update(obj)
        store.delete(gvk.SECRET, "ns1", "a")
        assert events == [("create", "a"), ("update", "a"), ("delete", "a")]

    def test_listener_may_write(self) -> None:
        store = InMemoryObjectStore()

        def listener(event: str, obj: dict[str, Any]) -> None:
            if event == "create" and obj["metadata"]["name"] == "a":
                store.create(_secret("b"))

        store.add_listener(listener)
        store.create(_secret("a"))
        assert len(store.list(gvk.SECRET)) == 2


class TestKeys:
    def test_object_key(self) -> None:
        assert object_key(_secret("a")) == "ns1/a"
        assert object_key({"metadata": {"name": "c-m-1"}}) == "c-m-1"

    def test_split_key(self) -> None:
        assert split_key("ns1/a") == ("ns1", "a")
        assert split_key("c-m-1") == ("", "c-m-1")

    def test_matches_labels(self) -> None:
        obj = _secret("a", app="x", tier="web")
        assert matches_labels(obj, None)
        assert matches_labels(obj, {"app": "x"})
        assert not matches_labels(obj, {"app": "y"})
