"""Tests for the cluster reconcile dispatcher."""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock

from cluster_provisioner import gvk
from cluster_provisioner.gvk import GroupVersionKind
from cluster_provisioner.models import (
    Cluster,
    ClusterStatus,
    Endpoint,
    ObjectMeta,
    ObjectReference,
    RKECluster,
    RKEClusterSpec,
)
from cluster_provisioner.provisioning.controller import (
    BY_NODE_INFRA,
    RKEClusterHandler,
    by_node_infra_index,
    match_node_config,
    to_infra_ref_key,
)
from cluster_provisioner.store import InMemoryObjectStore

# --- Helpers ---


def _cluster_obj(
    name: str,
    configs: list[dict[str, Any] | None],
    cluster_name: str = "c-m-1",
    namespace: str = "ns1",
) -> dict[str, Any]:
    pools = []
    for i, ref in enumerate(configs):
        pool: dict[str, Any] = {"name": f"pool-{i}"}
        if ref is not None:
            pool["nodeConfig"] = ref
        pools.append(pool)
    obj: dict[str, Any] = {
        "apiVersion": "rancher.cattle.io/v1",
        "kind": "Cluster",
        "metadata": {"name": name, "namespace": namespace},
        "spec": {"rkeConfig": {"nodePools": pools}},
    }
    if cluster_name:
        obj["status"] = {"clusterName": cluster_name}
    return obj


def _node_config(name: str = "do-small", namespace: str = "ns1") -> dict[str, Any]:
    return {
        "apiVersion": "rancher.cattle.io/v1",
        "kind": "DigitaloceanConfig",
        "metadata": {"name": name, "namespace": namespace},
    }


def _rke_cluster(endpoint: Endpoint | None = None) -> RKECluster:
    return RKECluster(
        metadata=ObjectMeta(name="demo", namespace="ns1"),
        spec=RKEClusterSpec(control_plane_endpoint=endpoint),
    )


def _handler(store: InMemoryObjectStore | None = None) -> tuple[RKEClusterHandler, MagicMock]:
    store = store or InMemoryObjectStore()
    enqueue = MagicMock()
    return RKEClusterHandler(store, store, enqueue), enqueue


# --- Spec defaulting and status ---


class TestUpdateSpec:
    def test_defaults_endpoint(self) -> None:
        handler, _ = _handler()
        result = handler.update_spec("ns1/demo", _rke_cluster())
        assert result is not None
        assert result.spec.control_plane_endpoint == Endpoint(host="localhost", port=6443)

    def test_does_not_mutate_input(self) -> None:
        handler, _ = _handler()
        original = _rke_cluster()
        handler.update_spec("ns1/demo", original)
        assert original.spec.control_plane_endpoint is None

    def test_existing_endpoint_untouched(self) -> None:
        handler, _ = _handler()
        cluster = _rke_cluster(Endpoint(host="10.0.0.1", port=9345))
        assert handler.update_spec("ns1/demo", cluster) is cluster

    def test_deleted_object(self) -> None:
        handler, _ = _handler()
        assert handler.update_spec("ns1/demo", None) is None


class TestOnStatus:
    def test_marks_ready_and_active(self) -> None:
        handler, _ = _handler()
        status = handler.on_status(_rke_cluster(), None)
        assert status.ready is True
        assert {"type": "Stalled", "status": "False"} in status.conditions
        assert {"type": "Reconciling", "status": "False"} in status.conditions

    def test_idempotent(self) -> None:
        handler, _ = _handler()
        first = handler.on_status(_rke_cluster(), None)
        second = handler.on_status(_rke_cluster(), first.model_copy(deep=True))
        assert first == second


# --- Reverse index ---


class TestIndex:
    def test_ref_key_defaults_api_version(self) -> None:
        ref = ObjectReference(kind="DigitaloceanConfig", name="do-small")
        assert to_infra_ref_key(ref, "ns1") == "rancher.cattle.io/v1/DigitaloceanConfig/ns1/do-small"

    def test_ref_key_keeps_api_version(self) -> None:
        ref = ObjectReference(api_version="infra.example.io/v2", kind="FooConfig", name="x")
        assert to_infra_ref_key(ref, "ns2") == "infra.example.io/v2/FooConfig/ns2/x"

    def test_index_values(self) -> None:
        obj = _cluster_obj("demo", [
            {"kind": "DigitaloceanConfig", "name": "do-small"},
            None,
            {"kind": "DigitaloceanConfig", "name": "do-large"},
        ])
        assert by_node_infra_index(obj) == [
            "rancher.cattle.io/v1/DigitaloceanConfig/ns1/do-small",
            "rancher.cattle.io/v1/DigitaloceanConfig/ns1/do-large",
        ]

    def test_no_cluster_name_not_indexed(self) -> None:
        obj = _cluster_obj("demo", [{"kind": "DigitaloceanConfig", "name": "do-small"}], cluster_name="")
        assert by_node_infra_index(obj) == []

    def test_no_rke_config_not_indexed(self) -> None:
        obj = _cluster_obj("demo", [])
        del obj["spec"]["rkeConfig"]
        assert by_node_infra_index(obj) == []


class TestMatchNodeConfig:
    def test_matches_config_kinds(self) -> None:
        assert match_node_config(GroupVersionKind("rancher.cattle.io", "v1", "DigitaloceanConfig"))

    def test_other_group(self) -> None:
        assert not match_node_config(GroupVersionKind("example.io", "v1", "DigitaloceanConfig"))

    def test_other_kind(self) -> None:
        assert not match_node_config(GroupVersionKind("rancher.cattle.io", "v1", "Cluster"))


class TestInfraWatch:
    def _indexed_store(self) -> InMemoryObjectStore:
        store = InMemoryObjectStore()
        store.add_indexer(gvk.PROVISIONING_CLUSTER, BY_NODE_INFRA, by_node_infra_index)
        return store

    def test_requeues_referencing_clusters(self) -> None:
        store = self._indexed_store()
        ref = {"kind": "DigitaloceanConfig", "name": "do-small"}
        store.create(_cluster_obj("one", [ref]))
        store.create(_cluster_obj("two", [ref]))
        store.create(_cluster_obj("three", [{"kind": "DigitaloceanConfig", "name": "other"}]))
        handler, enqueue = _handler(store)

        obj = _node_config()
        assert handler.infra_watch(obj) is obj
        assert sorted(c.args for c in enqueue.call_args_list) == [("ns1", "one"), ("ns1", "two")]

    def test_other_namespace_not_requeued(self) -> None:
        store = self._indexed_store()
        store.create(_cluster_obj("one", [{"kind": "DigitaloceanConfig", "name": "do-small"}]))
        handler, enqueue = _handler(store)
        handler.infra_watch(_node_config(namespace="ns2"))
        enqueue.assert_not_called()

    def test_index_follows_updates(self) -> None:
        store = self._indexed_store()
        created = store.create(_cluster_obj("one", [{"kind": "DigitaloceanConfig", "name": "do-small"}]))
        created["spec"]["rkeConfig"]["nodePools"][0]["nodeConfig"]["name"] = "do-large"
        store.update(created)
        handler, enqueue = _handler(store)

        handler.infra_watch(_node_config("do-small"))
        enqueue.assert_not_called()
        handler.infra_watch(_node_config("do-large"))
        enqueue.assert_called_once_with("ns1", "one")

    def test_none(self) -> None:
        handler, enqueue = _handler(self._indexed_store())
        assert handler.infra_watch(None) is None
        enqueue.assert_not_called()


# --- Cluster generating handler ---


class TestOnRancherClusterChange:
    def _cluster(self, **overrides: Any) -> Cluster:
        obj = _cluster_obj("demo", [{"kind": "DigitaloceanConfig", "name": "do-small"}])
        obj.update(overrides)
        return Cluster.model_validate(obj)

    def test_generates_objects(self) -> None:
        store = InMemoryObjectStore()
        store.create(_node_config())
        handler, _ = _handler(store)
        cluster = self._cluster()
        objs, status = handler.on_rancher_cluster_change(cluster, cluster.status)
        assert objs is not None
        assert [o["kind"] for o in objs][:2] == ["RKECluster", "Cluster"]
        assert status == cluster.status

    def test_noop_without_cluster_name(self) -> None:
        handler, _ = _handler()
        cluster = self._cluster(status={})
        status = ClusterStatus(ready=True)
        objs, result = handler.on_rancher_cluster_change(cluster, status)
        assert objs is None
        assert result is status

    def test_noop_without_rke_config(self) -> None:
        handler, _ = _handler()
        cluster = self._cluster(spec={})
        objs, _ = handler.on_rancher_cluster_change(cluster, cluster.status)
        assert objs is None
