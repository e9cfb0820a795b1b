"""Tests for the type table and deterministic naming."""

from __future__ import annotations

import pytest
from pydantic import BaseModel

from cluster_provisioner import gvk
from cluster_provisioner.errors import FatalError
from cluster_provisioner.gvk import GroupVersionKind, TypeRegistrationError, gvk_for, to_object, validate_registry
from cluster_provisioner.models import ObjectMeta, RKECluster, RKEClusterSpec
from cluster_provisioner.names import (
    kubeconfig_secret_name,
    management_cluster_name,
    safe_concat_name,
)


class Unregistered(BaseModel):
    name: str = ""


class TestGroupVersionKind:
    def test_api_version(self):
        assert gvk.SECRET.api_version == "v1"
        assert gvk.RKE_CLUSTER.api_version == "rke.cattle.io/v1"

    def test_parse(self):
        parsed = GroupVersionKind.from_api_version_and_kind("cluster.x-k8s.io/v1alpha4", "Cluster")
        assert parsed == gvk.CAPI_CLUSTER

    def test_core_group(self):
        assert GroupVersionKind.of({"apiVersion": "v1", "kind": "Secret"}) == gvk.SECRET

    def test_str(self):
        assert str(gvk.RKE_CLUSTER) == "rke.cattle.io/v1, Kind=RKECluster"


class TestTypeTable:
    def test_lookup_by_type_and_instance(self):
        rke = RKECluster(metadata=ObjectMeta(name="demo"))
        assert gvk_for(RKECluster) == gvk.RKE_CLUSTER
        assert gvk_for(rke) == gvk.RKE_CLUSTER

    def test_unregistered_is_fatal(self):
        with pytest.raises(TypeRegistrationError, match="Unregistered"):
            gvk_for(Unregistered)
        assert issubclass(TypeRegistrationError, FatalError)

    def test_validate_registry(self):
        assert len(validate_registry()) == 4
        with pytest.raises(TypeRegistrationError):
            validate_registry([RKECluster, Unregistered])

    def test_to_object(self):
        obj = to_object(RKECluster(
            metadata=ObjectMeta(name="demo", namespace="ns1"),
            spec=RKEClusterSpec(kubernetes_version="v1.21.4+rke2r1"),
        ))
        assert obj["apiVersion"] == "rke.cattle.io/v1"
        assert obj["kind"] == "RKECluster"
        assert obj["spec"]["kubernetesVersion"] == "v1.21.4+rke2r1"
        assert "status" not in obj


class TestNames:
    def test_short_names_joined(self):
        assert safe_concat_name("demo", "nodepool", "pool1") == "demo-nodepool-pool1"

    def test_long_names_hashed(self):
        name = safe_concat_name("a" * 40, "nodepool", "b" * 40)
        assert len(name) == 63
        assert name.startswith("a" * 40 + "-nodepool-")
        assert name != safe_concat_name("a" * 40, "nodepool", "b" * 39 + "c")

    def test_exactly_63_untouched(self):
        parts = ("a" * 30, "b" * 32)
        assert safe_concat_name(*parts) == "-".join(parts)

    def test_kubeconfig_secret_name(self):
        assert kubeconfig_secret_name("demo") == "demo-kubeconfig"

    def test_management_cluster_name(self):
        name = management_cluster_name("ns1", "demo")
        assert name.startswith("c-m-")
        assert len(name) == 12
        assert name == management_cluster_name("ns1", "demo")
        assert name != management_cluster_name("ns2", "demo")
