"""Declarative apply backends."""

from cluster_provisioner.apply.applier import Applier, ApplyError, StoreApplier

__all__ = ["Applier", "ApplyError", "StoreApplier"]
