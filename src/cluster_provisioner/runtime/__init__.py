"""Work queue and per-kind controller runtime."""

from cluster_provisioner.runtime.controller import Controller
from cluster_provisioner.runtime.queue import WorkQueue

__all__ = ["Controller", "WorkQueue"]
