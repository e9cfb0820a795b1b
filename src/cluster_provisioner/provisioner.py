"""Provisioner: wires the store, controllers and handlers together.

Usage::

    from cluster_provisioner import Provisioner
    from cluster_provisioner.store import InMemoryObjectStore

    store = InMemoryObjectStore()
    provisioner = Provisioner(store)
    store.create(cluster_dict)
    provisioner.run()      # drain all work that is due now

Change notifications from the store queue the affected keys: cluster
declarations and control-plane objects on their own controllers, node
config objects through the reverse index onto every cluster that uses
them.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from cluster_provisioner import gvk
from cluster_provisioner.apply.applier import Applier, StoreApplier
from cluster_provisioner.config import ProvisionerConfig
from cluster_provisioner.gvk import GroupVersionKind
from cluster_provisioner.kubeconfig.manager import KubeconfigManager
from cluster_provisioner.models import Cluster, RKECluster
from cluster_provisioner.provisioning import controller as rke
from cluster_provisioner.provisioning import imports
from cluster_provisioner.runtime.controller import Controller
from cluster_provisioner.runtime.queue import WorkQueue
from cluster_provisioner.settings import Settings
from cluster_provisioner.store.memory import InMemoryObjectStore

logger = logging.getLogger(__name__)


class Provisioner:
    """In-process controller for cluster declarations.

    Args:
        store: Indexed in-memory store holding every object.
        config: Defaults for settings and timing.
        applier_factory: Builds an applier for a target cluster from its
            kubeconfig bytes (agent manifest apply).
        fetch: Agent manifest fetcher, ``fetch(url, ca) -> documents``.
        _clock: Clock shared by the work queues (tests).
    """

    def __init__(
        self,
        store: InMemoryObjectStore,
        config: ProvisionerConfig | None = None,
        applier_factory: Callable[[bytes], Applier] | None = None,
        fetch: Callable[[str, str], list[dict[str, Any]]] | None = None,
        _clock: Callable[[], float] | None = None,
    ) -> None:
        gvk.validate_registry()

        self._store = store
        self._config = config or ProvisionerConfig()
        self.settings = Settings(store, self._config)
        self.manager = KubeconfigManager(store, self.settings)

        def new_queue() -> WorkQueue:
            return WorkQueue(
                base_delay=self._config.retry_base_delay,
                max_delay=self._config.retry_max_delay,
                _clock=_clock,
            )

        self.clusters = Controller(gvk.PROVISIONING_CLUSTER, Cluster, store, new_queue())
        self.rke_clusters = Controller(gvk.RKE_CLUSTER, RKECluster, store, new_queue())

        self.cluster_handler = imports.ClusterHandler(
            store,
            self.manager,
            self.clusters.enqueue_after,
            requeue_delay=self._config.requeue_delay,
            applier_factory=applier_factory,
            fetch=fetch,
        )
        self.rke_handler = rke.RKEClusterHandler(store, store, self.clusters.enqueue)

        store.add_indexer(gvk.PROVISIONING_CLUSTER, rke.BY_NODE_INFRA, rke.by_node_infra_index)

        applier = StoreApplier(store)
        self.clusters.on_generate(
            "cluster-create",
            self.cluster_handler.on_cluster_change,
            applier.with_cache_types(*imports.CACHE_TYPES),
            imports.SET_ID,
        )
        self.clusters.on_generate(
            "rke-cluster",
            self.rke_handler.on_rancher_cluster_change,
            applier.with_cache_types(*rke.CACHE_TYPES),
            rke.SET_ID,
        )
        self.rke_clusters.on_change("rke", self.rke_handler.update_spec)
        self.rke_clusters.on_status("rke-cluster", self.rke_handler.on_status)

        self._controllers = [self.clusters, self.rke_clusters]
        store.add_listener(self._on_event)

        for controller in self._controllers:
            for obj in store.list(controller.gvk):
                controller.on_event("create", obj)

    def _on_event(self, event: str, obj: dict[str, Any]) -> None:
        kind = GroupVersionKind.of(obj)
        for controller in self._controllers:
            controller.on_event(event, obj)
        if rke.match_node_config(kind):
            self.rke_handler.infra_watch(obj)

    def run_once(self) -> int:
        """Process every key that is due now; return how many syncs ran."""
        processed = 0
        progress = True
        while progress:
            progress = False
            for controller in self._controllers:
                while controller.process_next():
                    processed += 1
                    progress = True
        return processed

    def next_due_in(self) -> float | None:
        delays = [d for c in self._controllers if (d := c.queue.next_due_in()) is not None]
        return min(delays) if delays else None

    def run(self, timeout: float = 0.0) -> int:
        """Process due work, waiting for delayed re-checks up to *timeout* seconds."""
        deadline = time.monotonic() + timeout
        processed = self.run_once()
        while True:
            wait = self.next_due_in()
            if wait is None or time.monotonic() + wait > deadline:
                return processed
            time.sleep(wait)
            processed += self.run_once()
