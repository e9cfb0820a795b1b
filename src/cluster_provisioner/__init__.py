"""cluster-provisioner: cluster declarations to infrastructure objects and agent bootstrap."""

__version__ = "0.1.0"

from cluster_provisioner.apply.applier import Applier, ApplyError, StoreApplier
from cluster_provisioner.apply.kubernetes import KubernetesApplier
from cluster_provisioner.config import ProvisionerConfig, find_config, load_config
from cluster_provisioner.errors import FatalError, ProvisionerError, SkipError
from cluster_provisioner.gvk import GroupVersionKind, TypeRegistrationError
from cluster_provisioner.kubeconfig.manager import KubeconfigManager
from cluster_provisioner.models import Cluster, NodePool
from cluster_provisioner.provisioner import Provisioner
from cluster_provisioner.provisioning.imports import ClusterHandler, ManifestFetchError
from cluster_provisioner.provisioning.template import objects
from cluster_provisioner.settings import Settings
from cluster_provisioner.store.kubernetes import KubernetesObjectStore
from cluster_provisioner.store.memory import InMemoryObjectStore

__all__ = [
    "Applier",
    "ApplyError",
    "Cluster",
    "ClusterHandler",
    "FatalError",
    "find_config",
    "GroupVersionKind",
    "InMemoryObjectStore",
    "KubeconfigManager",
    "KubernetesApplier",
    "KubernetesObjectStore",
    "load_config",
    "ManifestFetchError",
    "NodePool",
    "objects",
    "Provisioner",
    "ProvisionerConfig",
    "ProvisionerError",
    "Settings",
    "SkipError",
    "StoreApplier",
    "TypeRegistrationError",
    "__version__",
]
