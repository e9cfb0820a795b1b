"""Error classes shared by the handlers and the runtime.

Handlers raise these to tell the runtime how to treat a failed sync:

- ``SkipError``: nothing to do yet. A delayed re-queue has already been
  scheduled, so the runtime neither retries nor reports it.
- ``FatalError``: a build-time defect. Never retried.
- anything else: transient, re-queued with backoff by the runtime.
"""

from __future__ import annotations


class ProvisionerError(Exception):
    """Base class for cluster-provisioner errors."""


class SkipError(ProvisionerError):
    """Raised when a dependency is not ready and a re-check is scheduled."""


class FatalError(ProvisionerError):
    """Raised for programmer errors that retrying cannot fix."""
