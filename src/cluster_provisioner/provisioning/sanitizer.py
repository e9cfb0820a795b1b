"""Restrict free-form node config fields to a kind's registered schema."""

from __future__ import annotations

from typing import Any

from cluster_provisioner import gvk
from cluster_provisioner.store.base import NotFoundError, ObjectStore


def prune_by_schema(kind: str, data: dict[str, Any], schemas: ObjectStore) -> dict[str, Any]:
    """Delete every key of *data* the kind's ``DynamicSchema`` does not declare.

    The schema is looked up by the lower-cased kind. A kind with no schema
    is left untouched; any other lookup failure propagates. *data* is
    modified in place and returned.
    """
    try:
        schema = schemas.get(gvk.DYNAMIC_SCHEMA, "", kind.lower())
    except NotFoundError:
        return data

    fields = (schema.get("spec") or {}).get("resourceFields") or {}
    for key in list(data):
        if key not in fields:
            del data[key]
    return data
