"""cluster-provisioner CLI.

Commands:
    generate        Render the object set generated for a cluster declaration
    principal       Show the service principal derived for a cluster
    hash-token      Hash a token (or verify it against a stored hash)
    check-config    Validate provisioner.yaml and the type table
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

import click
import yaml

from cluster_provisioner import __version__
from cluster_provisioner.config import load_config
from cluster_provisioner.errors import ProvisionerError
from cluster_provisioner.gvk import validate_registry
from cluster_provisioner.kubeconfig.manager import (
    TokenHashError,
    create_sha256_hash,
    labels_for_user,
    principal_id,
    user_name_for_principal,
    verify_sha256_hash,
)
from cluster_provisioner.models import Cluster
from cluster_provisioner.names import kubeconfig_secret_name, management_cluster_name
from cluster_provisioner.provisioning.template import objects as generate_objects
from cluster_provisioner.store.base import StoreError
from cluster_provisioner.store.memory import InMemoryObjectStore


def _load_documents(path: str) -> list[dict[str, Any]]:
    text = Path(path).read_text(encoding="utf-8")
    return [doc for doc in yaml.safe_load_all(text) if isinstance(doc, dict)]


# --- Root group ---


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """cluster-provisioner: cluster declarations to infrastructure objects."""


# --- generate command ---


@cli.command()
@click.argument("cluster_file", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--objects", "-o", "object_files", multiple=True,
    type=click.Path(exists=True, dir_okay=False),
    help="YAML file of node configs and schemas the cluster references (repeatable)",
)
@click.option("--json-output", is_flag=True, help="Output as JSON")
def generate(cluster_file: str, object_files: tuple[str, ...], json_output: bool) -> None:
    """Render the object set generated for a cluster declaration."""
    try:
        docs = _load_documents(cluster_file)
        if not docs:
            raise click.UsageError(f"No cluster declaration in {cluster_file}")
        cluster = Cluster.model_validate(docs[0])

        store = InMemoryObjectStore()
        for path in object_files:
            for doc in _load_documents(path):
                store.create(doc)

        result = generate_objects(cluster, store)
    except (OSError, ValueError, yaml.YAMLError, StoreError, ProvisionerError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if json_output:
        click.echo(json.dumps(result, indent=2))
    else:
        click.echo(yaml.safe_dump_all(result, default_flow_style=False, sort_keys=False), nl=False)


# --- principal command ---


@cli.command()
@click.argument("namespace")
@click.argument("cluster_name")
@click.option("--json-output", is_flag=True, help="Output as JSON")
def principal(namespace: str, cluster_name: str, json_output: bool) -> None:
    """Show the service principal derived for a cluster."""
    pid = principal_id(namespace, cluster_name)
    data = {
        "principal": pid,
        "user": user_name_for_principal(pid),
        "labels": labels_for_user(pid),
        "kubeconfigSecret": kubeconfig_secret_name(cluster_name),
        "managementCluster": management_cluster_name(namespace, cluster_name),
    }
    if json_output:
        click.echo(json.dumps(data, indent=2))
        return
    click.echo(f"Principal:          {data['principal']}")
    click.echo(f"User:               {data['user']}")
    click.echo(f"Kubeconfig secret:  {data['kubeconfigSecret']}")
    click.echo(f"Management cluster: {data['managementCluster']}")


# --- hash-token command ---


@cli.command("hash-token")
@click.argument("token")
@click.option("--verify", "stored", default=None, help="Check TOKEN against this stored hash")
def hash_token(token: str, stored: str | None) -> None:
    """Hash a token, or verify it against a stored hash."""
    if stored is None:
        click.echo(create_sha256_hash(token))
        return

    try:
        ok = verify_sha256_hash(stored, token)
    except TokenHashError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if ok:
        click.echo(click.style("MATCH", fg="green"))
    else:
        click.echo(click.style("NO MATCH", fg="red"))
        sys.exit(1)


# --- check-config command ---


@cli.command("check-config")
@click.option("--config", "config_path", default=None, help="Path to provisioner.yaml")
def check_config(config_path: str | None) -> None:
    """Validate provisioner.yaml and the type table."""
    errors: list[str] = []

    try:
        cfg = load_config(config_path)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        errors.append(f"config: {e}")
        click.echo(click.style("FAIL", fg="red") + f"  config: {e}")
    else:
        source = str(cfg.config_path) if cfg.config_path else "defaults"
        click.echo(click.style("OK", fg="green") + f"  config: {source}")
        if cfg.cacerts_file and not Path(cfg.cacerts_file).is_file():
            errors.append(f"cacerts_file: {cfg.cacerts_file} not found")
            click.echo(click.style("FAIL", fg="red") + f"  cacerts_file: {cfg.cacerts_file} not found")

    try:
        kinds = validate_registry()
    except ProvisionerError as e:
        errors.append(f"types: {e}")
        click.echo(click.style("FAIL", fg="red") + f"  types: {e}")
    else:
        click.echo(click.style("OK", fg="green") + f"  types: {len(kinds)} kind(s) registered")

    if errors:
        click.echo(f"\n{len(errors)} error(s) found.")
        sys.exit(1)
