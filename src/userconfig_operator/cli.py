"""UserConfig operator CLI (ucop).

Usage:
    ucop run                          # Start the reconcile loop
    ucop reconcile alice              # Reconcile one UserConfig once
    ucop render alice.yaml            # Print derived objects without a cluster
    ucop translate pods CRUD          # Print the RBAC rule for one grant
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path

import click
import yaml

from .config import ConfigurationError, OperatorConfig
from .permissions import translate as translate_permission
from .quantity import QuantityError
from .resources import render_all, unrecognized_resources
from .spec_loader import SpecLoadError, load_user_config


def load_config() -> OperatorConfig:
    """Load operator configuration, surfacing errors as CLI errors."""
    try:
        return OperatorConfig.from_env()
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e


@click.group()
@click.version_option(version="0.1.0", prog_name="ucop")
def cli() -> None:
    """UserConfig operator.

    Turns UserConfig entities into an isolated namespace with quota, RBAC,
    limit range, network policy, secrets and a scoped kubeconfig.
    """


@cli.command()
def run() -> None:
    """Start the reconcile loop against the current cluster."""
    from .main import main

    sys.exit(asyncio.run(main()))


@cli.command()
@click.argument("name")
@click.option("--verbose", "-v", is_flag=True, help="Log every API write")
def reconcile(name: str, verbose: bool) -> None:
    """Reconcile the UserConfig NAME once and print the result."""
    from kubernetes.config import ConfigException

    from .cluster import ClusterClient, load_kube_config
    from .main import setup_logging
    from .reconciler import Reconciler

    config = load_config()
    setup_logging(json_output=False, level=logging.INFO if verbose else logging.WARNING)

    try:
        load_kube_config()
    except ConfigException as e:
        raise click.ClickException(f"Failed to load cluster credentials: {e}") from e

    cluster = ClusterClient(
        crd_group=config.crd_group,
        crd_version=config.crd_version,
        crd_plural=config.crd_plural,
    )
    result = Reconciler(config, cluster).reconcile(name)

    summary = {
        "name": result.name,
        "state": result.state.value if result.state else None,
        "deleted": result.deleted,
        "skipped": result.skipped,
        "changes_applied": result.changes_applied,
        "outcomes": {key: outcome.value for key, outcome in result.outcomes.items()},
        "duration_seconds": round(result.duration_seconds, 3),
    }
    if result.error is not None:
        summary["error"] = str(result.error)
    click.echo(json.dumps(summary, indent=2))

    if result.error is not None:
        sys.exit(1)


@cli.command()
@click.argument("manifest", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--name", help="Entity name for bare spec files (default: file stem)")
@click.option("--uid", default="", help="UID to write into owner references")
def render(manifest: Path, name: str | None, uid: str) -> None:
    """Print the objects derived from MANIFEST as a YAML stream.

    The kubeconfig Secret is omitted; it needs a live token.
    """
    config = load_config()

    try:
        uc = load_user_config(manifest, name=name)
    except SpecLoadError as e:
        raise click.ClickException(str(e)) from e

    if uid:
        uc.metadata.uid = uid

    try:
        objects = render_all(uc, config)
    except QuantityError as e:
        raise click.ClickException(str(e)) from e

    for alias in unrecognized_resources(uc):
        click.echo(
            f"warning: unrecognized resource '{alias}' mapped to API group "
            f"'{config.fallback_api_group}'",
            err=True,
        )

    click.echo(yaml.safe_dump_all(objects, default_flow_style=False, sort_keys=False), nl=False)


@cli.command()
@click.argument("resource")
@click.argument("operation", default="")
@click.option(
    "--fallback-group",
    envvar="FALLBACK_API_GROUP",
    default="apps",
    show_default=True,
    help="API group for unrecognized resources",
)
def translate(resource: str, operation: str, fallback_group: str) -> None:
    """Print the RBAC rule granted by RESOURCE with OPERATION (e.g. CRUD or *)."""
    translated = translate_permission(resource, operation, fallback_group)
    if not translated.recognized:
        click.echo(
            f"warning: unrecognized resource '{resource}' mapped to API group "
            f"'{fallback_group}'",
            err=True,
        )
    click.echo(yaml.safe_dump(translated.to_policy_rule(), default_flow_style=False), nl=False)


if __name__ == "__main__":
    cli()
