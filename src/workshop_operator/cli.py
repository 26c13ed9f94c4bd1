"""Workshop operator CLI (workshopctl).

Offline inspection of a workshop spec and one-shot passes against the
current kube context.

Usage:
    workshopctl render workshop.yaml      # Print desired records as YAML
    workshopctl policy workshop.yaml      # Print the Argo CD policy document
    workshopctl reconcile workshop.yaml   # Run one pass against the cluster
    workshopctl teardown workshop.yaml    # Remove identities and GitOps stack
    workshopctl run                       # Start the long-running operator
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

import click
import yaml

from .config import (
    DEFAULT_ARGOCD_NAMESPACE,
    DEFAULT_BCRYPT_ROUNDS,
    DEFAULT_OPERATOR_NAMESPACE,
    DEFAULT_STAGING_DIR,
    MAX_BCRYPT_ROUNDS,
    MIN_BCRYPT_ROUNDS,
)
from .credentials import BcryptHasher, CredentialStager
from .generator import (
    ClusterLayout,
    argocd_config_map_record,
    argocd_record,
    argocd_secret_record,
    cluster_config_record,
    namespace_record,
    subscription_record,
    tenant_records,
    user_identity_mapping_record,
    user_record,
    user_role_binding_record,
)
from .models import WorkshopSpec
from .reconciler import ReconcileResult, WorkshopReconciler
from .spec_loader import SpecLoadError, load_spec
from .store import ResourceRecord
from .tenants import AggregateState, build_policy

REDACTED = "<redacted>"

SPEC_FILE = click.Path(exists=True, dir_okay=False, path_type=Path)


def _load(spec_file: Path) -> WorkshopSpec:
    try:
        return load_spec(spec_file)
    except SpecLoadError as e:
        raise click.ClickException(str(e)) from e


def _layout(argocd_namespace: str, operator_namespace: str) -> ClusterLayout:
    return ClusterLayout(argocd_namespace=argocd_namespace, operator_namespace=operator_namespace)


def desired_records(spec: WorkshopSpec, layout: ClusterLayout) -> list[ResourceRecord]:
    """Every record a converged pass would publish, with credentials redacted.

    Identities are listed without the User uid, which only exists once the
    User has been created.
    """
    aggregate = AggregateState(policy=build_policy(spec, layout))
    records: list[ResourceRecord] = []

    if spec.infrastructure.gitops.enabled:
        records.append(subscription_record(spec, layout))
        records.append(namespace_record(layout.argocd_namespace, component="argocd"))
        for tenant_id in spec.tenant_ids():
            records.extend(tenant_records(spec, tenant_id, layout))
            aggregate.add_tenant(
                spec.tenant_name(tenant_id), spec.project_name(tenant_id), REDACTED
            )
        records.append(argocd_secret_record(layout, aggregate.secret_data))
        records.append(argocd_config_map_record(layout, aggregate.config_data))
        records.append(argocd_record(layout, aggregate.policy))
        records.append(cluster_config_record(layout, aggregate.namespace_list))

    for tenant_id in spec.tenant_ids():
        tenant = spec.tenant_name(tenant_id)
        records.append(user_record(tenant))
        records.append(user_role_binding_record(tenant))
        records.append(user_identity_mapping_record(tenant))

    return records


def _report(result: ReconcileResult) -> None:
    line = (
        f"{result.operation}: {result.changes_applied} change(s) "
        f"in {result.duration_seconds:.1f}s"
    )
    if result.error is not None:
        raise click.ClickException(f"{line}, failed: {result.error}")
    if result.requeue:
        click.secho(f"{line}, waiting: {result.reason}", fg="yellow")
    else:
        click.secho(f"{line}, converged", fg="green")


def _reconciler(
    argocd_namespace: str,
    operator_namespace: str,
    staging_dir: Path,
    bcrypt_rounds: int,
) -> WorkshopReconciler:
    from .kube import KubernetesStore

    hasher = BcryptHasher(rounds=bcrypt_rounds)
    return WorkshopReconciler(
        KubernetesStore(),
        layout=_layout(argocd_namespace, operator_namespace),
        hasher=hasher,
        stager=CredentialStager(staging_dir, hasher),
    )


namespace_options = [
    click.option(
        "--argocd-namespace",
        envvar="ARGOCD_NAMESPACE",
        default=DEFAULT_ARGOCD_NAMESPACE,
        show_default=True,
        help="Shared GitOps namespace",
    ),
    click.option(
        "--operator-namespace",
        envvar="OPERATOR_NAMESPACE",
        default=DEFAULT_OPERATOR_NAMESPACE,
        show_default=True,
        help="Namespace of the operator Subscription",
    ),
]


def with_namespaces(func: Callable[..., None]) -> Callable[..., None]:
    for option in reversed(namespace_options):
        func = option(func)
    return func


@click.group()
@click.version_option(version="0.1.0", prog_name="workshopctl")
@click.option("--verbose", "-v", is_flag=True, help="Log at DEBUG level")
def cli(verbose: bool) -> None:
    """Workshop GitOps operator CLI (workshopctl).

    \b
    Quick Start:
        workshopctl render workshop.yaml     # What would be created
        workshopctl reconcile workshop.yaml  # Converge once
    """
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING)


@cli.command()
@click.argument("spec_file", type=SPEC_FILE)
@with_namespaces
def render(spec_file: Path, argocd_namespace: str, operator_namespace: str) -> None:
    """Print the desired records for SPEC_FILE as a YAML stream."""
    spec = _load(spec_file)
    records = desired_records(spec, _layout(argocd_namespace, operator_namespace))
    click.echo(
        yaml.safe_dump_all(
            (record.to_manifest() for record in records), sort_keys=False, explicit_start=True
        ),
        nl=False,
    )


@cli.command()
@click.argument("spec_file", type=SPEC_FILE)
@with_namespaces
def policy(spec_file: Path, argocd_namespace: str, operator_namespace: str) -> None:
    """Print the aggregated Argo CD policy document for SPEC_FILE."""
    spec = _load(spec_file)
    click.echo(build_policy(spec, _layout(argocd_namespace, operator_namespace)).render(), nl=False)


@cli.command()
@click.argument("spec_file", type=SPEC_FILE)
@with_namespaces
@click.option("--identities/--no-identities", default=True, help="Also run the identity pass")
@click.option(
    "--staging-dir",
    envvar="STAGING_DIR",
    default=DEFAULT_STAGING_DIR,
    type=click.Path(file_okay=False, path_type=Path),
    help="Credential staging directory",
)
@click.option(
    "--bcrypt-rounds",
    envvar="BCRYPT_ROUNDS",
    default=DEFAULT_BCRYPT_ROUNDS,
    type=click.IntRange(MIN_BCRYPT_ROUNDS, MAX_BCRYPT_ROUNDS),
    help="Password hash cost",
)
def reconcile(
    spec_file: Path,
    argocd_namespace: str,
    operator_namespace: str,
    identities: bool,
    staging_dir: Path,
    bcrypt_rounds: int,
) -> None:
    """Run one reconciliation pass for SPEC_FILE against the current cluster."""
    spec = _load(spec_file)
    reconciler = _reconciler(argocd_namespace, operator_namespace, staging_dir, bcrypt_rounds)

    _report(reconciler.reconcile_gitops_stack(spec))
    if identities:
        _report(reconciler.reconcile_tenant_identities(spec))


@cli.command()
@click.argument("spec_file", type=SPEC_FILE)
@with_namespaces
@click.option("--gitops/--no-gitops", default=True, help="Also remove the GitOps stack")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
def teardown(
    spec_file: Path,
    argocd_namespace: str,
    operator_namespace: str,
    gitops: bool,
    yes: bool,
) -> None:
    """Delete tenant identities (and the GitOps stack) for SPEC_FILE."""
    spec = _load(spec_file)
    if not yes:
        click.confirm(
            f"Delete {spec.tenant_count} tenant identities"
            f"{' and the GitOps stack' if gitops else ''}?",
            abort=True,
        )

    reconciler = _reconciler(
        argocd_namespace, operator_namespace, Path(DEFAULT_STAGING_DIR), DEFAULT_BCRYPT_ROUNDS
    )
    _report(reconciler.delete_tenant_identities(spec))
    if gitops:
        _report(reconciler.delete_gitops_stack(spec))


@cli.command()
def run() -> None:
    """Start the long-running operator (configured from the environment)."""
    from .main import run as run_operator

    run_operator()


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
