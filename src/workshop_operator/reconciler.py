"""Reconciliation orchestrator.

This module sequences one reconciliation pass over the workshop topology:
1. Subscribe to the GitOps operator and approve its install plan
2. Wait for the operator rollout
3. Provision every tenant (namespace, AppProject, Role, RoleBinding)
4. Publish the aggregated account secret, account config map and policy
5. Wait for the Argo CD server rollout
6. Publish the cluster connection scoped to the tenant namespaces

Every step is idempotent. Waiting is never done in-process: a step whose
upstream dependency is not ready ends the pass with a requeue, and the loop
host runs the whole pass again later. Steps that already converged cost one
create attempt and one read each.

Hard store errors are raised by the store, travel up through the driver and
are caught exactly once, at the entry point, where they become a failed
ReconcileResult.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from .config import DEFAULT_STAGING_DIR, Config
from .credentials import BcryptHasher, CredentialStager, PasswordHasher
from .driver import ConvergenceDriver
from .generator import (
    ARGOCD_CONFIG_MAP,
    ARGOCD_NAME,
    ARGOCD_SECRET,
    ARGOCD_SERVER_DEPLOYMENT,
    CLUSTER_CONFIG_SECRET,
    GITOPS_OPERATOR_DEPLOYMENT,
    GITOPS_OPERATOR_PACKAGE,
    ClusterLayout,
    argocd_config_map_record,
    argocd_record,
    argocd_secret_record,
    cluster_config_record,
    namespace_record,
    subscription_record,
    tenant_records,
)
from .identity import IdentityManager
from .models import WorkshopSpec
from .readiness import ReadinessGate, deployment
from .requeue import CONTINUE, RequeueSignal, failed, wait_for
from .store import ResourceKind, ResourceStore, StoreError
from .tenants import provision_tenants

logger = logging.getLogger(__name__)


class Operation(str, Enum):
    """Caller-facing reconciliation entry points."""

    RECONCILE_GITOPS = "reconcile_gitops_stack"
    RECONCILE_IDENTITIES = "reconcile_tenant_identities"
    DELETE_IDENTITIES = "delete_tenant_identities"
    DELETE_GITOPS = "delete_gitops_stack"


@dataclass
class ReconcileResult:
    """Result of a single reconciliation pass."""

    operation: str
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    requeue: bool = False
    error: Exception | None = None
    reason: str = ""
    changes_applied: int = 0

    @property
    def duration_seconds(self) -> float:
        """Calculate duration in seconds."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        """Check if the pass finished without a hard error."""
        return self.error is None

    @property
    def should_requeue(self) -> bool:
        return self.requeue or self.error is not None


class WorkshopReconciler:
    """Drives the workshop topology toward a WorkshopSpec.

    The reconciler holds no state between passes beyond its collaborators.
    Every pass rebuilds the desired records and the tenant aggregate from the
    spec and the store alone.
    """

    def __init__(
        self,
        store: ResourceStore,
        *,
        layout: ClusterLayout | None = None,
        hasher: PasswordHasher | None = None,
        stager: CredentialStager | None = None,
    ) -> None:
        """Initialize reconciler with its collaborators.

        Args:
            store: Resource store every read and write goes through.
            layout: Shared namespaces and endpoints (defaults if omitted).
            hasher: Password hasher for Argo CD accounts and the htpasswd bundle.
            stager: Credential staging location for the htpasswd bundle.
        """
        self._layout = layout or ClusterLayout()
        self._hasher = hasher or BcryptHasher()
        self._driver = ConvergenceDriver(store)
        self._gate = ReadinessGate(store)
        self._identities = IdentityManager(
            self._driver,
            stager or CredentialStager(Path(DEFAULT_STAGING_DIR), self._hasher),
        )

    @classmethod
    def from_config(cls, config: Config, store: ResourceStore) -> WorkshopReconciler:
        hasher = BcryptHasher(rounds=config.bcrypt_rounds)
        return cls(
            store,
            layout=ClusterLayout(
                argocd_namespace=config.argocd_namespace,
                operator_namespace=config.operator_namespace,
            ),
            hasher=hasher,
            stager=CredentialStager(config.staging_dir, hasher),
        )

    @property
    def layout(self) -> ClusterLayout:
        return self._layout

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    def reconcile_gitops_stack(self, spec: WorkshopSpec) -> ReconcileResult:
        """Run the GitOps provisioning sequence once."""
        return self._run(Operation.RECONCILE_GITOPS, lambda: self._gitops_steps(spec))

    def reconcile_tenant_identities(self, spec: WorkshopSpec) -> ReconcileResult:
        """Bring every tenant identity to its mapped state."""
        return self._run(
            Operation.RECONCILE_IDENTITIES, lambda: self._identities.reconcile_users(spec)
        )

    def delete_tenant_identities(self, spec: WorkshopSpec) -> ReconcileResult:
        """Tear every tenant identity down, mapping first and User last."""
        return self._run(Operation.DELETE_IDENTITIES, lambda: self._identities.delete_users(spec))

    def delete_gitops_stack(self, spec: WorkshopSpec) -> ReconcileResult:
        """Remove the GitOps topology in reverse creation order."""
        return self._run(Operation.DELETE_GITOPS, lambda: self._teardown_steps(spec))

    def _run(self, operation: Operation, steps: Callable[[], RequeueSignal]) -> ReconcileResult:
        result = ReconcileResult(operation=operation.value)
        self._driver.reset_stats()

        try:
            signal = steps()
        except StoreError as e:
            signal = failed(e, f"store error on {e.kind or 'object'} {e.name}".rstrip())

        result.requeue = signal.should_requeue
        result.error = signal.error
        result.reason = signal.reason
        result.changes_applied = self._driver.stats.changed
        result.end_time = datetime.now(UTC)
        self._log_result(result)
        return result

    # -------------------------------------------------------------------------
    # GitOps sequence
    # -------------------------------------------------------------------------

    def _gitops_steps(self, spec: WorkshopSpec) -> RequeueSignal:
        gitops = spec.infrastructure.gitops
        if not gitops.enabled:
            logger.info("GitOps disabled, skipping control-plane reconciliation")
            return RequeueSignal(reason="gitops disabled")

        layout = self._layout

        self._driver.apply(subscription_record(spec, layout))
        if not self._gate.approve_install_plan(
            GITOPS_OPERATOR_PACKAGE,
            layout.operator_namespace,
            gitops.operator_hub.cluster_service_version,
        ):
            return wait_for("install plan not approved")

        if not self._gate.is_ready(
            deployment(GITOPS_OPERATOR_DEPLOYMENT, layout.operator_namespace)
        ):
            return wait_for(f"{GITOPS_OPERATOR_DEPLOYMENT} not ready")

        self._driver.apply(namespace_record(layout.argocd_namespace, component="argocd"))

        # One hash per pass; stored hashes are never rewritten once present
        password_hash = self._hasher.hash(spec.user_details.password)
        aggregate, signal = provision_tenants(spec, self._driver, layout, password_hash)
        if signal.should_requeue:
            return signal

        self._driver.apply(argocd_secret_record(layout, aggregate.secret_data))
        self._driver.apply(argocd_config_map_record(layout, aggregate.config_data))
        self._driver.apply(argocd_record(layout, aggregate.policy))

        if not self._gate.is_ready(deployment(ARGOCD_SERVER_DEPLOYMENT, layout.argocd_namespace)):
            return wait_for(f"{ARGOCD_SERVER_DEPLOYMENT} not ready")

        self._driver.apply(cluster_config_record(layout, aggregate.namespace_list))
        return CONTINUE

    def _teardown_steps(self, spec: WorkshopSpec) -> RequeueSignal:
        layout = self._layout
        namespace = layout.argocd_namespace

        self._driver.ensure_absent(ResourceKind.SECRET, CLUSTER_CONFIG_SECRET, namespace)
        self._driver.ensure_absent(ResourceKind.ARGOCD, ARGOCD_NAME, namespace)
        self._driver.ensure_absent(ResourceKind.CONFIG_MAP, ARGOCD_CONFIG_MAP, namespace)
        self._driver.ensure_absent(ResourceKind.SECRET, ARGOCD_SECRET, namespace)

        for tenant_id in spec.tenant_ids():
            for record in reversed(tenant_records(spec, tenant_id, layout)):
                self._driver.ensure_absent(record.kind, record.name, record.namespace)

        self._driver.ensure_absent(ResourceKind.NAMESPACE, namespace)
        self._driver.ensure_absent(
            ResourceKind.SUBSCRIPTION, GITOPS_OPERATOR_PACKAGE, layout.operator_namespace
        )
        return CONTINUE

    def _log_result(self, result: ReconcileResult) -> None:
        """Log reconciliation result with structured data."""
        extra: dict[str, Any] = {
            "operation": result.operation,
            "duration_seconds": result.duration_seconds,
            "changes_applied": result.changes_applied,
            "requeue": result.requeue,
        }
        if result.reason:
            extra["reason"] = result.reason

        if result.error is not None:
            extra["error"] = str(result.error)
            extra["error_type"] = type(result.error).__name__
            logger.error("Reconciliation failed", extra=extra)
        elif result.requeue:
            logger.info("Reconciliation waiting on dependency", extra=extra)
        else:
            logger.info("Reconciliation result", extra=extra)
