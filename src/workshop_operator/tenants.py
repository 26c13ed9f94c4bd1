"""Tenant provisioning loop.

Walks tenants 1..N in ascending order, applies each tenant's records through
the convergence driver and folds the per-tenant fragments (policy lines,
credential hash, login marker, namespace) into an AggregateState.

The aggregate is rebuilt from nothing on every pass. It is never merged with
what a previous pass published, so it cannot drift, but a pass that stops at
tenant k produces an aggregate that must not be published.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .driver import ConvergenceDriver
from .generator import (
    LOGIN_MARKER,
    ClusterLayout,
    login_key,
    secret_key,
    tenant_policy_lines,
    tenant_records,
)
from .models import WorkshopSpec
from .policy import PolicyDocument
from .requeue import CONTINUE, RequeueSignal, failed
from .store import StoreError

logger = logging.getLogger(__name__)

NAMESPACE_SEPARATOR = ","


@dataclass
class AggregateState:
    """Shared composite objects accumulated over one pass."""

    policy: PolicyDocument = field(default_factory=PolicyDocument)
    secret_data: dict[str, str] = field(default_factory=dict)
    config_data: dict[str, str] = field(default_factory=dict)
    namespaces: list[str] = field(default_factory=list)

    @property
    def namespace_list(self) -> str:
        """Tenant namespaces in tenant order, comma-joined, no stray separators."""
        return NAMESPACE_SEPARATOR.join(self.namespaces)

    def add_tenant(self, tenant: str, namespace: str, password_hash: str) -> None:
        self.namespaces.append(namespace)
        self.secret_data[secret_key(tenant)] = password_hash
        self.config_data[login_key(tenant)] = LOGIN_MARKER


def build_policy(spec: WorkshopSpec, layout: ClusterLayout) -> PolicyDocument:
    """The full policy document for a spec, without touching the store."""
    document = PolicyDocument()
    for tenant_id in spec.tenant_ids():
        document.extend(tenant_policy_lines(spec, tenant_id, layout))
    return document


def provision_tenants(
    spec: WorkshopSpec,
    driver: ConvergenceDriver,
    layout: ClusterLayout,
    password_hash: str,
) -> tuple[AggregateState, RequeueSignal]:
    """Apply every tenant's records and build the pass aggregate.

    Stops at the first hard store error. Already-converged tenants are cheap
    no-ops, so the next pass simply starts again from tenant 1.

    Args:
        spec: Validated workshop spec.
        driver: Convergence driver for the pass.
        layout: Shared namespaces and endpoints.
        password_hash: Hashed tenant password for the Argo CD local accounts.

    Returns:
        Tuple of (aggregate built so far, step signal).
    """
    aggregate = AggregateState()

    for tenant_id in spec.tenant_ids():
        tenant = spec.tenant_name(tenant_id)
        project = spec.project_name(tenant_id)

        aggregate.policy.extend(tenant_policy_lines(spec, tenant_id, layout))

        try:
            for record in tenant_records(spec, tenant_id, layout):
                driver.apply(record)
        except StoreError as e:
            logger.error(
                "Tenant provisioning failed",
                extra={"tenant": tenant, "tenant_id": tenant_id, "error": str(e)},
            )
            return aggregate, failed(e, f"provision tenant {tenant}")

        aggregate.add_tenant(tenant, project, password_hash)

    logger.info(
        "Provisioned tenants",
        extra={"tenant_count": spec.tenant_count, "namespaces": aggregate.namespace_list},
    )
    return aggregate, CONTINUE
