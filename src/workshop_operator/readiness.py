"""Readiness checks for upstream-managed objects.

Every check is a single point-in-time read: no sleeping, no polling loop.
A caller that gets False returns a requeue signal and lets the scheduler try
again later.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .store import NotFoundError, ResourceKind, ResourceStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReadinessHandle:
    """Reference to an object whose health is queried. Never mutated."""

    kind: ResourceKind
    name: str
    namespace: str | None = None


def deployment(name: str, namespace: str) -> ReadinessHandle:
    return ReadinessHandle(ResourceKind.DEPLOYMENT, name, namespace)


class ReadinessGate:
    """Point-in-time health predicates over a ResourceStore."""

    def __init__(self, store: ResourceStore) -> None:
        self._store = store

    def is_ready(self, handle: ReadinessHandle) -> bool:
        """Check whether ``handle`` is healthy right now.

        A Deployment is ready only when its declared replica count equals its
        available replica count. Missing objects and missing status fields are
        not ready.

        Raises:
            StoreError: On store failures other than NotFound.
        """
        if handle.kind is not ResourceKind.DEPLOYMENT:
            raise ValueError(f"No readiness predicate for {handle.kind.value}")

        try:
            record = self._store.get(handle.kind, handle.name, handle.namespace)
        except NotFoundError:
            logger.info(
                "Waiting for %s to be created",
                handle.name,
                extra={"kind": handle.kind.value, "namespace": handle.namespace},
            )
            return False

        desired = (record.body.get("spec") or {}).get("replicas")
        available = (record.body.get("status") or {}).get("availableReplicas")
        ready = desired is not None and available is not None and desired == available
        if not ready:
            logger.info(
                "Waiting for %s rollout",
                handle.name,
                extra={
                    "namespace": handle.namespace,
                    "desired_replicas": desired,
                    "available_replicas": available,
                },
            )
        return ready

    def approve_install_plan(
        self, subscription: str, namespace: str, cluster_service_version: str
    ) -> bool:
        """Approve the pending InstallPlan of a manual-approval Subscription.

        Returns:
            True once the plan for ``cluster_service_version`` is approved,
            False while OLM has not produced a matching plan yet.

        Raises:
            StoreError: On store failures other than NotFound.
        """
        try:
            sub = self._store.get(ResourceKind.SUBSCRIPTION, subscription, namespace)
        except NotFoundError:
            return False

        status = sub.body.get("status") or {}
        plan_ref = status.get("installPlanRef") or status.get("installplan") or {}
        plan_name = plan_ref.get("name")
        if not plan_name:
            logger.info("Waiting for Subscription to create InstallPlan for %s", subscription)
            return False

        try:
            plan = self._store.get(ResourceKind.INSTALL_PLAN, plan_name, namespace)
        except NotFoundError:
            return False

        plan_spec = plan.body.get("spec") or {}
        if cluster_service_version not in plan_spec.get("clusterServiceVersionNames", []):
            logger.warning(
                "InstallPlan does not install the pinned version",
                extra={
                    "install_plan": plan_name,
                    "expected_csv": cluster_service_version,
                    "csv_names": plan_spec.get("clusterServiceVersionNames", []),
                },
            )
            return False

        if plan_spec.get("approved"):
            return True

        self._store.update(plan.with_mutable_subset({**plan_spec, "approved": True}))
        logger.info(
            "Approved InstallPlan %s",
            plan_name,
            extra={"csv": cluster_service_version, "namespace": namespace},
        )
        return True
