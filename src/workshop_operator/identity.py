"""Tenant identity lifecycle.

Each tenant moves through

    Absent -> Created -> Bound -> Identified -> Mapped

(User, RoleBinding, Identity, UserIdentityMapping). Every transition is an
idempotent create. Teardown walks the same chain backwards, mapping first and
User last, so no observer ever sees a mapping or identity pointing at an
object that is already gone.

Alongside the per-tenant objects the manager keeps two shared objects in
shape: the htpasswd credential bundle Secret and the HTPasswd entry in the
cluster OAuth identity-provider list.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from .config import MAX_TENANTS
from .credentials import CredentialStager, CredentialStagingError, bundle_users
from .driver import ConvergenceDriver
from .generator import (
    HTPASSWD_PROVIDER,
    HTPASSWD_SECRET_KEY,
    HTPASSWD_SECRET_NAMESPACE,
    OAUTH_CLUSTER,
    USER_INFRA_NAMESPACE,
    htpasswd_identity_provider,
    htpasswd_secret_record,
    identity_name,
    identity_record,
    namespace_record,
    user_identity_mapping_record,
    user_record,
    user_role_binding_record,
)
from .models import WorkshopSpec
from .requeue import CONTINUE, RequeueSignal, failed
from .store import NotFoundError, ResourceKind, StoreError

logger = logging.getLogger(__name__)


class IdentityState(str, Enum):
    """How far a tenant identity has progressed."""

    ABSENT = "absent"
    CREATED = "created"
    BOUND = "bound"
    IDENTIFIED = "identified"
    MAPPED = "mapped"


class IdentityManager:
    """Creates, inspects and removes tenant identities."""

    def __init__(self, driver: ConvergenceDriver, stager: CredentialStager) -> None:
        self._driver = driver
        self._stager = stager

    # -------------------------------------------------------------------------
    # Reconcile
    # -------------------------------------------------------------------------

    def reconcile_users(self, spec: WorkshopSpec) -> RequeueSignal:
        """Bring every tenant identity to Mapped and prune surplus tenants."""
        try:
            self._driver.apply(namespace_record(USER_INFRA_NAMESPACE, component="workshop-infra"))

            for tenant_id in spec.tenant_ids():
                self.add_user(spec.tenant_name(tenant_id))

            self._prune_surplus(spec)
            self.publish_credentials(spec)
            self.ensure_identity_provider()
        except (StoreError, CredentialStagingError) as e:
            logger.error("Identity reconciliation failed", extra={"error": str(e)})
            return failed(e, "reconcile users")

        return CONTINUE

    def add_user(self, tenant: str) -> IdentityState:
        """Walk one tenant through Created, Bound, Identified and Mapped."""
        self._driver.apply(user_record(tenant))
        self._driver.apply(user_role_binding_record(tenant))

        # The Identity references the User by uid, which only the store knows
        user = self._driver.store.get(ResourceKind.USER, tenant)
        self._driver.apply(identity_record(tenant, user.metadata.get("uid", "")))
        self._driver.apply(user_identity_mapping_record(tenant))

        logger.debug("Tenant identity mapped", extra={"tenant": tenant})
        return IdentityState.MAPPED

    def _prune_surplus(self, spec: WorkshopSpec) -> None:
        """Tear down tenants numbered above N.

        The scan stops at the first tenant with neither a User nor an
        Identity. An Identity left behind by a half-finished teardown keeps
        the scan going.
        """
        for tenant_id in range(spec.tenant_count + 1, MAX_TENANTS + 1):
            tenant = spec.tenant_name(tenant_id)
            if not (
                self._driver.exists(ResourceKind.USER, tenant)
                or self._driver.exists(ResourceKind.IDENTITY, identity_name(tenant))
            ):
                return
            logger.info("Removing surplus tenant identity", extra={"tenant": tenant})
            self.remove_user(tenant)

    def publish_credentials(self, spec: WorkshopSpec) -> bool:
        """Publish the htpasswd bundle when its tenant set is out of date.

        Hashes are salted, so a regenerated bundle always differs from the
        stored one. The bundle is only rebuilt when the set of tenant names
        it covers has changed.

        Returns:
            True if a new bundle was published.
        """
        tenants = [spec.tenant_name(tenant_id) for tenant_id in spec.tenant_ids()]
        if self._published_tenants() == tenants:
            logger.debug("Credential bundle is up to date")
            return False

        self._stager.stage(tenants, spec.user_details.password)
        try:
            bundle = self._stager.read()
            self._driver.apply(htpasswd_secret_record(bundle))
        finally:
            self._stager.discard()
        return True

    def _published_tenants(self) -> list[str] | None:
        try:
            secret = self._driver.store.get(
                ResourceKind.SECRET, HTPASSWD_PROVIDER, HTPASSWD_SECRET_NAMESPACE
            )
        except NotFoundError:
            return None
        bundle = (secret.body.get("stringData") or {}).get(HTPASSWD_SECRET_KEY, "")
        return bundle_users(bundle)

    def _identity_providers(self) -> list[dict[str, Any]] | None:
        try:
            oauth = self._driver.store.get(ResourceKind.OAUTH, OAUTH_CLUSTER)
        except NotFoundError:
            logger.warning("OAuth %s not found, identity provider not configured", OAUTH_CLUSTER)
            return None
        return list((oauth.body.get("spec") or {}).get("identityProviders") or [])

    def ensure_identity_provider(self) -> bool:
        """Prepend the HTPasswd provider to the cluster OAuth list if missing.

        An existing entry with the same name is left exactly as it is. Other
        providers are carried through the merge-patch unchanged.

        Returns:
            True if the OAuth object was patched.
        """
        providers = self._identity_providers()
        if providers is None:
            return False

        if any(provider.get("name") == HTPASSWD_PROVIDER for provider in providers):
            logger.debug("Identity provider %s already configured", HTPASSWD_PROVIDER)
            return False

        self._driver.patch(
            ResourceKind.OAUTH,
            OAUTH_CLUSTER,
            None,
            {"spec": {"identityProviders": [htpasswd_identity_provider(), *providers]}},
        )
        return True

    # -------------------------------------------------------------------------
    # Inspect
    # -------------------------------------------------------------------------

    def identity_state(self, tenant: str) -> IdentityState:
        """Furthest state reached by ``tenant``, judged from what exists."""
        chain = (
            (IdentityState.MAPPED, ResourceKind.USER_IDENTITY_MAPPING, identity_name(tenant), None),
            (IdentityState.IDENTIFIED, ResourceKind.IDENTITY, identity_name(tenant), None),
            (
                IdentityState.BOUND,
                ResourceKind.ROLE_BINDING,
                user_role_binding_record(tenant).name,
                USER_INFRA_NAMESPACE,
            ),
            (IdentityState.CREATED, ResourceKind.USER, tenant, None),
        )
        for state, kind, name, namespace in chain:
            if self._driver.exists(kind, name, namespace):
                return state
        return IdentityState.ABSENT

    # -------------------------------------------------------------------------
    # Delete
    # -------------------------------------------------------------------------

    def delete_users(self, spec: WorkshopSpec) -> RequeueSignal:
        """Remove every tenant identity, the bundle and the provider entry."""
        try:
            for tenant_id in spec.tenant_ids():
                self.remove_user(spec.tenant_name(tenant_id))

            self._prune_surplus(spec)
            self.remove_identity_provider()
            self._driver.ensure_absent(
                ResourceKind.SECRET, HTPASSWD_PROVIDER, HTPASSWD_SECRET_NAMESPACE
            )
        except StoreError as e:
            logger.error("Identity deletion failed", extra={"error": str(e)})
            return failed(e, "delete users")

        return CONTINUE

    def remove_user(self, tenant: str) -> IdentityState:
        """Walk one tenant back through Identified, Bound, Created to Absent."""
        self._driver.ensure_absent(ResourceKind.USER_IDENTITY_MAPPING, identity_name(tenant))
        self._driver.ensure_absent(ResourceKind.IDENTITY, identity_name(tenant))
        self._driver.ensure_absent(
            ResourceKind.ROLE_BINDING,
            user_role_binding_record(tenant).name,
            USER_INFRA_NAMESPACE,
        )
        self._driver.ensure_absent(ResourceKind.USER, tenant)
        return IdentityState.ABSENT

    def remove_identity_provider(self) -> bool:
        providers = self._identity_providers()
        if providers is None:
            return False

        remaining = [p for p in providers if p.get("name") != HTPASSWD_PROVIDER]
        if len(remaining) == len(providers):
            return False

        self._driver.patch(
            ResourceKind.OAUTH,
            OAUTH_CLUSTER,
            None,
            {"spec": {"identityProviders": remaining}},
        )
        return True
