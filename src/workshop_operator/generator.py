"""Desired-state generator.

Pure functions from (WorkshopSpec, tenant index) to ResourceRecords. Nothing
in here performs I/O; the same inputs always produce the same records, which
is what makes re-running a reconciliation pass safe.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from .config import DEFAULT_ARGOCD_NAMESPACE, DEFAULT_OPERATOR_NAMESPACE
from .models import WorkshopSpec
from .policy import PolicyDocument, PolicyLine, tenant_policy
from .store import MergeStrategy, ResourceKind, ResourceRecord

RBAC_API_GROUP = "rbac.authorization.k8s.io"

# GitOps operator install
GITOPS_OPERATOR_PACKAGE = "openshift-gitops-operator"
GITOPS_OPERATOR_DEPLOYMENT = "gitops-operator"
CATALOG_SOURCE = "redhat-operators"
CATALOG_SOURCE_NAMESPACE = "openshift-marketplace"

# Argo CD instance
ARGOCD_NAME = "argocd"
ARGOCD_SERVER_DEPLOYMENT = "argocd-server"
ARGOCD_SECRET = "argocd-secret"
ARGOCD_CONFIG_MAP = "argocd-cm"
CLUSTER_CONFIG_SECRET = "argocd-default-cluster-config"
ARGOCD_MANAGER = "argocd-manager"
LOGIN_MARKER = "login"

IN_CLUSTER_NAME = "in-cluster"
IN_CLUSTER_SERVER = "https://kubernetes.default.svc"
IN_CLUSTER_TLS_CONFIG = json.dumps({"tlsClientConfig": {"insecure": False}}, separators=(",", ":"))
GIT_SERVER = "http://gitea-server.gitea.svc:3000"

# Identities
HTPASSWD_PROVIDER = "htpass-workshop-users"
HTPASSWD_SECRET_NAMESPACE = "openshift-config"
HTPASSWD_SECRET_KEY = "htpasswd"
OAUTH_CLUSTER = "cluster"
USER_INFRA_NAMESPACE = "workshop-infra"
USER_CLUSTER_ROLE = "view"

BASE_LABELS: Mapping[str, str] = MappingProxyType(
    {
        "app.kubernetes.io/part-of": "argocd",
        "app.kubernetes.io/managed-by": "workshop-operator",
    }
)


def labels_for(component: str, **extra: str) -> dict[str, str]:
    """Base labels overlaid with the component name and any extra labels.

    Always returns a fresh dict; BASE_LABELS is never modified.
    """
    return {**BASE_LABELS, "app.kubernetes.io/name": component, **extra}


@dataclass(frozen=True)
class ClusterLayout:
    """Where shared objects live and which endpoints tenants are granted."""

    argocd_namespace: str = DEFAULT_ARGOCD_NAMESPACE
    operator_namespace: str = DEFAULT_OPERATOR_NAMESPACE
    cluster_server: str = IN_CLUSTER_SERVER
    git_server: str = GIT_SERVER

    @property
    def controller_subject(self) -> str:
        """Service identity of the Argo CD application controller."""
        return (
            f"system:serviceaccount:{self.argocd_namespace}:"
            f"{ARGOCD_NAME}-argocd-application-controller"
        )


# =============================================================================
# Shared GitOps records
# =============================================================================


def namespace_record(name: str, component: str = "namespace") -> ResourceRecord:
    return ResourceRecord(
        kind=ResourceKind.NAMESPACE,
        name=name,
        labels=labels_for(component),
        strategy=MergeStrategy.CREATE_ONLY,
    )


def subscription_record(spec: WorkshopSpec, layout: ClusterLayout) -> ResourceRecord:
    """OperatorHub Subscription pinning the GitOps operator channel and CSV.

    Approval is manual so the operator controls which CSV gets installed.
    """
    operator_hub = spec.infrastructure.gitops.operator_hub
    return ResourceRecord(
        kind=ResourceKind.SUBSCRIPTION,
        name=GITOPS_OPERATOR_PACKAGE,
        namespace=layout.operator_namespace,
        labels=labels_for("gitops-subscription"),
        body={
            "spec": {
                "channel": operator_hub.channel,
                "installPlanApproval": "Manual",
                "name": GITOPS_OPERATOR_PACKAGE,
                "source": CATALOG_SOURCE,
                "sourceNamespace": CATALOG_SOURCE_NAMESPACE,
                "startingCSV": operator_hub.cluster_service_version,
            }
        },
        strategy=MergeStrategy.CREATE_ONLY,
    )


def argocd_secret_record(layout: ClusterLayout, secret_data: Mapping[str, str]) -> ResourceRecord:
    return ResourceRecord(
        kind=ResourceKind.SECRET,
        name=ARGOCD_SECRET,
        namespace=layout.argocd_namespace,
        labels=labels_for(ARGOCD_SECRET),
        body={"type": "Opaque", "stringData": dict(secret_data)},
        strategy=MergeStrategy.ADD_MISSING_KEYS,
    )


def argocd_config_map_record(
    layout: ClusterLayout, config_data: Mapping[str, str]
) -> ResourceRecord:
    return ResourceRecord(
        kind=ResourceKind.CONFIG_MAP,
        name=ARGOCD_CONFIG_MAP,
        namespace=layout.argocd_namespace,
        labels=labels_for(ARGOCD_CONFIG_MAP),
        body={"data": dict(config_data)},
        strategy=MergeStrategy.MERGE_KEYS,
    )


def argocd_record(layout: ClusterLayout, policy: PolicyDocument) -> ResourceRecord:
    """The ArgoCD instance; only ``spec.rbac.policy`` is reconciled after creation."""
    return ResourceRecord(
        kind=ResourceKind.ARGOCD,
        name=ARGOCD_NAME,
        namespace=layout.argocd_namespace,
        labels=labels_for("argocd-cr"),
        body={
            "spec": {
                "rbac": {
                    "defaultPolicy": "",
                    "policy": policy.render(),
                    "scopes": "[groups]",
                },
                "server": {"route": {"enabled": True}},
            }
        },
    )


def cluster_config_record(layout: ClusterLayout, namespace_list: str) -> ResourceRecord:
    """Default cluster connection, scoped to exactly the tenant namespaces."""
    return ResourceRecord(
        kind=ResourceKind.SECRET,
        name=CLUSTER_CONFIG_SECRET,
        namespace=layout.argocd_namespace,
        labels=labels_for(CLUSTER_CONFIG_SECRET, **{"argocd.argoproj.io/secret-type": "cluster"}),
        body={
            "type": "Opaque",
            "stringData": {
                "config": IN_CLUSTER_TLS_CONFIG,
                "name": IN_CLUSTER_NAME,
                "namespaces": namespace_list,
                "server": layout.cluster_server,
            },
        },
    )


# =============================================================================
# Per-tenant GitOps records
# =============================================================================


def tenant_policy_lines(
    spec: WorkshopSpec, tenant_id: int, layout: ClusterLayout
) -> list[PolicyLine]:
    return tenant_policy(
        spec.tenant_name(tenant_id),
        spec.project_name(tenant_id),
        cluster_server=layout.cluster_server,
        git_server=layout.git_server,
    )


def app_project_record(spec: WorkshopSpec, tenant_id: int, layout: ClusterLayout) -> ResourceRecord:
    tenant = spec.tenant_name(tenant_id)
    project = spec.project_name(tenant_id)
    return ResourceRecord(
        kind=ResourceKind.APP_PROJECT,
        name=project,
        namespace=layout.argocd_namespace,
        labels=labels_for("appproject-cr"),
        body={
            "spec": {
                "description": f"Workshop project for {tenant}",
                "sourceRepos": [f"{layout.git_server}/{tenant}/*"],
                "destinations": [{"namespace": project, "server": layout.cluster_server}],
            }
        },
    )


def manager_role_record(spec: WorkshopSpec, tenant_id: int) -> ResourceRecord:
    """Role letting the Argo CD controller manage everything in the tenant namespace."""
    return ResourceRecord(
        kind=ResourceKind.ROLE,
        name=ARGOCD_MANAGER,
        namespace=spec.project_name(tenant_id),
        labels=labels_for(ARGOCD_MANAGER),
        body={"rules": [{"apiGroups": ["*"], "resources": ["*"], "verbs": ["*"]}]},
    )


def manager_subjects(layout: ClusterLayout) -> list[dict[str, Any]]:
    # Same service identity for every tenant
    return [{"kind": "User", "name": layout.controller_subject, "apiGroup": RBAC_API_GROUP}]


def manager_role_binding_record(
    spec: WorkshopSpec, tenant_id: int, layout: ClusterLayout
) -> ResourceRecord:
    return ResourceRecord(
        kind=ResourceKind.ROLE_BINDING,
        name=ARGOCD_MANAGER,
        namespace=spec.project_name(tenant_id),
        labels=labels_for(ARGOCD_MANAGER),
        body={
            "subjects": manager_subjects(layout),
            "roleRef": {"apiGroup": RBAC_API_GROUP, "kind": "Role", "name": ARGOCD_MANAGER},
        },
    )


def tenant_records(
    spec: WorkshopSpec, tenant_id: int, layout: ClusterLayout
) -> list[ResourceRecord]:
    """Records applied for one tenant, in dependency order."""
    return [
        namespace_record(spec.project_name(tenant_id), component="tenant-namespace"),
        app_project_record(spec, tenant_id, layout),
        manager_role_record(spec, tenant_id),
        manager_role_binding_record(spec, tenant_id, layout),
    ]


def secret_key(tenant: str) -> str:
    return f"accounts.{tenant}.password"


def login_key(tenant: str) -> str:
    return f"accounts.{tenant}"


# =============================================================================
# Identity records
# =============================================================================


def identity_name(tenant: str) -> str:
    return f"{HTPASSWD_PROVIDER}:{tenant}"


def user_record(tenant: str) -> ResourceRecord:
    return ResourceRecord(
        kind=ResourceKind.USER,
        name=tenant,
        labels=labels_for("workshop-user"),
        body={"fullName": tenant},
        strategy=MergeStrategy.CREATE_ONLY,
    )


def user_role_binding_record(tenant: str) -> ResourceRecord:
    return ResourceRecord(
        kind=ResourceKind.ROLE_BINDING,
        name=f"{tenant}-{USER_CLUSTER_ROLE}",
        namespace=USER_INFRA_NAMESPACE,
        labels=labels_for("workshop-user"),
        body={
            "subjects": [{"kind": "User", "name": tenant, "apiGroup": RBAC_API_GROUP}],
            "roleRef": {
                "apiGroup": RBAC_API_GROUP,
                "kind": "ClusterRole",
                "name": USER_CLUSTER_ROLE,
            },
        },
    )


def identity_record(tenant: str, user_uid: str) -> ResourceRecord:
    return ResourceRecord(
        kind=ResourceKind.IDENTITY,
        name=identity_name(tenant),
        labels=labels_for("workshop-identity"),
        body={
            "providerName": HTPASSWD_PROVIDER,
            "providerUserName": tenant,
            "user": {"name": tenant, "uid": user_uid},
        },
        strategy=MergeStrategy.CREATE_ONLY,
    )


def user_identity_mapping_record(tenant: str) -> ResourceRecord:
    return ResourceRecord(
        kind=ResourceKind.USER_IDENTITY_MAPPING,
        name=identity_name(tenant),
        labels=labels_for("workshop-identity"),
        body={
            "identity": {"name": identity_name(tenant)},
            "user": {"name": tenant},
        },
        strategy=MergeStrategy.CREATE_ONLY,
    )


def htpasswd_secret_record(bundle: str) -> ResourceRecord:
    return ResourceRecord(
        kind=ResourceKind.SECRET,
        name=HTPASSWD_PROVIDER,
        namespace=HTPASSWD_SECRET_NAMESPACE,
        labels=labels_for("htpasswd"),
        body={"type": "Opaque", "stringData": {HTPASSWD_SECRET_KEY: bundle}},
    )


def htpasswd_identity_provider() -> dict[str, Any]:
    """OAuth identity provider entry backed by the credential bundle secret."""
    return {
        "name": HTPASSWD_PROVIDER,
        "mappingMethod": "claim",
        "type": "HTPasswd",
        "htpasswd": {"fileData": {"name": HTPASSWD_PROVIDER}},
    }
