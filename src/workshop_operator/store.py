"""Resource store contract and the record type passed across it.

The operator never talks to the cluster directly: every read and write goes
through a ResourceStore. The production implementation lives in kube.py; tests
use an in-memory store.

Error signalling is by exception type:
- AlreadyExistsError: create() found an object with the same name
- NotFoundError: get()/delete() found nothing
- ConflictError: update() lost a write race
- StoreError: anything else (hard error, aborts the pass)
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Protocol


class StoreError(Exception):
    """Hard resource store failure."""

    def __init__(self, message: str, *, kind: str = "", name: str = "") -> None:
        super().__init__(message)
        self.kind = kind
        self.name = name


class AlreadyExistsError(StoreError):
    """Raised by create() when the object already exists."""


class NotFoundError(StoreError):
    """Raised by get() and delete() when the object does not exist."""


class ConflictError(StoreError):
    """Raised by update() when the stored object changed underneath us."""


class ResourceKind(str, Enum):
    """Kinds of objects the operator manages or reads."""

    NAMESPACE = "Namespace"
    SECRET = "Secret"
    CONFIG_MAP = "ConfigMap"
    ROLE = "Role"
    ROLE_BINDING = "RoleBinding"
    DEPLOYMENT = "Deployment"
    SUBSCRIPTION = "Subscription"
    INSTALL_PLAN = "InstallPlan"
    APP_PROJECT = "AppProject"
    ARGOCD = "ArgoCD"
    USER = "User"
    IDENTITY = "Identity"
    USER_IDENTITY_MAPPING = "UserIdentityMapping"
    OAUTH = "OAuth"

    @property
    def api_version(self) -> str:
        return KIND_INFO[self].api_version

    @property
    def namespaced(self) -> bool:
        return KIND_INFO[self].namespaced

    @property
    def mutable_path(self) -> tuple[str, ...]:
        """Dotted path into the body that the driver compares and rewrites."""
        return KIND_INFO[self].mutable_path


@dataclass(frozen=True)
class KindInfo:
    """Static API metadata for a resource kind."""

    api_version: str
    namespaced: bool
    mutable_path: tuple[str, ...] = ()


KIND_INFO: dict[ResourceKind, KindInfo] = {
    ResourceKind.NAMESPACE: KindInfo("v1", namespaced=False),
    ResourceKind.SECRET: KindInfo("v1", namespaced=True, mutable_path=("stringData",)),
    ResourceKind.CONFIG_MAP: KindInfo("v1", namespaced=True, mutable_path=("data",)),
    ResourceKind.ROLE: KindInfo(
        "rbac.authorization.k8s.io/v1", namespaced=True, mutable_path=("rules",)
    ),
    ResourceKind.ROLE_BINDING: KindInfo(
        "rbac.authorization.k8s.io/v1", namespaced=True, mutable_path=("subjects",)
    ),
    ResourceKind.DEPLOYMENT: KindInfo("apps/v1", namespaced=True),
    ResourceKind.SUBSCRIPTION: KindInfo(
        "operators.coreos.com/v1alpha1", namespaced=True, mutable_path=("spec",)
    ),
    ResourceKind.INSTALL_PLAN: KindInfo(
        "operators.coreos.com/v1alpha1", namespaced=True, mutable_path=("spec",)
    ),
    ResourceKind.APP_PROJECT: KindInfo(
        "argoproj.io/v1alpha1", namespaced=True, mutable_path=("spec",)
    ),
    ResourceKind.ARGOCD: KindInfo(
        "argoproj.io/v1alpha1", namespaced=True, mutable_path=("spec", "rbac", "policy")
    ),
    ResourceKind.USER: KindInfo("user.openshift.io/v1", namespaced=False),
    ResourceKind.IDENTITY: KindInfo("user.openshift.io/v1", namespaced=False),
    ResourceKind.USER_IDENTITY_MAPPING: KindInfo("user.openshift.io/v1", namespaced=False),
    ResourceKind.OAUTH: KindInfo(
        "config.openshift.io/v1", namespaced=False, mutable_path=("spec",)
    ),
}


class MergeStrategy(str, Enum):
    """How the driver reconciles an existing object with its desired record."""

    REPLACE = "replace"  # Exact compare, replace the mutable subset
    MERGE_KEYS = "merge_keys"  # Desired keys must match, foreign keys kept
    ADD_MISSING_KEYS = "add_missing_keys"  # Only absent keys are written
    CREATE_ONLY = "create_only"  # Never updated once present


@dataclass(frozen=True)
class ResourceRecord:
    """One managed object: desired (from the generator) or actual (from the store).

    ``body`` holds everything outside apiVersion/kind/metadata (spec, data,
    subjects, ...). ``metadata`` holds store-injected metadata such as
    resourceVersion and uid; it is empty on desired records and is never
    compared by the driver.
    """

    kind: ResourceKind
    name: str
    namespace: str | None = None
    labels: Mapping[str, str] = field(default_factory=dict)
    body: dict[str, Any] = field(default_factory=dict)
    strategy: MergeStrategy = MergeStrategy.REPLACE
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> tuple[ResourceKind, str, str | None]:
        return (self.kind, self.name, self.namespace)

    def describe(self) -> str:
        if self.namespace:
            return f"{self.kind.value} {self.namespace}/{self.name}"
        return f"{self.kind.value} {self.name}"

    def mutable_subset(self) -> Any:
        """Return the value at the kind's mutable path, or None if absent."""
        node: Any = self.body
        for part in self.kind.mutable_path:
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        return node

    def with_mutable_subset(self, value: Any) -> ResourceRecord:
        """Return a copy whose mutable subset is replaced by ``value``."""
        path = self.kind.mutable_path
        if not path:
            raise ValueError(f"{self.kind.value} has no mutable subset")

        body = copy.deepcopy(self.body)
        node = body
        for part in path[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[path[-1]] = copy.deepcopy(value)
        return replace(self, body=body)

    def to_manifest(self) -> dict[str, Any]:
        """Render the record as a Kubernetes manifest."""
        metadata: dict[str, Any] = dict(self.metadata)
        metadata["name"] = self.name
        if self.namespace and self.kind.namespaced:
            metadata["namespace"] = self.namespace
        if self.labels:
            metadata["labels"] = dict(self.labels)

        manifest: dict[str, Any] = {
            "apiVersion": self.kind.api_version,
            "kind": self.kind.value,
            "metadata": metadata,
        }
        manifest.update(copy.deepcopy(self.body))
        return manifest

    @classmethod
    def from_manifest(cls, manifest: Mapping[str, Any]) -> ResourceRecord:
        """Build a record from a Kubernetes manifest returned by the store."""
        metadata = dict(manifest.get("metadata") or {})
        name = metadata.pop("name", "")
        namespace = metadata.pop("namespace", None)
        labels = metadata.pop("labels", None) or {}
        body = {
            key: copy.deepcopy(value)
            for key, value in manifest.items()
            if key not in ("apiVersion", "kind", "metadata")
        }
        return cls(
            kind=ResourceKind(manifest["kind"]),
            name=name,
            namespace=namespace,
            labels=labels,
            body=body,
            metadata=metadata,
        )


class ResourceStore(Protocol):
    """CRUD contract the operator needs from the cluster."""

    def create(self, record: ResourceRecord) -> ResourceRecord: ...

    def get(
        self, kind: ResourceKind, name: str, namespace: str | None = None
    ) -> ResourceRecord: ...

    def update(self, record: ResourceRecord) -> ResourceRecord: ...

    def delete(self, kind: ResourceKind, name: str, namespace: str | None = None) -> None: ...

    def patch(
        self,
        kind: ResourceKind,
        name: str,
        namespace: str | None,
        patch: dict[str, Any],
    ) -> ResourceRecord: ...
