"""ResourceStore implementation backed by the Kubernetes API.

Uses the dynamic client so built-in kinds (Namespace, Secret, RoleBinding)
and custom resources (AppProject, ArgoCD, Subscription, User) go through the
same code path. HTTP status codes are mapped onto the store error types.
"""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Any

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.dynamic import DynamicClient
from kubernetes.dynamic.exceptions import ResourceNotFoundError

from .store import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
    ResourceKind,
    ResourceRecord,
    StoreError,
)

logger = logging.getLogger(__name__)

MERGE_PATCH_CONTENT_TYPE = "application/merge-patch+json"


def load_api_client() -> client.ApiClient:
    """Load in-cluster credentials, falling back to the local kubeconfig."""
    try:
        config.load_incluster_config()
    except config.ConfigException:
        config.load_kube_config()
    return client.ApiClient()


def _decode_secret(manifest: dict[str, Any]) -> dict[str, Any]:
    """Fold base64 ``data`` into plain-text ``stringData``.

    The API server never returns stringData, so without this every Secret
    would compare as drifted. Keys that are not UTF-8 text (signing keys,
    certificates in DER form) stay in ``data`` untouched, so a replace
    writes them back instead of dropping them.
    """
    manifest = dict(manifest)
    data = manifest.pop("data", None) or {}
    string_data: dict[str, str] = dict(manifest.get("stringData") or {})
    binary: dict[str, str] = {}
    for key, value in data.items():
        try:
            string_data[key] = base64.b64decode(value, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            binary[key] = value
            logger.debug(
                "Secret key is not UTF-8 text, kept as raw data",
                extra={"secret": manifest.get("metadata", {}).get("name"), "key": key},
            )
    manifest["stringData"] = string_data
    if binary:
        manifest["data"] = binary
    return manifest


class KubernetesStore:
    """ResourceStore over the Kubernetes dynamic client."""

    def __init__(
        self,
        api_client: client.ApiClient | None = None,
        dynamic_client: DynamicClient | None = None,
    ) -> None:
        if dynamic_client is None:
            dynamic_client = DynamicClient(api_client or load_api_client())
        self._dynamic = dynamic_client
        # API discovery results only; object state is never cached
        self._apis: dict[ResourceKind, Any] = {}

    def _api(self, kind: ResourceKind) -> Any:
        if kind not in self._apis:
            self._apis[kind] = self._dynamic.resources.get(
                api_version=kind.api_version, kind=kind.value
            )
        return self._apis[kind]

    @staticmethod
    def _namespace(kind: ResourceKind, namespace: str | None) -> str | None:
        return namespace if kind.namespaced else None

    def _to_record(self, instance: Any) -> ResourceRecord:
        manifest = instance.to_dict()
        if manifest.get("kind") == ResourceKind.SECRET.value:
            manifest = _decode_secret(manifest)
        return ResourceRecord.from_manifest(manifest)

    def create(self, record: ResourceRecord) -> ResourceRecord:
        try:
            api = self._api(record.kind)
            created = api.create(
                body=record.to_manifest(),
                namespace=self._namespace(record.kind, record.namespace),
            )
        except ResourceNotFoundError as e:
            raise StoreError(
                f"API for {record.kind.value} is not served: {e}",
                kind=record.kind.value,
                name=record.name,
            ) from e
        except ApiException as e:
            if e.status == 409:
                raise AlreadyExistsError(
                    f"{record.describe()} already exists",
                    kind=record.kind.value,
                    name=record.name,
                ) from e
            raise StoreError(
                f"Failed to create {record.describe()}: {e.reason}",
                kind=record.kind.value,
                name=record.name,
            ) from e
        return self._to_record(created)

    def get(
        self, kind: ResourceKind, name: str, namespace: str | None = None
    ) -> ResourceRecord:
        try:
            api = self._api(kind)
            found = api.get(name=name, namespace=self._namespace(kind, namespace))
        except ResourceNotFoundError as e:
            # Kind not served (CRD not installed yet): nothing of it can exist
            raise NotFoundError(
                f"API for {kind.value} is not served", kind=kind.value, name=name
            ) from e
        except ApiException as e:
            if e.status == 404:
                raise NotFoundError(
                    f"{kind.value} {name} not found", kind=kind.value, name=name
                ) from e
            raise StoreError(
                f"Failed to get {kind.value} {name}: {e.reason}", kind=kind.value, name=name
            ) from e
        return self._to_record(found)

    def update(self, record: ResourceRecord) -> ResourceRecord:
        try:
            api = self._api(record.kind)
            updated = api.replace(
                body=record.to_manifest(),
                name=record.name,
                namespace=self._namespace(record.kind, record.namespace),
            )
        except ResourceNotFoundError as e:
            raise StoreError(
                f"API for {record.kind.value} is not served: {e}",
                kind=record.kind.value,
                name=record.name,
            ) from e
        except ApiException as e:
            if e.status == 409:
                raise ConflictError(
                    f"{record.describe()} was modified concurrently",
                    kind=record.kind.value,
                    name=record.name,
                ) from e
            raise StoreError(
                f"Failed to update {record.describe()}: {e.reason}",
                kind=record.kind.value,
                name=record.name,
            ) from e
        return self._to_record(updated)

    def delete(self, kind: ResourceKind, name: str, namespace: str | None = None) -> None:
        try:
            api = self._api(kind)
            api.delete(name=name, namespace=self._namespace(kind, namespace))
        except ResourceNotFoundError as e:
            raise NotFoundError(
                f"API for {kind.value} is not served", kind=kind.value, name=name
            ) from e
        except ApiException as e:
            if e.status == 404:
                raise NotFoundError(
                    f"{kind.value} {name} not found", kind=kind.value, name=name
                ) from e
            raise StoreError(
                f"Failed to delete {kind.value} {name}: {e.reason}", kind=kind.value, name=name
            ) from e

    def patch(
        self,
        kind: ResourceKind,
        name: str,
        namespace: str | None,
        patch: dict[str, Any],
    ) -> ResourceRecord:
        try:
            api = self._api(kind)
            patched = api.patch(
                body=patch,
                name=name,
                namespace=self._namespace(kind, namespace),
                content_type=MERGE_PATCH_CONTENT_TYPE,
            )
        except ResourceNotFoundError as e:
            raise NotFoundError(
                f"API for {kind.value} is not served", kind=kind.value, name=name
            ) from e
        except ApiException as e:
            if e.status == 404:
                raise NotFoundError(
                    f"{kind.value} {name} not found", kind=kind.value, name=name
                ) from e
            raise StoreError(
                f"Failed to patch {kind.value} {name}: {e.reason}", kind=kind.value, name=name
            ) from e
        return self._to_record(patched)
