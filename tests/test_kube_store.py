"""Tests for the Kubernetes-backed ResourceStore."""

import base64
from typing import Any
from unittest.mock import MagicMock

import pytest
from kubernetes.client.rest import ApiException
from kubernetes.dynamic.exceptions import ResourceNotFoundError

from workshop_operator.driver import ConvergenceDriver
from workshop_operator.generator import ClusterLayout, argocd_secret_record
from workshop_operator.kube import MERGE_PATCH_CONTENT_TYPE, KubernetesStore
from workshop_operator.store import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
    ResourceKind,
    ResourceRecord,
    StoreError,
)


def instance(manifest: dict[str, Any]) -> MagicMock:
    """Stand-in for a ResourceInstance returned by the dynamic client."""
    found = MagicMock()
    found.to_dict.return_value = manifest
    return found


@pytest.fixture
def api() -> MagicMock:
    return MagicMock()


@pytest.fixture
def dynamic(api: MagicMock) -> MagicMock:
    client = MagicMock()
    client.resources.get.return_value = api
    return client


@pytest.fixture
def kube_store(dynamic: MagicMock) -> KubernetesStore:
    return KubernetesStore(dynamic_client=dynamic)


APP_PROJECT = ResourceRecord(
    kind=ResourceKind.APP_PROJECT,
    name="proj1",
    namespace="argocd",
    labels={"app.kubernetes.io/name": "appproject-cr"},
    body={"spec": {"sourceRepos": ["*"]}},
)

APP_PROJECT_MANIFEST = {
    "apiVersion": "argoproj.io/v1alpha1",
    "kind": "AppProject",
    "metadata": {"name": "proj1", "namespace": "argocd", "uid": "u-1", "resourceVersion": "7"},
    "spec": {"sourceRepos": ["*"]},
}


class TestCreate:
    """Tests for KubernetesStore.create."""

    def test_create(self, kube_store: KubernetesStore, api: MagicMock, dynamic: MagicMock) -> None:
        api.create.return_value = instance(APP_PROJECT_MANIFEST)

        created = kube_store.create(APP_PROJECT)

        dynamic.resources.get.assert_called_once_with(
            api_version="argoproj.io/v1alpha1", kind="AppProject"
        )
        body = api.create.call_args.kwargs["body"]
        assert body["metadata"]["namespace"] == "argocd"
        assert body["metadata"]["labels"] == {"app.kubernetes.io/name": "appproject-cr"}
        assert api.create.call_args.kwargs["namespace"] == "argocd"
        assert created.metadata == {"uid": "u-1", "resourceVersion": "7"}

    def test_already_exists(self, kube_store: KubernetesStore, api: MagicMock) -> None:
        api.create.side_effect = ApiException(status=409, reason="Conflict")

        with pytest.raises(AlreadyExistsError):
            kube_store.create(APP_PROJECT)

    def test_other_api_error(self, kube_store: KubernetesStore, api: MagicMock) -> None:
        api.create.side_effect = ApiException(status=403, reason="Forbidden")

        with pytest.raises(StoreError) as exc_info:
            kube_store.create(APP_PROJECT)

        assert not isinstance(exc_info.value, AlreadyExistsError)
        assert "Forbidden" in str(exc_info.value)

    def test_kind_not_served(self, kube_store: KubernetesStore, dynamic: MagicMock) -> None:
        dynamic.resources.get.side_effect = ResourceNotFoundError("no AppProject")

        with pytest.raises(StoreError, match="not served"):
            kube_store.create(APP_PROJECT)

    def test_cluster_scoped_kind_drops_namespace(
        self, kube_store: KubernetesStore, api: MagicMock
    ) -> None:
        api.create.return_value = instance(
            {"apiVersion": "user.openshift.io/v1", "kind": "User", "metadata": {"name": "user1"}}
        )

        kube_store.create(ResourceRecord(kind=ResourceKind.USER, name="user1", namespace="ignored"))

        assert api.create.call_args.kwargs["namespace"] is None
        assert "namespace" not in api.create.call_args.kwargs["body"]["metadata"]


class TestGet:
    """Tests for KubernetesStore.get."""

    def test_not_found(self, kube_store: KubernetesStore, api: MagicMock) -> None:
        api.get.side_effect = ApiException(status=404, reason="Not Found")

        with pytest.raises(NotFoundError):
            kube_store.get(ResourceKind.APP_PROJECT, "proj1", "argocd")

    def test_kind_not_served_is_not_found(
        self, kube_store: KubernetesStore, dynamic: MagicMock
    ) -> None:
        dynamic.resources.get.side_effect = ResourceNotFoundError("no OAuth")

        with pytest.raises(NotFoundError):
            kube_store.get(ResourceKind.OAUTH, "cluster")

    def test_secret_data_is_decoded(self, kube_store: KubernetesStore, api: MagicMock) -> None:
        encoded = base64.b64encode(b"$2b$10$hash").decode("ascii")
        api.get.return_value = instance(
            {
                "apiVersion": "v1",
                "kind": "Secret",
                "metadata": {"name": "argocd-secret", "namespace": "argocd"},
                "type": "Opaque",
                "data": {"accounts.user1.password": encoded},
            }
        )

        secret = kube_store.get(ResourceKind.SECRET, "argocd-secret", "argocd")

        assert "data" not in secret.body
        assert secret.mutable_subset() == {"accounts.user1.password": "$2b$10$hash"}

    def test_discovery_is_cached(
        self, kube_store: KubernetesStore, api: MagicMock, dynamic: MagicMock
    ) -> None:
        api.get.return_value = instance(APP_PROJECT_MANIFEST)

        kube_store.get(ResourceKind.APP_PROJECT, "proj1", "argocd")
        kube_store.get(ResourceKind.APP_PROJECT, "proj1", "argocd")

        assert dynamic.resources.get.call_count == 1
        assert api.get.call_count == 2


class TestWrites:
    """Tests for update, delete and patch."""

    def test_update_sends_resource_version(
        self, kube_store: KubernetesStore, api: MagicMock
    ) -> None:
        api.replace.return_value = instance(APP_PROJECT_MANIFEST)
        actual = ResourceRecord.from_manifest(APP_PROJECT_MANIFEST)

        kube_store.update(actual)

        body = api.replace.call_args.kwargs["body"]
        assert body["metadata"]["resourceVersion"] == "7"
        assert api.replace.call_args.kwargs["name"] == "proj1"

    def test_update_conflict(self, kube_store: KubernetesStore, api: MagicMock) -> None:
        api.replace.side_effect = ApiException(status=409, reason="Conflict")

        with pytest.raises(ConflictError):
            kube_store.update(APP_PROJECT)

    def test_delete_not_found(self, kube_store: KubernetesStore, api: MagicMock) -> None:
        api.delete.side_effect = ApiException(status=404, reason="Not Found")

        with pytest.raises(NotFoundError):
            kube_store.delete(ResourceKind.APP_PROJECT, "proj1", "argocd")

    def test_delete_error(self, kube_store: KubernetesStore, api: MagicMock) -> None:
        api.delete.side_effect = ApiException(status=500, reason="Internal Server Error")

        with pytest.raises(StoreError):
            kube_store.delete(ResourceKind.APP_PROJECT, "proj1", "argocd")

    def test_patch_uses_merge_patch(self, kube_store: KubernetesStore, api: MagicMock) -> None:
        api.patch.return_value = instance(
            {
                "apiVersion": "config.openshift.io/v1",
                "kind": "OAuth",
                "metadata": {"name": "cluster"},
                "spec": {"identityProviders": []},
            }
        )

        kube_store.patch(ResourceKind.OAUTH, "cluster", None, {"spec": {"identityProviders": []}})

        assert api.patch.call_args.kwargs["content_type"] == MERGE_PATCH_CONTENT_TYPE
        assert api.patch.call_args.kwargs["namespace"] is None


class TestSecretReplace:
    """Secrets read, merged and replaced through the store."""

    SIGNING_KEY = base64.b64encode(b"\xff\xfe\x00raw").decode("ascii")

    def argocd_secret_manifest(self) -> dict[str, Any]:
        return {
            "apiVersion": "v1",
            "kind": "Secret",
            "metadata": {"name": "argocd-secret", "namespace": "argocd", "resourceVersion": "3"},
            "type": "Opaque",
            "data": {
                "server.secretkey": self.SIGNING_KEY,
                "accounts.user1.password": base64.b64encode(b"$2b$10$one").decode("ascii"),
            },
        }

    def test_binary_keys_kept_as_raw_data(
        self, kube_store: KubernetesStore, api: MagicMock
    ) -> None:
        api.get.return_value = instance(self.argocd_secret_manifest())

        secret = kube_store.get(ResourceKind.SECRET, "argocd-secret", "argocd")

        assert secret.body["data"] == {"server.secretkey": self.SIGNING_KEY}
        assert secret.mutable_subset() == {"accounts.user1.password": "$2b$10$one"}

    def test_scale_up_keeps_foreign_binary_keys(
        self, kube_store: KubernetesStore, api: MagicMock
    ) -> None:
        api.create.side_effect = ApiException(status=409, reason="Conflict")
        api.get.return_value = instance(self.argocd_secret_manifest())
        api.replace.return_value = instance(self.argocd_secret_manifest())
        desired = argocd_secret_record(
            ClusterLayout(),
            {"accounts.user1.password": "$2b$10$new", "accounts.user2.password": "$2b$10$two"},
        )

        assert ConvergenceDriver(kube_store).apply(desired) is True

        body = api.replace.call_args.kwargs["body"]
        assert body["data"] == {"server.secretkey": self.SIGNING_KEY}
        assert body["stringData"] == {
            "accounts.user1.password": "$2b$10$one",
            "accounts.user2.password": "$2b$10$two",
        }
        assert body["metadata"]["resourceVersion"] == "3"
