"""Pytest configuration and fixtures."""

import sys
from pathlib import Path
from typing import Any

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for k8s_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from k8s_mock import FakeHasher, MockResourceStore  # noqa: E402

from workshop_operator.credentials import CredentialStager  # noqa: E402
from workshop_operator.generator import (  # noqa: E402
    ARGOCD_SERVER_DEPLOYMENT,
    GITOPS_OPERATOR_DEPLOYMENT,
    GITOPS_OPERATOR_PACKAGE,
    ClusterLayout,
)
from workshop_operator.models import WorkshopSpec  # noqa: E402

TEST_CSV = "openshift-gitops-operator.v1.5.0"


def spec_data(
    number_of_users: int = 3,
    prefix: str = "user",
    staging_name: str = "proj",
    gitops_enabled: bool = True,
) -> dict[str, Any]:
    """Raw workshop spec document as it would appear in YAML."""
    return {
        "userDetails": {
            "numberOfUsers": number_of_users,
            "userNamePrefix": prefix,
            "password": "openshift",
        },
        "infrastructure": {
            "gitops": {
                "enabled": gitops_enabled,
                "operatorHub": {"channel": "stable", "clusterServiceVersion": TEST_CSV},
            },
            "project": {"stagingName": staging_name},
        },
    }


def make_spec(**kwargs: Any) -> WorkshopSpec:
    return WorkshopSpec.model_validate(spec_data(**kwargs))


def make_cluster_ready(store: MockResourceStore, layout: ClusterLayout) -> None:
    """Everything upstream of the operator is healthy and resolved."""
    store.attach_install_plan(GITOPS_OPERATOR_PACKAGE, layout.operator_namespace, TEST_CSV)
    store.set_deployment_health(GITOPS_OPERATOR_DEPLOYMENT, layout.operator_namespace, 1, 1)
    store.set_deployment_health(ARGOCD_SERVER_DEPLOYMENT, layout.argocd_namespace, 1, 1)
    store.seed_oauth()


@pytest.fixture
def spec() -> WorkshopSpec:
    return make_spec()


@pytest.fixture
def layout() -> ClusterLayout:
    return ClusterLayout()


@pytest.fixture
def store() -> MockResourceStore:
    return MockResourceStore()


@pytest.fixture
def hasher() -> FakeHasher:
    return FakeHasher()


@pytest.fixture
def stager(tmp_path: Path, hasher: FakeHasher) -> CredentialStager:
    return CredentialStager(tmp_path / "scripts", hasher)
