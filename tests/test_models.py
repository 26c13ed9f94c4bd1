"""Tests for the workshop spec models and the spec loader."""

from pathlib import Path

import pytest
import yaml
from conftest import TEST_CSV, spec_data
from pydantic import ValidationError

from workshop_operator.config import MAX_SPEC_FILE_SIZE_BYTES, MAX_TENANTS
from workshop_operator.models import MAX_PASSWORD_BYTES, WorkshopSpec
from workshop_operator.spec_loader import SpecLoadError, load_spec, parse_spec


class TestWorkshopSpec:
    """Tests for WorkshopSpec model."""

    def test_valid_spec(self) -> None:
        """Test parsing a valid workshop spec."""
        spec = WorkshopSpec.model_validate(spec_data(number_of_users=3))

        assert spec.tenant_count == 3
        assert spec.user_details.user_name_prefix == "user"
        assert spec.infrastructure.gitops.enabled is True
        assert spec.infrastructure.gitops.operator_hub.cluster_service_version == TEST_CSV

    def test_tenant_naming(self) -> None:
        spec = WorkshopSpec.model_validate(spec_data(number_of_users=3, prefix="dev"))

        assert list(spec.tenant_ids()) == [1, 2, 3]
        assert [spec.tenant_name(i) for i in spec.tenant_ids()] == ["dev1", "dev2", "dev3"]
        assert [spec.project_name(i) for i in spec.tenant_ids()] == ["proj1", "proj2", "proj3"]

    def test_defaults(self) -> None:
        data = spec_data()
        del data["userDetails"]["userNamePrefix"]
        del data["infrastructure"]["project"]
        del data["infrastructure"]["gitops"]["operatorHub"]["channel"]

        spec = WorkshopSpec.model_validate(data)

        assert spec.tenant_name(1) == "user1"
        assert spec.project_name(1) == "proj1"
        assert spec.infrastructure.gitops.operator_hub.channel == "stable"

    def test_zero_tenants(self) -> None:
        spec = WorkshopSpec.model_validate(spec_data(number_of_users=0))

        assert list(spec.tenant_ids()) == []

    def test_too_many_tenants(self) -> None:
        with pytest.raises(ValidationError):
            WorkshopSpec.model_validate(spec_data(number_of_users=MAX_TENANTS + 1))

    def test_invalid_prefix(self) -> None:
        """Prefixes must start a valid Kubernetes name."""
        with pytest.raises(ValidationError) as exc_info:
            WorkshopSpec.model_validate(spec_data(prefix="User_"))

        assert "userNamePrefix" in str(exc_info.value)

    def test_password_at_bcrypt_limit(self) -> None:
        data = spec_data()
        data["userDetails"]["password"] = "p" * MAX_PASSWORD_BYTES

        spec = WorkshopSpec.model_validate(data)

        assert len(spec.user_details.password) == MAX_PASSWORD_BYTES

    @pytest.mark.parametrize("password", ["p" * 80, "é" * 37])
    def test_password_over_bcrypt_limit(self, password: str) -> None:
        """Length is measured in UTF-8 bytes, not characters."""
        data = spec_data()
        data["userDetails"]["password"] = password

        with pytest.raises(ValidationError) as exc_info:
            WorkshopSpec.model_validate(data)

        assert "72 bytes" in str(exc_info.value)

    def test_missing_csv(self) -> None:
        data = spec_data()
        del data["infrastructure"]["gitops"]["operatorHub"]["clusterServiceVersion"]

        with pytest.raises(ValidationError) as exc_info:
            WorkshopSpec.model_validate(data)

        assert "clusterServiceVersion" in str(exc_info.value)

    def test_spec_is_immutable(self) -> None:
        spec = WorkshopSpec.model_validate(spec_data())

        with pytest.raises(ValidationError):
            spec.user_details.number_of_users = 10  # type: ignore[misc]


class TestSpecLoader:
    """Tests for load_spec and parse_spec."""

    def test_load_flat_document(self, tmp_path: Path) -> None:
        spec_file = tmp_path / "workshop.yaml"
        spec_file.write_text(yaml.safe_dump(spec_data(number_of_users=2)))

        spec = load_spec(spec_file)

        assert spec.tenant_count == 2

    def test_load_kubernetes_wrapper(self, tmp_path: Path) -> None:
        """The spec section of a Workshop custom resource is used."""
        spec_file = tmp_path / "workshop.yaml"
        spec_file.write_text(
            yaml.safe_dump(
                {
                    "apiVersion": "workshop.stakater.com/v1",
                    "kind": "Workshop",
                    "metadata": {"name": "kubecon"},
                    "spec": spec_data(number_of_users=4),
                }
            )
        )

        spec = load_spec(spec_file)

        assert spec.tenant_count == 4

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(SpecLoadError, match="not found"):
            load_spec(tmp_path / "absent.yaml")

    def test_file_too_large(self, tmp_path: Path) -> None:
        spec_file = tmp_path / "huge.yaml"
        spec_file.write_text("#" * (MAX_SPEC_FILE_SIZE_BYTES + 1))

        with pytest.raises(SpecLoadError, match="maximum size"):
            load_spec(spec_file)

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        spec_file = tmp_path / "broken.yaml"
        spec_file.write_text("userDetails: [unclosed")

        with pytest.raises(SpecLoadError, match="Invalid YAML"):
            load_spec(spec_file)

    def test_validation_errors_list_locations(self) -> None:
        data = spec_data()
        data["userDetails"]["numberOfUsers"] = -1

        with pytest.raises(SpecLoadError) as exc_info:
            parse_spec(data, source="inline")

        message = str(exc_info.value)
        assert "inline" in message
        assert "userDetails.numberOfUsers" in message

    def test_overlong_password_fails_at_load(self) -> None:
        data = spec_data()
        data["userDetails"]["password"] = "p" * 80

        with pytest.raises(SpecLoadError) as exc_info:
            parse_spec(data, source="inline")

        assert "userDetails.password" in str(exc_info.value)

    def test_non_mapping_document(self) -> None:
        with pytest.raises(SpecLoadError, match="mapping"):
            parse_spec(["not", "a", "mapping"])
