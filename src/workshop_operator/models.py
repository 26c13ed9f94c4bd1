"""Pydantic models for the workshop specification.

These models provide:
1. Type-safe YAML parsing
2. Validation at the boundary (fail fast, fail loudly)
3. Deterministic tenant naming shared by every reconciliation step
"""

from __future__ import annotations

import re
from typing import Annotated

from pydantic import BaseModel, Field, field_validator

from .config import MAX_TENANTS

# Tenant and project names are suffixed with the tenant index, so the prefix
# itself must be a valid start of an RFC 1123 label.
VALID_PREFIX_PATTERN = r"^[a-z]([-a-z0-9]{0,40}[a-z0-9])?$"

DEFAULT_GITOPS_CHANNEL = "stable"

# bcrypt only hashes the first 72 bytes; newer releases reject longer input
MAX_PASSWORD_BYTES = 72


class _SpecModel(BaseModel):
    """Common model settings: unknown keys ignored, immutable once loaded."""

    model_config = {"extra": "ignore", "frozen": True, "populate_by_name": True}


# =============================================================================
# Users
# =============================================================================


class UserDetails(_SpecModel):
    """Workshop attendee accounts."""

    number_of_users: Annotated[int, Field(ge=0, le=MAX_TENANTS, alias="numberOfUsers")]
    user_name_prefix: str = Field("user", alias="userNamePrefix")
    password: Annotated[str, Field(min_length=1)]

    @field_validator("user_name_prefix")
    @classmethod
    def validate_prefix(cls, v: str) -> str:
        if not re.match(VALID_PREFIX_PATTERN, v):
            raise ValueError(f"userNamePrefix must match {VALID_PREFIX_PATTERN}")
        return v

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        if len(v.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValueError(f"password must be at most {MAX_PASSWORD_BYTES} bytes in UTF-8")
        return v


# =============================================================================
# Infrastructure
# =============================================================================


class OperatorHubConfig(_SpecModel):
    """OperatorHub subscription pins for the GitOps operator."""

    channel: str = DEFAULT_GITOPS_CHANNEL
    cluster_service_version: Annotated[
        str, Field(min_length=1, alias="clusterServiceVersion")
    ]


class GitOpsConfig(_SpecModel):
    """GitOps control-plane settings."""

    enabled: bool = True
    operator_hub: OperatorHubConfig = Field(alias="operatorHub")


class ProjectConfig(_SpecModel):
    """Per-tenant project naming."""

    staging_name: str = Field("proj", alias="stagingName")

    @field_validator("staging_name")
    @classmethod
    def validate_staging_name(cls, v: str) -> str:
        if not re.match(VALID_PREFIX_PATTERN, v):
            raise ValueError(f"stagingName must match {VALID_PREFIX_PATTERN}")
        return v


class InfrastructureConfig(_SpecModel):
    """Shared infrastructure installed for the workshop."""

    gitops: GitOpsConfig
    project: ProjectConfig = Field(default_factory=ProjectConfig)


# =============================================================================
# Workshop
# =============================================================================


class WorkshopSpec(_SpecModel):
    """Top-level workshop specification.

    Example:
        userDetails:
          numberOfUsers: 3
          userNamePrefix: user
          password: openshift
        infrastructure:
          gitops:
            enabled: true
            operatorHub:
              channel: stable
              clusterServiceVersion: openshift-gitops-operator.v1.5.0
          project:
            stagingName: proj
    """

    user_details: UserDetails = Field(alias="userDetails")
    infrastructure: InfrastructureConfig

    @property
    def tenant_count(self) -> int:
        return self.user_details.number_of_users

    def tenant_ids(self) -> range:
        """Tenant indices in provisioning order (1..N)."""
        return range(1, self.tenant_count + 1)

    def tenant_name(self, tenant_id: int) -> str:
        """Login name of tenant ``tenant_id`` (prefix + index)."""
        return f"{self.user_details.user_name_prefix}{tenant_id}"

    def project_name(self, tenant_id: int) -> str:
        """Private namespace of tenant ``tenant_id`` (staging name + index)."""
        return f"{self.infrastructure.project.staging_name}{tenant_id}"
