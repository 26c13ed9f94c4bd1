"""Configuration management with validation.

Operator settings come from the environment. Every value is validated at
construction time so a misconfigured operator fails on startup instead of
half-way through a reconciliation pass.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_RECONCILE_INTERVAL_SECONDS = 300
MIN_RECONCILE_INTERVAL_SECONDS = 60
MAX_RECONCILE_INTERVAL_SECONDS = 3600

DEFAULT_REQUEUE_DELAY_SECONDS = 15
MIN_REQUEUE_DELAY_SECONDS = 1
MAX_REQUEUE_DELAY_SECONDS = 600

DEFAULT_BCRYPT_ROUNDS = 10
MIN_BCRYPT_ROUNDS = 4
MAX_BCRYPT_ROUNDS = 15

# Spec files are small YAML documents
MAX_SPEC_FILE_SIZE_BYTES = 1024 * 1024

# Hard upper bound on tenants in one workshop
MAX_TENANTS = 500

DEFAULT_ARGOCD_NAMESPACE = "argocd"
DEFAULT_OPERATOR_NAMESPACE = "openshift-operators"
DEFAULT_STAGING_DIR = "/tmp/scripts"

# Kubernetes object names (RFC 1123 label)
VALID_NAME_PATTERN = r"^[a-z0-9]([-a-z0-9]{0,61}[a-z0-9])?$"


@dataclass(frozen=True)
class Config:
    """Operator configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing at runtime.
    """

    # Name of the workshop spec (<specs_dir>/<workshop_name>.yaml)
    workshop_name: str

    # Paths
    specs_dir: Path = field(default_factory=lambda: Path("/specs"))
    staging_dir: Path = field(default_factory=lambda: Path(DEFAULT_STAGING_DIR))

    # Namespaces
    argocd_namespace: str = DEFAULT_ARGOCD_NAMESPACE
    operator_namespace: str = DEFAULT_OPERATOR_NAMESPACE

    # Timing
    reconcile_interval_seconds: int = DEFAULT_RECONCILE_INTERVAL_SECONDS
    requeue_delay_seconds: int = DEFAULT_REQUEUE_DELAY_SECONDS

    # Behavior
    bcrypt_rounds: int = DEFAULT_BCRYPT_ROUNDS
    manage_identities: bool = True

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.workshop_name:
            errors.append("WORKSHOP_NAME is required")
        elif not re.match(VALID_NAME_PATTERN, self.workshop_name):
            errors.append(
                f"WORKSHOP_NAME must match pattern {VALID_NAME_PATTERN}: {self.workshop_name}"
            )

        for label, value in (
            ("ARGOCD_NAMESPACE", self.argocd_namespace),
            ("OPERATOR_NAMESPACE", self.operator_namespace),
        ):
            if not re.match(VALID_NAME_PATTERN, value):
                errors.append(f"{label} is not a valid namespace name: {value}")

        if not (
            MIN_RECONCILE_INTERVAL_SECONDS
            <= self.reconcile_interval_seconds
            <= MAX_RECONCILE_INTERVAL_SECONDS
        ):
            errors.append(
                f"RECONCILE_INTERVAL must be between {MIN_RECONCILE_INTERVAL_SECONDS} "
                f"and {MAX_RECONCILE_INTERVAL_SECONDS} seconds"
            )

        if not (
            MIN_REQUEUE_DELAY_SECONDS <= self.requeue_delay_seconds <= MAX_REQUEUE_DELAY_SECONDS
        ):
            errors.append(
                f"REQUEUE_DELAY must be between {MIN_REQUEUE_DELAY_SECONDS} "
                f"and {MAX_REQUEUE_DELAY_SECONDS} seconds"
            )

        if not (MIN_BCRYPT_ROUNDS <= self.bcrypt_rounds <= MAX_BCRYPT_ROUNDS):
            errors.append(
                f"BCRYPT_ROUNDS must be between {MIN_BCRYPT_ROUNDS} and {MAX_BCRYPT_ROUNDS}"
            )

        if not self.specs_dir.exists():
            errors.append(f"Specs directory does not exist: {self.specs_dir}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @property
    def spec_path(self) -> Path:
        """Path of the workshop spec file."""
        return self.specs_dir / f"{self.workshop_name}.yaml"

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            WORKSHOP_NAME: Spec file name without extension (required)
            SPECS_DIR: Directory holding the spec (default: /specs)
            STAGING_DIR: Credential staging directory (default: /tmp/scripts)
            ARGOCD_NAMESPACE: Shared GitOps namespace (default: argocd)
            OPERATOR_NAMESPACE: Subscription namespace (default: openshift-operators)
            RECONCILE_INTERVAL: Seconds between converged passes (default: 300)
            REQUEUE_DELAY: Seconds before re-running a requeued pass (default: 15)
            BCRYPT_ROUNDS: Password hash cost (default: 10)
            MANAGE_IDENTITIES: Run the identity pass (default: true)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        return cls(
            workshop_name=os.environ.get("WORKSHOP_NAME", ""),
            specs_dir=Path(os.environ.get("SPECS_DIR", "/specs")),
            staging_dir=Path(os.environ.get("STAGING_DIR", DEFAULT_STAGING_DIR)),
            argocd_namespace=os.environ.get("ARGOCD_NAMESPACE", DEFAULT_ARGOCD_NAMESPACE),
            operator_namespace=os.environ.get("OPERATOR_NAMESPACE", DEFAULT_OPERATOR_NAMESPACE),
            reconcile_interval_seconds=get_int(
                "RECONCILE_INTERVAL", DEFAULT_RECONCILE_INTERVAL_SECONDS
            ),
            requeue_delay_seconds=get_int("REQUEUE_DELAY", DEFAULT_REQUEUE_DELAY_SECONDS),
            bcrypt_rounds=get_int("BCRYPT_ROUNDS", DEFAULT_BCRYPT_ROUNDS),
            manage_identities=get_bool("MANAGE_IDENTITIES", True),
        )
