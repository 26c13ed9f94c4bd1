"""Convergence driver: make one stored object match one desired record.

apply() is create-first: most passes after the first find every object
already present, and a create that fails with AlreadyExists costs the same
round trip as a get. On AlreadyExists the actual object is read, the kind's
mutable subset is compared, and an update is issued only when it differs.

Labels and metadata are never compared. The API server and other
controllers inject fields there, and comparing them would produce an update
on every pass.

Updates are last-writer-wins. There is no retry on conflict; a ConflictError
aborts the pass like any other hard error and the next pass starts over.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from .store import (
    AlreadyExistsError,
    MergeStrategy,
    NotFoundError,
    ResourceKind,
    ResourceRecord,
    ResourceStore,
)

logger = logging.getLogger(__name__)


@dataclass
class DriverStats:
    """Counters for one pass, reset by the reconciler at pass start."""

    created: int = 0
    updated: int = 0
    unchanged: int = 0
    deleted: int = 0

    @property
    def changed(self) -> int:
        return self.created + self.updated + self.deleted


def _as_mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def merged_subset(
    strategy: MergeStrategy, desired: Any, actual: Any
) -> tuple[bool, Any]:
    """Decide whether ``actual`` has drifted from ``desired`` and what to write.

    Args:
        strategy: How the record wants to be reconciled.
        desired: Mutable subset of the desired record.
        actual: Mutable subset of the stored object (None when absent).

    Returns:
        Tuple of (drifted, value to write back when drifted).
    """
    match strategy:
        case MergeStrategy.CREATE_ONLY:
            return False, actual
        case MergeStrategy.REPLACE:
            return desired != actual, desired
        case MergeStrategy.MERGE_KEYS:
            current = dict(_as_mapping(actual))
            wanted = _as_mapping(desired)
            drifted = any(current.get(key) != value for key, value in wanted.items())
            current.update(wanted)
            return drifted, current
        case MergeStrategy.ADD_MISSING_KEYS:
            current = dict(_as_mapping(actual))
            missing = {k: v for k, v in _as_mapping(desired).items() if k not in current}
            current.update(missing)
            return bool(missing), current
        case _:
            raise ValueError(f"Unsupported merge strategy: {strategy}")


class ConvergenceDriver:
    """Idempotent apply/delete primitives over a ResourceStore."""

    def __init__(self, store: ResourceStore) -> None:
        self._store = store
        self.stats = DriverStats()

    @property
    def store(self) -> ResourceStore:
        return self._store

    def reset_stats(self) -> None:
        self.stats = DriverStats()

    def apply(self, desired: ResourceRecord) -> bool:
        """Ensure the stored object matches ``desired``.

        Returns:
            True if the object was created or updated, False if it already matched.

        Raises:
            StoreError: On any store failure other than AlreadyExists.
        """
        try:
            self._store.create(desired)
        except AlreadyExistsError:
            pass
        else:
            self.stats.created += 1
            logger.info("Created %s", desired.describe())
            return True

        actual = self._store.get(desired.kind, desired.name, desired.namespace)
        drifted, value = merged_subset(
            desired.strategy, desired.mutable_subset(), actual.mutable_subset()
        )
        if not drifted:
            self.stats.unchanged += 1
            logger.debug("%s is up to date", desired.describe())
            return False

        self._store.update(actual.with_mutable_subset(value))
        self.stats.updated += 1
        logger.info(
            "Updated %s",
            desired.describe(),
            extra={"strategy": desired.strategy.value},
        )
        return True

    def ensure_absent(
        self, kind: ResourceKind, name: str, namespace: str | None = None
    ) -> bool:
        """Delete an object if it exists.

        Returns:
            True if a delete was issued, False if the object was already gone.

        Raises:
            StoreError: On any store failure other than NotFound.
        """
        try:
            self._store.delete(kind, name, namespace)
        except NotFoundError:
            logger.debug("%s %s already absent", kind.value, name)
            return False
        self.stats.deleted += 1
        logger.info("Deleted %s %s", kind.value, name, extra={"namespace": namespace})
        return True

    def exists(self, kind: ResourceKind, name: str, namespace: str | None = None) -> bool:
        try:
            self._store.get(kind, name, namespace)
        except NotFoundError:
            return False
        return True

    def patch(
        self,
        kind: ResourceKind,
        name: str,
        namespace: str | None,
        patch: dict[str, Any],
    ) -> ResourceRecord:
        """Merge-patch an existing object; unrelated fields are left untouched."""
        patched = self._store.patch(kind, name, namespace, patch)
        self.stats.updated += 1
        logger.info("Patched %s %s", kind.value, name)
        return patched
