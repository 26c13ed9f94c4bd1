"""Kubernetes API mock for integration testing.

Provides an in-memory ResourceStore so the reconciler can be exercised end to
end without a cluster.

Key Features:
- In-memory object state keyed by (kind, name, namespace)
- Call log for asserting operation order
- Error injection per operation, kind and name
- Deployment health and OLM install-plan simulation

Usage:
    from k8s_mock import FakeHasher, MockResourceStore

    store = MockResourceStore()
    store.set_deployment_health("gitops-operator", "openshift-operators", 1, 1)
    reconciler = WorkshopReconciler(store, hasher=FakeHasher(), stager=...)
    result = reconciler.reconcile_gitops_stack(spec)
    assert store.count("update") == 0
"""

from .hashing import FakeHasher
from .store import MockResourceStore, StoreCall, merge_patch

__all__ = [
    "FakeHasher",
    "MockResourceStore",
    "StoreCall",
    "merge_patch",
]
