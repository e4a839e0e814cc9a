# ABOUTME: Reconciliation engine package initialization
# ABOUTME: Re-exports the comparator, delta processor, apply executor and reconcile loop

"""
Generic declarative reconciliation engine.

    comparator.py  -> is existing already what we want?
    delta.py       -> Added / Updated / Removed / Unchanged
    apply.py       -> one store call per delta
    reconciler.py  -> resolve, build, fetch, delta, apply (+ cleanup)
    policy.py      -> canonical identity of the managed object
    store.py       -> Resource Store protocol
    resource.py    -> Resource, ResourceKind, owned-field helpers
    errors.py      -> error taxonomy
"""

from kserve_reconciler.engine.apply import ApplyExecutor, merge_for_update
from kserve_reconciler.engine.comparator import Comparator, OwnedFieldsComparator
from kserve_reconciler.engine.delta import Delta, DeltaKind, compute_delta
from kserve_reconciler.engine.errors import (
    AlreadyExistsError,
    BuildError,
    ConflictError,
    NotFoundError,
    ReconcileError,
    ReconcilerError,
    StoreError,
    TransientStoreError,
)
from kserve_reconciler.engine.policy import IdentityPolicy, NamedAfterOwner, SingletonPerScope
from kserve_reconciler.engine.reconciler import ResourceKindHandler, SubResourceReconciler
from kserve_reconciler.engine.resource import OwnedFields, Resource, ResourceKind
from kserve_reconciler.engine.store import ResourceStore

__all__ = [
    "AlreadyExistsError",
    "ApplyExecutor",
    "BuildError",
    "Comparator",
    "ConflictError",
    "Delta",
    "DeltaKind",
    "IdentityPolicy",
    "NamedAfterOwner",
    "NotFoundError",
    "OwnedFields",
    "OwnedFieldsComparator",
    "ReconcileError",
    "ReconcilerError",
    "Resource",
    "ResourceKind",
    "ResourceKindHandler",
    "ResourceStore",
    "SingletonPerScope",
    "StoreError",
    "SubResourceReconciler",
    "TransientStoreError",
    "compute_delta",
    "merge_for_update",
]
