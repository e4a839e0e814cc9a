# ABOUTME: Reconcile loop and cleanup for one managed resource kind
# ABOUTME: Runs resolve, build, fetch, delta and apply as separately failing stages

"""
The reconcile loop.

=============================================================================
ONE CYCLE
=============================================================================

    reconcile(scope, context)
      │
      ├─ identity  (scope, name) from the policy  -> missing owner
      ├─ resolve   optional inputs -> concrete values (fallbacks logged)
      ├─ build     desired Resource              -> BuildError
      ├─ fetch     existing Resource or None     -> store errors
      ├─ delta     compute_delta(...)            (pure)
      └─ apply     at most one store mutation    -> store errors

Each stage either succeeds or raises ReconcileError naming the stage; the
remaining stages are skipped. The original exception is chained and kept on
``ReconcileError.cause``.

Cancellation is NOT an error: asyncio.CancelledError is a BaseException and
passes straight through, aborting at whichever await is in progress.

=============================================================================
RECONCILE vs CLEANUP
=============================================================================

``reconcile`` never deletes. Deletion only happens through ``cleanup``,
which is called when the owning workload goes away. Keeping the two paths
apart means a builder bug can never delete a live object.

=============================================================================
CONCURRENCY PRECONDITION
=============================================================================

A reconciler holds no per-call state and may run concurrently for different
scopes. The CALLER must make sure only one cycle per (kind, scope, name) is
in flight; see ``kserve_reconciler.utils.workqueue``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Generic, Protocol, TypeVar

import structlog

from kserve_reconciler.engine.apply import ApplyExecutor
from kserve_reconciler.engine.delta import Delta, DeltaKind, compute_delta
from kserve_reconciler.engine.errors import NotFoundError, ReconcileError

if TYPE_CHECKING:
    from collections.abc import Mapping

    from kserve_reconciler.engine.comparator import Comparator
    from kserve_reconciler.engine.policy import IdentityPolicy
    from kserve_reconciler.engine.resource import OwnedFields, Resource, ResourceKind
    from kserve_reconciler.engine.store import ResourceStore
    from kserve_reconciler.utils.logging import AuditLogger

logger = structlog.get_logger(__name__)

ContextT = TypeVar("ContextT", contravariant=True)


# =============================================================================
# KIND HANDLER CAPABILITIES
# =============================================================================


class ResourceKindHandler(Protocol[ContextT]):
    """
    Everything the engine needs to know about one managed kind.

    Attributes:
        kind: REST type information
        policy: Decides the canonical identity
        owned: Fields this controller owns (used by the update merge)
        comparator: Equality over the owned fields
    """

    kind: ResourceKind
    policy: IdentityPolicy
    owned: OwnedFields
    comparator: Comparator

    async def resolve(self, context: ContextT, scope: str) -> Mapping[str, Any]:
        """Turn optional external inputs into concrete values before building."""
        ...

    def build(self, context: ContextT, scope: str, resolved: Mapping[str, Any]) -> Resource:
        """Construct the desired object. Raise BuildError on failure."""
        ...


# =============================================================================
# RECONCILER
# =============================================================================


class SubResourceReconciler(Generic[ContextT]):
    """Reconciles one managed kind on behalf of an owning workload."""

    def __init__(
        self,
        handler: ResourceKindHandler[ContextT],
        store: ResourceStore,
        audit: AuditLogger | None = None,
    ) -> None:
        self.handler = handler
        self._store = store
        self._executor = ApplyExecutor(store, owned=handler.owned, audit=audit)

    @property
    def kind(self) -> ResourceKind:
        return self.handler.kind

    def work_key(self, scope: str, context: ContextT | None = None) -> str:
        """Key identifying the managed object, used for per-key serialization."""
        scope, name = self.handler.policy.identity(self.kind, scope, context)
        return f"{self.kind.kind}/{scope}/{name}"

    async def reconcile(self, scope: str, context: ContextT) -> Delta:
        """
        Converge the managed object in ``scope`` towards the desired state.

        Args:
            scope: Namespace being reconciled
            context: Triggering object passed to the builder

        Returns:
            The delta that was applied

        Raises:
            ReconcileError: A stage failed; ``stage`` and ``cause`` say which and why
        """
        scope, name, key = self._identify(scope, context)
        log = logger.bind(kind=self.kind.kind, scope=scope, name=name)
        log.debug("Reconciling managed resource")

        try:
            resolved = await self.handler.resolve(context, scope)
        except Exception as e:
            raise ReconcileError("resolve", key, e) from e

        try:
            desired = self.handler.build(context, scope, resolved)
        except Exception as e:
            raise ReconcileError("build", key, e) from e
        # The policy, not the builder, owns identity
        desired.scope, desired.name = scope, name

        existing = await self._fetch(key, scope, name)

        delta = compute_delta(self.handler.comparator, desired, existing)

        try:
            await self._executor.apply(delta)
        except Exception as e:
            raise ReconcileError("apply", key, e) from e

        log.info("Reconciled managed resource", delta=delta.kind.value)
        return delta

    async def cleanup(self, scope: str, context: ContextT | None = None) -> Delta:
        """
        Delete the managed object in ``scope`` if it exists.

        Safe to call repeatedly: an absent object (before or during the
        delete) counts as success.

        Returns:
            REMOVED if something was deleted, UNCHANGED otherwise
        """
        scope, name, key = self._identify(scope, context)
        log = logger.bind(kind=self.kind.kind, scope=scope, name=name)
        log.debug("Deleting managed resource for scope")

        existing = await self._fetch(key, scope, name)
        delta = compute_delta(self.handler.comparator, None, existing)

        try:
            await self._executor.apply(delta)
        except NotFoundError:
            log.debug("Managed resource already gone")
            return Delta(DeltaKind.UNCHANGED, None, None)
        except Exception as e:
            raise ReconcileError("apply", key, e) from e

        if delta.is_removed:
            log.info("Deleted managed resource")
        return delta

    async def _fetch(self, key: str, scope: str, name: str) -> Resource | None:
        try:
            return await self._store.fetch(self.kind, scope, name)
        except NotFoundError:
            return None
        except Exception as e:
            raise ReconcileError("fetch", key, e) from e

    def _identify(self, scope: str, context: ContextT | None) -> tuple[str, str, str]:
        try:
            scope, name = self.handler.policy.identity(self.kind, scope, context)
        except Exception as e:
            raise ReconcileError("identity", f"{self.kind.kind}/{scope}", e) from e
        return scope, name, f"{self.kind.kind}/{scope}/{name}"
