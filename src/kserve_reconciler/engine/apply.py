# ABOUTME: Apply executor turning a classified delta into one store mutation
# ABOUTME: Merges owned fields into the existing object so updates keep foreign fields and version

"""
Apply executor.

=============================================================================
ONE DELTA, AT MOST ONE STORE CALL
=============================================================================

    ADDED      -> store.create(desired)            desired sent verbatim
    UPDATED    -> store.update(merge(existing))    see below
    REMOVED    -> store.delete(existing identity)
    UNCHANGED  -> nothing

Store failures are re-raised exactly as the store raised them. There is no
retry here: if the caller re-runs the whole cycle, the fresh fetch decides
again what needs doing, which keeps the operation idempotent.

=============================================================================
THE UPDATE MERGE
=============================================================================

Updates are NOT "send the desired object". They are:

    1. Deep-copy the EXISTING object
    2. Overwrite the owned spec and owned labels/annotations with desired
    3. Leave everything else alone

Why it matters:
- resourceVersion stays the one we read, so the API server can reject our
  write with 409 if someone changed the object after our fetch
- labels/annotations added by other controllers or humans survive
- uid, ownerReferences, finalizers, status survive
"""

from __future__ import annotations

import copy
from typing import TYPE_CHECKING

import structlog

from kserve_reconciler.engine.delta import DeltaKind
from kserve_reconciler.engine.resource import OwnedFields, merge_owned

if TYPE_CHECKING:
    from collections.abc import Awaitable

    from kserve_reconciler.engine.delta import Delta
    from kserve_reconciler.engine.resource import Resource
    from kserve_reconciler.engine.store import ResourceStore
    from kserve_reconciler.utils.logging import AuditLogger

logger = structlog.get_logger(__name__)


def merge_for_update(existing: Resource, desired: Resource, owned: OwnedFields) -> Resource:
    """
    Build the update payload: a copy of ``existing`` carrying desired's owned fields.

    Args:
        existing: Object as fetched from the store (source of version token)
        desired: Object as built by the controller (source of owned values)
        owned: Which fields the controller owns

    Returns:
        New Resource; neither input is modified
    """
    merged = existing.copy()
    merged.labels = merge_owned(existing.labels, desired.labels, owned.label_prefixes)
    merged.annotations = merge_owned(
        existing.annotations, desired.annotations, owned.annotation_prefixes
    )

    if owned.spec_fields is None:
        merged.spec = copy.deepcopy(desired.spec)
    else:
        for spec_field in owned.spec_fields:
            if spec_field in desired.spec:
                merged.spec[spec_field] = copy.deepcopy(desired.spec[spec_field])
            else:
                merged.spec.pop(spec_field, None)
    return merged


class ApplyExecutor:
    """Perform exactly the store call implied by a delta."""

    def __init__(
        self,
        store: ResourceStore,
        owned: OwnedFields | None = None,
        audit: AuditLogger | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            store: Resource store receiving the mutation
            owned: Owned-field description used by the update merge
            audit: Optional audit logger recording every mutation
        """
        self._store = store
        self._owned = owned or OwnedFields()
        self._audit = audit

    async def apply(self, delta: Delta) -> Resource | None:
        """Apply ``delta``.

        Returns:
            The object returned by create/update, or None for delete and no-op
        """
        if not delta.has_changes:
            logger.debug("No delta found")
            return None

        desired, existing = delta.desired, delta.existing

        if delta.kind is DeltaKind.ADDED and desired is not None:
            logger.debug("Delta found", create=desired.key)
            return await self._mutate("create", desired, self._store.create(desired))

        if delta.kind is DeltaKind.UPDATED and desired is not None and existing is not None:
            target = merge_for_update(existing, desired, self._owned)
            logger.debug("Delta found", update=target.key, resource_version=target.resource_version)
            return await self._mutate("update", target, self._store.update(target))

        if delta.kind is DeltaKind.REMOVED and existing is not None:
            logger.debug("Delta found", delete=existing.key)
            await self._mutate(
                "delete", existing, self._store.delete(existing.kind, existing.scope, existing.name)
            )
            return None

        raise ValueError(f"{delta.kind.value} delta is missing the object it acts on")

    async def _mutate(
        self,
        action: str,
        target: Resource,
        call: Awaitable[Resource | None],
    ) -> Resource | None:
        try:
            result = await call
        except Exception as e:
            if self._audit:
                self._audit.log_error(action, target.key, str(e))
            raise
        if self._audit:
            self._audit.log_write(
                action,
                target.key,
                "success",
                {"resource_version": target.resource_version} if target.resource_version else None,
            )
        return result
