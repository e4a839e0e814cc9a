# ABOUTME: Delta processor classifying desired vs existing state
# ABOUTME: Pure decision table producing Added, Updated, Removed or Unchanged

"""
Delta computation between desired and existing state.

=============================================================================
THE DECISION TABLE
=============================================================================

Evaluated top to bottom, first match wins:

    desired    existing   comparator     -> delta
    -------    --------   ----------        -----
    present    absent     (not asked)       ADDED
    absent     present    (not asked)       REMOVED
    absent     absent     (not asked)       UNCHANGED
    present    present    equal             UNCHANGED
    present    present    not equal         UPDATED

This function never touches the network. Everything it needs has already
been fetched, so it can be tested with plain objects and it has nothing to
release if the surrounding task is cancelled.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from kserve_reconciler.engine.comparator import Comparator
    from kserve_reconciler.engine.resource import Resource


class DeltaKind(str, Enum):
    """The four possible relationships between desired and existing state."""

    ADDED = "added"
    UPDATED = "updated"
    REMOVED = "removed"
    UNCHANGED = "unchanged"


@dataclass(frozen=True)
class Delta:
    """
    Classified difference between desired and existing state.

    Invariants (enforced by compute_delta):
        ADDED     -> desired present, existing absent
        REMOVED   -> desired absent, existing present
        UPDATED   -> both present, not equal
        UNCHANGED -> both present and equal, or both absent
    """

    kind: DeltaKind
    desired: Resource | None
    existing: Resource | None

    @property
    def has_changes(self) -> bool:
        return self.kind is not DeltaKind.UNCHANGED

    @property
    def is_added(self) -> bool:
        return self.kind is DeltaKind.ADDED

    @property
    def is_updated(self) -> bool:
        return self.kind is DeltaKind.UPDATED

    @property
    def is_removed(self) -> bool:
        return self.kind is DeltaKind.REMOVED


def compute_delta(
    comparator: Comparator,
    desired: Resource | None,
    existing: Resource | None,
) -> Delta:
    """
    Classify the relationship between ``desired`` and ``existing``.

    Args:
        comparator: Equality predicate for this resource kind
        desired: What should exist, or None if nothing should
        existing: What the store currently holds, or None if nothing

    Returns:
        Delta referencing both inputs
    """
    if existing is None and desired is not None:
        return Delta(DeltaKind.ADDED, desired, existing)
    if desired is None and existing is not None:
        return Delta(DeltaKind.REMOVED, desired, existing)
    if desired is None or existing is None:
        return Delta(DeltaKind.UNCHANGED, desired, existing)

    if comparator.equal(desired, existing):
        return Delta(DeltaKind.UNCHANGED, desired, existing)
    return Delta(DeltaKind.UPDATED, desired, existing)
