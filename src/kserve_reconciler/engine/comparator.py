# ABOUTME: Semantic equality between desired and existing resources
# ABOUTME: Compares only controller-owned spec and metadata, ignoring store bookkeeping

"""Comparators decide whether an existing resource already matches the desired one."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

from kserve_reconciler.engine.resource import OwnedFields, owned_keys, owned_spec

if TYPE_CHECKING:
    from collections.abc import Mapping

    from kserve_reconciler.engine.resource import Resource


class Comparator(Protocol):
    """Pure, total equality predicate over two resources of the same kind."""

    def equal(self, desired: Resource, existing: Resource) -> bool: ...


class OwnedFieldsComparator:
    """Field-for-field equality over the controller-owned subset of a resource.

    Stateless; build one per kind and reuse it for every reconciliation.
    """

    def __init__(self, owned: OwnedFields | None = None) -> None:
        self.owned = owned or OwnedFields()

    def equal(self, desired: Resource, existing: Resource) -> bool:
        """Return True when every owned field of ``existing`` matches ``desired``."""
        if owned_spec(desired.spec, self.owned.spec_fields) != owned_spec(
            existing.spec, self.owned.spec_fields
        ):
            return False
        if not _owned_equal(desired.labels, existing.labels, self.owned.label_prefixes):
            return False
        return _owned_equal(desired.annotations, existing.annotations, self.owned.annotation_prefixes)


def _owned_equal(
    desired: Mapping[str, str],
    existing: Mapping[str, str],
    prefixes: tuple[str, ...],
) -> bool:
    return all(
        desired.get(key) == existing.get(key) and ((key in desired) == (key in existing))
        for key in owned_keys(desired, existing, prefixes)
    )
