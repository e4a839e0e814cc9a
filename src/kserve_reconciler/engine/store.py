# ABOUTME: Resource Store protocol consumed by the reconciliation engine
# ABOUTME: The only network-facing boundary the engine depends on

"""Resource Store interface.

Implementations must be safe for concurrent use across independent keys.
Failures are reported with the exceptions from ``engine.errors``:

    fetch   -> NotFoundError | TransientStoreError
    create  -> AlreadyExistsError | TransientStoreError
    update  -> ConflictError | TransientStoreError
    delete  -> NotFoundError | TransientStoreError
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from kserve_reconciler.engine.resource import Resource, ResourceKind


class ResourceStore(Protocol):
    async def fetch(self, kind: ResourceKind, scope: str | None, name: str) -> Resource: ...

    async def create(self, resource: Resource) -> Resource: ...

    async def update(self, resource: Resource) -> Resource: ...

    async def delete(self, kind: ResourceKind, scope: str | None, name: str) -> None: ...

    async def list(
        self,
        kind: ResourceKind,
        scope: str | None = None,
        label_selector: str | None = None,
    ) -> list[Resource]: ...
