# ABOUTME: Kubernetes-backed Resource Store used by the reconcilers
# ABOUTME: Translates HTTP outcomes into the engine's NotFound/Conflict/Transient taxonomy

"""Resource Store over the Kubernetes REST API."""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import structlog

from kserve_reconciler.engine.errors import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
    StoreError,
    TransientStoreError,
)
from kserve_reconciler.engine.resource import Resource
from kserve_reconciler.utils.client import KubeApiError

if TYPE_CHECKING:
    from collections.abc import Awaitable

    from kserve_reconciler.engine.resource import ResourceKind
    from kserve_reconciler.utils.client import KubeClient

logger = structlog.get_logger(__name__)

# Status codes worth retrying the whole cycle for
TRANSIENT_CODES = frozenset({408, 429, 500, 502, 503, 504})


def translate_error(verb: str, kind: ResourceKind, target: str, error: Exception) -> StoreError:
    """
    Map a client failure onto the store error taxonomy.

    Args:
        verb: "GET", "LIST", "CREATE", "UPDATE" or "DELETE"
        kind: Kind being addressed
        target: "namespace/name" (or the collection) for the message
        error: KubeApiError or httpx exception raised by the client

    Returns:
        The StoreError subclass to raise, message naming verb and object
    """
    message = f"could not {verb} {kind.kind.lower()} {target}: {error}"

    if isinstance(error, httpx.HTTPError):
        return TransientStoreError(message)

    if not isinstance(error, KubeApiError):
        return StoreError(message)

    if error.code == 404:
        return NotFoundError(message, code=error.code, reason=error.reason)
    if error.code == 409:
        # POST races surface as AlreadyExists, stale PUTs as Conflict
        if verb == "CREATE" or error.reason == "AlreadyExists":
            return AlreadyExistsError(message, code=error.code, reason=error.reason)
        return ConflictError(message, code=error.code, reason=error.reason)
    if error.code in TRANSIENT_CODES:
        return TransientStoreError(message, code=error.code, reason=error.reason)
    return StoreError(message, code=error.code, reason=error.reason)


class KubernetesResourceStore:
    """
    Resource Store backed by a KubeClient.

    Stateless apart from the shared client, so one instance serves every
    concurrent reconciliation. Nothing is cached: every fetch goes to the
    API server.
    """

    def __init__(self, client: KubeClient) -> None:
        self._client = client

    async def _call(
        self,
        verb: str,
        kind: ResourceKind,
        target: str,
        call: Awaitable[dict],
    ) -> dict:
        try:
            return await call
        except (KubeApiError, httpx.HTTPError) as e:
            raise translate_error(verb, kind, target, e) from e

    async def fetch(self, kind: ResourceKind, scope: str | None, name: str) -> Resource:
        """Get one object; NotFoundError if it does not exist."""
        data = await self._call(
            "GET", kind, _target(scope, name), self._client.get(kind.object_path(scope, name))
        )
        return Resource.from_api_response(kind, data)

    async def create(self, resource: Resource) -> Resource:
        """Create ``resource``; AlreadyExistsError if its identity is taken."""
        body = resource.to_api_body()
        body["metadata"].pop("resourceVersion", None)
        data = await self._call(
            "CREATE",
            resource.kind,
            _target(resource.scope, resource.name),
            self._client.post(resource.kind.collection_path(resource.scope), body),
        )
        logger.debug("Created object", object=resource.key)
        return Resource.from_api_response(resource.kind, data)

    async def update(self, resource: Resource) -> Resource:
        """Replace ``resource``; ConflictError if its resource version is stale."""
        data = await self._call(
            "UPDATE",
            resource.kind,
            _target(resource.scope, resource.name),
            self._client.put(
                resource.kind.object_path(resource.scope, resource.name),
                resource.to_api_body(),
            ),
        )
        logger.debug("Updated object", object=resource.key)
        return Resource.from_api_response(resource.kind, data)

    async def delete(self, kind: ResourceKind, scope: str | None, name: str) -> None:
        """Delete one object; NotFoundError if it does not exist."""
        await self._call(
            "DELETE", kind, _target(scope, name), self._client.delete(kind.object_path(scope, name))
        )
        logger.debug("Deleted object", kind=kind.kind, scope=scope, name=name)

    async def list(
        self,
        kind: ResourceKind,
        scope: str | None = None,
        label_selector: str | None = None,
    ) -> list[Resource]:
        """List objects of ``kind`` in ``scope`` (or cluster-wide when None)."""
        params = {"labelSelector": label_selector} if label_selector else None
        data = await self._call(
            "LIST",
            kind,
            scope or "(all namespaces)",
            self._client.get(kind.collection_path(scope), params=params),
        )
        items = data.get("items") or []
        return [Resource.from_api_response(kind, item) for item in items if isinstance(item, dict)]


def _target(scope: str | None, name: str) -> str:
    return f"{scope}/{name}" if scope else name
