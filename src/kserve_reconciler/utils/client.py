# ABOUTME: Async Kubernetes API client used by the resource store
# ABOUTME: Wraps httpx with bearer auth and structured API errors

"""
Kubernetes REST API client.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

The thinnest layer between the controller and the API server:

1. HTTP COMMUNICATION: GET/POST/PUT/DELETE of JSON objects
2. AUTHENTICATION: Bearer token on every request
3. ERROR HANDLING: non-2xx responses become KubeApiError with the status
   code and the API server's ``reason`` (NotFound, AlreadyExists,
   Conflict, ...)

It knows nothing about Resources or deltas. Translating HTTP outcomes into
the engine's error taxonomy is the store's job (kserve_reconciler.store).

=============================================================================
KUBERNETES API ERRORS
=============================================================================

Errors come back as a ``Status`` object:

    {
        "kind": "Status",
        "status": "Failure",
        "message": "servicemonitors \"istiod-monitor\" not found",
        "reason": "NotFound",
        "code": 404
    }

=============================================================================
NO RETRIES HERE
=============================================================================

A failed request is reported once. Retrying is decided at the level of a
whole reconciliation cycle by the work queue, which re-fetches state
before trying again. Retrying a single PUT with a stale resourceVersion
could never succeed anyway.

=============================================================================
CONTEXT MANAGERS (async with)
=============================================================================

    async with KubeClient(connection) as client:
        data = await client.get("/api/v1/namespaces/demo/configmaps/x")

__aenter__ opens the connection pool, __aexit__ closes it, even when the
body raised. One client is shared by all concurrent cycles; httpx's
AsyncClient is safe for concurrent use within one event loop.
"""

# =============================================================================
# IMPORTS
# =============================================================================

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx
import structlog

from kserve_reconciler.utils.logging import mask_secrets

if TYPE_CHECKING:
    from kserve_reconciler.config import ClusterConnection

logger = structlog.get_logger(__name__)


# =============================================================================
# API ERROR CLASS
# =============================================================================


class KubeApiError(Exception):
    """
    Non-success response from the Kubernetes API server.

    USAGE:
    ------
    try:
        await client.get(path)
    except KubeApiError as e:
        if e.code == 404:
            ...
    """

    def __init__(
        self,
        code: int,
        message: str,
        reason: str | None = None,
        details: str | None = None,
    ) -> None:
        """
        Initialize API error.

        Args:
            code: HTTP status code (e.g., 404, 409)
            message: ``message`` field of the Status object
            reason: ``reason`` field (e.g., "AlreadyExists", "Conflict")
            details: Raw body excerpt when the response was not a Status
        """
        self.code = code
        self.message = message
        self.reason = reason
        self.details = details
        super().__init__(str(self))

    def __str__(self) -> str:
        """
        Example:
            "Kubernetes API error (409 Conflict): the object has been modified"
        """
        label = f"{self.code} {self.reason}" if self.reason else str(self.code)
        base = f"Kubernetes API error ({label}): {self.message}"
        if self.details:
            base += f" - {self.details}"
        return base


# =============================================================================
# KUBERNETES CLIENT
# =============================================================================


class KubeClient:
    """
    Async Kubernetes API client.

    LIFECYCLE:
    ----------
    1. Create client: client = KubeClient(connection)
    2. Enter context: async with client: ...
    3. Use client: await client.get(...)
    4. Exit context: HTTP connections cleaned up
    """

    def __init__(
        self,
        connection: ClusterConnection,
        timeout: float = 30.0,
    ) -> None:
        """
        Initialize client. The connection pool is created in __aenter__.

        Args:
            connection: API server URL, token and TLS settings
            timeout: Per-request timeout in seconds
        """
        self._connection = connection
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> KubeClient:
        """Create the underlying httpx.AsyncClient."""
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        token = self._connection.token.get_secret_value()
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self._client = httpx.AsyncClient(
            base_url=self._connection.url,
            headers=headers,
            timeout=self._timeout,
            verify=not self._connection.insecure,
        )
        return self

    async def __aexit__(self, *args: object) -> None:
        """Close the connection pool."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Make one HTTP request to the API server.

        Args:
            method: HTTP method ("GET", "POST", "PUT", "DELETE")
            path: API path (e.g., "/apis/monitoring.coreos.com/v1/namespaces/x/servicemonitors")
            params: URL query parameters (optional)
            json_data: JSON request body (optional)

        Returns:
            Parsed JSON response, {} for empty bodies

        Raises:
            KubeApiError: On 4xx/5xx responses
            httpx.TimeoutException: On request timeout
            httpx.TransportError: On connection failures
            RuntimeError: If client not initialized (forgot async with)
        """
        if not self._client:
            raise RuntimeError("Client not initialized. Use 'async with' context manager.")

        log = logger.bind(method=method, path=path, cluster=self._connection.name)
        log.debug("Making Kubernetes API request")

        response = await self._client.request(
            method,
            path,
            params=params,
            json=json_data,
        )

        if response.status_code >= 400:
            error_body = response.text
            log.warning(
                "Kubernetes API error",
                status=response.status_code,
                body=mask_secrets(error_body[:200]),
            )

            message = f"HTTP {response.status_code}"
            reason = None
            details = None
            try:
                status = response.json()
                message = status.get("message", message)
                reason = status.get("reason")
            except ValueError:
                details = error_body[:200] if error_body else None

            raise KubeApiError(
                code=response.status_code,
                message=message,
                reason=reason,
                details=details,
            )

        result = response.json() if response.content else {}
        return result if isinstance(result, dict) else {}

    # =========================================================================
    # VERBS
    # =========================================================================

    async def get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """GET an object or a list."""
        return await self._request("GET", path, params=params)

    async def post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        """POST a new object to a collection path."""
        return await self._request("POST", path, json_data=body)

    async def put(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        """
        PUT (replace) an object.

        The body must carry metadata.resourceVersion; the API server
        answers 409 Conflict when it is stale.
        """
        return await self._request("PUT", path, json_data=body)

    async def delete(self, path: str, propagation_policy: str = "Background") -> dict[str, Any]:
        """
        DELETE an object.

        Args:
            path: Object path
            propagation_policy: What happens to dependents ("Background",
                                "Foreground" or "Orphan")
        """
        body = {"kind": "DeleteOptions", "apiVersion": "v1", "propagationPolicy": propagation_policy}
        return await self._request("DELETE", path, json_data=body)
