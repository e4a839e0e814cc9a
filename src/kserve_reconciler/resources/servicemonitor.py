# ABOUTME: Istio ServiceMonitor managed once per namespace hosting InferenceServices
# ABOUTME: Resolves the DSCInitialization name with a logged fallback before building

"""Istio control-plane ServiceMonitor."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

from kserve_reconciler.engine.comparator import OwnedFieldsComparator
from kserve_reconciler.engine.errors import StoreError
from kserve_reconciler.engine.policy import SingletonPerScope
from kserve_reconciler.engine.resource import OwnedFields, Resource, ResourceKind
from kserve_reconciler.resources import MANAGED_BY_LABEL, MANAGED_BY_VALUE

if TYPE_CHECKING:
    from collections.abc import Mapping

    from kserve_reconciler.engine.store import ResourceStore
    from kserve_reconciler.resources.inference_service import InferenceService

logger = structlog.get_logger(__name__)

ISTIO_SERVICE_MONITOR_NAME = "istiod-monitor"

SERVICE_MONITOR = ResourceKind(
    api_version="monitoring.coreos.com/v1",
    kind="ServiceMonitor",
    plural="servicemonitors",
)

DSC_INITIALIZATION = ResourceKind(
    api_version="dscinitialization.opendatahub.io/v1",
    kind="DSCInitialization",
    plural="dscinitializations",
    namespaced=False,
)


class DSCINameResolver:
    """Looks up the cluster's DSCInitialization name, falling back to a default.

    A missing or unreadable DSCInitialization is not fatal for the
    ServiceMonitor: it only feeds a relabeling value.
    """

    def __init__(self, store: ResourceStore, default_name: str) -> None:
        self._store = store
        self._default_name = default_name

    async def resolve(self) -> str:
        try:
            items = await self._store.list(DSC_INITIALIZATION)
        except StoreError as e:
            logger.warning(
                "Error getting DSCI name, default value will be used",
                error=str(e),
                default=self._default_name,
            )
            return self._default_name

        if not items:
            logger.warning("No DSCInitialization found, default value will be used",
                           default=self._default_name)
            return self._default_name
        return items[0].name


class IstioServiceMonitorHandler:
    """Kind handler for the per-namespace ``istiod-monitor`` ServiceMonitor."""

    kind = SERVICE_MONITOR
    owned = OwnedFields(label_prefixes=(MANAGED_BY_LABEL,))

    def __init__(self, dsci_resolver: DSCINameResolver) -> None:
        self._dsci_resolver = dsci_resolver
        self.policy = SingletonPerScope(ISTIO_SERVICE_MONITOR_NAME)
        self.comparator = OwnedFieldsComparator(self.owned)

    async def resolve(self, context: InferenceService | None, scope: str) -> Mapping[str, Any]:  # noqa: ARG002
        return {"dsci_name": await self._dsci_resolver.resolve()}

    def build(
        self,
        context: InferenceService | None,  # noqa: ARG002
        scope: str,
        resolved: Mapping[str, Any],
    ) -> Resource:
        return Resource(
            kind=SERVICE_MONITOR,
            scope=scope,
            name=ISTIO_SERVICE_MONITOR_NAME,
            labels={MANAGED_BY_LABEL: MANAGED_BY_VALUE},
            spec={
                "selector": {"matchLabels": {"istio": "pilot"}},
                "targetLabels": ["app"],
                "endpoints": [
                    {
                        "port": "http-monitoring",
                        "interval": "30s",
                        "relabelings": [
                            {
                                "targetLabel": "mesh_id",
                                "replacement": f"{resolved['dsci_name']}-istio-system",
                                "action": "replace",
                            }
                        ],
                    }
                ],
            },
        )
