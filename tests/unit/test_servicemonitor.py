# ABOUTME: Unit tests for the Istio ServiceMonitor kind handler
# ABOUTME: Tests DSCI name resolution with fallback and the desired ServiceMonitor

import pytest

from kserve_reconciler.engine.delta import DeltaKind
from kserve_reconciler.engine.errors import TransientStoreError
from kserve_reconciler.engine.reconciler import SubResourceReconciler
from kserve_reconciler.engine.resource import Resource
from kserve_reconciler.resources.servicemonitor import (
    DSC_INITIALIZATION,
    ISTIO_SERVICE_MONITOR_NAME,
    SERVICE_MONITOR,
    DSCINameResolver,
    IstioServiceMonitorHandler,
)


@pytest.fixture
def handler(store) -> IstioServiceMonitorHandler:
    return IstioServiceMonitorHandler(DSCINameResolver(store, "default-dsci"))


@pytest.mark.unit
class TestDSCINameResolver:
    """Tests for DSCINameResolver."""

    async def test_uses_cluster_dsci(self, store):
        store.put(Resource(kind=DSC_INITIALIZATION, scope=None, name="rhods-dsci"))

        assert await DSCINameResolver(store, "default-dsci").resolve() == "rhods-dsci"

    async def test_falls_back_when_absent(self, store):
        assert await DSCINameResolver(store, "default-dsci").resolve() == "default-dsci"

    async def test_falls_back_on_store_error(self, store):
        store.fail_next("list", TransientStoreError("could not LIST dscinitialization"))

        assert await DSCINameResolver(store, "default-dsci").resolve() == "default-dsci"


@pytest.mark.unit
class TestIstioServiceMonitorHandler:
    """Tests for the desired ServiceMonitor."""

    def test_build(self, handler):
        resource = handler.build(None, "models", {"dsci_name": "rhods-dsci"})

        assert resource.kind is SERVICE_MONITOR
        assert resource.scope == "models"
        assert resource.name == ISTIO_SERVICE_MONITOR_NAME
        assert resource.labels == {"app.kubernetes.io/managed-by": "kserve-reconciler"}
        assert resource.spec["selector"] == {"matchLabels": {"istio": "pilot"}}
        assert resource.spec["targetLabels"] == ["app"]
        endpoint = resource.spec["endpoints"][0]
        assert endpoint["port"] == "http-monitoring"
        assert endpoint["interval"] == "30s"
        assert endpoint["relabelings"] == [
            {"targetLabel": "mesh_id", "replacement": "rhods-dsci-istio-system", "action": "replace"}
        ]

    def test_singleton_identity(self, handler):
        assert handler.policy.identity(SERVICE_MONITOR, "models") == ("models", "istiod-monitor")

    async def test_reconcile_creates_then_converges(self, handler, store):
        reconciler = SubResourceReconciler(handler, store)

        first = await reconciler.reconcile("models", None)
        second = await reconciler.reconcile("models", None)

        assert first.kind is DeltaKind.ADDED
        assert second.kind is DeltaKind.UNCHANGED
        stored = store.get(SERVICE_MONITOR, "models", ISTIO_SERVICE_MONITOR_NAME)
        assert stored.spec["endpoints"][0]["relabelings"][0]["replacement"] == "default-dsci-istio-system"

    async def test_dsci_change_updates_relabeling(self, handler, store):
        reconciler = SubResourceReconciler(handler, store)
        await reconciler.reconcile("models", None)
        store.put(Resource(kind=DSC_INITIALIZATION, scope=None, name="new-dsci"))

        delta = await reconciler.reconcile("models", None)

        assert delta.kind is DeltaKind.UPDATED
        stored = store.get(SERVICE_MONITOR, "models", ISTIO_SERVICE_MONITOR_NAME)
        assert stored.spec["endpoints"][0]["relabelings"][0]["replacement"] == "new-dsci-istio-system"
