# ABOUTME: Model controller driving the managed-kind reconcilers for InferenceServices
# ABOUTME: Periodic namespace resync through the work queue, plus the process entry point

"""
KServe model controller.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

The engine knows how to converge ONE managed object. This module decides
which objects to converge and when:

    every resync_interval seconds
      └─ for each namespace (concurrently)
           └─ sync_namespace(ns)
                ├─ no live InferenceServices -> cleanup ServiceMonitor
                ├─ live InferenceServices    -> reconcile ServiceMonitor once,
                │                               reconcile one AuthConfig each
                └─ InferenceServices being deleted -> cleanup their AuthConfig

Every cycle is submitted to the WorkQueue under the managed object's key,
so cycles for the same object never overlap and retryable failures are
retried with backoff.

=============================================================================
WHY PERIODIC RESYNC?
=============================================================================

Reconciliation is level-based: every cycle re-reads the cluster and computes
what to do from scratch. Running it on a timer is therefore always correct;
it is only slower to react than an event-driven trigger would be.
"""

from __future__ import annotations

import asyncio
import functools
import sys
from typing import TYPE_CHECKING

import structlog

from kserve_reconciler.config import load_settings
from kserve_reconciler.engine.errors import StoreError
from kserve_reconciler.engine.reconciler import SubResourceReconciler
from kserve_reconciler.resources.authconfig import (
    AuthConfigHandler,
    ConfigMapTemplateLoader,
    StaticTemplateLoader,
)
from kserve_reconciler.resources.inference_service import INFERENCE_SERVICE, InferenceService
from kserve_reconciler.resources.servicemonitor import DSCINameResolver, IstioServiceMonitorHandler
from kserve_reconciler.store import KubernetesResourceStore
from kserve_reconciler.utils.client import KubeClient
from kserve_reconciler.utils.logging import AuditLogger, configure_logging
from kserve_reconciler.utils.workqueue import WorkQueue

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

    from kserve_reconciler.config import ControllerSettings
    from kserve_reconciler.engine.delta import Delta
    from kserve_reconciler.engine.store import ResourceStore

logger = structlog.get_logger(__name__)


class ModelController:
    """
    Reconciles the objects KServe InferenceServices depend on.

    USAGE:
    ------
        controller = ModelController(settings, store)
        await controller.sync_namespace("demo")       # one pass
        await controller.run(["demo"])                # resync forever
    """

    def __init__(
        self,
        settings: ControllerSettings,
        store: ResourceStore,
        audit: AuditLogger | None = None,
    ) -> None:
        """
        Wire the reconcilers onto a store.

        Args:
            settings: Controller settings (fallback values, queue tuning, resync)
            store: Resource store shared by every reconciler
            audit: Optional audit logger recording every mutation
        """
        self._settings = settings
        self._store = store
        self._queue = WorkQueue(settings.queue)
        self._seen_namespaces: set[str] = set()

        self.service_monitor: SubResourceReconciler[InferenceService | None] = SubResourceReconciler(
            IstioServiceMonitorHandler(DSCINameResolver(store, settings.default_dsci_name)),
            store,
            audit,
        )
        self.auth_config: SubResourceReconciler[InferenceService] = SubResourceReconciler(
            AuthConfigHandler(ConfigMapTemplateLoader(store, StaticTemplateLoader())),
            store,
            audit,
        )

    async def list_inference_services(self, namespace: str | None) -> list[InferenceService]:
        """InferenceServices in ``namespace`` (every namespace when None)."""
        resources = await self._store.list(INFERENCE_SERVICE, namespace)
        return [InferenceService.from_resource(r) for r in resources]

    async def sync_namespace(self, namespace: str) -> list[Delta | BaseException]:
        """
        Run one reconciliation pass over ``namespace``.

        Returns:
            One entry per work item: the applied delta, or the error the
            item ended with after its retries.

        Raises:
            StoreError: The InferenceServices could not be listed
        """
        log = logger.bind(namespace=namespace)
        services = await self.list_inference_services(namespace)
        live = [isvc for isvc in services if not isvc.deleting]
        deleting = [isvc for isvc in services if isvc.deleting]

        items: list[tuple[str, Callable[[], Awaitable[Delta]]]] = []
        if live:
            # Singleton: built from the namespace, not from any one service
            items.append((
                self.service_monitor.work_key(namespace),
                functools.partial(self.service_monitor.reconcile, namespace, live[0]),
            ))
            items.extend(
                (
                    self.auth_config.work_key(namespace, isvc),
                    functools.partial(self.auth_config.reconcile, namespace, isvc),
                )
                for isvc in live
            )
        else:
            log.debug("No InferenceServices in namespace")
            items.append((
                self.service_monitor.work_key(namespace),
                functools.partial(self.service_monitor.cleanup, namespace),
            ))

        items.extend(
            (
                self.auth_config.work_key(namespace, isvc),
                functools.partial(self.auth_config.cleanup, namespace, isvc),
            )
            for isvc in deleting
        )

        results = await self._queue.run_all(items)
        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            log.error(
                "Namespace sync incomplete",
                failed=len(failures),
                total=len(results),
                errors=[str(f) for f in failures],
            )
        else:
            log.info("Namespace synced", items=len(results))
        return results

    async def resync(self, namespaces: Iterable[str] = ()) -> None:
        """
        Sync every namespace once, concurrently.

        With no namespaces given, the namespaces holding InferenceServices
        are discovered, plus every namespace seen in earlier passes so that
        a namespace whose last service went away still gets cleaned up. A
        namespace stays tracked until a pass over it finished without failures.
        """
        targets = set(namespaces)
        discovering = not targets
        if discovering:
            try:
                discovered = await self.list_inference_services(None)
            except StoreError as e:
                logger.error("Could not discover namespaces", error=str(e))
                return
            current = {isvc.namespace for isvc in discovered if isvc.namespace}
            targets = current | self._seen_namespaces

        ordered = sorted(targets)
        results = await asyncio.gather(
            *(self.sync_namespace(ns) for ns in ordered),
            return_exceptions=True,
        )
        incomplete: set[str] = set()
        for namespace, result in zip(ordered, results, strict=True):
            if isinstance(result, BaseException):
                logger.error("Namespace sync failed", namespace=namespace, error=str(result))
                incomplete.add(namespace)
            elif any(isinstance(r, BaseException) for r in result):
                incomplete.add(namespace)

        if discovering:
            # Emptied namespaces stay tracked until their cleanup went through
            self._seen_namespaces = current | incomplete

    async def run(self, namespaces: Iterable[str] = (), once: bool = False) -> None:
        """
        Resync every ``resync_interval`` seconds until cancelled.

        Args:
            namespaces: Namespaces to reconcile; empty means discover them
            once: Return after the first pass
        """
        namespaces = list(namespaces)
        logger.info(
            "Controller running",
            namespaces=namespaces or "(discovered)",
            resync_interval=self._settings.resync_interval,
        )
        while True:
            await self.resync(namespaces)
            if once:
                return
            await asyncio.sleep(self._settings.resync_interval)


async def run_controller(settings: ControllerSettings) -> None:
    """Open the API connection and run the controller with ``settings``."""
    audit = AuditLogger(settings.audit_log)
    async with KubeClient(settings.connection, timeout=settings.request_timeout) as client:
        controller = ModelController(settings, KubernetesResourceStore(client), audit)
        await controller.run(settings.watch_namespaces, once=settings.run_once)


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================


def main() -> None:
    """Run the KServe reconciler."""
    try:
        settings = load_settings()
        configure_logging(level=settings.log_level, json_output=settings.json_logs)
        logger.info("KServe reconciler starting", api_server=settings.kube_api_url)
        asyncio.run(run_controller(settings))
    except KeyboardInterrupt:
        logger.info("Controller interrupted")
        sys.exit(0)
    except Exception as e:
        logger.error("Controller error", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
