# ABOUTME: Pytest fixtures and configuration for KServe reconciler tests
# ABOUTME: Provides an in-memory recording Resource Store and shared sample objects

import itertools
from typing import Any

import pytest
from pydantic import SecretStr

from kserve_reconciler.config import ClusterConnection, ControllerSettings, QueueSettings
from kserve_reconciler.engine.comparator import OwnedFieldsComparator
from kserve_reconciler.engine.errors import AlreadyExistsError, ConflictError, NotFoundError
from kserve_reconciler.engine.policy import SingletonPerScope
from kserve_reconciler.engine.resource import OwnedFields, Resource, ResourceKind
from kserve_reconciler.resources.inference_service import InferenceService

WIDGET = ResourceKind(api_version="example.com/v1", kind="Widget", plural="widgets")


class InMemoryStore:
    """
    Resource Store keeping objects in a dict and recording every call.

    Behaves like the API server where the engine can tell: versions are
    assigned on write, stale versions are rejected, missing objects raise
    NotFoundError and taken names raise AlreadyExistsError.
    """

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str | None, str], Resource] = {}
        self.calls: list[tuple[str, str]] = []
        self._failures: dict[str, list[Exception]] = {}
        self._versions = itertools.count(1)

    # Test helpers

    def put(self, resource: Resource) -> Resource:
        """Seed an object as if someone else had created it."""
        stored = resource.copy()
        stored.resource_version = str(next(self._versions))
        stored.uid = stored.uid or f"uid-{stored.name}"
        self.objects[self._key(stored.kind, stored.scope, stored.name)] = stored
        return stored.copy()

    def get(self, kind: ResourceKind, scope: str | None, name: str) -> Resource | None:
        stored = self.objects.get(self._key(kind, scope, name))
        return stored.copy() if stored else None

    def fail_next(self, verb: str, error: Exception) -> None:
        """Make the next ``verb`` call ("fetch", "create", ...) raise ``error``."""
        self._failures.setdefault(verb, []).append(error)

    @property
    def mutations(self) -> list[tuple[str, str]]:
        return [c for c in self.calls if c[0] in ("create", "update", "delete")]

    # ResourceStore protocol

    async def fetch(self, kind: ResourceKind, scope: str | None, name: str) -> Resource:
        self._record("fetch", f"{kind.kind} {scope}/{name}")
        stored = self.objects.get(self._key(kind, scope, name))
        if stored is None:
            raise NotFoundError(f"could not GET {kind.kind.lower()} {scope}/{name}", code=404)
        return stored.copy()

    async def create(self, resource: Resource) -> Resource:
        self._record("create", resource.key)
        key = self._key(resource.kind, resource.scope, resource.name)
        if key in self.objects:
            raise AlreadyExistsError(f"could not CREATE {resource.key}", code=409, reason="AlreadyExists")
        return self.put(resource)

    async def update(self, resource: Resource) -> Resource:
        self._record("update", resource.key)
        key = self._key(resource.kind, resource.scope, resource.name)
        stored = self.objects.get(key)
        if stored is None:
            raise NotFoundError(f"could not UPDATE {resource.key}", code=404)
        if resource.resource_version != stored.resource_version:
            raise ConflictError(f"could not UPDATE {resource.key}", code=409, reason="Conflict")
        return self.put(resource)

    async def delete(self, kind: ResourceKind, scope: str | None, name: str) -> None:
        self._record("delete", f"{kind.kind} {scope}/{name}")
        if self.objects.pop(self._key(kind, scope, name), None) is None:
            raise NotFoundError(f"could not DELETE {kind.kind.lower()} {scope}/{name}", code=404)

    async def list(
        self,
        kind: ResourceKind,
        scope: str | None = None,
        label_selector: str | None = None,
    ) -> list[Resource]:
        self._record("list", f"{kind.kind} {scope}")
        return [
            r.copy()
            for (k, s, _), r in sorted(self.objects.items(), key=lambda item: str(item[0]))
            if k == kind.kind and (scope is None or s == scope)
        ]

    def _record(self, verb: str, target: str) -> None:
        self.calls.append((verb, target))
        pending = self._failures.get(verb)
        if pending:
            raise pending.pop(0)

    @staticmethod
    def _key(kind: ResourceKind, scope: str | None, name: str) -> tuple[str, str | None, str]:
        return kind.kind, scope, name


class WidgetHandler:
    """Minimal singleton kind handler driven by a mutable desired spec."""

    kind = WIDGET
    owned = OwnedFields(label_prefixes=("example.com/",))

    def __init__(self, spec: dict[str, Any] | None = None, labels: dict[str, str] | None = None) -> None:
        self.spec = spec if spec is not None else {"replicas": 1}
        self.labels = labels if labels is not None else {"example.com/managed": "true"}
        self.policy = SingletonPerScope("widget")
        self.comparator = OwnedFieldsComparator(self.owned)
        self.resolve_error: Exception | None = None
        self.build_error: Exception | None = None

    async def resolve(self, context: Any, scope: str) -> dict[str, Any]:
        if self.resolve_error:
            raise self.resolve_error
        return {}

    def build(self, context: Any, scope: str, resolved: dict[str, Any]) -> Resource:
        if self.build_error:
            raise self.build_error
        return Resource(kind=WIDGET, scope=scope, name="widget", spec=dict(self.spec), labels=dict(self.labels))


@pytest.fixture
def store() -> InMemoryStore:
    """Empty in-memory store."""
    return InMemoryStore()


@pytest.fixture
def widget_handler() -> WidgetHandler:
    """Handler for the test Widget kind."""
    return WidgetHandler()


@pytest.fixture
def connection() -> ClusterConnection:
    """Cluster connection for respx-based tests."""
    return ClusterConnection(
        url="https://k8s.example.com:6443",
        token=SecretStr("test-token"),
        name="test",
        insecure=True,
    )


@pytest.fixture
def fast_queue_settings() -> QueueSettings:
    """Queue settings with negligible backoff."""
    return QueueSettings(
        max_concurrency=4,
        max_attempts=3,
        backoff_min=0.001,
        backoff_max=0.002,
        cycle_timeout=5.0,
    )


@pytest.fixture
def controller_settings(fast_queue_settings: QueueSettings) -> ControllerSettings:
    """Controller settings for tests."""
    return ControllerSettings(
        kube_api_url="https://k8s.example.com:6443",
        kube_token=SecretStr("test-token"),
        default_dsci_name="default-dsci",
        queue=fast_queue_settings,
    )


@pytest.fixture
def isvc() -> InferenceService:
    """A ready InferenceService with cluster-local and external URLs."""
    return InferenceService(
        name="sklearn-iris",
        namespace="models",
        uid="1234-abcd",
        annotations={"security.opendatahub.io/enable-auth": "true"},
        status={
            "url": "https://sklearn-iris-models.apps.example.com",
            "address": {"url": "http://sklearn-iris-predictor.models.svc.cluster.local"},
            "components": {
                "predictor": {
                    "url": "https://sklearn-iris-predictor-models.apps.example.com",
                    "address": {"url": "http://sklearn-iris-predictor.models.svc.cluster.local"},
                    "traffic": [
                        {"url": "http://latest-sklearn-iris-predictor-models.apps.example.com"},
                    ],
                },
            },
        },
    )


@pytest.fixture
def widget_kind() -> ResourceKind:
    """The namespaced test kind handled by WidgetHandler."""
    return WIDGET
