# ABOUTME: Resource model shared by the engine, the store and the kind handlers
# ABOUTME: Separates identity, controller-owned fields and store bookkeeping

"""
Resource representation used throughout the reconciliation engine.

=============================================================================
WHAT IS A RESOURCE HERE?
=============================================================================

A Resource is one object held by the remote store (the Kubernetes API
server). The engine only cares about three groups of fields:

1. IDENTITY: ``(scope, name)`` where scope is the namespace
   (None for cluster-scoped kinds).

2. CONTROLLER-OWNED FIELDS: the ``spec`` and the labels/annotations this
   controller sets. These are what we compare and what we overwrite.

3. STORE BOOKKEEPING: ``resource_version``, ``uid``,
   ``creation_timestamp``. Assigned by the store, never invented by us,
   and echoed back verbatim on update. ``resource_version`` is the
   optimistic-concurrency token: the API server rejects an update whose
   token is stale with HTTP 409.

Everything else the store returned (owner references, finalizers, status,
other controllers' metadata) rides along untouched in ``body``.

=============================================================================
OWNED KEYS
=============================================================================

Labels and annotations are shared with other controllers and with humans.
A key is owned by us when:

- it appears in the desired object, or
- it matches one of the kind's owned prefixes (on either side)

The second rule is what lets a desired object DROP a label: the key is
still owned (by prefix), is absent from desired, so the merge removes it.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Mapping

# Metadata keys lifted out of ``body`` into dedicated Resource fields
_MANAGED_METADATA = (
    "name",
    "namespace",
    "labels",
    "annotations",
    "resourceVersion",
    "uid",
    "creationTimestamp",
)


# =============================================================================
# RESOURCE KIND
# =============================================================================


@dataclass(frozen=True)
class ResourceKind:
    """
    Type information needed to address a kind through the REST API.

    Example:
        SERVICE_MONITOR = ResourceKind(
            api_version="monitoring.coreos.com/v1",
            kind="ServiceMonitor",
            plural="servicemonitors",
        )
    """

    api_version: str
    kind: str
    plural: str
    namespaced: bool = True

    @property
    def group(self) -> str:
        """API group, empty string for the core group."""
        if "/" not in self.api_version:
            return ""
        return self.api_version.split("/", 1)[0]

    @property
    def api_prefix(self) -> str:
        """``/api/v1`` for core kinds, ``/apis/<group>/<version>`` otherwise."""
        if self.group:
            return f"/apis/{self.api_version}"
        return f"/api/{self.api_version}"

    def collection_path(self, scope: str | None) -> str:
        """Path of the collection holding objects of this kind."""
        if self.namespaced and scope:
            return f"{self.api_prefix}/namespaces/{scope}/{self.plural}"
        return f"{self.api_prefix}/{self.plural}"

    def object_path(self, scope: str | None, name: str) -> str:
        """Path of a single named object."""
        return f"{self.collection_path(scope)}/{name}"

    def __str__(self) -> str:
        return self.kind


# =============================================================================
# OWNED FIELDS
# =============================================================================


@dataclass(frozen=True)
class OwnedFields:
    """
    Describes which parts of a Resource this controller owns.

    Attributes:
        label_prefixes: Label keys starting with one of these are owned
        annotation_prefixes: Annotation keys starting with one of these are owned
        spec_fields: Top-level spec keys owned by us. None means the whole spec.
    """

    label_prefixes: tuple[str, ...] = ()
    annotation_prefixes: tuple[str, ...] = ()
    spec_fields: tuple[str, ...] | None = None


def owned_keys(
    desired: Mapping[str, str],
    existing: Mapping[str, str],
    prefixes: tuple[str, ...],
) -> set[str]:
    """Keys of a label/annotation map that belong to this controller."""
    keys = set(desired)
    if prefixes:
        keys.update(k for k in existing if k.startswith(prefixes))
        keys.update(k for k in desired if k.startswith(prefixes))
    return keys


def merge_owned(
    existing: Mapping[str, str],
    desired: Mapping[str, str],
    prefixes: tuple[str, ...],
) -> dict[str, str]:
    """Overlay owned keys from ``desired`` onto ``existing``, dropping owned keys desired no longer has."""
    merged = dict(existing)
    for key in owned_keys(desired, existing, prefixes):
        if key in desired:
            merged[key] = desired[key]
        else:
            merged.pop(key, None)
    return merged


def owned_spec(spec: Mapping[str, Any], spec_fields: tuple[str, ...] | None) -> dict[str, Any]:
    """The slice of a spec this controller owns."""
    if spec_fields is None:
        return dict(spec)
    return {k: spec[k] for k in spec_fields if k in spec}


# =============================================================================
# RESOURCE
# =============================================================================


@dataclass
class Resource:
    """
    One object in the remote store.

    Build desired objects with only identity, spec and owned metadata set.
    Objects returned by the store additionally carry bookkeeping fields and
    the remaining raw fields in ``body``.
    """

    kind: ResourceKind
    scope: str | None
    name: str
    spec: dict[str, Any] = field(default_factory=dict)
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)

    # Store bookkeeping, never set on desired objects
    resource_version: str | None = None
    uid: str | None = None
    creation_timestamp: str | None = None

    # Every other field of the stored object, kept for round-tripping
    body: dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> str:
        """Human-readable identity, e.g. ``ServiceMonitor ns/istiod-monitor``."""
        if self.scope:
            return f"{self.kind.kind} {self.scope}/{self.name}"
        return f"{self.kind.kind} {self.name}"

    def copy(self) -> Resource:
        """Deep copy, safe to mutate without touching the original."""
        return copy.deepcopy(self)

    @classmethod
    def from_api_response(cls, kind: ResourceKind, data: dict[str, Any]) -> Resource:
        """
        Create a Resource from a Kubernetes API object.

        Args:
            kind: The kind the object was fetched as
            data: Raw JSON object returned by the API server

        Returns:
            Resource with managed metadata lifted out and the rest kept in ``body``
        """
        body = copy.deepcopy(data)
        metadata = body.get("metadata") or {}
        spec = body.pop("spec", None) or {}

        resource = cls(
            kind=kind,
            scope=metadata.get("namespace"),
            name=metadata.get("name", ""),
            spec=spec,
            labels=dict(metadata.get("labels") or {}),
            annotations=dict(metadata.get("annotations") or {}),
            resource_version=metadata.get("resourceVersion"),
            uid=metadata.get("uid"),
            creation_timestamp=metadata.get("creationTimestamp"),
        )

        # Keep only what we did not lift out
        remaining_meta = {k: v for k, v in metadata.items() if k not in _MANAGED_METADATA}
        body.pop("apiVersion", None)
        body.pop("kind", None)
        if remaining_meta:
            body["metadata"] = remaining_meta
        else:
            body.pop("metadata", None)
        resource.body = body
        return resource

    def to_api_body(self) -> dict[str, Any]:
        """Serialize to the JSON object the API server expects on create/update."""
        data = copy.deepcopy(self.body)
        metadata: dict[str, Any] = dict(data.pop("metadata", None) or {})

        metadata["name"] = self.name
        if self.scope and self.kind.namespaced:
            metadata["namespace"] = self.scope
        if self.labels:
            metadata["labels"] = dict(self.labels)
        if self.annotations:
            metadata["annotations"] = dict(self.annotations)
        if self.resource_version is not None:
            metadata["resourceVersion"] = self.resource_version
        if self.uid is not None:
            metadata["uid"] = self.uid
        if self.creation_timestamp is not None:
            metadata["creationTimestamp"] = self.creation_timestamp

        result: dict[str, Any] = {
            "apiVersion": self.kind.api_version,
            "kind": self.kind.kind,
            "metadata": metadata,
        }
        # Spec-less kinds (ConfigMap, Secret) keep their payload in body
        if self.spec:
            result["spec"] = copy.deepcopy(self.spec)
        result.update(data)
        return result
