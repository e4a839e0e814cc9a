# ABOUTME: InferenceService view used as the trigger context for reconcilers
# ABOUTME: Extracts identity, annotations and status URLs from the KServe object

"""KServe InferenceService representation."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from kserve_reconciler.engine.resource import ResourceKind

if TYPE_CHECKING:
    from kserve_reconciler.engine.resource import Resource

INFERENCE_SERVICE = ResourceKind(
    api_version="serving.kserve.io/v1beta1",
    kind="InferenceService",
    plural="inferenceservices",
)


@dataclass
class InferenceService:
    """
    The parts of an InferenceService the managed kinds depend on.

    FIELDS EXPLAINED:
    -----------------
    - name / namespace / uid: identity, and owner reference target
    - annotations: auth opt-in lives here
    - status: raw status block; URLs are read by the host extractor
    - deleting: deletionTimestamp is set; its managed objects get cleaned up
    """

    name: str
    namespace: str
    uid: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    status: dict[str, Any] = field(default_factory=dict)
    deleting: bool = False

    @classmethod
    def from_resource(cls, resource: Resource) -> InferenceService:
        """Create from a Resource returned by the store."""
        return cls(
            name=resource.name,
            namespace=resource.scope or "",
            uid=resource.uid or "",
            labels=dict(resource.labels),
            annotations=dict(resource.annotations),
            status=dict(resource.body.get("status") or {}),
            deleting=bool((resource.body.get("metadata") or {}).get("deletionTimestamp")),
        )

    def owner_reference(self) -> dict[str, Any]:
        """Owner reference making a managed object garbage-collected with this service."""
        return {
            "apiVersion": INFERENCE_SERVICE.api_version,
            "kind": INFERENCE_SERVICE.kind,
            "name": self.name,
            "uid": self.uid,
            "controller": True,
            "blockOwnerDeletion": False,
        }
