# ABOUTME: Authorino AuthConfig managed once per InferenceService
# ABOUTME: Detects the auth type, loads a template and fills in the service's hosts

"""
Authorino AuthConfig for an InferenceService.

=============================================================================
HOW THE DESIRED AUTHCONFIG IS ASSEMBLED
=============================================================================

    InferenceService
      │
      ├─ KServeAuthTypeDetector      annotations -> ANONYMOUS | USER_DEFINED
      ├─ ConfigMapTemplateLoader     namespace "authconfig-template" ConfigMap
      │    └─ StaticTemplateLoader   packaged YAML (the fallback)
      └─ KServeHostExtractor         status URLs -> sorted host list

    desired.spec        = template spec with ``hosts`` replaced
    desired.labels      = template labels + managed-by
    ownerReferences     = the InferenceService (garbage collection)

The AuthConfig is named after its InferenceService, so there is one per
service and reconcile/cleanup both address it through NamedAfterOwner.

=============================================================================
AUTH TYPE ANNOTATIONS
=============================================================================

    security.opendatahub.io/enable-auth: "true"   -> USER_DEFINED
    enable-auth: "true"                            -> USER_DEFINED (legacy)
    anything else                                  -> ANONYMOUS

The legacy annotation is consulted only when the new one is absent, so
``security.opendatahub.io/enable-auth: "false"`` always wins.
"""

from __future__ import annotations

import copy
import functools
from enum import Enum
from importlib.resources import files
from typing import TYPE_CHECKING, Any, Protocol
from urllib.parse import urlsplit

import structlog
import yaml

from kserve_reconciler.engine.comparator import OwnedFieldsComparator
from kserve_reconciler.engine.errors import BuildError, NotFoundError, StoreError
from kserve_reconciler.engine.policy import NamedAfterOwner
from kserve_reconciler.engine.resource import OwnedFields, Resource, ResourceKind
from kserve_reconciler.resources import MANAGED_BY_LABEL, MANAGED_BY_VALUE

if TYPE_CHECKING:
    from collections.abc import Mapping

    from kserve_reconciler.engine.store import ResourceStore
    from kserve_reconciler.resources.inference_service import InferenceService

logger = structlog.get_logger(__name__)

AUTH_CONFIG = ResourceKind(
    api_version="authorino.kuadrant.io/v1beta2",
    kind="AuthConfig",
    plural="authconfigs",
)

CONFIG_MAP = ResourceKind(api_version="v1", kind="ConfigMap", plural="configmaps")

ENABLE_AUTH_ANNOTATION = "security.opendatahub.io/enable-auth"
LEGACY_ENABLE_AUTH_ANNOTATION = "enable-auth"

# Authorino instances select the AuthConfigs they serve by this label
AUTHORIZATION_GROUP_LABEL = "security.opendatahub.io/authorization-group"

TEMPLATE_CONFIG_MAP = "authconfig-template"

_CLUSTER_LOCAL_SUFFIX = ".svc.cluster.local"


class AuthType(str, Enum):
    """Which AuthConfig template applies to an InferenceService."""

    USER_DEFINED = "userdefined"
    ANONYMOUS = "anonymous"


# =============================================================================
# AUTH TYPE DETECTION
# =============================================================================


class KServeAuthTypeDetector:
    """Reads the auth opt-in annotations of an InferenceService."""

    def detect(self, isvc: InferenceService) -> AuthType:
        annotations = isvc.annotations
        if ENABLE_AUTH_ANNOTATION in annotations:
            value = annotations[ENABLE_AUTH_ANNOTATION]
        else:
            value = annotations.get(LEGACY_ENABLE_AUTH_ANNOTATION, "")
        if value.lower() == "true":
            return AuthType.USER_DEFINED
        return AuthType.ANONYMOUS


# =============================================================================
# HOST EXTRACTION
# =============================================================================


class KServeHostExtractor:
    """Collects every host an InferenceService is reachable under."""

    def extract(self, isvc: InferenceService) -> list[str]:
        """
        Return the sorted, de-duplicated hosts found in ``isvc.status``.

        Cluster-local hosts (``x.ns.svc.cluster.local``) are also listed in
        their short forms ``x.ns.svc`` and ``x.ns``, since in-cluster clients
        may use any of them.
        """
        hosts = set(self._url_hosts(isvc.status))
        for host in list(hosts):
            if host.endswith(_CLUSTER_LOCAL_SUFFIX):
                base = host[: -len(_CLUSTER_LOCAL_SUFFIX)]
                hosts.add(base)
                hosts.add(f"{base}.svc")
        return sorted(hosts)

    def _url_hosts(self, status: Mapping[str, Any]) -> list[str]:
        urls: list[Any] = [status.get("url"), (status.get("address") or {}).get("url")]

        for component in (status.get("components") or {}).values():
            if not isinstance(component, dict):
                continue
            urls.append((component.get("address") or {}).get("url"))
            urls.extend(component.get(k) for k in ("url", "grpcUrl", "restUrl"))
            urls.extend(target.get("url") for target in component.get("traffic") or [])

        return [host for host in (_host(url) for url in urls) if host]


def _host(url: Any) -> str:
    if not isinstance(url, str) or not url:
        return ""
    return urlsplit(url).netloc


# =============================================================================
# TEMPLATE LOADING
# =============================================================================


class AuthConfigTemplateLoader(Protocol):
    """Produces the AuthConfig manifest to start from."""

    async def load(self, auth_type: AuthType, scope: str, name: str) -> dict[str, Any]: ...


@functools.cache
def _read_template(auth_type: AuthType) -> str:
    resource = files("kserve_reconciler.resources") / "templates" / f"authconfig_{auth_type.value}.yaml"
    return resource.read_text(encoding="utf-8")


class StaticTemplateLoader:
    """Loads the templates shipped with the package."""

    async def load(self, auth_type: AuthType, scope: str, name: str) -> dict[str, Any]:  # noqa: ARG002
        label = "UserDefined" if auth_type is AuthType.USER_DEFINED else "Anonymous"
        try:
            template = yaml.safe_load(_read_template(auth_type))
        except (OSError, yaml.YAMLError) as e:
            raise BuildError(f"could not load {label} template: {e}") from e
        if not isinstance(template, dict):
            raise BuildError(f"could not load {label} template: not a mapping")
        return template


class ConfigMapTemplateLoader:
    """
    Per-namespace template override.

    Looks for the ``authconfig-template`` ConfigMap in the service's
    namespace and uses the entry named after the auth type
    (``anonymous`` / ``userdefined``). The entry holds either a full
    AuthConfig manifest or just its spec. When the ConfigMap or entry is
    missing or unusable, the fallback loader decides.
    """

    def __init__(self, store: ResourceStore, fallback: AuthConfigTemplateLoader) -> None:
        self._store = store
        self._fallback = fallback

    async def load(self, auth_type: AuthType, scope: str, name: str) -> dict[str, Any]:
        log = logger.bind(scope=scope, name=name, auth_type=auth_type.value)
        try:
            config_map = await self._store.fetch(CONFIG_MAP, scope, TEMPLATE_CONFIG_MAP)
        except NotFoundError:
            log.debug("No AuthConfig template override, using default template")
            return await self._fallback.load(auth_type, scope, name)
        except StoreError as e:
            log.warning("Could not read AuthConfig template override, using default template",
                        error=str(e))
            return await self._fallback.load(auth_type, scope, name)

        raw = (config_map.body.get("data") or {}).get(auth_type.value)
        if not raw:
            log.debug("AuthConfig template override has no entry for auth type")
            return await self._fallback.load(auth_type, scope, name)

        try:
            parsed = yaml.safe_load(raw)
        except yaml.YAMLError as e:
            log.warning("Invalid AuthConfig template override, using default template", error=str(e))
            return await self._fallback.load(auth_type, scope, name)
        if not isinstance(parsed, dict):
            log.warning("AuthConfig template override is not a mapping, using default template")
            return await self._fallback.load(auth_type, scope, name)

        log.debug("Using AuthConfig template override")
        return parsed if "spec" in parsed else {"spec": parsed}


# =============================================================================
# KIND HANDLER
# =============================================================================


class AuthConfigHandler:
    """Kind handler for the per-InferenceService AuthConfig."""

    kind = AUTH_CONFIG
    owned = OwnedFields(label_prefixes=(MANAGED_BY_LABEL, AUTHORIZATION_GROUP_LABEL))

    def __init__(
        self,
        template_loader: AuthConfigTemplateLoader,
        detector: KServeAuthTypeDetector | None = None,
        host_extractor: KServeHostExtractor | None = None,
    ) -> None:
        self._template_loader = template_loader
        self._detector = detector or KServeAuthTypeDetector()
        self._host_extractor = host_extractor or KServeHostExtractor()
        self.policy = NamedAfterOwner()
        self.comparator = OwnedFieldsComparator(self.owned)

    async def resolve(self, context: InferenceService, scope: str) -> Mapping[str, Any]:
        auth_type = self._detector.detect(context)
        template = await self._template_loader.load(auth_type, scope, context.name)
        return {"auth_type": auth_type, "template": template}

    def build(self, context: InferenceService, scope: str, resolved: Mapping[str, Any]) -> Resource:
        template = resolved["template"]
        spec = template.get("spec")
        if not isinstance(spec, dict):
            raise BuildError(f"AuthConfig template for {resolved['auth_type'].value} has no spec")

        spec = copy.deepcopy(spec)
        spec["hosts"] = self._host_extractor.extract(context)

        metadata = template.get("metadata") or {}
        labels = {str(k): str(v) for k, v in (metadata.get("labels") or {}).items()}
        labels[MANAGED_BY_LABEL] = MANAGED_BY_VALUE

        return Resource(
            kind=AUTH_CONFIG,
            scope=scope,
            name=context.name,
            spec=spec,
            labels=labels,
            body={"metadata": {"ownerReferences": [context.owner_reference()]}},
        )
