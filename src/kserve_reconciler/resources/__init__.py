# ABOUTME: Managed kinds reconciled on behalf of KServe InferenceServices
# ABOUTME: Holds labels shared by every kind handler

"""
Managed kinds.

Each module defines a ResourceKind plus a handler implementing the engine's
ResourceKindHandler protocol:

- servicemonitor: Istio control-plane ServiceMonitor, one per namespace
- authconfig: Authorino AuthConfig, one per InferenceService
- inference_service: the triggering InferenceService (read only)
"""

# Label marking objects written by this controller
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY_VALUE = "kserve-reconciler"
