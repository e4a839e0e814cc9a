# ABOUTME: KServe reconciler package initialization
# ABOUTME: Exposes version information and describes the package layout

"""
KServe reconciler - declarative management of the objects KServe models depend on.

=============================================================================
WHAT IS THIS PACKAGE?
=============================================================================

A controller that keeps a set of Kubernetes objects ("managed resources")
matching what the InferenceServices in a namespace need:

- one Istio ServiceMonitor per namespace that serves models
- one Authorino AuthConfig per InferenceService

It does this with a generic reconcile loop:

1. BUILD the desired object from the InferenceService
2. FETCH the existing object from the API server
3. COMPARE the fields we own and classify the difference
   (Added / Updated / Removed / Unchanged)
4. APPLY at most one create, update or delete

Running the loop twice in a row changes nothing the second time.

=============================================================================
PACKAGE STRUCTURE OVERVIEW
=============================================================================

kserve_reconciler/
├── __init__.py          <- YOU ARE HERE: Package entry point
├── config.py            <- Configuration management (env vars, settings)
├── controller.py        <- ModelController, resync loop, main()
├── store.py             <- Resource Store over the Kubernetes API
├── engine/              <- Kind-agnostic reconciliation engine
│   ├── resource.py      <- Resource, ResourceKind, owned fields
│   ├── comparator.py    <- Equality over owned fields
│   ├── delta.py         <- Delta classification
│   ├── apply.py         <- Delta -> store mutation
│   ├── reconciler.py    <- The reconcile loop and cleanup
│   ├── policy.py        <- Identity (naming) policies
│   ├── store.py         <- Resource Store protocol
│   └── errors.py        <- Error taxonomy
├── resources/           <- Managed kinds
│   ├── servicemonitor.py
│   ├── authconfig.py
│   ├── inference_service.py
│   └── templates/       <- Packaged AuthConfig templates
└── utils/
    ├── client.py        <- HTTP client for the Kubernetes REST API
    ├── logging.py       <- Structured logging with audit trails
    └── workqueue.py     <- Per-key serialization, retries, deadlines
"""

# =============================================================================
# VERSION INFORMATION
# =============================================================================

# Semantic Versioning (MAJOR.MINOR.PATCH). 0.x: the API may still change.

__version__ = "0.1.0"

# Only the version is exported. The controller runs via the
# ``kserve-reconciler`` command; import submodules directly when needed.

__all__ = ["__version__"]
