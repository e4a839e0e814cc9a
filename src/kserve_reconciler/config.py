# ABOUTME: Configuration management for the KServe reconciler
# ABOUTME: Handles environment variables, cluster connection, and work queue tuning

"""
Configuration management using pydantic-settings.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

This module handles all configuration for the controller. It:

1. READS environment variables (like KUBE_API_URL, KSERVE_RECONCILER_LOG_LEVEL)
2. VALIDATES them (URLs get a scheme, log levels are real levels, numbers
   are positive)
3. PROVIDES typed access to settings throughout the application

Validation happens at startup. A typo in RECONCILER_QUEUE_MAX_ATTEMPTS
fails the process immediately instead of surfacing as odd retry behaviour
hours later.

=============================================================================
ARCHITECTURE: THREE CONFIGURATION CLASSES
=============================================================================

1. ClusterConnection: how to reach ONE Kubernetes API server
   - URL, bearer token, TLS verification

2. QueueSettings: how reconciliation cycles are scheduled (RECONCILER_QUEUE_*)
   - concurrency across keys, retry attempts, backoff, per-cycle deadline

3. ControllerSettings: main configuration container (KSERVE_RECONCILER_*)
   - cluster connection fields, watched namespaces, resync interval
   - fallback values used when optional cluster config is missing
   - logging and audit
   - nested QueueSettings

=============================================================================
ENVIRONMENT VARIABLE MAPPING
=============================================================================

Cluster connection:
    KUBE_API_URL        -> API server URL (default: in-cluster service)
    KUBE_TOKEN          -> Bearer token
    KUBE_INSECURE       -> Skip TLS certificate verification

Controller (KSERVE_RECONCILER_ prefix):
    KSERVE_RECONCILER_WATCH_NAMESPACES   -> JSON list, e.g. '["team-a","team-b"]'
                                            (empty: every namespace with InferenceServices)
    KSERVE_RECONCILER_RESYNC_INTERVAL    -> Seconds between full resyncs
    KSERVE_RECONCILER_RUN_ONCE           -> Single pass, then exit (jobs, CI)
    KSERVE_RECONCILER_DEFAULT_DSCI_NAME  -> Used when no DSCInitialization is found
    KSERVE_RECONCILER_LOG_LEVEL          -> DEBUG/INFO/WARNING/ERROR/CRITICAL
    KSERVE_RECONCILER_JSON_LOGS          -> Emit JSON logs
    KSERVE_RECONCILER_AUDIT_LOG          -> Path to audit log file

Work queue (RECONCILER_QUEUE_ prefix):
    RECONCILER_QUEUE_MAX_CONCURRENCY -> Cycles running at once (default: 4)
    RECONCILER_QUEUE_MAX_ATTEMPTS    -> Attempts per work item (default: 5)
    RECONCILER_QUEUE_BACKOFF_MIN     -> First retry delay in seconds (default: 1)
    RECONCILER_QUEUE_BACKOFF_MAX     -> Retry delay ceiling in seconds (default: 30)
    RECONCILER_QUEUE_CYCLE_TIMEOUT   -> Deadline per attempt in seconds (default: 60)
"""

# =============================================================================
# IMPORTS
# =============================================================================

from __future__ import annotations

import os
from pathlib import Path  # noqa: TC003 - Required at runtime for Pydantic
from typing import Annotated

import structlog
from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger(__name__)

# Where Kubernetes mounts the pod's service account token
SERVICE_ACCOUNT_TOKEN = "/var/run/secrets/kubernetes.io/serviceaccount/token"

# =============================================================================
# CLUSTER CONNECTION
# =============================================================================


class ClusterConnection(BaseModel):
    """
    Connection details for one Kubernetes API server.

    WHY BaseModel NOT BaseSettings?
    -------------------------------
    The values come from ControllerSettings (which reads the environment)
    or from test code. A connection never reads env vars by itself.

    USAGE EXAMPLE:
    --------------
        connection = ClusterConnection(
            url="https://api.cluster.example.com:6443",
            token=SecretStr("sha256~..."),
            insecure=False,
        )
    """

    model_config = {"extra": "ignore"}

    url: str = Field(description="Kubernetes API server URL")

    token: SecretStr = Field(default=SecretStr(""), description="Bearer token")
    # SecretStr keeps the token out of reprs and logs.
    # To get the actual value: token.get_secret_value()

    name: str = Field(default="in-cluster", description="Connection identifier for logs")

    insecure: bool = Field(default=False, description="Skip TLS verification")
    # Only for local clusters (kind, minikube) with self-signed certificates.

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """
        Ensure URL has a scheme and no trailing slash.

        "api.example.com:6443/" becomes "https://api.example.com:6443",
        so request paths ("/apis/...") can be appended without doubling
        the slash.
        """
        if not v.startswith(("http://", "https://")):
            v = f"https://{v}"
        return v.rstrip("/")


# =============================================================================
# WORK QUEUE SETTINGS
# =============================================================================


class QueueSettings(BaseSettings):
    """
    Scheduling of reconciliation cycles.

    The engine itself never retries. Retrying a failed cycle (conflicts,
    create races, transient API errors) is the work queue's job and these
    settings shape it.
    """

    model_config = SettingsConfigDict(env_prefix="RECONCILER_QUEUE_")

    max_concurrency: int = Field(
        default=4,
        ge=1,
        description="Work items running at the same time (different keys only)",
    )
    # Items for the SAME key never run concurrently regardless of this value.

    max_attempts: int = Field(
        default=5,
        ge=1,
        description="Attempts per work item, including the first",
    )

    backoff_min: float = Field(
        default=1.0,
        gt=0,
        description="Initial retry delay in seconds",
    )

    backoff_max: float = Field(
        default=30.0,
        gt=0,
        description="Maximum retry delay in seconds",
    )
    # Delays grow exponentially: 1s, 2s, 4s, ... capped here.

    cycle_timeout: float = Field(
        default=60.0,
        gt=0,
        description="Deadline for a single attempt in seconds",
    )
    # The attempt is cancelled at the deadline; cancellation interrupts
    # whichever API call is in flight.


# =============================================================================
# MAIN CONTROLLER SETTINGS
# =============================================================================


class ControllerSettings(BaseSettings):
    """
    Main controller configuration.

    USAGE:
    ------
        settings = load_settings()
        settings.connection.url        # API server
        settings.queue.max_attempts    # nested queue setting
    """

    model_config = SettingsConfigDict(
        env_prefix="KSERVE_RECONCILER_",
        env_nested_delimiter="__",
        extra="ignore",
        populate_by_name=True,
    )

    # -------------------------------------------------------------------------
    # CLUSTER CONNECTION
    # -------------------------------------------------------------------------

    kube_api_url: str = Field(
        default="https://kubernetes.default.svc",
        validation_alias="KUBE_API_URL",
        description="Kubernetes API server URL",
    )
    # The default resolves from inside any pod in the cluster.

    kube_token: SecretStr = Field(
        default=SecretStr(""),
        validation_alias="KUBE_TOKEN",
        description="Bearer token for the API server",
    )

    kube_token_file: Path = Field(
        default=Path(SERVICE_ACCOUNT_TOKEN),
        description="Token file read when KUBE_TOKEN is not set",
    )

    kube_insecure: bool = Field(
        default=False,
        validation_alias="KUBE_INSECURE",
        description="Skip TLS verification",
    )

    request_timeout: float = Field(
        default=30.0,
        gt=0,
        description="HTTP timeout per API request in seconds",
    )

    # -------------------------------------------------------------------------
    # RECONCILIATION SCOPE
    # -------------------------------------------------------------------------

    watch_namespaces: list[str] = Field(
        default_factory=list,
        description="Namespaces to reconcile",
    )

    resync_interval: int = Field(
        default=300,
        ge=1,
        description="Seconds between full resyncs of every watched namespace",
    )

    run_once: bool = Field(
        default=False,
        description="Sync every namespace once and exit instead of resyncing",
    )

    default_dsci_name: str = Field(
        default="default-dsci",
        description="DSCInitialization name used when none can be read from the cluster",
    )
    # Feeds the ServiceMonitor mesh_id relabeling. Missing DSCI is a
    # recoverable condition: logged, then this value is used.

    # -------------------------------------------------------------------------
    # OBSERVABILITY
    # -------------------------------------------------------------------------

    log_level: Annotated[str, Field(pattern=r"^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")] = Field(
        default="INFO",
        description="Logging level",
    )

    json_logs: bool = Field(default=False, description="Render logs as JSON lines")

    audit_log: Path | None = Field(
        default=None,
        description="Path to audit log file",
    )
    # When None (default), audit entries go to stdout with the regular logs.

    # -------------------------------------------------------------------------
    # NESTED QUEUE SETTINGS
    # -------------------------------------------------------------------------

    queue: QueueSettings = Field(default_factory=QueueSettings)

    # -------------------------------------------------------------------------
    # COMPUTED PROPERTIES
    # -------------------------------------------------------------------------

    @property
    def connection(self) -> ClusterConnection:
        """
        Cluster connection assembled from the settings.

        Token precedence: KUBE_TOKEN, then the token file (the mounted
        service account token when running in a pod), then no token.
        """
        token = self.kube_token
        if not token.get_secret_value() and self.kube_token_file.is_file():
            token = SecretStr(self.kube_token_file.read_text().strip())
        elif not token.get_secret_value():
            logger.warning("No API token configured", token_file=str(self.kube_token_file))
        return ClusterConnection(
            url=self.kube_api_url,
            token=token,
            insecure=self.kube_insecure,
        )


# =============================================================================
# SETTINGS LOADER
# =============================================================================


def load_settings() -> ControllerSettings:
    """
    Load settings from environment with validation.

    If KSERVE_RECONCILER_ENV_FILE is set, variables are also read from that
    file. Useful for running against a local cluster:

        KUBE_API_URL=https://127.0.0.1:6443
        KUBE_TOKEN=...
        KUBE_INSECURE=true
        KSERVE_RECONCILER_WATCH_NAMESPACES=["demo"]

    Returns:
        Fully validated ControllerSettings instance.

    Raises:
        pydantic.ValidationError: If configuration is invalid.
    """
    return ControllerSettings(
        _env_file=os.environ.get("KSERVE_RECONCILER_ENV_FILE"),
    )
