# ABOUTME: Structured logging with correlation IDs for the KServe reconciler
# ABOUTME: Provides the mutation audit trail and secret masking for logged payloads

"""
Structured logging, correlation IDs, and the mutation audit trail.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

1. STRUCTURED LOGGING: every log line is a set of key/value pairs
   (kind, scope, name, delta, ...) rendered as JSON in production and as
   coloured text on a terminal.

2. CORRELATION IDs: one reconciliation cycle logs from the work queue, the
   reconciler, the apply executor and the HTTP client. A correlation ID set
   at the start of the cycle ties those lines together.

3. AUDIT TRAIL: every store MUTATION (create, update, delete) is recorded
   with its target and outcome. Reads are not audited; they are frequent
   and change nothing.

=============================================================================
CORRELATION IDs AND CONCURRENT CYCLES
=============================================================================

Many cycles run at once for different namespaces, all in one event loop.
A module-level variable would be overwritten by whichever task ran last.
A ContextVar is task-local: each asyncio task started by the work queue
sees its own value.

    namespace-a cycle:  {"correlation_id": "3f2a9c1d", "event": "Delta found", ...}
    namespace-b cycle:  {"correlation_id": "b71e04aa", "event": "No delta found", ...}

Filter one cycle with: jq 'select(.correlation_id == "3f2a9c1d")'
"""

# =============================================================================
# IMPORTS
# =============================================================================

from __future__ import annotations

import json
import logging
import re
import uuid
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from collections.abc import MutableMapping
    from pathlib import Path


# =============================================================================
# CORRELATION ID MANAGEMENT
# =============================================================================

correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")


def get_correlation_id() -> str:
    """
    Get current correlation ID or generate new one.

    Code running outside a work item (startup, the resync loop itself)
    still gets an ID, so every line is correlatable.

    Returns:
        8-character correlation ID string.
    """
    cid = correlation_id.get()
    if not cid:
        cid = str(uuid.uuid4())[:8]
        correlation_id.set(cid)
    return cid


def set_correlation_id(cid: str) -> None:
    """
    Set correlation ID for current context.

    The work queue calls this at the start of every work item. Passing ""
    makes the next get_correlation_id() generate a fresh one.
    """
    correlation_id.set(cid)


def add_correlation_id(
    logger: structlog.types.WrappedLogger,  # noqa: ARG001 - Required by structlog Processor API
    method_name: str,  # noqa: ARG001 - Required by structlog Processor API
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """
    Structlog processor adding ``correlation_id`` to every event.

    Args:
        logger: The structlog wrapped logger (unused but required by API)
        method_name: The logging method name (unused but required by API)
        event_dict: Dictionary containing log event data to enrich

    Returns:
        The event_dict with "correlation_id" field added.
    """
    event_dict["correlation_id"] = get_correlation_id()
    return event_dict


# =============================================================================
# SECRET MASKING
# =============================================================================

# Error bodies returned by the API server can echo back parts of the object
# we sent. AuthConfig objects in particular carry credential settings, so
# anything we LOG passes through mask_secrets() first.

SECRET_PATTERNS = [
    (re.compile(r"(token[\"']?\s*[:=]\s*[\"']?)[^\"'\s,}]+", re.I), r"\1***MASKED***"),
    (re.compile(r"(password[\"']?\s*[:=]\s*[\"']?)[^\"'\s,}]+", re.I), r"\1***MASKED***"),
    (re.compile(r"(secret[\"']?\s*[:=]\s*[\"']?)[^\"'\s,}]+", re.I), r"\1***MASKED***"),
    (re.compile(r"(bearer\s+)[^\s\"']+", re.I), r"\1***MASKED***"),
]

SENSITIVE_KEYS = frozenset(
    [
        "token",
        "password",
        "secret",
        "api_key",
        "apikey",
        "authorization",
        "client_secret",
        "clientsecret",
    ]
)


def mask_secrets(data: Any) -> Any:
    """
    Return ``data`` with sensitive values replaced by ``***MASKED***``.

    Strings are scanned with SECRET_PATTERNS; dict values under a
    SENSITIVE_KEYS key are replaced; lists and dicts are walked
    recursively. Other values pass through unchanged.

    Only used on data headed for logs. Objects sent to or read from the
    store are never masked, since that would corrupt them.
    """
    if isinstance(data, str):
        masked = data
        for pattern, replacement in SECRET_PATTERNS:
            masked = pattern.sub(replacement, masked)
        return masked

    if isinstance(data, dict):
        return {
            k: "***MASKED***" if str(k).lower() in SENSITIVE_KEYS else mask_secrets(v)
            for k, v in data.items()
        }

    if isinstance(data, list):
        return [mask_secrets(item) for item in data]

    return data


# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================


def configure_logging(
    level: str = "INFO",
    json_output: bool = False,
) -> None:
    """
    Configure structured logging. Call once at startup.

    PROCESSOR PIPELINE:
    -------------------
    1. merge_contextvars: values bound with structlog.contextvars
    2. add_log_level: "level" field
    3. TimeStamper: ISO 8601 timestamp
    4. add_correlation_id: the current cycle's correlation ID
    5. Renderer: JSON (json_output=True) or coloured console text

    Args:
        level: "DEBUG", "INFO", "WARNING", "ERROR" or "CRITICAL".
               DEBUG shows per-stage engine decisions and every API request.
        json_output: True for log aggregators, False for terminals.
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        add_correlation_id,
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# =============================================================================
# AUDIT LOGGER
# =============================================================================


class AuditLogger:
    """
    Records every store mutation made by the controller.

    Each entry carries:
    - timestamp: UTC ISO 8601
    - correlation_id: the reconciliation cycle
    - action: "create", "update" or "delete"
    - target: the object, e.g. "ServiceMonitor team-a/istiod-monitor"
    - result: "success" or "error"
    - details: optional context (resource version sent, error message)

    With a file path, entries are appended as JSON lines. Without one, they
    go to the "audit" structlog logger alongside the regular logs.

    Example entry:
        {"timestamp": "2024-01-15T10:30:00+00:00", "correlation_id": "abc12345",
         "action": "update", "target": "ServiceMonitor team-a/istiod-monitor",
         "result": "success", "details": {"resource_version": "4711"}}
    """

    def __init__(self, log_path: Path | None = None) -> None:
        """
        Initialize audit logger.

        Args:
            log_path: File to append JSON lines to, or None for structlog.
                      The parent directory must exist.
        """
        self._log_path = log_path
        self._logger = structlog.get_logger("audit")

    def log(
        self,
        action: str,
        target: str,
        result: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Write one audit entry.

        Args:
            action: Store verb ("create", "update", "delete")
            target: Object description (Resource.key)
            result: "success" or "error"
            details: Extra context; masked before writing
        """
        entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "correlation_id": get_correlation_id(),
            "action": action,
            "target": target,
            "result": result,
        }

        if details:
            entry["details"] = mask_secrets(details)

        if self._log_path:
            with self._log_path.open("a") as f:
                f.write(json.dumps(entry) + "\n")
        else:
            self._logger.info(
                "audit",
                action=action,
                target=target,
                result=result,
                details=entry.get("details"),
            )

    def log_write(
        self,
        action: str,
        target: str,
        result: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Log a completed mutation.

        Example:
            audit_logger.log_write(
                "update",
                "ServiceMonitor team-a/istiod-monitor",
                "success",
                {"resource_version": "4711"},
            )
        """
        self.log(action, target, result, details)

    def log_error(
        self,
        action: str,
        target: str,
        error: str,
    ) -> None:
        """
        Log a mutation the store rejected.

        Example:
            audit_logger.log_error(
                "update",
                "ServiceMonitor team-a/istiod-monitor",
                "could not UPDATE servicemonitor team-a/istiod-monitor: conflict",
            )
        """
        self.log(action, target, "error", {"error": error})
