# ABOUTME: Error taxonomy for the reconciliation engine
# ABOUTME: Separates build failures, store outcomes, and stage-wrapped cycle failures

"""
Errors raised by the reconciliation engine and its store.

=============================================================================
TAXONOMY
=============================================================================

    ReconcilerError
    ├── BuildError              desired state could not be constructed
    ├── StoreError              a store call failed
    │   ├── NotFoundError       target does not exist (expected, non-fatal)
    │   ├── AlreadyExistsError  create raced with another writer
    │   ├── ConflictError       update carried a stale version token
    │   └── TransientStoreError network trouble, timeouts, 5xx, throttling
    └── ReconcileError          one cycle failed; names the failing stage

NotFoundError never escapes the engine: fetch turns it into "absent" and
cleanup treats it as success. Everything else travels to the caller.

The engine never retries. The ``retryable`` flag only tells the CALLER
(the work queue) whether running the whole cycle again could succeed.
"""

from __future__ import annotations


class ReconcilerError(Exception):
    """Base class for every error raised by this package."""


class BuildError(ReconcilerError):
    """Desired-state construction failed."""


class StoreError(ReconcilerError):
    """
    A Resource Store operation failed.

    Args:
        message: Human-readable description naming the verb and the object
        code: HTTP status code reported by the store, if any
        reason: Machine-readable reason reported by the store, if any
    """

    retryable = False

    def __init__(self, message: str, code: int | None = None, reason: str | None = None) -> None:
        self.message = message
        self.code = code
        self.reason = reason
        super().__init__(message)


class NotFoundError(StoreError):
    """The addressed object does not exist."""


class AlreadyExistsError(StoreError):
    """Create failed because an object with the same identity exists."""

    retryable = True


class ConflictError(StoreError):
    """Update failed optimistic-concurrency checks."""

    retryable = True


class TransientStoreError(StoreError):
    """Network failure, timeout, throttling or server-side error."""

    retryable = True


class ReconcileError(ReconcilerError):
    """
    A reconciliation cycle failed at a specific stage.

    The original exception is kept as ``cause`` (and chained as
    ``__cause__``) so callers can inspect it unmodified.
    """

    def __init__(self, stage: str, key: str, cause: BaseException) -> None:
        self.stage = stage
        self.key = key
        self.cause = cause
        super().__init__(f"reconcile {key} failed at stage '{stage}': {cause}")

    @property
    def retryable(self) -> bool:
        return bool(getattr(self.cause, "retryable", False))
