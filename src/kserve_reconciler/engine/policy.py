# ABOUTME: Naming policies mapping a trigger to the canonical managed object identity
# ABOUTME: Singleton-per-scope uses a fixed name; owner-named kinds reuse the owner's name

"""Identity policies.

Reconcile and cleanup both ask the kind's policy for the identity, so they
always address the same object. Identities are pure functions of their
inputs; nothing random or time-dependent goes into a name.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from kserve_reconciler.engine.resource import ResourceKind


class IdentityPolicy(Protocol):
    """Decides the ``(scope, name)`` a reconciler manages."""

    def identity(self, kind: ResourceKind, scope: str, context: Any = None) -> tuple[str, str]: ...


class SingletonPerScope:
    """At most one instance of a kind per scope, always under the same name.

    The name depends on nothing but the kind, so concurrent reconciliations
    of one scope converge on one object instead of creating duplicates.
    """

    def __init__(self, name: str) -> None:
        if not name:
            raise ValueError("singleton name must not be empty")
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    def canonical_name(self, kind: ResourceKind) -> str:  # noqa: ARG002 - name is fixed per kind
        """Return the one name permitted for ``kind`` in any scope."""
        return self._name

    def identity(self, kind: ResourceKind, scope: str, context: Any = None) -> tuple[str, str]:  # noqa: ARG002
        return scope, self.canonical_name(kind)


class NamedAfterOwner:
    """One instance per owning object, named after the owner.

    The context must expose a ``name`` attribute (e.g. an InferenceService).
    """

    def identity(self, kind: ResourceKind, scope: str, context: Any = None) -> tuple[str, str]:
        name = getattr(context, "name", None)
        if not name:
            raise ValueError(f"{kind} objects are named after their owner; no owner given")
        return scope, name
