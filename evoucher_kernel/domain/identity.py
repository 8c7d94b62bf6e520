"""
Identity -- explicit actor context for attribution and capability checks.

Responsibility:
    The engine never authenticates and never reads the current user from
    ambient storage.  Every voucher-construction and attribution call takes
    an ``Actor`` resolved by an ``IdentityProvider`` outside the engine.

Architecture position:
    Kernel > Domain -- pure value objects, zero I/O.

Invariants enforced:
    - ``Actor.display_name`` is non-empty (it becomes ``requestor_name`` /
      ``posted_by_name``).
    - Auto-approval is gated by the ``AUTO_APPROVE`` capability, never by
      comparing context strings at the call site.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum


class Capability(str, Enum):
    """Capabilities an actor may hold."""

    APPROVE = "approve"
    POST = "post"
    AUTO_APPROVE = "auto_approve"
    FORCE_DELETE = "force_delete"


@dataclass(frozen=True)
class Actor:
    """An already-resolved identity performing an action."""

    display_name: str
    context: str = "operations"
    user_id: str | None = None
    capabilities: frozenset[Capability] = field(default_factory=frozenset)

    def __post_init__(self):
        if not self.display_name or not self.display_name.strip():
            raise ValueError("Actor display_name cannot be empty")

    def has(self, capability: Capability) -> bool:
        return capability in self.capabilities


class IdentityProvider(ABC):
    """Collaborator that supplies the current user's resolved identity."""

    @abstractmethod
    def current_actor(self) -> Actor:
        ...


class StaticIdentityProvider(IdentityProvider):
    """Returns a fixed actor.  Used by scripts and tests."""

    def __init__(self, actor: Actor):
        self._actor = actor

    def current_actor(self) -> Actor:
        return self._actor
