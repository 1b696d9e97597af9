"""Identity port — the core receives a resolved actor, it never authenticates.

Session handling, passwords and wallets belong to the identity provider.
Every core operation takes an ``Actor`` that the provider has already
resolved.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from agtrace.errors import ValidationError
from agtrace.models.trace import ActorRole


@dataclass(frozen=True)
class Actor:
    """A resolved (user_id, role) pair."""
    user_id: str
    role: ActorRole
    display_name: str = ""

    @staticmethod
    def of(user_id: str, role: str | ActorRole, display_name: str = "") -> Actor:
        """Build an actor from loose input, rejecting unknown roles."""
        if not user_id:
            raise ValidationError("Actor user_id must not be empty")
        try:
            resolved = ActorRole(role)
        except ValueError:
            raise ValidationError(f"Unknown role: {role}") from None
        return Actor(user_id=user_id, role=resolved, display_name=display_name)


@runtime_checkable
class IdentityProvider(Protocol):
    """Anything that can tell the core who is acting."""

    def resolve_actor(self) -> Actor:
        ...


class StaticIdentityProvider:
    """Identity provider that always resolves to the same actor.

    Used by the CLI, where the operator names the acting user explicitly.
    """

    def __init__(self, actor: Actor) -> None:
        self._actor = actor

    def resolve_actor(self) -> Actor:
        return self._actor
