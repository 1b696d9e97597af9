"""Event verifier — cross-role attestation of a single trace event.

A participant confirms that an event recorded by another role really
happened. An actor can never vouch for its own role's events, and an
event is verified at most once; a second attempt is an error, not a
no-op.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from agtrace.errors import AlreadyVerifiedError, PermissionDeniedError
from agtrace.models.trace import ActorRole, TraceEvent
from agtrace.policy.resolver import Action, AuthorizationPolicy, ResourceType


class EventVerifier:
    """Validates a verification request and produces the verified event.

    Pure computation: the caller is responsible for persisting the result
    (the ledger does so under the batch lock).
    """

    def __init__(self, policy: AuthorizationPolicy) -> None:
        self._policy = policy

    def verify(
        self,
        event: TraceEvent,
        verifier_id: str,
        verifier_role: ActorRole,
        now: Optional[datetime] = None,
    ) -> TraceEvent:
        if now is None:
            now = datetime.now(timezone.utc)

        self._policy.require(
            verifier_role, Action.VERIFY, ResourceType.TRACE_EVENT, event.event_type,
        )
        if verifier_role == event.actor_role:
            raise PermissionDeniedError(
                f"Self-verification forbidden: {verifier_role.value} cannot verify "
                f"events recorded by {event.actor_role.value}"
            )
        if event.verified:
            raise AlreadyVerifiedError(
                f"Event {event.event_id} already verified by {event.verified_by}"
            )
        return event.with_verification(verifier_id, verifier_role, now)
