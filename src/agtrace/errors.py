"""Error kinds raised by the traceability core.

Every local failure is synchronous and surfaces to the caller. None of
these are retried automatically.

MirrorUnavailable is deliberately outside the AgTraceError hierarchy:
mirror failures are recorded and logged, never propagated as the failure
of a local operation.
"""

from __future__ import annotations


class AgTraceError(Exception):
    """Base class for local, caller-visible failures."""

    kind = "error"


class PermissionDeniedError(AgTraceError):
    """Actor or role is not authorized for the requested action."""

    kind = "permission_denied"


class ValidationError(AgTraceError):
    """Missing or malformed input (empty description, unknown type, ...)."""

    kind = "validation"


class InvalidTransitionError(AgTraceError):
    """A state machine precondition is not met."""

    kind = "invalid_transition"


class AlreadyVerifiedError(AgTraceError):
    """The event has already been verified."""

    kind = "already_verified"


class AlreadyRegisteredError(AgTraceError):
    """A record with the same identity already exists."""

    kind = "already_registered"


class NotFoundError(AgTraceError):
    """Unknown batch, event, order or user."""

    kind = "not_found"


class ConflictError(AgTraceError):
    """A concurrent writer changed the record first (stale length/version)."""

    kind = "conflict"


class MirrorUnavailable(Exception):
    """The external mirror could not record the entry right now."""
