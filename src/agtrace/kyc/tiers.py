"""Verification tiers — which level a set of verified documents earns."""

from __future__ import annotations

from typing import Iterable, Optional, Union

from agtrace.models.trace import ActorRole
from agtrace.models.verification import VerificationLevel
from agtrace.policy.resolver import AuthorizationPolicy


def derive_level(
    verified_types: Iterable[str],
    role: Union[ActorRole, str],
    policy: AuthorizationPolicy,
) -> Optional[VerificationLevel]:
    """Highest tier whose requirements are all verified.

    Tiers are tried highest first. A tier only counts for a role whose
    document set defines every one of its requirements, so a farmer can
    never reach a tier that asks for a facility license.
    """
    verified = frozenset(verified_types)
    defined = frozenset(policy.document_types(role))
    for tier in policy.tiers():
        if tier.requirements <= defined and tier.requirements <= verified:
            return tier.level
    return None
