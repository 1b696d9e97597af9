"""Authorization policy — permission matrix and business rules in one object."""

from agtrace.policy.invariants import check_policy_invariants
from agtrace.policy.resolver import (
    Action,
    AuthorizationPolicy,
    OrderParties,
    ResourceType,
)

__all__ = [
    "Action",
    "AuthorizationPolicy",
    "OrderParties",
    "ResourceType",
    "check_policy_invariants",
]
