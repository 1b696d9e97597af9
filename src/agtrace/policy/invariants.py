"""Structural checks on the runtime policy document.

These catch policy edits that would silently break a core rule, for
example a tier that no longer contains the tier below it.
"""

from __future__ import annotations

from typing import Any

from agtrace.models.order import DeliveryStatus, OrderType
from agtrace.models.trace import ActorRole, EventType
from agtrace.models.verification import LEVEL_RANK, VerificationLevel


def check_policy_invariants(data: dict[str, Any]) -> list[str]:
    """Validate a policy document. Returns errors (empty = OK)."""
    errors: list[str] = []
    permissions = data.get("permissions", {})

    # --- Trace event permissions ---
    append = permissions.get("trace_event", {}).get("append", {})
    for role in ActorRole:
        allowed = append.get(role.value)
        if allowed is None:
            errors.append(f"append permissions missing role: {role.value}")
            continue
        for value in allowed:
            if value not in {e.value for e in EventType}:
                errors.append(f"append[{role.value}] lists unknown event type: {value}")
        if EventType.CUSTOM.value not in allowed:
            errors.append(f"append[{role.value}] must allow custom events")
    for role, allowed in append.items():
        if role not in {r.value for r in ActorRole}:
            errors.append(f"append permissions list unknown role: {role}")

    # --- Order parties must line up with transition rights ---
    orders = data.get("orders", {})
    parties = orders.get("parties", {})
    transition = permissions.get("order", {}).get("transition", {})
    for order_type in OrderType:
        party = parties.get(order_type.value)
        if party is None:
            errors.append(f"orders.parties missing order type: {order_type.value}")
            continue
        if party.get("driver") not in ("buyer", "seller"):
            errors.append(f"orders.parties[{order_type.value}].driver must be buyer or seller")
            continue
        if party.get("buyer_role") == party.get("seller_role"):
            errors.append(f"orders.parties[{order_type.value}] buyer and seller roles must differ")
        if order_type == OrderType.CONSUMER:
            continue
        driver_role = party[f"{party['driver']}_role"]
        if order_type.value not in transition.get(driver_role, []):
            errors.append(
                f"{driver_role} drives {order_type.value} orders but may not transition them"
            )
    for mode, states in orders.get("confirmable_delivery_states", {}).items():
        for state in states:
            if state in (DeliveryStatus.DELIVERED.value, DeliveryStatus.FAILED.value):
                errors.append(
                    f"confirmable_delivery_states[{mode}] may not include terminal state {state}"
                )

    # --- KYC tiers ---
    verification = data.get("verification", {})
    if int(verification.get("validity_days", 0)) <= 0:
        errors.append("verification.validity_days must be > 0")

    tiers = verification.get("tiers", [])
    ranks = []
    for tier in tiers:
        try:
            ranks.append(LEVEL_RANK[VerificationLevel(tier["level"])])
        except ValueError:
            errors.append(f"unknown verification level: {tier.get('level')}")
    if ranks != sorted(ranks, reverse=True):
        errors.append("verification.tiers must be listed highest first")
    # Each tier must contain every requirement of the tier below it
    for higher, lower in zip(tiers, tiers[1:]):
        missing = set(lower["requirements"]) - set(higher["requirements"])
        if missing:
            errors.append(
                f"tier {higher['level']} must include {lower['level']} requirements: "
                f"{', '.join(sorted(missing))}"
            )

    known_docs = {
        doc_type
        for docs in verification.get("documents", {}).values()
        for doc_type in docs
    }
    for tier in tiers:
        for req in tier["requirements"]:
            if req not in known_docs:
                errors.append(f"tier {tier['level']} requires undefined document type: {req}")

    return errors
