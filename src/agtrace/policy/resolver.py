"""Authorization policy — the single place that answers "may this role do that?".

Every permission check in agtrace goes through ``AuthorizationPolicy``,
queried by (role, action, resource_type[, resource]). The rules, order
parties, KYC document sets and tier requirements are loaded from
``runtime_policy.json`` so they can be reviewed and tested in one place.

Fail-closed: anything not explicitly listed is denied.
"""

from __future__ import annotations

import copy
import enum
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Union

from agtrace.errors import PermissionDeniedError
from agtrace.models.order import DeliveryMode, DeliveryStatus, Order, OrderType
from agtrace.models.trace import ActorRole, EventType
from agtrace.models.verification import VerificationLevel


POLICY_FILENAME = "runtime_policy.json"
DEFAULT_CONFIG_DIR = Path(__file__).resolve().parent

WILDCARD = "*"


class Action(str, enum.Enum):
    APPEND = "append"
    VERIFY = "verify"
    CREATE = "create"
    TRANSITION = "transition"
    ADVANCE_DELIVERY = "advance_delivery"
    CONFIRM_DELIVERY = "confirm_delivery"
    SUBMIT_DOCUMENT = "submit_document"


class ResourceType(str, enum.Enum):
    TRACE_EVENT = "trace_event"
    ORDER = "order"
    VERIFICATION = "verification"


@dataclass(frozen=True)
class OrderParties:
    """Roles on each side of an order type and which side drives it."""
    buyer_role: ActorRole
    seller_role: ActorRole
    driver: str  # "buyer" or "seller"

    @property
    def driver_role(self) -> ActorRole:
        return self.buyer_role if self.driver == "buyer" else self.seller_role

    def driver_id(self, order: Order) -> str:
        return order.buyer_id if self.driver == "buyer" else order.seller_id


@dataclass(frozen=True)
class DocumentRequirement:
    document_type: str
    name: str
    required: bool


@dataclass(frozen=True)
class Tier:
    level: VerificationLevel
    requirements: frozenset[str]
    benefits: tuple[str, ...]


RoleLike = Union[ActorRole, str]


def _role_key(role: RoleLike) -> str:
    return role.value if isinstance(role, enum.Enum) else str(role)


class AuthorizationPolicy:
    """Permission matrix and business rules loaded from policy JSON.

    Usage:
        policy = AuthorizationPolicy.default()
        policy.permits(ActorRole.FARMER, Action.APPEND,
                       ResourceType.TRACE_EVENT, EventType.CREATED)
    """

    def __init__(self, data: dict[str, Any]) -> None:
        self._data = copy.deepcopy(data)
        self._permissions: dict[str, dict[str, dict[str, frozenset[str]]]] = {
            resource: {
                action: {role: frozenset(values) for role, values in roles.items()}
                for action, roles in actions.items()
            }
            for resource, actions in data.get("permissions", {}).items()
        }

        orders = data.get("orders", {})
        self._parties: dict[OrderType, OrderParties] = {
            OrderType(kind): OrderParties(
                buyer_role=ActorRole(entry["buyer_role"]),
                seller_role=ActorRole(entry["seller_role"]),
                driver=entry["driver"],
            )
            for kind, entry in orders.get("parties", {}).items()
        }
        confirmable = orders.get("confirmable_delivery_states", {})
        self._confirmable: dict[str, frozenset[DeliveryStatus]] = {
            mode: frozenset(DeliveryStatus(s) for s in states)
            for mode, states in confirmable.items()
        }

        verification = data.get("verification", {})
        self._validity_days = int(verification.get("validity_days", 365))
        self._documents: dict[str, dict[str, DocumentRequirement]] = {
            role: {
                doc_type: DocumentRequirement(
                    document_type=doc_type,
                    name=entry.get("name", doc_type),
                    required=bool(entry.get("required", False)),
                )
                for doc_type, entry in docs.items()
            }
            for role, docs in verification.get("documents", {}).items()
        }
        self._tiers: tuple[Tier, ...] = tuple(
            Tier(
                level=VerificationLevel(tier["level"]),
                requirements=frozenset(tier["requirements"]),
                benefits=tuple(tier.get("benefits", ())),
            )
            for tier in verification.get("tiers", [])
        )

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_file(cls, path: Path) -> AuthorizationPolicy:
        with path.open("r", encoding="utf-8") as handle:
            return cls(json.load(handle))

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> AuthorizationPolicy:
        return cls.from_file(config_dir / POLICY_FILENAME)

    @classmethod
    def default(cls) -> AuthorizationPolicy:
        return cls.from_config_dir(DEFAULT_CONFIG_DIR)

    @property
    def raw(self) -> dict[str, Any]:
        """A copy of the policy document as loaded."""
        return copy.deepcopy(self._data)

    # ------------------------------------------------------------------
    # Permission queries
    # ------------------------------------------------------------------

    def permits(
        self,
        role: RoleLike,
        action: Action,
        resource_type: ResourceType,
        resource: Optional[Any] = None,
    ) -> bool:
        """Return True if ``role`` may perform ``action`` on the resource.

        With ``resource`` omitted the answer is whether the role may perform
        the action on any resource of that type.
        """
        allowed = (
            self._permissions
            .get(resource_type.value, {})
            .get(action.value, {})
            .get(_role_key(role), frozenset())
        )
        if resource is None:
            return bool(allowed)
        if WILDCARD in allowed:
            return True
        value = resource.value if isinstance(resource, enum.Enum) else str(resource)
        return value in allowed

    def require(
        self,
        role: RoleLike,
        action: Action,
        resource_type: ResourceType,
        resource: Optional[Any] = None,
    ) -> None:
        """Raise PermissionDeniedError unless ``permits`` says yes."""
        if not self.permits(role, action, resource_type, resource):
            target = resource.value if isinstance(resource, enum.Enum) else resource
            raise PermissionDeniedError(
                f"Role {_role_key(role)} is not authorized to {action.value} "
                f"{resource_type.value}" + (f" ({target})" if target is not None else "")
            )

    def allowed_event_types(self, role: RoleLike) -> frozenset[EventType]:
        allowed = (
            self._permissions
            .get(ResourceType.TRACE_EVENT.value, {})
            .get(Action.APPEND.value, {})
            .get(_role_key(role), frozenset())
        )
        if WILDCARD in allowed:
            return frozenset(EventType)
        return frozenset(EventType(v) for v in allowed)

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def order_parties(self, order_type: OrderType) -> OrderParties:
        parties = self._parties.get(order_type)
        if parties is None:
            raise PermissionDeniedError(f"No parties configured for {order_type.value} orders")
        return parties

    def confirmable_delivery_states(self, mode: DeliveryMode) -> frozenset[DeliveryStatus]:
        states = self._confirmable.get(mode.value)
        if states is None:
            states = self._confirmable.get("default", frozenset({DeliveryStatus.OUT_FOR_DELIVERY}))
        return states

    # ------------------------------------------------------------------
    # KYC
    # ------------------------------------------------------------------

    @property
    def validity_days(self) -> int:
        return self._validity_days

    def document_types(self, role: RoleLike) -> dict[str, DocumentRequirement]:
        return dict(self._documents.get(_role_key(role), {}))

    def required_documents(self, role: RoleLike) -> frozenset[str]:
        return frozenset(
            doc_type for doc_type, req in self._documents.get(_role_key(role), {}).items()
            if req.required
        )

    def tiers(self) -> tuple[Tier, ...]:
        """Tiers in precedence order, highest first."""
        return self._tiers

    def tier_benefits(self, level: Optional[VerificationLevel]) -> tuple[str, ...]:
        for tier in self._tiers:
            if tier.level == level:
                return tier.benefits
        return ()
