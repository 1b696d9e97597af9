"""Mirror models — references to entries re-recorded on an external ledger."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Any


class MirrorKind(str, enum.Enum):
    EVENT = "event"
    ORDER_TRANSITION = "order_transition"


def order_transition_id(order_id: str, status: str) -> str:
    """Local ID under which an order transition is mirrored."""
    return f"{order_id}@{status}"


@dataclass(frozen=True)
class MirrorResult:
    """What the mirror returns for a successfully recorded entry."""
    external_ref: str
    tx_hash: str
    external_url: str


@dataclass(frozen=True)
class MirrorMapping:
    """Local ID → external reference. Absence means "not yet mirrored"."""
    local_id: str
    kind: MirrorKind
    external_ref: str
    tx_hash: str
    external_url: str
    recorded_utc: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "local_id": self.local_id,
            "kind": self.kind.value,
            "external_ref": self.external_ref,
            "tx_hash": self.tx_hash,
            "external_url": self.external_url,
            "recorded_utc": self.recorded_utc.isoformat(),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> MirrorMapping:
        return MirrorMapping(
            local_id=data["local_id"],
            kind=MirrorKind(data["kind"]),
            external_ref=data["external_ref"],
            tx_hash=data["tx_hash"],
            external_url=data["external_url"],
            recorded_utc=datetime.fromisoformat(data["recorded_utc"]),
        )
