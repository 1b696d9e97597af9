"""KYC verification models — per-user document review and trust tiers.

Profile lifecycle:
    UNVERIFIED → PENDING → VERIFIED | REJECTED
    VERIFIED → EXPIRED            (verified_utc + validity window)
    REJECTED → PENDING            (resubmission)
    EXPIRED → PENDING             (resubmission)

Invariant: ``level`` is set only while the profile is VERIFIED, and it is
always the highest tier whose requirement set is fully verified.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


class VerificationStatus(str, enum.Enum):
    UNVERIFIED = "unverified"
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"
    EXPIRED = "expired"


class VerificationLevel(str, enum.Enum):
    BASIC = "basic"
    STANDARD = "standard"
    PREMIUM = "premium"


# Lowest to highest.
LEVEL_RANK: dict[VerificationLevel, int] = {
    VerificationLevel.BASIC: 1,
    VerificationLevel.STANDARD: 2,
    VerificationLevel.PREMIUM: 3,
}


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class DocumentRecord:
    """One submitted KYC document. ``reference`` points at the stored upload."""
    document_type: str
    status: VerificationStatus
    uploaded_utc: datetime
    reference: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "document_type": self.document_type,
            "status": self.status.value,
            "uploaded_utc": self.uploaded_utc.isoformat(),
            "reference": self.reference,
            "metadata": self.metadata,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> DocumentRecord:
        return DocumentRecord(
            document_type=data["document_type"],
            status=VerificationStatus(data["status"]),
            uploaded_utc=datetime.fromisoformat(data["uploaded_utc"]),
            reference=data.get("reference", ""),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class VerificationProfile:
    """KYC state of a single user."""
    user_id: str
    role: str
    status: VerificationStatus = VerificationStatus.UNVERIFIED
    level: Optional[VerificationLevel] = None
    documents: dict[str, DocumentRecord] = field(default_factory=dict)
    submitted_utc: Optional[datetime] = None
    verified_utc: Optional[datetime] = None
    expires_utc: Optional[datetime] = None
    rejected_utc: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    reviewed_by: Optional[str] = None
    updated_utc: Optional[datetime] = None

    def verified_document_types(self) -> frozenset[str]:
        return frozenset(
            doc_type for doc_type, doc in self.documents.items()
            if doc.status == VerificationStatus.VERIFIED
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "role": self.role,
            "status": self.status.value,
            "level": self.level.value if self.level else None,
            "documents": {k: d.to_dict() for k, d in self.documents.items()},
            "submitted_utc": _iso(self.submitted_utc),
            "verified_utc": _iso(self.verified_utc),
            "expires_utc": _iso(self.expires_utc),
            "rejected_utc": _iso(self.rejected_utc),
            "rejection_reason": self.rejection_reason,
            "reviewed_by": self.reviewed_by,
            "updated_utc": _iso(self.updated_utc),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> VerificationProfile:
        level = data.get("level")
        return VerificationProfile(
            user_id=data["user_id"],
            role=data["role"],
            status=VerificationStatus(data["status"]),
            level=VerificationLevel(level) if level else None,
            documents={
                k: DocumentRecord.from_dict(d)
                for k, d in (data.get("documents") or {}).items()
            },
            submitted_utc=_dt(data.get("submitted_utc")),
            verified_utc=_dt(data.get("verified_utc")),
            expires_utc=_dt(data.get("expires_utc")),
            rejected_utc=_dt(data.get("rejected_utc")),
            rejection_reason=data.get("rejection_reason"),
            reviewed_by=data.get("reviewed_by"),
            updated_utc=_dt(data.get("updated_utc")),
        )
