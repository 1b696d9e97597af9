"""KYC verification manager — document submission, review and expiry.

Profile lifecycle:
    UNVERIFIED → PENDING          (every required document submitted)
    PENDING → VERIFIED            (reviewer approves)
    PENDING → REJECTED            (reviewer rejects with a reason)
    VERIFIED → EXPIRED            (validity window elapsed)
    REJECTED → PENDING            (every required document replaced)
    EXPIRED → PENDING             (every required document replaced)

The level of a verified profile is always derived from its verified
documents; a reviewer can never grant more than the documents support.

All mutations for one user run under that user's lock.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Union

from agtrace.errors import InvalidTransitionError, NotFoundError, ValidationError
from agtrace.kyc.tiers import derive_level
from agtrace.models.trace import ActorRole
from agtrace.models.verification import (
    LEVEL_RANK,
    DocumentRecord,
    VerificationLevel,
    VerificationProfile,
    VerificationStatus,
)
from agtrace.persistence.stores import VerificationStore
from agtrace.policy.resolver import Action, AuthorizationPolicy, ResourceType

logger = logging.getLogger(__name__)


class VerificationManager:
    """Manages KYC profiles.

    Usage:
        manager = VerificationManager(InMemoryVerificationStore(), policy)
        manager.submit_document("u1", "farmer", "identity", "doc://id.pdf")
        ...
        profile = manager.approve_verification("u1", "reviewer_1")
    """

    def __init__(self, store: VerificationStore, policy: AuthorizationPolicy) -> None:
        self._store = store
        self._policy = policy
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _user_lock(self, user_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = self._locks[user_id] = threading.Lock()
            return lock

    def _get(self, user_id: str) -> VerificationProfile:
        profile = self._store.get(user_id)
        if profile is None:
            raise NotFoundError(f"No verification profile for user: {user_id}")
        return profile

    def get_profile(self, user_id: str) -> Optional[VerificationProfile]:
        return self._store.get(user_id)

    def user_ids(self) -> list[str]:
        return self._store.user_ids()

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit_document(
        self,
        user_id: str,
        role: Union[ActorRole, str],
        document_type: str,
        reference: str = "",
        metadata: Optional[dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> VerificationProfile:
        """Store a document as pending and advance the profile if complete.

        Raises:
            ValidationError: unknown role, document type not defined for
                the role, or a role different from the profile's.
        """
        try:
            resolved_role = ActorRole(role)
        except ValueError:
            raise ValidationError(f"Unknown role: {role}") from None
        if not user_id:
            raise ValidationError("User ID must not be empty")
        self._policy.require(
            resolved_role, Action.SUBMIT_DOCUMENT, ResourceType.VERIFICATION, document_type,
        )
        if document_type not in self._policy.document_types(resolved_role):
            raise ValidationError(
                f"Document type {document_type!r} is not defined for {resolved_role.value}"
            )
        if now is None:
            now = datetime.now(timezone.utc)

        with self._user_lock(user_id):
            profile = self._store.get(user_id)
            if profile is None:
                profile = VerificationProfile(user_id=user_id, role=resolved_role.value)
            elif profile.role != resolved_role.value:
                raise ValidationError(
                    f"User {user_id} is registered as {profile.role}, not {resolved_role.value}"
                )
            self._expire(profile, now)

            profile.documents[document_type] = DocumentRecord(
                document_type=document_type,
                status=VerificationStatus.PENDING,
                uploaded_utc=now,
                reference=reference,
                metadata=dict(metadata or {}),
            )

            required = self._policy.required_documents(resolved_role)
            replaced = all(
                doc_type in profile.documents
                and profile.documents[doc_type].status == VerificationStatus.PENDING
                for doc_type in required
            )
            if profile.status == VerificationStatus.UNVERIFIED and required <= set(profile.documents):
                profile.status = VerificationStatus.PENDING
                profile.submitted_utc = now
            elif profile.status in (VerificationStatus.REJECTED, VerificationStatus.EXPIRED) and replaced:
                profile.status = VerificationStatus.PENDING
                profile.submitted_utc = now
                profile.rejection_reason = None
            elif profile.status == VerificationStatus.VERIFIED:
                profile.level = derive_level(
                    profile.verified_document_types(), resolved_role, self._policy,
                )

            profile.updated_utc = now
            self._store.save(profile)

        logger.info(
            "User %s submitted %s; profile is %s", user_id, document_type, profile.status.value,
        )
        return profile

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    def approve_verification(
        self,
        user_id: str,
        reviewer_id: str,
        level: Optional[Union[VerificationLevel, str]] = None,
        now: Optional[datetime] = None,
    ) -> VerificationProfile:
        """Approve a pending profile.

        Transitions: PENDING → VERIFIED

        Raises:
            InvalidTransitionError: profile is not pending.
            ValidationError: ``level`` is above what the documents support.
        """
        requested = None
        if level is not None:
            try:
                requested = VerificationLevel(level)
            except ValueError:
                raise ValidationError(f"Unknown verification level: {level}") from None
        if now is None:
            now = datetime.now(timezone.utc)

        with self._user_lock(user_id):
            profile = self._get(user_id)
            if profile.status != VerificationStatus.PENDING:
                raise InvalidTransitionError(
                    f"Cannot approve verification of {user_id} while {profile.status.value}"
                )
            for doc in profile.documents.values():
                if doc.status == VerificationStatus.PENDING:
                    doc.status = VerificationStatus.VERIFIED

            derived = derive_level(profile.verified_document_types(), profile.role, self._policy)
            if requested is not None and (
                derived is None or LEVEL_RANK[requested] > LEVEL_RANK[derived]
            ):
                raise ValidationError(
                    f"Requested level {requested.value} exceeds what the verified documents "
                    f"support ({derived.value if derived else 'none'})"
                )

            profile.status = VerificationStatus.VERIFIED
            profile.level = derived
            profile.verified_utc = now
            profile.expires_utc = now + timedelta(days=self._policy.validity_days)
            profile.reviewed_by = reviewer_id
            profile.rejection_reason = None
            profile.updated_utc = now
            self._store.save(profile)

        logger.info(
            "Verification of %s approved by %s at level %s",
            user_id, reviewer_id, profile.level.value if profile.level else "none",
        )
        return profile

    def reject_verification(
        self,
        user_id: str,
        reviewer_id: str,
        reason: str,
        now: Optional[datetime] = None,
    ) -> VerificationProfile:
        """Reject a pending profile.

        Transitions: PENDING → REJECTED
        """
        if not reason or not reason.strip():
            raise ValidationError("A rejection reason is required")
        if now is None:
            now = datetime.now(timezone.utc)

        with self._user_lock(user_id):
            profile = self._get(user_id)
            if profile.status != VerificationStatus.PENDING:
                raise InvalidTransitionError(
                    f"Cannot reject verification of {user_id} while {profile.status.value}"
                )
            for doc in profile.documents.values():
                if doc.status == VerificationStatus.PENDING:
                    doc.status = VerificationStatus.REJECTED

            profile.status = VerificationStatus.REJECTED
            profile.level = None
            profile.rejected_utc = now
            profile.rejection_reason = reason
            profile.reviewed_by = reviewer_id
            profile.updated_utc = now
            self._store.save(profile)

        logger.info("Verification of %s rejected by %s: %s", user_id, reviewer_id, reason)
        return profile

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    @staticmethod
    def _expire(profile: VerificationProfile, now: datetime) -> bool:
        """Move a verified profile past its window to EXPIRED, in place."""
        if (
            profile.status != VerificationStatus.VERIFIED
            or profile.expires_utc is None
            or now < profile.expires_utc
        ):
            return False
        profile.status = VerificationStatus.EXPIRED
        profile.level = None
        for doc in profile.documents.values():
            if doc.status == VerificationStatus.VERIFIED:
                doc.status = VerificationStatus.EXPIRED
        profile.updated_utc = now
        return True

    def expire_if_due(
        self,
        user_id: str,
        now: Optional[datetime] = None,
    ) -> VerificationProfile:
        """Transitions: VERIFIED → EXPIRED once ``expires_utc`` has passed."""
        if now is None:
            now = datetime.now(timezone.utc)
        with self._user_lock(user_id):
            profile = self._get(user_id)
            if self._expire(profile, now):
                self._store.save(profile)
                logger.info("Verification of %s expired", user_id)
        return profile

    def expire_due(self, now: Optional[datetime] = None) -> list[str]:
        """Expire every profile past its window. Returns the expired user IDs."""
        if now is None:
            now = datetime.now(timezone.utc)
        expired = []
        for user_id in self._store.user_ids():
            before = self._store.get(user_id)
            if before is None or before.status != VerificationStatus.VERIFIED:
                continue
            if self.expire_if_due(user_id, now).status == VerificationStatus.EXPIRED:
                expired.append(user_id)
        return expired

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def verification_progress(
        self,
        user_id: str,
        role: Optional[Union[ActorRole, str]] = None,
    ) -> dict[str, Any]:
        """How far a user is through the required document set."""
        profile = self._store.get(user_id)
        if profile is None and role is None:
            raise NotFoundError(f"No verification profile for user: {user_id}")
        role_key = profile.role if profile is not None else ActorRole(role).value
        documents = profile.documents if profile is not None else {}

        required = sorted(self._policy.required_documents(role_key))
        submitted = [d for d in required if d in documents]
        verified = [
            d for d in required
            if d in documents and documents[d].status == VerificationStatus.VERIFIED
        ]
        percent = 100 if not required else round(len(submitted) * 100 / len(required))
        return {
            "status": profile.status.value if profile else VerificationStatus.UNVERIFIED.value,
            "required": len(required),
            "submitted": len(submitted),
            "verified": len(verified),
            "percent": percent,
            "missing": [d for d in required if d not in documents],
        }

    def benefits(self, level: Optional[Union[VerificationLevel, str]]) -> tuple[str, ...]:
        if level is None:
            return ()
        return self._policy.tier_benefits(VerificationLevel(level))
