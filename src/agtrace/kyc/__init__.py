"""KYC — document submission, review, tiers and expiry."""

from agtrace.kyc.demo import schedule_demo_approval
from agtrace.kyc.manager import VerificationManager
from agtrace.kyc.tiers import derive_level

__all__ = ["VerificationManager", "derive_level", "schedule_demo_approval"]
