"""Demo auto-approval — approves a pending profile after a delay.

Only for demonstrations and tests. Nothing in the core schedules this.
"""

from __future__ import annotations

import logging
import threading

from agtrace.errors import AgTraceError
from agtrace.kyc.manager import VerificationManager

logger = logging.getLogger(__name__)

DEMO_REVIEWER = "demo-reviewer"


def schedule_demo_approval(
    manager: VerificationManager,
    user_id: str,
    delay_seconds: float = 3.0,
    reviewer_id: str = DEMO_REVIEWER,
) -> threading.Timer:
    """Approve ``user_id`` after ``delay_seconds`` on a timer thread.

    The returned timer is already started; cancel it to abort.
    """

    def _approve() -> None:
        try:
            manager.approve_verification(user_id, reviewer_id)
        except AgTraceError as exc:
            logger.warning("Demo approval of %s skipped: %s", user_id, exc)

    timer = threading.Timer(delay_seconds, _approve)
    timer.daemon = True
    timer.start()
    logger.info("Scheduled demo approval of %s in %.1fs", user_id, delay_seconds)
    return timer
