"""Mirror dispatcher — best-effort, asynchronous re-recording of local facts.

Local commits never wait for the mirror. The service submits a job after
each commit; jobs run on the dispatcher's worker thread (or whenever
``process_due`` is called). A failed job is retried with exponential
backoff, ``backoff_seconds * 2 ** (attempts - 1)``, and parked after
``max_attempts``. Parked jobs stay parked until ``retry_failed``.

A job whose local ID already has a mapping is never submitted again, so
replaying work (``retry_failed``, a backfill after restart) is safe.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from agtrace.errors import AlreadyRegisteredError, MirrorUnavailable
from agtrace.models.mirror import (
    MirrorKind,
    MirrorMapping,
    MirrorResult,
    order_transition_id,
)
from agtrace.models.order import Order, OrderStatus
from agtrace.models.trace import TraceEvent
from agtrace.mirror.port import MirrorPort
from agtrace.persistence.stores import MirrorMappingStore

logger = logging.getLogger(__name__)


@dataclass
class MirrorJob:
    """One pending mirror call."""
    local_id: str
    kind: MirrorKind
    event: Optional[TraceEvent] = None
    order: Optional[Order] = None
    status: Optional[OrderStatus] = None
    attempts: int = 0
    next_attempt_utc: Optional[datetime] = None
    last_error: Optional[str] = None


class MirrorDispatcher:
    """Queue of mirror jobs with retry, backoff and a parked list.

    Usage:
        dispatcher = MirrorDispatcher(Web3Mirror(...), FileMirrorMappingStore(path))
        dispatcher.start()
        dispatcher.submit_event(event)
        ...
        dispatcher.stop()
    """

    def __init__(
        self,
        mirror: MirrorPort,
        mappings: MirrorMappingStore,
        max_attempts: int = 5,
        backoff_seconds: float = 2.0,
        poll_interval: float = 0.5,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._mirror = mirror
        self._mappings = mappings
        self._max_attempts = max_attempts
        self._backoff_seconds = backoff_seconds
        self._poll_interval = poll_interval
        self._queue: dict[str, MirrorJob] = {}
        self._failed: dict[str, MirrorJob] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit_event(self, event: TraceEvent, now: Optional[datetime] = None) -> bool:
        """Queue a trace event. Returns False if it is already mirrored or queued."""
        return self._enqueue(
            MirrorJob(local_id=event.event_id, kind=MirrorKind.EVENT, event=event), now,
        )

    def submit_order_transition(
        self,
        order: Order,
        status: Union[OrderStatus, str],
        now: Optional[datetime] = None,
    ) -> bool:
        resolved = OrderStatus(status)
        return self._enqueue(
            MirrorJob(
                local_id=order_transition_id(order.order_id, resolved.value),
                kind=MirrorKind.ORDER_TRANSITION,
                order=order,
                status=resolved,
            ),
            now,
        )

    def _enqueue(self, job: MirrorJob, now: Optional[datetime]) -> bool:
        if self._mappings.get(job.local_id) is not None:
            return False
        job.next_attempt_utc = now or datetime.now(timezone.utc)
        with self._lock:
            if job.local_id in self._queue or job.local_id in self._failed:
                return False
            self._queue[job.local_id] = job
        logger.debug("Queued mirror job %s", job.local_id)
        return True

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def process_due(self, now: Optional[datetime] = None) -> int:
        """Run every job whose next attempt is due. Returns the number mirrored."""
        if now is None:
            now = datetime.now(timezone.utc)
        with self._lock:
            due = [
                job for job in self._queue.values()
                if job.next_attempt_utc is None or job.next_attempt_utc <= now
            ]

        mirrored = 0
        for job in due:
            if self._run(job, now):
                mirrored += 1
        return mirrored

    def _call(self, job: MirrorJob) -> MirrorResult:
        if job.kind == MirrorKind.EVENT:
            assert job.event is not None
            return self._mirror.mirror_event(job.event)
        assert job.order is not None and job.status is not None
        return self._mirror.mirror_order_transition(job.order, job.status)

    def _run(self, job: MirrorJob, now: datetime) -> bool:
        if self._mappings.get(job.local_id) is not None:
            with self._lock:
                self._queue.pop(job.local_id, None)
            return False

        try:
            result = self._call(job)
        except MirrorUnavailable as exc:
            self._record_failure(job, str(exc), now)
            return False
        except Exception as exc:
            logger.exception("Mirror adapter failed on %s", job.local_id)
            self._record_failure(job, f"{type(exc).__name__}: {exc}", now)
            return False

        mapping = MirrorMapping(
            local_id=job.local_id,
            kind=job.kind,
            external_ref=result.external_ref,
            tx_hash=result.tx_hash,
            external_url=result.external_url,
            recorded_utc=now,
        )
        try:
            self._mappings.add(mapping)
        except AlreadyRegisteredError:
            logger.debug("Mirror mapping for %s recorded concurrently", job.local_id)
        with self._lock:
            self._queue.pop(job.local_id, None)
        logger.info("Mirrored %s → %s", job.local_id, result.external_url)
        return True

    def _record_failure(self, job: MirrorJob, error: str, now: datetime) -> None:
        with self._lock:
            job.attempts += 1
            job.last_error = error
            if job.attempts >= self._max_attempts:
                self._queue.pop(job.local_id, None)
                self._failed[job.local_id] = job
                parked = True
            else:
                delay = self._backoff_seconds * (2 ** (job.attempts - 1))
                job.next_attempt_utc = now + timedelta(seconds=delay)
                parked = False
        if parked:
            logger.error(
                "Mirror job %s parked after %d attempts: %s", job.local_id, job.attempts, error,
            )
        else:
            logger.warning(
                "Mirror job %s failed (attempt %d/%d), retrying at %s: %s",
                job.local_id, job.attempts, self._max_attempts,
                job.next_attempt_utc.isoformat(), error,
            )

    def retry_failed(self, now: Optional[datetime] = None) -> int:
        """Move every parked job back to the queue with a fresh attempt budget."""
        if now is None:
            now = datetime.now(timezone.utc)
        with self._lock:
            jobs = list(self._failed.values())
            self._failed.clear()
            for job in jobs:
                job.attempts = 0
                job.next_attempt_utc = now
                self._queue[job.local_id] = job
        if jobs:
            logger.info("Re-queued %d parked mirror job(s)", len(jobs))
        return len(jobs)

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def pending_jobs(self) -> list[MirrorJob]:
        with self._lock:
            return list(self._queue.values())

    def failed_jobs(self) -> list[MirrorJob]:
        with self._lock:
            return list(self._failed.values())

    # ------------------------------------------------------------------
    # Worker thread
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop, name="agtrace-mirror", daemon=True,
        )
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _loop(self) -> None:
        while not self._stop.wait(self._poll_interval):
            try:
                self.process_due()
            except Exception:
                logger.exception("Mirror worker iteration failed")
