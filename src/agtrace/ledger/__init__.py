"""Traceability ledger — append-only batch history, stage projection, verification."""

from agtrace.ledger.event_ledger import EventLedger
from agtrace.ledger.projector import current_stage, project_summary, stage_transition_times
from agtrace.ledger.verifier import EventVerifier

__all__ = [
    "EventLedger",
    "EventVerifier",
    "current_stage",
    "project_summary",
    "stage_transition_times",
]
