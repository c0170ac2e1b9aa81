"""Lost-case lifecycle: case ID assignment with collision retry, and lookups.

The ID helpers in :mod:`lost_case_id` stay pure; everything that touches the
store goes through callables passed in here, so the retry policy can be
exercised against any insert function that raises :class:`store.UniqueViolation`.
"""
import logging
from datetime import datetime
from typing import Callable, Optional, TypeVar

import lost_case_id
from models import Report
from store import UniqueViolation, is_expired, utcnow

logger = logging.getLogger(__name__)

MAX_CASE_ID_ATTEMPTS = 5
CASE_ID_COLUMN = "lost_case_id"

# Lookup error categories
INVALID_CODE = "invalid_code"
NOT_FOUND = "not_found"
MISMATCH = "mismatch"
ALREADY_RESOLVED = "already_resolved"
NOT_LOST = "not_lost"

T = TypeVar("T")


class CaseIdExhausted(Exception):
    """Every candidate case ID collided with an active one."""

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"could not allocate a unique lost case ID after {attempts} attempts")


class LostCaseError(Exception):
    """A lookup or state change on a lost case was refused.

    ``code`` is one of ``invalid_code``, ``not_found``, ``mismatch``,
    ``already_resolved`` or ``not_lost`` so callers can show precise guidance.
    """

    def __init__(self, code: str, message: str = ""):
        self.code = code
        super().__init__(message or code)


def insert_with_case_id(
    insert: Callable[[str], T],
    max_attempts: int = MAX_CASE_ID_ATTEMPTS,
    generate: Optional[Callable[[], str]] = None,
) -> T:
    """Call ``insert(case_id)`` with fresh case IDs until one is accepted.

    Only a :class:`UniqueViolation` on the case ID column triggers another
    attempt; any other error propagates untouched. ``generate`` defaults to
    :func:`lost_case_id.generate`.
    """
    generate = generate or lost_case_id.generate
    for attempt in range(1, max_attempts + 1):
        candidate = generate()
        try:
            return insert(candidate)
        except UniqueViolation as exc:
            if exc.column != CASE_ID_COLUMN:
                raise
            logger.info("Lost case ID %s already taken (attempt %d/%d)", candidate, attempt, max_attempts)
    raise CaseIdExhausted(max_attempts)


def find_lost_case(raw_code: str, lookup: Callable[[str], Optional[Report]]) -> Report:
    code = lost_case_id.normalize(raw_code or "")
    if not lost_case_id.is_valid_format(code):
        raise LostCaseError(INVALID_CODE, "That doesn't look like a lost case ID.")
    report = lookup(code)
    if report is None:
        raise LostCaseError(NOT_FOUND, "We couldn't find that lost case.")
    return report


def is_closed(report: Report, now: Optional[datetime] = None) -> bool:
    return bool(report.resolved_at) or report.status != "Reported" or is_expired(report, now)


def _contact_matches(report: Report, contact: str) -> bool:
    stored = (report.reporter_contact or "").strip()
    return bool(stored) and stored == (contact or "").strip()


def _close_case(raw_code, contact, lookup, update, status) -> Report:
    report = find_lost_case(raw_code, lookup)
    if is_closed(report):
        raise LostCaseError(ALREADY_RESOLVED, "That case is already closed.")
    if not _contact_matches(report, contact):
        raise LostCaseError(MISMATCH, "The contact info doesn't match the report on file.")
    return update(report.id, status=status, resolved_at=utcnow().isoformat())


def resolve_lost_case(raw_code: str, contact: str, lookup, update) -> Report:
    """Mark the case found. ``update(report_id, **changes)`` persists the change."""
    return _close_case(raw_code, contact, lookup, update, "Resolved")


def cancel_lost_case(raw_code: str, contact: str, lookup, update) -> Report:
    """Withdraw the case, e.g. the reporter found the animal themselves."""
    return _close_case(raw_code, contact, lookup, update, "Cancelled")


def resolve_report_by_id(report: Optional[Report], contact: str, update) -> bool:
    """Mark a lost report found by its report ID.

    Returns False when it was already marked found, True when this call
    marked it.
    """
    if report is None:
        raise LostCaseError(NOT_FOUND, "We couldn't find that report.")
    if not report.is_lost:
        raise LostCaseError(NOT_LOST, "Only lost animal reports can be marked as found.")
    if report.resolved_at:
        return False
    if not _contact_matches(report, contact):
        raise LostCaseError(MISMATCH, "The contact info doesn't match the report on file.")
    update(report.id, status="Resolved", resolved_at=utcnow().isoformat())
    return True
