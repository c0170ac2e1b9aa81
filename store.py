import json
import logging
import os
import threading
from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID

from models import Report, Story, StoryPhoto

logger = logging.getLogger(__name__)

LOST_CASE_ID_CONSTRAINT = "reports_active_lost_case_id_key"

# --- Persistence (simple JSON file) ---
STATE_FILE = os.environ.get("STATE_FILE", os.path.join("data", "state.json"))

# --- Tables (in-memory, persisted to STATE_FILE) ---
reports: List[Report] = []
stories: List[Story] = []
story_photos: List[StoryPhoto] = []
logs: List[str] = []

_write_lock = threading.Lock()


class UniqueViolation(Exception):
    """A write was rejected by a uniqueness constraint."""

    def __init__(self, constraint: str, column: str, value=None):
        self.constraint = constraint
        self.column = column
        self.value = value
        super().__init__(f"duplicate value for {column} violates unique constraint {constraint!r}")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_expired(report: Report, now: Optional[datetime] = None) -> bool:
    expires_at = _parse_iso(report.expires_at)
    if expires_at is None:
        return False
    return expires_at <= (now or utcnow())


def is_active(report: Report, now: Optional[datetime] = None) -> bool:
    """Open and not past its expiry: still shown on the map and holding its case ID."""
    return report.status == "Reported" and not report.resolved_at and not is_expired(report, now)


# --- Reports ---
def insert_report(report: Report) -> Report:
    """Append a report, enforcing one active holder per lost case ID."""
    with _write_lock:
        if any(r.id == report.id for r in reports):
            raise UniqueViolation("reports_pkey", "id", str(report.id))
        if report.lost_case_id:
            now = utcnow()
            clash = next(
                (r for r in reports if r.lost_case_id == report.lost_case_id and is_active(r, now)),
                None,
            )
            if clash is not None:
                raise UniqueViolation(LOST_CASE_ID_CONSTRAINT, "lost_case_id", report.lost_case_id)
        reports.append(report)
    return report


def get_report(report_id) -> Optional[Report]:
    try:
        wanted = report_id if isinstance(report_id, UUID) else UUID(str(report_id))
    except ValueError:
        return None
    return next((r for r in reports if r.id == wanted), None)


def find_by_case_id(case_id: str) -> Optional[Report]:
    """Exact match on an already-normalized case ID; prefers the active holder."""
    matches = [r for r in reports if r.lost_case_id and r.lost_case_id.upper() == case_id]
    if not matches:
        return None
    now = utcnow()
    active = [r for r in matches if is_active(r, now)]
    if active:
        return active[0]
    return max(matches, key=lambda r: r.created_at)


def update_report(report_id, **changes) -> Optional[Report]:
    with _write_lock:
        report = get_report(report_id)
        if report is None:
            return None
        for key, value in changes.items():
            setattr(report, key, value)
    return report


def delete_report(report_id) -> bool:
    with _write_lock:
        report = get_report(report_id)
        if report is None:
            return False
        reports.remove(report)
    return True


def active_reports(now: Optional[datetime] = None) -> List[Report]:
    now = now or utcnow()
    return [r for r in reports if is_active(r, now)]


# --- Stories ---
def insert_story(story: Story) -> Story:
    with _write_lock:
        if any(s.slug == story.slug for s in stories):
            raise UniqueViolation("stories_slug_key", "slug", story.slug)
        stories.append(story)
    return story


def get_story(story_id) -> Optional[Story]:
    try:
        wanted = story_id if isinstance(story_id, UUID) else UUID(str(story_id))
    except ValueError:
        return None
    return next((s for s in stories if s.id == wanted), None)


def get_story_by_slug(slug: str, status: Optional[str] = None) -> Optional[Story]:
    return next((s for s in stories if s.slug == slug and (status is None or s.status == status)), None)


def photos_for(story_id: UUID) -> List[StoryPhoto]:
    return sorted((p for p in story_photos if p.story_id == story_id), key=lambda p: p.sort_order)


def add_story_photos(photos: List[StoryPhoto]) -> None:
    with _write_lock:
        story_photos.extend(photos)


# --- Save / Load ---
def save_state():
    os.makedirs(os.path.dirname(STATE_FILE) or ".", exist_ok=True)
    data = {
        "reports": [r.model_dump(mode="json") for r in reports],
        "stories": [s.model_dump(mode="json") for s in stories],
        "story_photos": [p.model_dump(mode="json") for p in story_photos],
        "logs": logs[-200:],  # keep last 200 entries
    }
    with open(STATE_FILE, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)


def load_state():
    if not os.path.exists(STATE_FILE):
        return
    with open(STATE_FILE, "r", encoding="utf-8") as f:
        try:
            data = json.load(f)
        except ValueError:
            # Empty or invalid state file: start fresh
            logger.warning("Ignoring unreadable state file %s", STATE_FILE)
            return
    # keep the same list objects; other modules hold references to them
    reports[:] = [Report.model_validate(r) for r in data.get("reports", [])]
    stories[:] = [Story.model_validate(s) for s in data.get("stories", [])]
    story_photos[:] = [StoryPhoto.model_validate(p) for p in data.get("story_photos", [])]
    logs[:] = data.get("logs", [])
