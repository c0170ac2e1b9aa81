from typing import Optional
from uuid import UUID

from pydantic import BaseModel

REPORT_TYPES = ("need_help", "lost")
ANIMAL_TYPES = ("cat", "dog", "bird", "other")
STORY_CATEGORIES = ("rescue", "lost_found", "shelter_foster", "community")
DEFAULT_STORY_CATEGORY = "rescue"


# --- Report Schemas ---
class Report(BaseModel):
    id: UUID
    report_type: str = "need_help"  # 'need_help' or 'lost'
    species: str
    condition: str
    description: Optional[str] = None
    location_description: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    # Filled in by reverse geocoding when coordinates are available
    address: Optional[str] = None
    address_source: Optional[str] = None
    geocoded_at: Optional[str] = None
    time_zone: Optional[str] = None
    reporter_contact: Optional[str] = None
    status: str = "Reported"  # 'Reported', 'Resolved' or 'Cancelled'
    # Lost reports only
    lost_case_id: Optional[str] = None
    last_seen_at: Optional[str] = None
    expires_at: Optional[str] = None
    resolved_at: Optional[str] = None
    photo_path: Optional[str] = None
    created_at: str

    @property
    def is_lost(self) -> bool:
        return self.report_type == "lost"


# --- Story Schemas ---
class StoryPhoto(BaseModel):
    story_id: UUID
    path: str
    photo_type: str  # 'before' or 'after'
    sort_order: int = 0


class Story(BaseModel):
    id: UUID
    title: str
    slug: str
    animal_type: str
    city: str
    month_year: str
    excerpt: str
    content: str
    author_name: Optional[str] = None
    author_contact: Optional[str] = None
    category: Optional[str] = None
    status: str = "pending"  # 'pending', 'approved' or 'rejected'
    published_at: Optional[str] = None
    created_at: str
