"""Timestamp labels for reports, rendered in the time zone of where the animal was seen."""
import math
import re
from datetime import datetime, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

DEFAULT_TIME_ZONE = "UTC"
SINGAPORE_TIME_ZONE = "Asia/Singapore"
SINGAPORE_BOUNDS = {
    "min_lat": 1.15,
    "max_lat": 1.47,
    "min_lng": 103.6,
    "max_lng": 104.1,
}

Coordinate = Union[float, int, str, None]


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 string into an aware datetime, or None."""
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_valid_time_zone(name: Optional[str]) -> bool:
    if not name:
        return False
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        return False
    return True


def format_date_time(value: datetime, time_zone: Optional[str] = None) -> str:
    """``17 Oct 2026, 14:05`` in the given zone, or server-local time."""
    local = value.astimezone(ZoneInfo(time_zone)) if time_zone else value.astimezone()
    return local.strftime("%d %b %Y, %H:%M")


def get_utc_offset_minutes(value: datetime, time_zone: str) -> Optional[int]:
    try:
        offset = value.astimezone(ZoneInfo(time_zone)).utcoffset()
    except (ZoneInfoNotFoundError, ValueError, OSError):
        return None
    if offset is None:
        return None
    return round(offset.total_seconds() / 60)


def format_utc_offset_minutes(offset_minutes: Optional[float]) -> str:
    if offset_minutes is None or not math.isfinite(offset_minutes) or offset_minutes == 0:
        return "UTC"
    sign = "+" if offset_minutes > 0 else "-"
    hours, minutes = divmod(abs(int(offset_minutes)), 60)
    if minutes:
        return f"UTC{sign}{hours}:{minutes:02d}"
    return f"UTC{sign}{hours}"


def _pick_place_from_address(address: str) -> Optional[str]:
    parts = [part.strip() for part in address.split(",") if part.strip()]
    if not parts:
        return None
    # last part is normally the country
    candidates = parts[:-1] if len(parts) > 1 else parts
    for candidate in reversed(candidates):
        cleaned = re.sub(r"\s{2,}", " ", re.sub(r"[0-9]", "", candidate)).strip()
        if cleaned:
            return cleaned
    return parts[0]


def derive_place_label(address: Optional[str] = None, location_description: Optional[str] = None) -> Optional[str]:
    trimmed = (address or "").strip()
    if trimmed:
        return _pick_place_from_address(trimmed) or trimmed
    return (location_description or "").strip() or None


def format_report_timestamp(
    timestamp: Optional[str],
    time_zone: Optional[str] = None,
    utc_offset_minutes: Optional[int] = None,
    place_label: Optional[str] = None,
    label: Optional[str] = None,
) -> Optional[str]:
    """Build the "Reported (...): ..." line shown on report cards.

    Without a usable time zone the time is shown in server-local time.
    """
    parsed = parse_timestamp(timestamp)
    if parsed is None:
        return None

    prefix = (label or "").strip() or "Reported"
    requested = (time_zone or "").strip()
    if not is_valid_time_zone(requested):
        return f"{prefix} (Your local time): {format_date_time(parsed)}"

    line = format_date_time(parsed, requested)
    if utc_offset_minutes is not None and math.isfinite(utc_offset_minutes):
        offset = utc_offset_minutes
    else:
        offset = get_utc_offset_minutes(parsed, requested)
    offset_label = DEFAULT_TIME_ZONE if offset is None else format_utc_offset_minutes(offset)

    place = (place_label or "").strip()
    context = f"{place}, {offset_label}" if place else f"Local time, {offset_label}"
    return f"{prefix} ({context}): {line}"


def _parse_coordinate(value: Coordinate) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
        try:
            value = float(value)
        except ValueError:
            return None
    parsed = float(value)
    return parsed if math.isfinite(parsed) else None


def is_within_singapore(latitude: Optional[float], longitude: Optional[float]) -> bool:
    if latitude is None or longitude is None:
        return False
    b = SINGAPORE_BOUNDS
    return b["min_lat"] <= latitude <= b["max_lat"] and b["min_lng"] <= longitude <= b["max_lng"]


def _format_base(value: datetime) -> str:
    hour = value.hour % 12 or 12
    return f"{value:%m/%d/%Y}, {hour}:{value:%M} {'AM' if value.hour < 12 else 'PM'}"


def format_time(
    iso_timestamp: Optional[str],
    latitude: Coordinate = None,
    longitude: Coordinate = None,
    prefer_singapore: bool = False,
) -> Optional[str]:
    parsed = parse_timestamp(iso_timestamp)
    if parsed is None:
        return None

    lat = _parse_coordinate(latitude)
    lng = _parse_coordinate(longitude)
    if prefer_singapore or is_within_singapore(lat, lng):
        return f"{_format_base(parsed.astimezone(ZoneInfo(SINGAPORE_TIME_ZONE)))} (SGT)"

    local = parsed.astimezone()
    return f"{_format_base(local)} ({local.tzname() or 'UTC'})"
