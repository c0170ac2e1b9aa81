import logging
from dataclasses import dataclass
from typing import Optional

import requests

logger = logging.getLogger(__name__)

MAPBOX_REVERSE_URL = "https://api.mapbox.com/geocoding/v5/mapbox.places/{lng},{lat}.json"
REQUEST_TIMEOUT = 10


class GeocodingConfigError(RuntimeError):
    pass


@dataclass
class ReverseGeocodeResult:
    address_text: Optional[str]
    time_zone: Optional[str]
    request_url: str
    status: Optional[int]
    ok: bool


def _first_text(*values) -> Optional[str]:
    for value in values:
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def extract_address(feature: Optional[dict]) -> Optional[str]:
    feature = feature or {}
    props = feature.get("properties") or {}
    return _first_text(feature.get("place_name"), props.get("full_address"), props.get("place_formatted"))


def extract_time_zone(feature: Optional[dict]) -> Optional[str]:
    props = (feature or {}).get("properties") or {}
    return _first_text(props.get("timezone"), props.get("time_zone"))


def reverse_geocode(latitude: float, longitude: float, token: Optional[str], session=None) -> ReverseGeocodeResult:
    """Look up a human-readable address for a coordinate pair.

    Best effort: network errors and non-2xx responses come back as
    ``ok=False`` instead of raising. Only a missing token raises.
    """
    if not token:
        raise GeocodingConfigError("Missing MAPBOX_ACCESS_TOKEN.")

    base_url = MAPBOX_REVERSE_URL.format(lng=longitude, lat=latitude)
    # token is left out of the logged/returned URL
    request_url = f"{base_url}?limit=1"
    http = session or requests
    try:
        response = http.get(base_url, params={"access_token": token, "limit": 1}, timeout=REQUEST_TIMEOUT)
    except requests.exceptions.RequestException as e:
        logger.warning("Reverse geocode request failed: %s", e)
        return ReverseGeocodeResult(None, None, request_url, None, False)

    if not response.ok:
        logger.warning("Reverse geocode returned HTTP %s", response.status_code)
        return ReverseGeocodeResult(None, None, request_url, response.status_code, False)

    try:
        data = response.json()
    except ValueError:
        logger.warning("Reverse geocode returned a non-JSON body")
        return ReverseGeocodeResult(None, None, request_url, response.status_code, False)

    features = data.get("features") if isinstance(data, dict) else None
    feature = features[0] if features else None
    return ReverseGeocodeResult(
        address_text=extract_address(feature),
        time_zone=extract_time_zone(feature),
        request_url=request_url,
        status=response.status_code,
        ok=True,
    )
