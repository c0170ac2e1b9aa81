import pytest
import requests

import geocode
from geocode import GeocodingConfigError, extract_address, extract_time_zone, reverse_geocode


class FakeResponse:
    def __init__(self, status_code=200, payload=None, bad_json=False):
        self.status_code = status_code
        self.ok = 200 <= status_code < 300
        self._payload = payload
        self._bad_json = bad_json

    def json(self):
        if self._bad_json:
            raise ValueError("no json")
        return self._payload


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def get(self, url, params=None, timeout=None):
        self.calls.append((url, params, timeout))
        if self.error:
            raise self.error
        return self.response


def test_missing_token_raises():
    with pytest.raises(GeocodingConfigError):
        reverse_geocode(1.3, 103.8, "")


def test_successful_lookup():
    payload = {"features": [{"place_name": " 1 Raffles Place, Singapore ", "properties": {"timezone": "Asia/Singapore"}}]}
    session = FakeSession(FakeResponse(200, payload))
    result = reverse_geocode(1.2841, 103.8515, "tok", session=session)

    assert result.ok is True
    assert result.status == 200
    assert result.address_text == "1 Raffles Place, Singapore"
    assert result.time_zone == "Asia/Singapore"
    assert "tok" not in result.request_url

    url, params, timeout = session.calls[0]
    assert url.endswith("/103.8515,1.2841.json")
    assert params == {"access_token": "tok", "limit": 1}
    assert timeout == geocode.REQUEST_TIMEOUT


def test_http_error_is_not_ok():
    result = reverse_geocode(1.3, 103.8, "tok", session=FakeSession(FakeResponse(401, {})))
    assert result.ok is False
    assert result.status == 401
    assert result.address_text is None


def test_network_error_is_not_ok():
    session = FakeSession(error=requests.exceptions.ConnectionError("offline"))
    result = reverse_geocode(1.3, 103.8, "tok", session=session)
    assert result.ok is False
    assert result.status is None


def test_bad_json_is_not_ok():
    result = reverse_geocode(1.3, 103.8, "tok", session=FakeSession(FakeResponse(200, bad_json=True)))
    assert result.ok is False
    assert result.status == 200


def test_no_features():
    result = reverse_geocode(1.3, 103.8, "tok", session=FakeSession(FakeResponse(200, {"features": []})))
    assert result.ok is True
    assert result.address_text is None
    assert result.time_zone is None


def test_address_fallbacks():
    assert extract_address({"place_name": "  ", "properties": {"full_address": "2 Main St"}}) == "2 Main St"
    assert extract_address({"properties": {"place_formatted": "Bedok, Singapore"}}) == "Bedok, Singapore"
    assert extract_address({}) is None
    assert extract_address(None) is None


def test_time_zone_fallbacks():
    assert extract_time_zone({"properties": {"time_zone": "Asia/Jakarta"}}) == "Asia/Jakarta"
    assert extract_time_zone({"properties": {"timezone": "", "time_zone": "UTC"}}) == "UTC"
    assert extract_time_zone({"properties": {}}) is None
