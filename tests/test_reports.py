import os
from datetime import timedelta
from urllib.parse import parse_qs, urlparse
from uuid import uuid4

import geocode
import lost_case_id
import main
import store
from models import Report

LOST_FORM = {
    "report_type": "lost",
    "species": "Cat",
    "description": "Orange tabby with a blue collar",
    "location_description": "Bedok North Ave 3",
    "contact": "owner@example.com",
    "last_seen_at": "2026-10-16T18:30",
}

NEED_HELP_FORM = {
    "report_type": "need_help",
    "species": "Dog",
    "condition": "Injured",
    "location_description": "Under the bridge",
    "latitude": "1.3236",
    "longitude": "103.9273",
}


def query_of(response):
    return {k: v[0] for k, v in parse_qs(urlparse(response.headers["location"]).query).items()}


def submit(client, form, **kwargs):
    return client.post("/report", data=form, follow_redirects=False, **kwargs)


def test_report_page_loads(client):
    r = client.get("/report")
    assert r.status_code == 200
    assert 'name="report_type"' in r.text


def test_need_help_report_is_saved(client):
    r = submit(client, NEED_HELP_FORM)
    assert r.status_code == 303
    q = query_of(r)
    assert q["status"] == "submitted"
    assert "case_id" not in q

    report = store.get_report(q["report_id"])
    assert report.report_type == "need_help"
    assert report.condition == "Injured"
    assert report.latitude == 1.3236
    assert report.lost_case_id is None
    assert report.expires_at is None
    assert report.status == "Reported"


def test_lost_report_gets_case_id(client):
    r = submit(client, LOST_FORM)
    assert r.status_code == 303
    q = query_of(r)
    assert lost_case_id.is_valid_format(q["case_id"])

    report = store.get_report(q["report_id"])
    assert report.lost_case_id == q["case_id"]
    assert report.condition == "Lost"
    assert report.last_seen_at.startswith("2026-10-16T18:30")
    created = store._parse_iso(report.created_at)
    assert store._parse_iso(report.expires_at) - created == timedelta(days=14)

    page = client.get(r.headers["location"])
    assert q["case_id"] in page.text


def test_lost_report_validation(client):
    r = submit(client, {"report_type": "lost", "species": "", "location_description": ""})
    assert r.status_code == 400
    assert "Please choose a species." in r.text
    assert "Please share a brief location note." in r.text
    assert "Please add a short identifying description." in r.text
    assert "Please add when the animal was last seen." in r.text
    assert "Please share a way to reach you." in r.text
    assert store.reports == []


def test_need_help_requires_condition(client):
    form = dict(NEED_HELP_FORM, condition="")
    r = submit(client, form)
    assert r.status_code == 400
    assert "Please choose the animal" in r.text
    assert store.reports == []


def test_bad_coordinates_and_dates(client):
    r = submit(client, dict(NEED_HELP_FORM, latitude="north", longitude="inf"))
    assert r.status_code == 400
    assert "Latitude must be a valid number." in r.text
    assert "Longitude must be a valid number." in r.text

    r = submit(client, dict(LOST_FORM, last_seen_at="last tuesday"))
    assert r.status_code == 400
    assert "Please use a valid date and time." in r.text


def test_photo_is_stored(client):
    r = submit(client, NEED_HELP_FORM, files={"photo": ("My Cat.JPG", b"\xff\xd8\xff\xe0fake", "image/jpeg")})
    assert r.status_code == 303
    report = store.get_report(query_of(r)["report_id"])
    assert report.photo_path == f"reports/{report.id}/photo.jpg"
    assert os.path.exists(os.path.join(main.UPLOAD_DIR, "reports", str(report.id), "photo.jpg"))


def test_photo_type_and_size_checked(client, monkeypatch):
    r = submit(client, NEED_HELP_FORM, files={"photo": ("cat.gif", b"GIF89a", "image/gif")})
    assert r.status_code == 400
    assert "Only JPG, PNG, or WebP images are allowed" in r.text

    monkeypatch.setattr(main, "MAX_FILE_BYTES", 4)
    r = submit(client, NEED_HELP_FORM, files={"photo": ("cat.png", b"\x89PNG\r\n", "image/png")})
    assert r.status_code == 400
    assert "must be 5MB or smaller" in r.text
    assert store.reports == []


def test_need_help_report_is_geocoded(client, monkeypatch):
    calls = []

    def fake_reverse_geocode(latitude, longitude, token, session=None):
        calls.append((latitude, longitude, token))
        return geocode.ReverseGeocodeResult("12 Bedok North Ave, Bedok, Singapore", "Asia/Singapore", "u", 200, True)

    monkeypatch.setattr(main, "MAPBOX_ACCESS_TOKEN", "tok")
    monkeypatch.setattr(geocode, "reverse_geocode", fake_reverse_geocode)

    r = submit(client, NEED_HELP_FORM)
    report = store.get_report(query_of(r)["report_id"])
    assert calls == [(1.3236, 103.9273, "tok")]
    assert report.address == "12 Bedok North Ave, Bedok, Singapore"
    assert report.address_source == "mapbox"
    assert report.geocoded_at
    assert report.time_zone == "Asia/Singapore"
    assert main.reported_label(report).startswith("Reported (Bedok, UTC+8): ")

    # lost reports are not geocoded
    submit(client, dict(LOST_FORM, latitude="1.3", longitude="103.9"))
    assert len(calls) == 1


def test_failed_geocode_still_saves(client, monkeypatch):
    monkeypatch.setattr(main, "MAPBOX_ACCESS_TOKEN", "tok")
    monkeypatch.setattr(
        geocode, "reverse_geocode",
        lambda *a, **kw: geocode.ReverseGeocodeResult(None, None, "u", 500, False),
    )
    r = submit(client, NEED_HELP_FORM)
    assert r.status_code == 303
    report = store.get_report(query_of(r)["report_id"])
    assert report.address is None
    assert report.address_source is None


def test_case_id_collision_is_retried(client, monkeypatch):
    submit(client, LOST_FORM)
    taken = store.reports[0].lost_case_id
    codes = iter([taken, taken, "LOST-NEWCAS"])
    monkeypatch.setattr(lost_case_id, "generate", lambda: next(codes))

    r = submit(client, LOST_FORM)
    assert r.status_code == 303
    assert query_of(r)["case_id"] == "LOST-NEWCAS"


def test_case_id_exhaustion_is_a_save_failure(client, monkeypatch):
    submit(client, LOST_FORM)
    taken = store.reports[0].lost_case_id
    monkeypatch.setattr(lost_case_id, "generate", lambda: taken)

    r = submit(client, LOST_FORM, files={"photo": ("lost.png", b"\x89PNG\r\nlost", "image/png")})
    assert r.status_code == 500
    assert "couldn" in r.text and "save your report" in r.text
    assert len(store.reports) == 1
    # the photo written for the unsaved report is removed again
    reports_dir = os.path.join(main.UPLOAD_DIR, "reports")
    assert not os.path.isdir(reports_dir) or os.listdir(reports_dir) == []


def test_state_is_persisted(client):
    submit(client, LOST_FORM)
    saved = list(store.reports)
    store.reports.clear()
    store.load_state()
    assert [r.id for r in store.reports] == [r.id for r in saved]
    assert store.logs and "Lost report" in store.logs[-1]


# --- lost case lookup ---

def test_lookup_is_case_insensitive(client):
    q = query_of(submit(client, LOST_FORM))
    code = q["case_id"]

    r = client.get("/lost-case", params={"code": f"  {code.lower()} "})
    assert r.status_code == 200
    assert code in r.text
    assert "Orange tabby" in r.text


def test_lookup_errors(client):
    r = client.get("/lost-case", params={"code": "LOST-12"})
    assert "look like a lost case ID" in r.text

    r = client.get("/lost-case", params={"code": "LOST-ZZZZZZ"})
    assert "find a lost case with that ID" in r.text


def test_resolve_and_cancel_by_case_id(client):
    code = query_of(submit(client, LOST_FORM))["case_id"]

    r = client.post("/lost-case/resolve", data={"lost_case_id": code.lower(), "contact": "wrong"}, follow_redirects=False)
    assert query_of(r) == {"code": code, "status": "mismatch"}

    r = client.post("/lost-case/resolve", data={"lost_case_id": code, "contact": " owner@example.com "}, follow_redirects=False)
    assert query_of(r)["status"] == "resolved"
    assert store.find_by_case_id(code).status == "Resolved"

    r = client.post("/lost-case/cancel", data={"lost_case_id": code, "contact": "owner@example.com"}, follow_redirects=False)
    assert query_of(r)["status"] == "already_resolved"

    r = client.post("/lost-case/cancel", data={"lost_case_id": "nope", "contact": "x"}, follow_redirects=False)
    assert query_of(r)["status"] == "invalid_code"


def test_cancel_closes_case(client):
    code = query_of(submit(client, LOST_FORM))["case_id"]
    r = client.post("/lost-case/cancel", data={"lost_case_id": code, "contact": "owner@example.com"}, follow_redirects=False)
    assert query_of(r)["status"] == "cancelled"
    assert store.find_by_case_id(code).status == "Cancelled"
    assert client.get("/api/reports").json()["reports"] == []


def test_resolve_by_report_id(client):
    q = query_of(submit(client, LOST_FORM))

    r = client.post("/report/resolve", data={"report_id": "", "contact": ""}, follow_redirects=False)
    assert query_of(r)["resolve"] == "missing"

    r = client.post("/report/resolve", data={"report_id": str(uuid4()), "contact": "x"}, follow_redirects=False)
    assert query_of(r)["resolve"] == "not_found"

    r = client.post("/report/resolve", data={"report_id": q["report_id"], "contact": "owner@example.com"}, follow_redirects=False)
    assert query_of(r)["resolve"] == "resolved"

    r = client.post("/report/resolve", data={"report_id": q["report_id"], "contact": "owner@example.com"}, follow_redirects=False)
    assert query_of(r)["resolve"] == "already_resolved"

    other = query_of(submit(client, NEED_HELP_FORM))
    r = client.post("/report/resolve", data={"report_id": other["report_id"], "contact": "x"}, follow_redirects=False)
    assert query_of(r)["resolve"] == "not_lost"


# --- JSON API ---

def test_api_create_report(client):
    r = client.post("/api/reports", json={"species": "Bird", "condition": "Weak", "locationDescription": "Park"})
    assert r.status_code == 200
    assert store.get_report(r.json()["id"]).species == "Bird"


def test_api_create_report_validation(client):
    r = client.post("/api/reports", json={"species": "Bird", "condition": " ", "locationDescription": "Park"})
    assert r.status_code == 400
    assert r.json() == {"error": "Missing required fields."}

    r = client.post("/api/reports", json={"species": "Bird", "condition": "Weak", "locationDescription": "Park", "latitude": "x"})
    assert r.status_code == 400
    assert "valid numbers" in r.json()["error"]


def test_api_lists_active_reports_with_coordinates(client):
    now = store.utcnow()
    base = dict(species="Cat", condition="Lost", location_description="Somewhere", created_at=now.isoformat())
    visible = store.insert_report(Report(id=uuid4(), latitude=1.3, longitude=103.8, **base))
    store.insert_report(Report(id=uuid4(), **base))  # no coordinates
    store.insert_report(Report(
        id=uuid4(), report_type="lost", latitude=1.3, longitude=103.8, lost_case_id="LOST-EXPRED",
        expires_at=(now - timedelta(hours=1)).isoformat(), **base,
    ))

    data = client.get("/api/reports").json()["reports"]
    assert [d["id"] for d in data] == [str(visible.id)]
    assert "reporter_contact" not in data[0]


def test_api_accepts_numeric_coordinates(client):
    r = client.post("/api/reports", json={
        "species": "Cat", "condition": "Injured", "locationDescription": "Clementi",
        "latitude": 1.315, "longitude": "103.765",
    })
    assert r.status_code == 200
    report = store.get_report(r.json()["id"])
    assert (report.latitude, report.longitude) == (1.315, 103.765)
