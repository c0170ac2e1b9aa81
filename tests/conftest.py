import os
import sys
import tempfile
from pathlib import Path

# ensure project root is importable for tests
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# main reads these at import time
_STATE_DIR = tempfile.mkdtemp(prefix="pawscue-test-")
os.environ["ADMIN_COOKIE_SECRET"] = "test-secret"
os.environ["ADMIN_PASSWORD"] = "letmein"
os.environ["APP_ENV"] = "test"
os.environ["STATE_FILE"] = os.path.join(_STATE_DIR, "state.json")
os.environ["UPLOAD_DIR"] = os.path.join(_STATE_DIR, "uploads")
os.environ["MAPBOX_ACCESS_TOKEN"] = ""

import pytest


@pytest.fixture(autouse=True)
def isolate_state(tmp_path, monkeypatch):
    """Isolate global in-memory tables and the state file for each test."""
    import main
    import store

    monkeypatch.setattr(store, "STATE_FILE", str(tmp_path / "state.json"))
    monkeypatch.setattr(main, "UPLOAD_DIR", str(tmp_path / "uploads"))

    # snapshot
    orig_reports = list(store.reports)
    orig_stories = list(store.stories)
    orig_photos = list(store.story_photos)
    orig_logs = list(store.logs)
    orig_login_attempts = dict(main.LOGIN_ATTEMPTS)

    store.reports.clear()
    store.stories.clear()
    store.story_photos.clear()
    store.logs.clear()
    main.LOGIN_ATTEMPTS.clear()

    yield

    store.reports[:] = orig_reports
    store.stories[:] = orig_stories
    store.story_photos[:] = orig_photos
    store.logs[:] = orig_logs
    main.LOGIN_ATTEMPTS.clear()
    main.LOGIN_ATTEMPTS.update(orig_login_attempts)


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    import main

    return TestClient(main.app)


@pytest.fixture
def admin_client(client):
    r = client.post("/admin/login", data={"password": "letmein"}, follow_redirects=False)
    assert r.status_code == 303
    return client
