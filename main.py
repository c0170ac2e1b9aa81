import os
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple, Union
from uuid import uuid4

from fastapi import FastAPI, Request, Form, UploadFile, File
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from passlib.context import CryptContext
from pydantic import BaseModel
from starlette.responses import RedirectResponse
from starlette.status import HTTP_303_SEE_OTHER

import geocode
import lost_case_id
import lost_cases
import report_time
import store
import story_utils
from admin_auth import AdminSessionAuthenticator, CookieInstruction, COOKIE_NAME
from models import (
    ANIMAL_TYPES,
    DEFAULT_STORY_CATEGORY,
    REPORT_TYPES,
    STORY_CATEGORIES,
    Report,
    Story,
    StoryPhoto,
)
from store import logs

logger = logging.getLogger(__name__)

# --- Configuration ---
ADMIN_PASSWORD = os.environ.get("ADMIN_PASSWORD", "")
MAPBOX_ACCESS_TOKEN = os.environ.get("MAPBOX_ACCESS_TOKEN", "")
LOGIN_WINDOW = int(os.environ.get("LOGIN_WINDOW", "300"))  # seconds
LOGIN_MAX_ATTEMPTS = int(os.environ.get("LOGIN_MAX_ATTEMPTS", "5"))

# --- File Upload Configuration ---
BASE_DIR = os.path.dirname(os.path.abspath(__file__))
STATIC_DIR = os.path.join(BASE_DIR, "static")
UPLOAD_DIR = os.environ.get("UPLOAD_DIR", os.path.join(STATIC_DIR, "uploads"))
UPLOAD_URL = "/static/uploads"
os.makedirs(UPLOAD_DIR, exist_ok=True)
MAX_FILE_BYTES = 5 * 1024 * 1024
ALLOWED_MIME_TYPES = {"image/jpeg", "image/png", "image/webp"}

LOST_REPORT_TTL = timedelta(days=14)
EXCERPT_MAX_LENGTH = 140

LOCALE_COOKIE = "locale"
LOCALES = ("en", "zh")
LOCALE_MAX_AGE = 60 * 60 * 24 * 365
NAV_LABELS = {
    "en": {"report": "Report", "map": "Map", "lookup": "Lost case lookup", "stories": "Stories", "admin": "Admin"},
    "zh": {"report": "报告", "map": "地图", "lookup": "走失案例查询", "stories": "故事", "admin": "管理"},
}

# --- App Setup ---
app = FastAPI()

# Fails at import time when ADMIN_COOKIE_SECRET is missing
authenticator = AdminSessionAuthenticator.from_env()

# Admin password is kept only as a hash
pwd_context = CryptContext(
    schemes=["pbkdf2_sha256", "bcrypt"],
    deprecated="auto",
)
ADMIN_PASSWORD_HASH = pwd_context.hash(ADMIN_PASSWORD) if ADMIN_PASSWORD else None

# Simple in-memory rate limiter for the admin login (per-IP)
LOGIN_ATTEMPTS: Dict[str, List[float]] = {}

app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")
templates = Jinja2Templates(directory=os.path.join(BASE_DIR, "templates"))
templates.env.globals["format_animal_type"] = story_utils.format_animal_type

store.load_state()


# --- Utility Functions ---
def is_admin(request: Request) -> bool:
    return authenticator.verify(request.cookies.get(COOKIE_NAME))


def admin_login_redirect() -> RedirectResponse:
    return RedirectResponse(url="/admin", status_code=HTTP_303_SEE_OTHER)


def redirect_with_cookie(url: str, cookie: CookieInstruction) -> RedirectResponse:
    response = RedirectResponse(url=url, status_code=HTTP_303_SEE_OTHER)
    cookie.apply(response)
    return response


def get_locale(request: Request) -> str:
    cookie_value = request.cookies.get(LOCALE_COOKIE)
    if cookie_value in LOCALES:
        return cookie_value
    header = request.headers.get("accept-language") or ""
    primary = header.split(",")[0].strip().lower()
    return "zh" if primary.startswith("zh") else "en"


def page_context(request: Request, **extra) -> dict:
    locale = get_locale(request)
    context = {"request": request, "locale": locale, "nav": NAV_LABELS[locale], "is_admin": is_admin(request)}
    context.update(extra)
    return context


def parse_optional_float(value: Optional[str]) -> Tuple[Optional[float], bool]:
    """Return (number, ok). Blank input is (None, True)."""
    text = (value or "").strip()
    if not text:
        return None, True
    try:
        number = float(text)
    except ValueError:
        return None, False
    if number != number or number in (float("inf"), float("-inf")):
        return None, False
    return number, True


def has_upload(upload: Optional[UploadFile]) -> bool:
    return upload is not None and bool(getattr(upload, "filename", None))


def read_photo(upload: Optional[UploadFile], label: str) -> Tuple[Optional[bytes], Optional[str]]:
    """Validate an uploaded image. Returns (content, error message)."""
    if not has_upload(upload):
        return None, None
    content = upload.file.read()
    if not content:
        return None, None
    if upload.content_type not in ALLOWED_MIME_TYPES:
        return None, f"Only JPG, PNG, or WebP images are allowed for the {label.lower()}."
    if len(content) > MAX_FILE_BYTES:
        return None, f"{label} must be 5MB or smaller."
    return content, None


def save_upload_bytes(content: bytes, path: str) -> str:
    """Write an upload below UPLOAD_DIR and return its storage path."""
    target = story_utils.local_path(UPLOAD_DIR, path)
    os.makedirs(os.path.dirname(target), exist_ok=True)
    with open(target, "wb") as buffer:
        buffer.write(content)
    return path


def remove_upload(path: Optional[str]) -> None:
    """Delete a stored upload whose record was never saved."""
    if not path:
        return
    target = story_utils.local_path(UPLOAD_DIR, path)
    try:
        os.remove(target)
        os.rmdir(os.path.dirname(target))
    except OSError as e:
        logger.warning("Could not remove orphaned upload %s: %s", path, e)


def photo_url(path: Optional[str]) -> Optional[str]:
    return story_utils.public_photo_url(path, UPLOAD_URL)


def reported_label(report: Report) -> Optional[str]:
    place = report_time.derive_place_label(report.address, report.location_description)
    return report_time.format_report_timestamp(report.created_at, time_zone=report.time_zone, place_label=place)


def report_to_json(report: Report) -> dict:
    return {
        "id": str(report.id),
        "report_type": report.report_type,
        "species": report.species,
        "condition": report.condition,
        "description": report.description,
        "location_description": report.location_description,
        "latitude": report.latitude,
        "longitude": report.longitude,
        "address": report.address,
        "lost_case_id": report.lost_case_id,
        "last_seen_at": report.last_seen_at,
        "status": report.status,
        "created_at": report.created_at,
        "reported_label": reported_label(report),
        "photo_url": photo_url(report.photo_path),
    }


def enrich_with_address(report: Report) -> None:
    """Best-effort reverse geocoding; the report is saved either way."""
    if report.latitude is None or report.longitude is None or not MAPBOX_ACCESS_TOKEN:
        return
    result = geocode.reverse_geocode(report.latitude, report.longitude, MAPBOX_ACCESS_TOKEN)
    if result.time_zone:
        report.time_zone = result.time_zone
    if result.ok and result.address_text:
        report.address = result.address_text
        report.address_source = "mapbox"
        report.geocoded_at = store.utcnow().isoformat()


def save_report(report: Report) -> Report:
    """Insert a report; lost reports get a case ID, retried on collision."""
    if not report.is_lost:
        return store.insert_report(report)
    return lost_cases.insert_with_case_id(
        lambda case_id: store.insert_report(report.model_copy(update={"lost_case_id": case_id}))
    )


# --- 1. Core Pages ---

@app.get("/", tags=["Core Pages"])
def read_root(request: Request):
    """Renders the home page."""
    active = store.active_reports()
    stats = {
        "need_help": len([r for r in active if not r.is_lost]),
        "lost": len([r for r in active if r.is_lost]),
        "resolved": len([r for r in store.reports if r.status == "Resolved"]),
        "stories": len([s for s in store.stories if s.status == "approved"]),
    }
    latest_stories = sorted(
        [s for s in store.stories if s.status == "approved"],
        key=lambda s: s.published_at or "",
        reverse=True,
    )[:3]
    return templates.TemplateResponse(request, "index.html", page_context(request, stats=stats, stories=latest_stories))


@app.get("/map", tags=["Core Pages"])
def read_map_page(request: Request):
    """Renders the map; markers are loaded from /api/reports."""
    return templates.TemplateResponse(request, "map.html", page_context(request))


# --- 2. Reports ---

@app.get("/report", tags=["Reports"])
def read_report_page(request: Request):
    params = request.query_params
    context = page_context(
        request,
        status=params.get("status"),
        report_id=params.get("report_id"),
        case_id=params.get("case_id"),
        report_type=params.get("report_type", "need_help"),
        resolve=params.get("resolve"),
        message=None,
        field_errors={},
        form={},
    )
    return templates.TemplateResponse(request, "report.html", context)


@app.post("/report", status_code=HTTP_303_SEE_OTHER, tags=["Reports"])
def process_report(
    request: Request,
    report_type: str = Form("need_help"),
    species: str = Form(""),
    condition: str = Form(""),
    description: str = Form(""),
    location_description: str = Form(""),
    latitude: str = Form(""),
    longitude: str = Form(""),
    contact: str = Form(""),
    last_seen_at: str = Form(""),
    photo: Optional[UploadFile] = File(None),
):
    """Validates and stores an in-need or lost animal report."""
    report_type = report_type.strip() or "need_help"
    if report_type not in REPORT_TYPES:
        report_type = "need_help"
    is_lost = report_type == "lost"
    species = species.strip()
    condition = condition.strip()
    description = description.strip()
    location_description = location_description.strip()
    contact = contact.strip()
    last_seen_input = last_seen_at.strip()

    field_errors: Dict[str, str] = {}
    if not species:
        field_errors["species"] = "Please choose a species."
    if not is_lost and not condition:
        field_errors["condition"] = "Please choose the animal's condition."
    if not location_description:
        field_errors["location_description"] = "Please share a brief location note."
    if is_lost and not description:
        field_errors["description"] = "Please add a short identifying description."
    if is_lost and not last_seen_input:
        field_errors["last_seen_at"] = "Please add when the animal was last seen."
    if is_lost and not contact:
        field_errors["contact"] = "Please share a way to reach you."

    lat, lat_ok = parse_optional_float(latitude)
    lng, lng_ok = parse_optional_float(longitude)
    if not lat_ok:
        field_errors["latitude"] = "Latitude must be a valid number."
    if not lng_ok:
        field_errors["longitude"] = "Longitude must be a valid number."

    last_seen_iso = None
    if last_seen_input:
        parsed = report_time.parse_timestamp(last_seen_input)
        if parsed is None:
            field_errors["last_seen_at"] = "Please use a valid date and time."
        else:
            last_seen_iso = parsed.astimezone(timezone.utc).isoformat()

    photo_content, photo_error = read_photo(photo, "Photo")
    if photo_error:
        field_errors["photo"] = photo_error

    def render_error(message: str, errors: Optional[Dict[str, str]] = None, status_code: int = 400):
        context = page_context(
            request,
            status="error",
            message=message,
            field_errors=errors or {},
            report_type=report_type,
            form={
                "species": species, "condition": condition, "description": description,
                "location_description": location_description, "latitude": latitude,
                "longitude": longitude, "contact": contact, "last_seen_at": last_seen_input,
            },
        )
        return templates.TemplateResponse(request, "report.html", context, status_code=status_code)

    if field_errors:
        return render_error("Please fix the highlighted fields and try again.", field_errors)

    report_id = uuid4()
    photo_path = None
    if photo_content is not None:
        path = story_utils.storage_path("reports", report_id, "photo", photo.filename)
        try:
            photo_path = save_upload_bytes(photo_content, path)
        except OSError as e:
            logger.error("Report photo upload error: %s", e)
            return render_error("We couldn't upload your photo. Please try again.", status_code=500)

    now = store.utcnow()
    report = Report(
        id=report_id,
        report_type=report_type,
        species=species,
        condition="Lost" if is_lost else condition,
        description=description or None,
        location_description=location_description,
        latitude=lat,
        longitude=lng,
        reporter_contact=contact or None,
        status="Reported",
        last_seen_at=last_seen_iso if is_lost else None,
        expires_at=(now + LOST_REPORT_TTL).isoformat() if is_lost else None,
        photo_path=photo_path,
        created_at=now.isoformat(),
    )
    if not is_lost:
        enrich_with_address(report)

    try:
        saved = save_report(report)
    except lost_cases.CaseIdExhausted as e:
        logger.error("Report insert error: %s", e)
        remove_upload(photo_path)
        logs.append(f"Lost report save failed: {e}")
        store.save_state()
        return render_error("We couldn't save your report. Please try again.", status_code=500)
    except store.UniqueViolation as e:
        logger.error("Report insert error: %s", e)
        remove_upload(photo_path)
        return render_error(f"We couldn't save your report. {e}", status_code=500)

    if saved.is_lost:
        logs.append(f"Lost report {saved.lost_case_id} ({saved.species}) at {saved.location_description}.")
    else:
        logs.append(f"Report '{saved.species}' ({saved.condition}) at {saved.location_description}.")
    store.save_state()

    url = f"/report?status=submitted&report_type={saved.report_type}&report_id={saved.id}"
    if saved.lost_case_id:
        url += f"&case_id={saved.lost_case_id}"
    return RedirectResponse(url=url, status_code=HTTP_303_SEE_OTHER)


@app.post("/report/resolve", status_code=HTTP_303_SEE_OTHER, tags=["Reports"])
def process_resolve_report(request: Request, report_id: str = Form(""), contact: str = Form("")):
    """Marks a lost report as found, given its report ID and reporter contact."""
    report_id = report_id.strip()
    contact = contact.strip()
    if not report_id or not contact:
        return RedirectResponse(url="/report?resolve=missing", status_code=HTTP_303_SEE_OTHER)

    try:
        changed = lost_cases.resolve_report_by_id(store.get_report(report_id), contact, store.update_report)
    except lost_cases.LostCaseError as e:
        return RedirectResponse(url=f"/report?resolve={e.code}", status_code=HTTP_303_SEE_OTHER)

    if not changed:
        return RedirectResponse(url="/report?resolve=already_resolved", status_code=HTTP_303_SEE_OTHER)
    logs.append(f"Report {report_id} marked as found by reporter.")
    store.save_state()
    return RedirectResponse(url="/report?resolve=resolved", status_code=HTTP_303_SEE_OTHER)


# --- 3. Lost Cases ---

@app.get("/lost-case", tags=["Lost Cases"])
def read_lost_case(request: Request):
    """Looks up a lost case by its shareable code."""
    raw = request.query_params.get("code", "")
    report = None
    error = None
    if raw.strip():
        try:
            report = lost_cases.find_lost_case(raw, store.find_by_case_id)
        except lost_cases.LostCaseError as e:
            error = e.code
    context = page_context(
        request,
        code=lost_case_id.normalize(raw),
        report=report,
        closed=lost_cases.is_closed(report) if report else False,
        reported=reported_label(report) if report else None,
        photo=photo_url(report.photo_path) if report else None,
        error=error,
        status=request.query_params.get("status"),
    )
    return templates.TemplateResponse(request, "lost_case.html", context)


def _close_lost_case(action, raw_code: str, contact: str, done_status: str, log_verb: str):
    code = lost_case_id.normalize(raw_code)
    try:
        report = action(raw_code, contact, store.find_by_case_id, store.update_report)
    except lost_cases.LostCaseError as e:
        return RedirectResponse(url=f"/lost-case?code={code}&status={e.code}", status_code=HTTP_303_SEE_OTHER)
    logs.append(f"Lost case {report.lost_case_id} {log_verb}.")
    store.save_state()
    return RedirectResponse(url=f"/lost-case?code={code}&status={done_status}", status_code=HTTP_303_SEE_OTHER)


@app.post("/lost-case/resolve", status_code=HTTP_303_SEE_OTHER, tags=["Lost Cases"])
def process_resolve_lost_case(request: Request, lost_case_id: str = Form(""), contact: str = Form("")):
    return _close_lost_case(lost_cases.resolve_lost_case, lost_case_id, contact, "resolved", "marked as found")


@app.post("/lost-case/cancel", status_code=HTTP_303_SEE_OTHER, tags=["Lost Cases"])
def process_cancel_lost_case(request: Request, lost_case_id: str = Form(""), contact: str = Form("")):
    return _close_lost_case(lost_cases.cancel_lost_case, lost_case_id, contact, "cancelled", "cancelled by reporter")


# --- 4. JSON API ---

class ReportRequest(BaseModel):
    species: Optional[str] = None
    condition: Optional[str] = None
    description: Optional[str] = None
    locationDescription: Optional[str] = None
    latitude: Optional[Union[str, float]] = None
    longitude: Optional[Union[str, float]] = None
    contact: Optional[str] = None


def _blank(value: Optional[str]) -> bool:
    return not value or not value.strip()


def _as_text(value: Optional[Union[str, float]]) -> Optional[str]:
    # JSON clients may send coordinates as numbers or strings
    return None if value is None else str(value)


@app.get("/api/reports", tags=["API"])
def api_list_reports():
    """Active reports that can be placed on the map."""
    active = [r for r in store.active_reports() if r.latitude is not None and r.longitude is not None]
    active.sort(key=lambda r: r.created_at, reverse=True)
    return {"reports": [report_to_json(r) for r in active]}


@app.post("/api/reports", tags=["API"])
def api_create_report(body: ReportRequest):
    if _blank(body.species) or _blank(body.condition) or _blank(body.locationDescription):
        return JSONResponse({"error": "Missing required fields."}, status_code=400)

    lat, lat_ok = parse_optional_float(_as_text(body.latitude))
    lng, lng_ok = parse_optional_float(_as_text(body.longitude))
    if not lat_ok or not lng_ok:
        return JSONResponse({"error": "Latitude and longitude must be valid numbers."}, status_code=400)

    report = Report(
        id=uuid4(),
        species=body.species.strip(),
        condition=body.condition.strip(),
        description=(body.description or "").strip() or None,
        location_description=body.locationDescription.strip(),
        latitude=lat,
        longitude=lng,
        reporter_contact=(body.contact or "").strip() or None,
        created_at=store.utcnow().isoformat(),
    )
    try:
        store.insert_report(report)
    except store.UniqueViolation as e:
        logger.error("API report insert error: %s", e)
        return JSONResponse({"error": "We couldn't save the report right now."}, status_code=500)

    logs.append(f"API report '{report.species}' at {report.location_description}.")
    store.save_state()
    return {"id": str(report.id)}


@app.post("/api/locale", tags=["API"])
async def api_set_locale(request: Request):
    try:
        body = await request.json()
    except ValueError:
        return JSONResponse({"ok": False}, status_code=400)
    locale = body.get("locale") if isinstance(body, dict) else None
    if locale not in LOCALES:
        return JSONResponse({"ok": False}, status_code=400)
    response = JSONResponse({"ok": True})
    response.set_cookie(
        key=LOCALE_COOKIE,
        value=locale,
        max_age=LOCALE_MAX_AGE,
        samesite="lax",
        secure=authenticator.secure,
        path="/",
    )
    return response


# --- 5. Stories ---

@app.get("/stories", tags=["Stories"])
def read_stories(request: Request):
    category = request.query_params.get("category", "")
    approved = [s for s in store.stories if s.status == "approved"]
    if category in STORY_CATEGORIES:
        approved = [s for s in approved if (s.category or DEFAULT_STORY_CATEGORY) == category]
    approved.sort(key=lambda s: s.published_at or "", reverse=True)
    covers = {}
    for s in approved:
        photos = store.photos_for(s.id)
        if photos:
            covers[str(s.id)] = photo_url(photos[0].path)
    context = page_context(request, stories=approved, covers=covers, categories=STORY_CATEGORIES, category=category)
    return templates.TemplateResponse(request, "stories.html", context)


@app.get("/stories/submit", tags=["Stories"])
def read_story_submit(request: Request):
    context = page_context(
        request,
        status=request.query_params.get("status"),
        message=None,
        field_errors={},
        form={},
        animal_types=ANIMAL_TYPES,
    )
    return templates.TemplateResponse(request, "story_submit.html", context)


@app.post("/stories/submit", status_code=HTTP_303_SEE_OTHER, tags=["Stories"])
def process_story_submit(
    request: Request,
    title: str = Form(""),
    animal_type: str = Form(""),
    city: str = Form(""),
    month_year: str = Form(""),
    excerpt: str = Form(""),
    content: str = Form(""),
    author_name: str = Form(""),
    author_contact: str = Form(""),
    consent: Optional[str] = Form(None),
    before_photo: Optional[UploadFile] = File(None),
    after_photo: Optional[UploadFile] = File(None),
):
    """Stores a rescue story as pending until an admin reviews it."""
    form = {
        "title": title.strip(), "animal_type": animal_type.strip(), "city": city.strip(),
        "month_year": month_year.strip(), "excerpt": excerpt.strip(), "content": content.strip(),
        "author_name": author_name.strip(), "author_contact": author_contact.strip(),
    }
    field_errors: Dict[str, str] = {}
    if not form["title"]:
        field_errors["title"] = "Title is required."
    if not form["animal_type"]:
        field_errors["animal_type"] = "Animal type is required."
    elif form["animal_type"] not in ANIMAL_TYPES:
        field_errors["animal_type"] = "Please choose a valid animal type."
    if not form["city"]:
        field_errors["city"] = "City is required."
    if not form["month_year"]:
        field_errors["month_year"] = "Month and year are required."
    if not form["excerpt"]:
        field_errors["excerpt"] = "Excerpt is required."
    elif len(form["excerpt"]) > EXCERPT_MAX_LENGTH:
        field_errors["excerpt"] = "Excerpt must be 140 characters or less."
    if not form["content"]:
        field_errors["content"] = "Story content is required."
    if not consent:
        field_errors["consent"] = "Consent is required to submit a story."

    before_content, before_error = read_photo(before_photo, "Before photo")
    if before_error:
        field_errors["before_photo"] = before_error
    elif before_content is None:
        field_errors["before_photo"] = "Before photo is required."
    after_content, after_error = read_photo(after_photo, "After photo")
    if after_error:
        field_errors["after_photo"] = after_error

    def render_error(message: str, errors: Optional[Dict[str, str]] = None, status_code: int = 400):
        context = page_context(
            request, status="error", message=message, field_errors=errors or {},
            form=form, animal_types=ANIMAL_TYPES,
        )
        return templates.TemplateResponse(request, "story_submit.html", context, status_code=status_code)

    if field_errors:
        return render_error("Please fix the highlighted fields and try again.", field_errors)

    story = Story(
        id=uuid4(),
        title=form["title"],
        slug=story_utils.create_story_slug(form["title"]),
        animal_type=form["animal_type"],
        city=form["city"],
        month_year=form["month_year"],
        excerpt=form["excerpt"],
        content=form["content"],
        author_name=form["author_name"] or None,
        author_contact=form["author_contact"] or None,
        status="pending",
        created_at=store.utcnow().isoformat(),
    )
    try:
        store.insert_story(story)
    except store.UniqueViolation as e:
        logger.error("Story insert error: %s", e)
        return render_error(f"We could not save your story. {e}", status_code=500)

    photos = []
    uploads = [("before", before_content, before_photo), ("after", after_content, after_photo)]
    for photo_type, data, upload in uploads:
        if data is None:
            continue
        path = story_utils.storage_path("stories", story.id, photo_type, upload.filename)
        try:
            save_upload_bytes(data, path)
        except OSError as e:
            logger.error("Story photo upload error: %s", e)
            store.save_state()
            return render_error("We saved your story, but uploading a photo failed.", status_code=500)
        photos.append(StoryPhoto(story_id=story.id, path=path, photo_type=photo_type, sort_order=len(photos)))
    store.add_story_photos(photos)

    logs.append(f"Story '{story.title}' submitted for review.")
    store.save_state()
    return RedirectResponse(url="/stories/submit?status=submitted", status_code=HTTP_303_SEE_OTHER)


@app.get("/stories/{slug}", tags=["Stories"])
def read_story(request: Request, slug: str):
    story = store.get_story_by_slug(slug, status="approved")
    if not story:
        return RedirectResponse(url="/stories?error=not_found", status_code=HTTP_303_SEE_OTHER)
    photos = [(p.photo_type, photo_url(p.path)) for p in store.photos_for(story.id)]
    return templates.TemplateResponse(request, "story_detail.html", page_context(request, story=story, photos=photos))


# --- 6. Admin Panel ---

@app.get("/admin", tags=["Admin Panel"])
def read_admin_login(request: Request):
    if is_admin(request):
        return RedirectResponse(url="/admin/stories", status_code=HTTP_303_SEE_OTHER)
    context = page_context(request, error=request.query_params.get("error"))
    return templates.TemplateResponse(request, "admin_login.html", context)


@app.post("/admin/login", status_code=HTTP_303_SEE_OTHER, tags=["Admin Panel"])
def process_admin_login(request: Request, password: str = Form("")):
    client_host = request.client.host if request.client else "unknown"
    now_ts = datetime.now(timezone.utc).timestamp()
    attempts = [ts for ts in LOGIN_ATTEMPTS.get(client_host, []) if now_ts - ts < LOGIN_WINDOW]
    if len(attempts) >= LOGIN_MAX_ATTEMPTS:
        LOGIN_ATTEMPTS[client_host] = attempts
        return RedirectResponse(url="/admin?error=too_many", status_code=HTTP_303_SEE_OTHER)

    if ADMIN_PASSWORD_HASH is None:
        logger.error("Admin login attempted but ADMIN_PASSWORD is not configured.")
        return RedirectResponse(url="/admin?error=config", status_code=HTTP_303_SEE_OTHER)

    if not pwd_context.verify(password.strip(), ADMIN_PASSWORD_HASH):
        attempts.append(now_ts)
        LOGIN_ATTEMPTS[client_host] = attempts
        return RedirectResponse(url="/admin?error=1", status_code=HTTP_303_SEE_OTHER)

    LOGIN_ATTEMPTS[client_host] = []
    logs.append(f"Admin signed in from {client_host}.")
    store.save_state()
    token = authenticator.issue()
    return redirect_with_cookie("/admin/stories", authenticator.session_cookie(token))


@app.post("/admin/logout", status_code=HTTP_303_SEE_OTHER, tags=["Admin Panel"])
def process_admin_logout(request: Request):
    return redirect_with_cookie("/admin", authenticator.revoke())


@app.get("/admin/dashboard", tags=["Admin Panel"])
def read_admin_dashboard(request: Request):
    """Admin dashboard with quick stats and recent activity."""
    if not is_admin(request):
        return admin_login_redirect()
    stats = {
        "reports": len(store.reports),
        "active": len(store.active_reports()),
        "lost_open": len([r for r in store.active_reports() if r.is_lost]),
        "resolved": len([r for r in store.reports if r.status == "Resolved"]),
        "cancelled": len([r for r in store.reports if r.status == "Cancelled"]),
        "pending_stories": len([s for s in store.stories if s.status == "pending"]),
    }
    context = page_context(request, stats=stats, logs=list(reversed(logs[-10:])))  # latest 10
    return templates.TemplateResponse(request, "admin_dashboard.html", context)


@app.get("/admin/reports", tags=["Admin Panel"])
def read_admin_reports(request: Request):
    if not is_admin(request):
        return admin_login_redirect()
    rows = sorted(store.reports, key=lambda r: r.created_at, reverse=True)
    labels = {str(r.id): reported_label(r) for r in rows}
    context = page_context(request, reports=rows, labels=labels, updated=request.query_params.get("updated"))
    return templates.TemplateResponse(request, "admin_reports.html", context)


@app.get("/admin/reports/{report_id}", tags=["Admin Panel"])
def read_admin_report(request: Request, report_id: str):
    if not is_admin(request):
        return admin_login_redirect()
    report = store.get_report(report_id)
    if not report:
        return RedirectResponse(url="/admin/reports?updated=not_found", status_code=HTTP_303_SEE_OTHER)
    context = page_context(
        request,
        report=report,
        reported=reported_label(report),
        seen=report_time.format_time(report.last_seen_at, report.latitude, report.longitude),
        photo=photo_url(report.photo_path),
    )
    return templates.TemplateResponse(request, "admin_report_detail.html", context)


@app.post("/admin/reports/delete", status_code=HTTP_303_SEE_OTHER, tags=["Admin Panel"])
def delete_report(request: Request, reportId: str = Form("")):
    if not is_admin(request):
        return admin_login_redirect()
    report_id = reportId.strip()
    if not report_id:
        return RedirectResponse(url="/admin/reports", status_code=HTTP_303_SEE_OTHER)
    if not store.delete_report(report_id):
        return RedirectResponse(url="/admin/reports?updated=error", status_code=HTTP_303_SEE_OTHER)
    logs.append(f"Admin deleted report {report_id}.")
    store.save_state()
    return RedirectResponse(url="/admin/reports?updated=deleted", status_code=HTTP_303_SEE_OTHER)


@app.get("/admin/stories", tags=["Admin Panel"])
def read_admin_stories(request: Request):
    if not is_admin(request):
        return admin_login_redirect()
    status = request.query_params.get("status", "pending")
    if status not in ("pending", "approved", "rejected"):
        status = "pending"
    rows = sorted([s for s in store.stories if s.status == status], key=lambda s: s.created_at, reverse=True)
    context = page_context(request, stories=rows, status=status)
    return templates.TemplateResponse(request, "admin_stories.html", context)


@app.get("/admin/stories/{story_id}", tags=["Admin Panel"])
def read_admin_story(request: Request, story_id: str):
    if not is_admin(request):
        return admin_login_redirect()
    story = store.get_story(story_id)
    if not story:
        return RedirectResponse(url="/admin/stories?status=pending", status_code=HTTP_303_SEE_OTHER)
    photos = [(p.photo_type, photo_url(p.path)) for p in store.photos_for(story.id)]
    context = page_context(
        request,
        story=story,
        photos=photos,
        categories=STORY_CATEGORIES,
        updated=request.query_params.get("updated"),
    )
    return templates.TemplateResponse(request, "admin_story_detail.html", context)


@app.post("/admin/stories/{story_id}/approve", status_code=HTTP_303_SEE_OTHER, tags=["Admin Panel"])
def approve_story(request: Request, story_id: str, category: str = Form("")):
    """Publishes a story, keeping or setting its category."""
    if not is_admin(request):
        return admin_login_redirect()
    story = store.get_story(story_id)
    if not story:
        return RedirectResponse(url=f"/admin/stories/{story_id}?updated=error", status_code=HTTP_303_SEE_OTHER)

    selected = category.strip().lower()
    if selected in STORY_CATEGORIES:
        story.category = selected
    elif not (story.category or "").strip():
        story.category = DEFAULT_STORY_CATEGORY
    story.status = "approved"
    story.published_at = store.utcnow().isoformat()

    logs.append(f"Approved story '{story.title}' ({story.id}).")
    store.save_state()
    return RedirectResponse(url=f"/admin/stories/{story_id}?updated=approved", status_code=HTTP_303_SEE_OTHER)


@app.post("/admin/stories/{story_id}/reject", status_code=HTTP_303_SEE_OTHER, tags=["Admin Panel"])
def reject_story(request: Request, story_id: str):
    if not is_admin(request):
        return admin_login_redirect()
    story = store.get_story(story_id)
    if not story:
        return RedirectResponse(url=f"/admin/stories/{story_id}?updated=error", status_code=HTTP_303_SEE_OTHER)
    story.status = "rejected"
    story.published_at = None
    logs.append(f"Rejected story '{story.title}' ({story.id}).")
    store.save_state()
    return RedirectResponse(url=f"/admin/stories/{story_id}?updated=rejected", status_code=HTTP_303_SEE_OTHER)
