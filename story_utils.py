import os
import re
import secrets
import string
from typing import Optional

_SLUG_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


def slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return slug or "story"


def create_story_slug(title: str) -> str:
    suffix = "".join(secrets.choice(_SLUG_SUFFIX_ALPHABET) for _ in range(4))
    return f"{slugify(title)}-{suffix}"


def sanitize_file_name(filename: str) -> str:
    cleaned = re.sub(r"[^a-z0-9.]+", "-", (filename or "").lower()).strip("-")
    return cleaned or "photo"


def file_extension(filename: str) -> Optional[str]:
    """Extension of the sanitized name, without the dot."""
    safe = sanitize_file_name(filename)
    if "." not in safe:
        return None
    return safe.rsplit(".", 1)[1] or None


def storage_path(prefix: str, record_id, stem: str, filename: str) -> str:
    """``reports/<id>/photo.jpg`` style object key for an upload."""
    ext = file_extension(filename)
    name = f"{stem}.{ext}" if ext else stem
    return "/".join([prefix, str(record_id), name])


def public_photo_url(path: Optional[str], base_url: str = "/static/uploads") -> Optional[str]:
    if not path:
        return None
    return f"{base_url.rstrip('/')}/{path}"


def format_animal_type(value: Optional[str]) -> str:
    if not value:
        return ""
    return value[0].upper() + value[1:]


def local_path(upload_dir: str, path: str) -> str:
    return os.path.join(upload_dir, *path.split("/"))
