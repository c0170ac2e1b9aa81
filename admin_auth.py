import base64
import binascii
import hashlib
import hmac
import json
import os
import time
from dataclasses import dataclass
from typing import Optional

COOKIE_NAME = "admin_session"
MAX_AGE_SECONDS = 60 * 60 * 24 * 7
MAX_AGE_MILLIS = MAX_AGE_SECONDS * 1000


class MissingSecretError(RuntimeError):
    """Raised when the admin cookie signing secret is not configured."""


@dataclass(frozen=True)
class CookieInstruction:
    """What the web layer should write into the ``Set-Cookie`` header."""
    key: str
    value: str
    max_age: int
    httponly: bool = True
    samesite: str = "lax"
    secure: bool = False
    path: str = "/"

    def apply(self, response) -> None:
        response.set_cookie(
            key=self.key,
            value=self.value,
            max_age=self.max_age,
            httponly=self.httponly,
            samesite=self.samesite,
            secure=self.secure,
            path=self.path,
        )


def now_millis() -> int:
    return int(time.time() * 1000)


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64url_decode(text: str) -> bytes:
    padding = "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(text + padding)


class AdminSessionAuthenticator:
    """Stateless admin sessions: a signed, time-limited cookie value.

    Tokens look like ``<base64url payload>.<hex hmac-sha256>`` where the payload
    is ``{"admin": true, "ts": <epoch millis>}``. Nothing is stored server-side,
    so a token stays valid until it ages out or the browser drops the cookie.
    """

    def __init__(self, secret: Optional[str], secure: bool = False, max_age_millis: int = MAX_AGE_MILLIS):
        if not secret:
            raise MissingSecretError("Missing ADMIN_COOKIE_SECRET environment variable.")
        self._secret = secret.encode("utf-8")
        self.secure = secure
        self.max_age_millis = max_age_millis

    @classmethod
    def from_env(cls) -> "AdminSessionAuthenticator":
        secure = os.environ.get("APP_ENV", "development") == "production"
        return cls(os.environ.get("ADMIN_COOKIE_SECRET"), secure=secure)

    def _sign(self, payload: str) -> str:
        return hmac.new(self._secret, payload.encode("utf-8"), hashlib.sha256).hexdigest()

    def issue(self, now: Optional[int] = None) -> str:
        ts = now_millis() if now is None else now
        body = json.dumps({"admin": True, "ts": ts}, separators=(",", ":"))
        payload = _b64url_encode(body.encode("utf-8"))
        return f"{payload}.{self._sign(payload)}"

    def verify(self, token: Optional[str], now: Optional[int] = None) -> bool:
        if not token or not isinstance(token, str):
            return False
        payload, sep, signature = token.partition(".")
        if not sep or not payload or not signature:
            return False

        expected = self._sign(payload).encode("ascii")
        provided = signature.encode("utf-8")
        if len(provided) != len(expected):
            return False
        if not hmac.compare_digest(provided, expected):
            return False

        try:
            decoded = json.loads(_b64url_decode(payload).decode("utf-8"))
        except (binascii.Error, UnicodeDecodeError, ValueError):
            return False
        if not isinstance(decoded, dict):
            return False

        ts = decoded.get("ts")
        # bool is an int subclass; a payload with ts=true is not a timestamp
        if decoded.get("admin") is not True or isinstance(ts, bool) or not isinstance(ts, (int, float)):
            return False

        current = now_millis() if now is None else now
        age = current - ts
        return 0 <= age <= self.max_age_millis

    def session_cookie(self, token: str) -> CookieInstruction:
        return CookieInstruction(
            key=COOKIE_NAME,
            value=token,
            max_age=self.max_age_millis // 1000,
            secure=self.secure,
        )

    def revoke(self) -> CookieInstruction:
        return CookieInstruction(key=COOKIE_NAME, value="", max_age=0, secure=self.secure)
