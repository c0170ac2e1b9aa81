import re
import secrets

LOST_CASE_PREFIX = "LOST-"
# 32 symbols, no 0/O or 1/I so codes survive being read aloud or retyped
LOST_CASE_ALPHABET = "23456789ABCDEFGHJKLMNPQRSTUVWXYZ"
LOST_CASE_LENGTH = 6

_LOST_CASE_PATTERN = re.compile(r"^LOST-[" + LOST_CASE_ALPHABET + r"]{6}\Z")


def generate(length: int = LOST_CASE_LENGTH) -> str:
    """Return a new case ID such as ``LOST-7K4M9B``.

    Each random byte is masked with ``& 31``; the alphabet has exactly 32
    symbols so every symbol is equally likely.
    """
    raw = secrets.token_bytes(length)
    code = "".join(LOST_CASE_ALPHABET[b & 31] for b in raw)
    return f"{LOST_CASE_PREFIX}{code}"


def normalize(value: str) -> str:
    return value.strip().upper()


def is_valid_format(value: str) -> bool:
    if not isinstance(value, str):
        return False
    return _LOST_CASE_PATTERN.match(value) is not None
