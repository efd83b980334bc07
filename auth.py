"""Password hashing and session cookie signing."""

import re
from typing import Optional

import bcrypt
from itsdangerous import BadSignature, URLSafeTimedSerializer

from config import get_settings

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def validate_email(email: str) -> bool:
    return bool(EMAIL_PATTERN.match(str(email).lower()))


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        # malformed stored hash
        return False


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.secret_key, salt="session-cookie")


def sign_session_id(session_id: str) -> str:
    return _serializer().dumps(session_id)


def read_session_cookie(value: Optional[str]) -> Optional[str]:
    """Return the session id carried by a signed cookie, or None."""
    if not value:
        return None
    max_age = get_settings().session_max_age_hours * 3600
    try:
        session_id = _serializer().loads(value, max_age=max_age)
    except BadSignature:
        return None
    return session_id if isinstance(session_id, str) else None
