import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

DEFAULT_CATEGORIES = (
    "Food",
    "Transport",
    "Bills",
    "Shopping",
    "Salary",
    "Investment",
    "Other",
)


class Settings:
    def __init__(
        self,
        database_url: str,
        secret_key: str,
        session_cookie: str,
        session_max_age_hours: int,
        categories: tuple[str, ...],
        port: int,
    ) -> None:
        self.database_url = database_url
        self.secret_key = secret_key
        self.session_cookie = session_cookie
        self.session_max_age_hours = session_max_age_hours
        self.categories = categories
        self.port = port


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINTRACK_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _parse_categories(raw: Optional[str]) -> tuple[str, ...]:
    if not raw:
        return DEFAULT_CATEGORIES
    names = [part.strip() for part in raw.split(",")]
    return tuple(name for name in names if name) or DEFAULT_CATEGORIES


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "fintrack.db"
    database_url = os.getenv("FINTRACK_DATABASE_URL", f"sqlite:///{default_db}")
    secret_key = os.getenv(
        "FINTRACK_SECRET_KEY",
        "3f9c1d0b7a5e4c2f8e6d1b9a7c5e3f1d2b4a6c8e0f1a3b5c7d9e2f4a6b8c0d1e",
    )
    session_cookie = os.getenv("FINTRACK_SESSION_COOKIE", "fintrack_session")
    session_max_age_hours = int(os.getenv("FINTRACK_SESSION_MAX_AGE_HOURS", "24"))
    categories = _parse_categories(os.getenv("FINTRACK_CATEGORIES"))
    port = int(os.getenv("FINTRACK_PORT", "3000"))
    return Settings(
        database_url=database_url,
        secret_key=secret_key,
        session_cookie=session_cookie,
        session_max_age_hours=session_max_age_hours,
        categories=categories,
        port=port,
    )
