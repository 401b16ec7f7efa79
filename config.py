import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        session_secret: str,
        session_cookie: str,
        session_max_age_secs: int,
        allowed_emails: frozenset[str],
        skip_auth: bool,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.session_secret = session_secret
        self.session_cookie = session_cookie
        self.session_max_age_secs = session_max_age_secs
        self.allowed_emails = allowed_emails
        self.skip_auth = skip_auth
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("BUDGET_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _parse_bool(raw: str) -> bool:
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _parse_emails(raw: str) -> frozenset[str]:
    return frozenset(
        part.strip().lower() for part in raw.split(",") if part.strip()
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "budget.db"
    database_url = os.getenv("BUDGET_DATABASE_URL", f"sqlite:///{default_db}")
    session_secret = os.getenv(
        "BUDGET_SESSION_SECRET",
        "5f0c8a41d2b6e97f3a1c4d8e2b7f6a90c3e5d1b8a4f7e2c6d9b0a3f5e8c1d4b7",
    )
    session_cookie = os.getenv("BUDGET_SESSION_COOKIE", "budget_session")
    session_max_age_secs = int(os.getenv("BUDGET_SESSION_MAX_AGE_SECS", "604800"))
    allowed_emails = _parse_emails(os.getenv("BUDGET_ALLOWED_EMAILS", ""))
    skip_auth = _parse_bool(os.getenv("BUDGET_SKIP_AUTH", "false"))
    log_level = os.getenv("BUDGET_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        session_secret=session_secret,
        session_cookie=session_cookie,
        session_max_age_secs=session_max_age_secs,
        allowed_emails=allowed_emails,
        skip_auth=skip_auth,
        log_level=log_level,
    )
