"""Runtime configuration for the app (replaceable during tests/runtime)."""
import os
from typing import NamedTuple, Optional


class Settings(NamedTuple):
    environment: str
    jwt_secret: str
    token_ttl_seconds: int
    owner_email: Optional[str]
    mail_from: str
    smtp_host: Optional[str]
    smtp_port: int
    smtp_username: Optional[str]
    smtp_password: Optional[str]
    smtp_starttls: bool
    uploads_dir: str
    log_level: str


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default) in ("1", "true", "True", "yes")


def load_settings() -> Settings:
    return Settings(
        environment=os.getenv("APP_ENV", "development"),
        jwt_secret=os.getenv("JWT_SECRET", "dev-secret"),
        token_ttl_seconds=int(os.getenv("JWT_TTL_SECONDS", 60 * 60 * 24)),  # 1 day
        owner_email=os.getenv("OWNER_EMAIL") or None,
        mail_from=os.getenv("EMAIL_USER", "noreply@storefront.local"),
        smtp_host=os.getenv("SMTP_HOST") or None,
        smtp_port=int(os.getenv("SMTP_PORT", 587)),
        smtp_username=os.getenv("EMAIL_USER") or None,
        smtp_password=os.getenv("EMAIL_PASS") or None,
        smtp_starttls=_env_flag("SMTP_STARTTLS", "1"),
        uploads_dir=os.getenv("UPLOADS_DIR", os.path.join(".", "uploads")),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )


state = load_settings()


def get_settings() -> Settings:
    return state


def configure(**changes) -> Settings:
    global state
    state = state._replace(**changes)
    return state


def is_production() -> bool:
    return state.environment == "production"
