# config.py (environment-driven settings)
import logging
import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

CONSOLE_FORMAT = "[%(levelname)s] %(name)s: %(message)s"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    return int(value)


@dataclass
class Settings:
    database_url: str = field(
        default_factory=lambda: os.getenv("DATABASE_URL", "sqlite:///./budget.db")
    )
    secret_key: str = field(
        default_factory=lambda: os.getenv("SECRET_KEY", "change-me-in-production")
    )
    algorithm: str = "HS256"
    access_token_expire_minutes: int = field(
        default_factory=lambda: _env_int("ACCESS_TOKEN_EXPIRE_MINUTES", 30)
    )

    smtp_host: Optional[str] = field(default_factory=lambda: os.getenv("SMTP_HOST"))
    smtp_port: int = field(default_factory=lambda: _env_int("SMTP_PORT", 587))
    smtp_username: Optional[str] = field(
        default_factory=lambda: os.getenv("SMTP_USERNAME")
    )
    smtp_password: Optional[str] = field(
        default_factory=lambda: os.getenv("SMTP_PASSWORD")
    )
    smtp_use_tls: bool = field(default_factory=lambda: _env_bool("SMTP_USE_TLS", True))
    from_email: str = field(
        default_factory=lambda: os.getenv(
            "FROM_EMAIL", "notifications@expense-tracker.com"
        )
    )

    cron_secret: Optional[str] = field(default_factory=lambda: os.getenv("CRON_SECRET"))
    scheduler_enabled: bool = field(
        default_factory=lambda: _env_bool("SCHEDULER_ENABLED", True)
    )
    budget_check_hour: int = field(
        default_factory=lambda: _env_int("BUDGET_CHECK_HOUR", 9)
    )
    budget_check_minute: int = field(
        default_factory=lambda: _env_int("BUDGET_CHECK_MINUTE", 0)
    )

    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_host)


settings = Settings()


def configure_logging(level: Optional[str] = None) -> None:
    resolved = logging.getLevelName((level or settings.log_level).strip().upper())
    logging.basicConfig(
        level=resolved if isinstance(resolved, int) else logging.INFO,
        format=CONSOLE_FORMAT,
    )
