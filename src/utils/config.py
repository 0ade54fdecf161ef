"""
Configuration management using pydantic-settings.

Loads settings from environment variables and .env files.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Project root (two levels above src/utils)
PROJECT_ROOT = Path(__file__).parent.parent.parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage
    database_path: Path = Field(
        default=PROJECT_ROOT / "data" / "claims.db",
        description="SQLite database file holding claims and inline receipts",
    )

    # Receipts
    max_receipt_bytes: int = Field(
        default=10 * 1024 * 1024,
        gt=0,
        description="Largest accepted receipt upload in bytes (inclusive)",
    )

    # Calendar used for date ranges, exports and default claim dates
    local_timezone: str = Field(
        default="Asia/Kolkata",
        description="IANA zone used to interpret YYYY-MM-DD ranges",
    )

    # Listing
    default_page_size: int = Field(default=10, description="Page size for /claims/me listings")
    admin_page_size: int = Field(default=20, description="Page size for admin listings")

    # Notifications
    notifications_enabled: bool = Field(default=True, description="Subscribe the email notifier")
    event_queue_size: int = Field(default=1000, gt=0, description="Bounded claim event queue size")
    mail_from: str = Field(default="no-reply@reimbursements.local", description="Sender address")
    admin_email: Optional[str] = Field(default=None, description="Inbox notified of new claims")
    web_base_url: str = Field(default="http://localhost:5173", description="Frontend URL used in emails")
    smtp_host: Optional[str] = Field(default=None, description="SMTP host; mail is only logged when unset")
    smtp_port: int = Field(default=587, description="SMTP port")
    smtp_username: Optional[str] = Field(default=None, description="SMTP username")
    smtp_password: Optional[str] = Field(default=None, description="SMTP password")
    smtp_use_tls: bool = Field(default=True, description="Issue STARTTLS before login")

    # Server Configuration
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")
    debug: bool = Field(default=False, description="Enable debug mode")

    @property
    def zone(self) -> ZoneInfo:
        """Get the local calendar zone."""
        return ZoneInfo(self.local_timezone)


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses LRU cache to avoid re-reading environment on every call.
    """
    return Settings()
