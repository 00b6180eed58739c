"""Configuration management for the Gmail→Drive attachment archiver."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Sequence

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env early so BaseSettings can pick values up seamlessly.
load_dotenv()

DEFAULT_SCOPES = (
    "https://www.googleapis.com/auth/gmail.modify",
    "https://www.googleapis.com/auth/drive.file",
)
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def _split_list(value: str | Sequence[str] | None) -> list[str]:
    """Turn delimiter-separated env strings into cleaned lists."""
    if value is None:
        return []
    if isinstance(value, str):
        items = re.split(r"[;,]", value)
    else:
        items = list(value)
    return [item.strip() for item in items if item.strip()]


class Settings(BaseSettings):
    """App configuration derived from environment variables."""

    google_client_id: str = Field(..., alias="GOOGLE_CLIENT_ID")
    google_client_secret: str = Field(..., alias="GOOGLE_CLIENT_SECRET")
    google_scopes_raw: str = Field(";".join(DEFAULT_SCOPES), alias="GOOGLE_OAUTH_SCOPES")
    google_token_file: Path = Field(Path("data/oauth_tokens.json"), alias="GOOGLE_TOKEN_FILE")

    gmail_pending_label: str = Field("insurance claims/todo", alias="GMAIL_PENDING_LABEL")
    gmail_processed_label: str = Field(
        "insurance claims/processed", alias="GMAIL_PROCESSED_LABEL"
    )
    max_messages_per_run: int = Field(50, alias="MAX_MESSAGES_PER_RUN")
    max_file_size_mb: int = Field(25, alias="MAX_FILE_SIZE_MB")

    drive_root_folder_id: str | None = Field(None, alias="DRIVE_ROOT_FOLDER_ID")
    drive_root_folder_name: str = Field("Gmail Attachments", alias="DRIVE_ROOT_FOLDER_NAME")

    ledger_db: Path = Field(Path("data/archiver.db"), alias="LEDGER_DB")
    http_timeout: float = Field(30, alias="HTTP_TIMEOUT")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("google_client_id", "google_client_secret", mode="before")
    @classmethod
    def _require_non_blank(cls, value):
        if isinstance(value, str):
            value = value.strip()
            if not value:
                raise ValueError("must not be empty")
        return value

    @field_validator("drive_root_folder_id", mode="before")
    @classmethod
    def _empty_str_to_none(cls, value):
        if isinstance(value, str) and value.strip() == "":
            return None
        return value.strip() if isinstance(value, str) else value

    @field_validator("max_messages_per_run", "max_file_size_mb", "http_timeout")
    @classmethod
    def _positive(cls, value):
        if value <= 0:
            raise ValueError("must be a positive number")
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value):
        level = str(value or "INFO").strip().upper()
        if level == "WARN":
            level = "WARNING"
        if level not in LOG_LEVELS:
            raise ValueError(f"must be one of: {', '.join(LOG_LEVELS)}")
        return level

    @property
    def google_scopes(self) -> list[str]:
        """Scopes requested on the consent screen."""
        return _split_list(self.google_scopes_raw) or list(DEFAULT_SCOPES)

    @property
    def max_attachment_size(self) -> int:
        """Attachment ceiling in bytes."""
        return self.max_file_size_mb * 1024 * 1024

    def redacted(self) -> dict[str, object]:
        """Loggable view of the settings without secrets."""
        return {
            "client_id": f"{self.google_client_id[:8]}...",
            "pending_label": self.gmail_pending_label,
            "processed_label": self.gmail_processed_label,
            "max_messages_per_run": self.max_messages_per_run,
            "max_file_size_mb": self.max_file_size_mb,
            "drive_root_folder_id": self.drive_root_folder_id,
            "ledger_db": str(self.ledger_db),
        }
