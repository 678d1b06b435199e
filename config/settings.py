# config/settings.py
from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
import logging
import os
from typing import Optional
from dotenv import load_dotenv

from domain.models import Credentials, TransportOptions

load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _optional_float(name: str) -> Optional[float]:
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else None


@dataclass(frozen=True)
class Settings:
    # IMAP (GMAIL_USER / GMAIL_APP_PASSWORD accepted as aliases)
    IMAP_HOST: str = os.getenv("IMAP_HOST", "imap.gmail.com")
    IMAP_PORT: int = int(os.getenv("IMAP_PORT", 993))
    IMAP_USERNAME: str = os.getenv("IMAP_USERNAME", os.getenv("GMAIL_USER", ""))
    IMAP_PASSWORD: str = os.getenv("IMAP_PASSWORD", os.getenv("GMAIL_APP_PASSWORD", ""))
    IMAP_SSL: bool = _flag("IMAP_SSL", "true")
    IMAP_STARTTLS: bool = _flag("IMAP_STARTTLS", "false")
    IMAP_VERIFY_SSL: bool = _flag("IMAP_VERIFY_SSL", "true")
    IMAP_TIMEOUT: Optional[float] = _optional_float("IMAP_TIMEOUT")
    IMAP_FOLDER_INBOX: str = os.getenv("IMAP_FOLDER_INBOX", "INBOX")

    # Polling
    POLL_INTERVAL: int = int(os.getenv("POLL_INTERVAL", 30000))  # ms
    MARK_AS_READ: bool = _flag("MARK_AS_READ", "true")
    RETRY_FAILED: bool = _flag("RETRY_FAILED", "false")

    # Storage
    REPORTS_FOLDER: str = os.getenv("REPORTS_FOLDER", "./all-reports/unparsed-reports")

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_DIR: str = os.getenv("LOG_DIR", "logs")

    # ───────── helpers ─────────
    def credentials(self) -> Credentials:
        return Credentials(username=self.IMAP_USERNAME, password=self.IMAP_PASSWORD)

    def transport_options(self) -> TransportOptions:
        return TransportOptions(
            ssl=self.IMAP_SSL,
            starttls=self.IMAP_STARTTLS,
            verify_ssl=self.IMAP_VERIFY_SSL,
            timeout=self.IMAP_TIMEOUT,
        )

    def poll_interval_seconds(self) -> float:
        return max(self.POLL_INTERVAL, 1) / 1000.0

    def reports_path(self) -> Path:
        return Path(self.REPORTS_FOLDER).resolve()

    def log_level(self) -> int:
        level = logging.getLevelName(self.LOG_LEVEL.upper())
        return level if isinstance(level, int) else logging.INFO

    def log_dir_path(self) -> Optional[Path]:
        return Path(self.LOG_DIR).resolve() if self.LOG_DIR.strip() else None
