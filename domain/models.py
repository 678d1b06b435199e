# domain/models.py
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Literal, Optional, Union

@dataclass(frozen=True)
class Attachment:
    filename: Optional[str]
    content_type: Optional[str]
    content: bytes

@dataclass(frozen=True)
class ParsedMessage:
    sender: Optional[str]
    subject: Optional[str]
    date: Optional[datetime]
    attachments: tuple[Attachment, ...] = ()

    def metadata(self) -> "MessageMetadata":
        return MessageMetadata(sender=self.sender, subject=self.subject, date=self.date)

@dataclass(frozen=True)
class MessageMetadata:
    sender: Optional[str]
    subject: Optional[str]
    date: Optional[datetime]

@dataclass(frozen=True)
class SavedFile:
    original_name: Optional[str]
    saved_as: str
    path: Path
    size: int
    sender: Optional[str]
    subject: Optional[str]
    saved_at: datetime

@dataclass(frozen=True)
class EmailInfo:
    sender: Optional[str]
    subject: Optional[str]
    date: Optional[datetime]

# ───────── processing outcomes ─────────
@dataclass(frozen=True)
class Processed:
    saved_files: tuple[SavedFile, ...]
    email_info: EmailInfo
    outcome: Literal["processed"] = field(default="processed", init=False)

@dataclass(frozen=True)
class Skipped:
    reason: str
    outcome: Literal["skipped"] = field(default="skipped", init=False)

@dataclass(frozen=True)
class Failed:
    error: BaseException
    outcome: Literal["error"] = field(default="error", init=False)

ProcessingOutcome = Union[Processed, Skipped, Failed]

# ───────── IMAP session ─────────
@dataclass(frozen=True)
class Credentials:
    username: str
    password: str

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password='***')"

@dataclass(frozen=True)
class TransportOptions:
    ssl: bool = True
    starttls: bool = False
    verify_ssl: bool = True
    timeout: Optional[float] = None

@dataclass(frozen=True)
class FolderInfo:
    name: str
    exists: int
    uid_validity: Optional[int]
    readonly: bool

@dataclass(frozen=True)
class SearchCriteria:
    """Conjunction of IMAP search predicates."""
    unseen_only: bool = True
    subject_contains: Optional[str] = None

    def to_imap(self) -> list[str]:
        criteria: list[str] = []
        if self.unseen_only:
            criteria.append("UNSEEN")
        if self.subject_contains:
            criteria += ["SUBJECT", self.subject_contains]
        return criteria or ["ALL"]
