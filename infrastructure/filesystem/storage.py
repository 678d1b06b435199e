# infrastructure/filesystem/storage.py
from __future__ import annotations
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from domain.errors import StorageError
from domain.models import Attachment, MessageMetadata, SavedFile

logger = logging.getLogger(__name__)

_ADDRESS_RE = re.compile(r"<(.+)>")
_INVALID_CHARS_RE = re.compile(r'[<>:"/\\|?*]')
_WHITESPACE_RE = re.compile(r"\s+")
SENDER_MAX_LEN = 50


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def file_timestamp(moment: datetime) -> str:
    # 2026-10-17T12:00:00.123Z -> 2026-10-17T12-00-00-123Z
    moment = moment.astimezone(timezone.utc)
    iso = moment.strftime("%Y-%m-%dT%H:%M:%S") + f".{moment.microsecond // 1000:03d}Z"
    return iso.replace(":", "-").replace(".", "-")


def sanitize_sender(text: Optional[str]) -> str:
    if not text:
        return "unknown"
    m = _ADDRESS_RE.search(text)
    clean = m.group(1) if m else text
    clean = _INVALID_CHARS_RE.sub("", clean)
    clean = _WHITESPACE_RE.sub("_", clean)
    return clean[:SENDER_MAX_LEN] or "unknown"


class ReportStore:
    def __init__(self, base: Path, clock: Callable[[], datetime] = _utc_now) -> None:
        self.base = base.resolve()
        self.clock = clock

    def ensure_directory(self) -> None:
        try:
            self.base.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"cannot create reports folder {self.base}: {exc}") from exc

    def build_filename(self, att: Attachment, meta: MessageMetadata, moment: datetime) -> str:
        stamp = file_timestamp(moment)
        # last path component only, "../x.pdf" stays inside the folder
        original = Path(att.filename).name if att.filename else ""
        original = original or f"attachment-{stamp}.pdf"
        return f"{stamp}_{sanitize_sender(meta.sender)}_{original}"

    def _write_exclusive(self, fname: str, data: bytes) -> Path:
        stem, suffix = Path(fname).stem, Path(fname).suffix
        fp = self.base / fname
        n = 0
        while True:
            try:
                with open(fp, "xb") as fh:
                    fh.write(data)
                return fp
            except FileExistsError:
                n += 1
                fp = self.base / f"{stem}_{n}{suffix}"

    def save(self, att: Attachment, meta: MessageMetadata) -> SavedFile:
        self.ensure_directory()
        moment = self.clock()
        fname = self.build_filename(att, meta, moment)
        try:
            fp = self._write_exclusive(fname, att.content)
        except OSError as exc:
            raise StorageError(f"cannot write {fname}: {exc}", filename=att.filename) from exc

        saved = SavedFile(
            original_name=att.filename,
            saved_as=fp.name,
            path=fp,
            size=len(att.content),
            sender=meta.sender,
            subject=meta.subject,
            saved_at=moment,
        )
        logger.info("Saved PDF: %s (%d bytes)", saved.saved_as, saved.size)
        return saved
