# domain/errors.py
from __future__ import annotations


class IngestError(Exception):
    """Base class for every error raised by the ingestor."""


# ───────── mailbox session ─────────
class MailSessionError(IngestError):
    pass

class AuthError(MailSessionError):
    """Bad or missing credentials. Fatal at startup."""

class ConnectError(MailSessionError):
    """Network/TLS failure while connecting. Fatal at startup."""

class NotConnectedError(MailSessionError):
    pass

class FolderError(MailSessionError):
    pass

class SearchError(MailSessionError):
    pass

class FetchError(MailSessionError):
    def __init__(self, uid: int, message: str) -> None:
        super().__init__(f"UID {uid}: {message}")
        self.uid = uid


# ───────── per message / per attachment ─────────
class ParseError(IngestError):
    pass

class StorageError(IngestError):
    def __init__(self, message: str, filename: str | None = None) -> None:
        super().__init__(message)
        self.filename = filename
