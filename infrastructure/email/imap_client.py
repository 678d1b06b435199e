# infrastructure/email/imap_client.py
from __future__ import annotations
import logging
import ssl
import threading
from typing import Callable, Optional

from imapclient import IMAPClient
from imapclient.exceptions import IMAPClientAbortError, IMAPClientError, LoginError

from domain.errors import (
    AuthError,
    ConnectError,
    FetchError,
    FolderError,
    NotConnectedError,
    SearchError,
)
from domain.models import Credentials, FolderInfo, SearchCriteria, TransportOptions

logger = logging.getLogger(__name__)

_AUTH_MARKERS = ("AUTHENTICATIONFAILED", "INVALID CREDENTIALS", "AUTHENTICATE FAILED")


def _ssl_context(verify: bool) -> ssl.SSLContext:
    ctx = ssl.create_default_context()
    if not verify:
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
        logger.warning("SSL certificate verification disabled for IMAP")
    return ctx


class MailSession:
    """
    One IMAP connection: connect, select folder, search, fetch, disconnect.
    No retries and no reconnects; a lost connection leaves the session disconnected.
    Calls are serialized on the single connection handle.
    """

    def __init__(self, client_factory: Callable[..., IMAPClient] = IMAPClient) -> None:
        self.client_factory = client_factory
        self.client: IMAPClient | None = None
        self.folder: Optional[str] = None
        self._lock = threading.RLock()
        self._swap = threading.Lock()

    def __enter__(self) -> "MailSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.disconnect()

    @property
    def connected(self) -> bool:
        return self.client is not None

    # ───────── lifecycle ─────────
    def connect(
        self,
        credentials: Credentials,
        host: str,
        port: int,
        transport: TransportOptions = TransportOptions(),
    ) -> None:
        if not credentials.password:
            raise AuthError("IMAP password not configured")
        with self._lock:
            if self.client is not None:
                logger.debug("Already connected to %s", host)
                return
            logger.info("Connecting to %s:%s (ssl=%s starttls=%s)", host, port, transport.ssl, transport.starttls)
            ctx = _ssl_context(transport.verify_ssl)
            try:
                client = self.client_factory(
                    host, port=port, ssl=transport.ssl, ssl_context=ctx, timeout=transport.timeout
                )
                if transport.starttls and not transport.ssl:
                    client.starttls(ctx)
            except (OSError, IMAPClientError) as exc:
                raise ConnectError(f"cannot reach {host}:{port}: {exc}") from exc

            try:
                client.login(credentials.username, credentials.password)
            except LoginError as exc:
                self._close_quietly(client)
                raise AuthError(f"login rejected for {credentials.username}: {exc}") from exc
            except IMAPClientError as exc:
                self._close_quietly(client)
                if any(m in str(exc).upper() for m in _AUTH_MARKERS):
                    raise AuthError(f"login rejected for {credentials.username}: {exc}") from exc
                raise ConnectError(f"IMAP error during login: {exc}") from exc
            except OSError as exc:
                self._close_quietly(client)
                raise ConnectError(f"connection lost during login: {exc}") from exc

            with self._swap:
                self.client = client
            logger.info("Connected to IMAP for %s", credentials.username)

    def disconnect(self) -> None:
        """
        Does not wait for a command in flight: its socket is shut down underneath it,
        so that command fails with a connection error instead.
        """
        with self._swap:
            client, self.client, self.folder = self.client, None, None
        if client is None:
            return
        if not self._lock.acquire(blocking=False):
            logger.info("IMAP command in flight, closing the socket under it")
            self._close_quietly(client)
            return
        try:
            client.logout()
            logger.info("Disconnected from IMAP")
        except Exception:
            logger.exception("Error closing IMAP connection")
        finally:
            self._lock.release()

    @staticmethod
    def _close_quietly(client: IMAPClient) -> None:
        try:
            client.shutdown()
        except Exception:
            logger.debug("IMAP socket shutdown raised", exc_info=True)

    def _require(self) -> IMAPClient:
        if self.client is None:
            raise NotConnectedError("IMAP session is not connected")
        return self.client

    def _lost(self, client: IMAPClient, exc: BaseException) -> None:
        logger.error("IMAP connection lost: %s", exc)
        with self._swap:
            if self.client is client:
                self.client = None
                self.folder = None
        self._close_quietly(client)

    # ───────── folder / search / fetch ─────────
    def open_folder(self, name: str) -> FolderInfo:
        with self._lock:
            client = self._require()
            try:
                resp = client.select_folder(name, readonly=False)
            except (IMAPClientAbortError, OSError) as exc:
                self._lost(client, exc)
                raise FolderError(f"cannot select {name}: {exc}") from exc
            except IMAPClientError as exc:
                raise FolderError(f"cannot select {name}: {exc}") from exc
            self.folder = name
            info = FolderInfo(
                name=name,
                exists=int(resp.get(b"EXISTS", 0)),
                uid_validity=resp.get(b"UIDVALIDITY"),
                readonly=not resp.get(b"READ-WRITE", True),
            )
            logger.debug("Selected %s (exists=%d)", name, info.exists)
            return info

    def search(self, criteria: SearchCriteria) -> list[int]:
        with self._lock:
            client = self._require()
            query = criteria.to_imap()
            try:
                uids = client.search(query)
            except (IMAPClientAbortError, OSError) as exc:
                self._lost(client, exc)
                raise SearchError(f"search {query} failed: {exc}") from exc
            except IMAPClientError as exc:
                raise SearchError(f"search {query} failed: {exc}") from exc
            return sorted(uids or [])

    def fetch(self, uid: int, mark_seen: bool) -> bytes:
        """
        Full raw message for `uid`. With mark_seen the server flags it \\Seen as part of
        the fetch itself, so it stays read even if later processing fails.
        """
        item = "BODY[]" if mark_seen else "BODY.PEEK[]"
        with self._lock:
            client = self._require()
            try:
                resp = client.fetch([uid], [item])
            except (IMAPClientAbortError, OSError) as exc:
                self._lost(client, exc)
                raise FetchError(uid, str(exc)) from exc
            except IMAPClientError as exc:
                raise FetchError(uid, str(exc)) from exc

        data = resp.get(uid) or {}
        raw = data.get(b"BODY[]")
        if raw is None:
            raise FetchError(uid, "message not returned by server")
        logger.debug("Fetched UID %s (%d bytes, mark_seen=%s)", uid, len(raw), mark_seen)
        return bytes(raw)
