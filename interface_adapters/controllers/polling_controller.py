# interface_adapters/controllers/polling_controller.py
from __future__ import annotations
import enum
import logging
import threading
import time
from typing import Callable, Optional

from config.settings import Settings
from domain.errors import MailSessionError, ParseError
from domain.models import Failed, Processed, ProcessingOutcome, SearchCriteria
from application.services.classifier import REPORT_KEYWORD
from application.use_cases.process_mail_usecase import ProcessMailUseCase
from infrastructure.email.imap_client import MailSession
from infrastructure.filesystem.storage import ReportStore

logger = logging.getLogger(__name__)


class PollState(enum.Enum):
    IDLE = "idle"
    POLLING = "polling"
    STOPPED = "stopped"


class PollingController:
    def __init__(
        self,
        settings: Settings,
        session: MailSession | None = None,
        uc: ProcessMailUseCase | None = None,
        on_connection_lost: Callable[[], None] | None = None,
    ) -> None:
        self.settings = settings
        self.session = session or MailSession()
        self.uc = uc or ProcessMailUseCase(store=ReportStore(base=settings.reports_path()))
        self.criteria = SearchCriteria(unseen_only=True, subject_contains=REPORT_KEYWORD)
        self.processed: set[int] = set()
        self.state = PollState.IDLE
        self.on_connection_lost = on_connection_lost
        self.connection_lost = False

        self._guard = threading.Lock()
        self._stop = threading.Event()
        self._timer: threading.Thread | None = None

    # ───────────────────────── lifecycle ─────────────────────────
    def connect(self) -> None:
        st = self.settings
        self.session.connect(st.credentials(), st.IMAP_HOST, st.IMAP_PORT, st.transport_options())

    def start(self, interval: float | None = None) -> None:
        """Runs one cycle right away, then one every `interval` seconds on a timer thread."""
        if self.state is PollState.STOPPED:
            raise RuntimeError("controller was stopped; create a new one")
        if self._timer is not None:
            raise RuntimeError("polling already started")
        interval = interval if interval is not None else self.settings.poll_interval_seconds()
        logger.info("Starting polling every %.1f s", interval)

        self.tick()
        self._timer = threading.Thread(target=self._run_timer, args=(interval,), name="poll-timer", daemon=True)
        self._timer.start()

    def _run_timer(self, interval: float) -> None:
        next_fire = time.monotonic() + interval
        while not self._stop.wait(max(0.0, next_fire - time.monotonic())):
            self.tick()
            next_fire += interval
            now = time.monotonic()
            if next_fire <= now:
                # ticks that fell due during a slow cycle are dropped, not queued
                dropped = int((now - next_fire) // interval) + 1
                logger.debug("Cycle overran the interval, dropping %d tick(s)", dropped)
                next_fire += dropped * interval

    def stop(self) -> None:
        """
        Cancels the timer. An in-flight cycle is left to finish; no new cycle starts.
        Terminal: a stopped controller cannot be started again.
        """
        with self._guard:
            was = self.state
            self.state = PollState.STOPPED
        self._stop.set()
        if self._timer is not None:
            self._timer = None
            logger.info("Stopped polling")
        if was is PollState.POLLING:
            logger.info("A poll cycle is still running; it will finish on its own")

    def disconnect(self) -> None:
        """Returns once the timer is cancelled; an in-flight fetch is cut off, not awaited."""
        self.stop()
        self.session.disconnect()

    # names used by the process entry point
    start_polling = start
    stop_polling = stop

    # ───────────────────────── polling ─────────────────────────
    def tick(self) -> Optional[dict[int, ProcessingOutcome]]:
        """
        One timer fire. Returns None when the fire was dropped (cycle already running,
        controller stopped, or session disconnected).
        """
        with self._guard:
            if self.state is PollState.POLLING:
                logger.debug("Poll cycle still running, tick dropped")
                return None
            if self.state is PollState.STOPPED:
                return None
            lost = not self.session.connected
            if not lost:
                self.state = PollState.POLLING
        if lost:
            self._report_connection_lost()
            return None

        try:
            return self.run_once()
        except Exception:
            logger.exception("Error in polling cycle")
            return None
        finally:
            with self._guard:
                if self.state is PollState.POLLING:
                    self.state = PollState.IDLE
                stopped = self.state is PollState.STOPPED
            if not stopped and not self.session.connected:
                self._report_connection_lost()

    def _report_connection_lost(self) -> None:
        # no reconnect here: the process exits and its supervisor restarts it
        if self.connection_lost:
            return
        self.connection_lost = True
        logger.error("IMAP session not connected, polling cannot continue")
        if self.on_connection_lost is not None:
            self.on_connection_lost()

    def _record(self, uid: int, ok: bool) -> None:
        if ok or not self.settings.RETRY_FAILED:
            self.processed.add(uid)

    def run_once(self) -> dict[int, ProcessingOutcome]:
        st = self.settings
        results: dict[int, ProcessingOutcome] = {}
        try:
            self.session.open_folder(st.IMAP_FOLDER_INBOX)
            uids = self.session.search(self.criteria)
        except MailSessionError as exc:
            logger.error("Error checking for emails: %s", exc)
            return results

        pending = [uid for uid in uids if uid not in self.processed]
        if not pending:
            logger.info("No new report emails found")
            return results
        logger.info("Found %d unread emails with %r in subject (%d new)", len(uids), REPORT_KEYWORD, len(pending))

        for uid in pending:
            try:
                raw = self.session.fetch(uid, mark_seen=st.MARK_AS_READ)
            except MailSessionError as exc:
                logger.error("Fetch failed for UID %s, ending cycle: %s", uid, exc)
                results[uid] = Failed(error=exc)
                self._record(uid, ok=False)
                break

            try:
                outcome = self.uc.process(raw)
            except ParseError as exc:
                logger.error("Could not parse email UID %s: %s", uid, exc)
                results[uid] = Failed(error=exc)
                self._record(uid, ok=False)
                continue
            except Exception as exc:
                logger.exception("Error processing email UID %s", uid)
                results[uid] = Failed(error=exc)
                self._record(uid, ok=False)
                continue

            results[uid] = outcome
            self._record(uid, ok=True)
            if isinstance(outcome, Processed):
                logger.info("Processed email UID %s: %d PDFs saved", uid, len(outcome.saved_files))
                for f in outcome.saved_files:
                    logger.info("   %s", f.saved_as)
            else:
                logger.info("Email UID %s skipped: %s", uid, outcome.reason)

        return results
