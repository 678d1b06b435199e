"""
Tests for the polling state machine: dedup, single-flight, error handling
inside a cycle and the start/stop lifecycle.

The mail session and the ingestion use case are mocked.
"""

import threading
import time
import unittest
from unittest.mock import MagicMock

from config.settings import Settings
from domain.errors import FetchError, ParseError, SearchError
from domain.models import Credentials, EmailInfo, Failed, Processed, SearchCriteria, Skipped
from infrastructure.email.imap_client import MailSession
from interface_adapters.controllers.polling_controller import PollingController, PollState


def _processed():
    return Processed(saved_files=(), email_info=EmailInfo(sender=None, subject="Report", date=None))


class _ControllerTestCase(unittest.TestCase):
    retry_failed = False

    def setUp(self):
        self.settings = Settings(
            IMAP_FOLDER_INBOX="INBOX",
            MARK_AS_READ=True,
            RETRY_FAILED=self.retry_failed,
            POLL_INTERVAL=30000,
        )
        self.session = MagicMock()
        self.session.connected = True
        self.session.search.return_value = []
        self.session.fetch.side_effect = lambda uid, mark_seen: f"raw-{uid}".encode()
        self.uc = MagicMock()
        self.uc.process.return_value = _processed()
        self.ctrl = PollingController(settings=self.settings, session=self.session, uc=self.uc)

    def tearDown(self):
        self.ctrl.stop()


class TestRunOnce(_ControllerTestCase):

    def test_cycle_selects_inbox_and_searches_reports(self):
        self.ctrl.run_once()

        self.session.open_folder.assert_called_once_with("INBOX")
        self.session.search.assert_called_once_with(SearchCriteria(unseen_only=True, subject_contains="report"))

    def test_fetch_honours_mark_as_read(self):
        self.session.search.return_value = [3]
        self.ctrl.run_once()
        self.session.fetch.assert_called_once_with(3, mark_seen=True)
        self.uc.process.assert_called_once_with(b"raw-3")

    def test_same_uid_is_processed_once(self):
        self.session.search.return_value = [42]

        first = self.ctrl.run_once()
        second = self.ctrl.run_once()

        self.assertIn(42, first)
        self.assertEqual(second, {})
        self.assertEqual(self.session.fetch.call_count, 1)
        self.uc.process.assert_called_once_with(b"raw-42")
        self.assertEqual(self.ctrl.processed, {42})

    def test_parse_error_is_recorded_and_cycle_continues(self):
        self.session.search.return_value = [1, 2]
        ok = _processed()
        self.uc.process.side_effect = [ok, ParseError("bad MIME")]

        results = self.ctrl.run_once()

        self.assertIs(results[1], ok)
        self.assertIsInstance(results[2], Failed)
        self.assertIsInstance(results[2].error, ParseError)
        self.assertEqual(self.ctrl.processed, {1, 2})

    def test_unexpected_processing_error_is_contained(self):
        self.session.search.return_value = [1, 2]
        self.uc.process.side_effect = [RuntimeError("boom"), Skipped(reason="subject mismatch")]

        results = self.ctrl.run_once()

        self.assertEqual(results[1].outcome, "error")
        self.assertEqual(results[2], Skipped(reason="subject mismatch"))
        self.assertEqual(self.ctrl.processed, {1, 2})

    def test_search_error_ends_cycle(self):
        self.session.search.side_effect = SearchError("BAD")

        results = self.ctrl.run_once()

        self.assertEqual(results, {})
        self.session.fetch.assert_not_called()

    def test_fetch_error_ends_cycle_early(self):
        self.session.search.return_value = [1, 2, 3]
        self.session.fetch.side_effect = [b"raw-1", FetchError(2, "connection reset")]

        results = self.ctrl.run_once()

        self.assertEqual(sorted(results), [1, 2])
        self.assertIsInstance(results[2].error, FetchError)
        self.assertEqual(self.session.fetch.call_count, 2)
        self.uc.process.assert_called_once_with(b"raw-1")
        self.assertNotIn(3, self.ctrl.processed)


class TestRetryFailed(_ControllerTestCase):
    retry_failed = True

    def test_failed_uid_is_attempted_again(self):
        self.session.search.return_value = [7]
        self.uc.process.side_effect = [ParseError("truncated"), _processed()]

        first = self.ctrl.run_once()
        self.assertNotIn(7, self.ctrl.processed)
        second = self.ctrl.run_once()

        self.assertIsInstance(first[7], Failed)
        self.assertIsInstance(second[7], Processed)
        self.assertEqual(self.ctrl.processed, {7})


class TestTick(_ControllerTestCase):

    def test_overlapping_tick_is_dropped(self):
        started = threading.Event()
        release = threading.Event()

        def slow_search(criteria):
            started.set()
            release.wait(5)
            return []

        self.session.search.side_effect = slow_search
        worker = threading.Thread(target=self.ctrl.tick)
        worker.start()
        self.assertTrue(started.wait(5))

        self.assertIs(self.ctrl.state, PollState.POLLING)
        self.assertIsNone(self.ctrl.tick())

        release.set()
        worker.join(5)
        self.assertEqual(self.session.search.call_count, 1)
        self.assertIs(self.ctrl.state, PollState.IDLE)

    def test_guard_cleared_after_unexpected_error(self):
        self.session.open_folder.side_effect = [RuntimeError("boom"), None]

        self.assertIsNone(self.ctrl.tick())
        self.assertIs(self.ctrl.state, PollState.IDLE)
        self.assertEqual(self.ctrl.tick(), {})

    def test_tick_skipped_when_not_connected(self):
        self.session.connected = False
        self.assertIsNone(self.ctrl.tick())
        self.session.search.assert_not_called()


class TestLifecycle(_ControllerTestCase):

    def test_start_runs_first_cycle_immediately(self):
        self.ctrl.start(interval=3600)
        self.session.search.assert_called_once()

    def test_timer_keeps_polling_until_stopped(self):
        self.ctrl.start(interval=0.02)
        deadline = time.monotonic() + 5
        while self.session.search.call_count < 3 and time.monotonic() < deadline:
            time.sleep(0.01)
        self.ctrl.stop()
        self.assertGreaterEqual(self.session.search.call_count, 3)

        time.sleep(0.1)
        calls = self.session.search.call_count
        time.sleep(0.1)
        self.assertEqual(self.session.search.call_count, calls)

    def test_stop_is_terminal(self):
        self.ctrl.start(interval=3600)
        self.ctrl.stop()

        self.assertIs(self.ctrl.state, PollState.STOPPED)
        self.assertIsNone(self.ctrl.tick())
        with self.assertRaises(RuntimeError):
            self.ctrl.start(interval=3600)

    def test_connect_passes_settings_to_session(self):
        self.ctrl.connect()
        self.session.connect.assert_called_once_with(
            self.settings.credentials(),
            self.settings.IMAP_HOST,
            self.settings.IMAP_PORT,
            self.settings.transport_options(),
        )

    def test_disconnect_stops_and_closes_session(self):
        self.ctrl.start(interval=3600)
        self.ctrl.disconnect()

        self.assertIs(self.ctrl.state, PollState.STOPPED)
        self.session.disconnect.assert_called_once()


class TestConnectionLost(_ControllerTestCase):

    def setUp(self):
        super().setUp()
        self.lost = MagicMock()
        self.ctrl.on_connection_lost = self.lost

    def test_dropped_connection_is_reported_once(self):
        def drop(folder):
            self.session.connected = False
            raise SearchError("socket closed")

        self.session.open_folder.side_effect = drop

        self.assertEqual(self.ctrl.tick(), {})
        self.assertIsNone(self.ctrl.tick())

        self.assertTrue(self.ctrl.connection_lost)
        self.lost.assert_called_once_with()

    def test_tick_on_disconnected_session_reports_loss(self):
        self.session.connected = False
        self.ctrl.tick()
        self.lost.assert_called_once_with()

    def test_own_disconnect_is_not_a_loss(self):
        self.ctrl.start(interval=3600)
        self.session.connected = False
        self.ctrl.disconnect()
        self.ctrl.tick()
        self.assertFalse(self.ctrl.connection_lost)
        self.lost.assert_not_called()


class TestDisconnectDuringFetch(unittest.TestCase):

    def test_disconnect_does_not_wait_for_fetch(self):
        fetching = threading.Event()
        release = threading.Event()
        client = MagicMock()
        client.search.return_value = [5]

        def hung_fetch(uids, items):
            fetching.set()
            release.wait(10)
            raise OSError("socket shut down")

        client.fetch.side_effect = hung_fetch
        session = MailSession(client_factory=MagicMock(return_value=client))
        session.connect(Credentials("reports@example.com", "secret"), "imap.example.com", 993)
        ctrl = PollingController(settings=Settings(RETRY_FAILED=False), session=session, uc=MagicMock())

        cycle = threading.Thread(target=ctrl.tick)
        cycle.start()
        self.assertTrue(fetching.wait(5))

        closer = threading.Thread(target=ctrl.disconnect)
        closer.start()
        closer.join(2)
        try:
            self.assertFalse(closer.is_alive())
            self.assertFalse(session.connected)
            client.shutdown.assert_called()
            client.logout.assert_not_called()
        finally:
            release.set()
            cycle.join(5)

        self.assertIs(ctrl.state, PollState.STOPPED)
        self.assertIn(5, ctrl.processed)
        ctrl.uc.process.assert_not_called()


if __name__ == "__main__":
    unittest.main()
