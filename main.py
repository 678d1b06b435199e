# main.py
# Entry point: connect to IMAP -> poll for report emails -> save PDF attachments
from __future__ import annotations
import logging
import signal
import sys
import threading
from config.settings import Settings
from domain.errors import AuthError, ConnectError
from interface_adapters.controllers.polling_controller import PollingController
from utils.logging_setup import configure_logging

logger = logging.getLogger(__name__)

APP_PASSWORD_HELP = (
    "1. Enable 2-Factor Authentication on the mail account\n"
    "2. Generate an App Password: https://support.google.com/accounts/answer/185833\n"
    "3. Set the IMAP_PASSWORD (or GMAIL_APP_PASSWORD) environment variable\n"
    "4. Or add it to a .env file: IMAP_PASSWORD=your_app_password"
)


def run(settings: Settings, controller: PollingController | None = None, stop_event: threading.Event | None = None) -> int:
    controller = controller or PollingController(settings=settings)
    stop_event = stop_event or threading.Event()

    logger.info("=== Report Mail Ingestor ===")
    logger.info("Account=%s host=%s folder=%s", settings.IMAP_USERNAME, settings.IMAP_HOST, settings.IMAP_FOLDER_INBOX)
    logger.info("Reports folder=%s", settings.reports_path())
    logger.info("Interval=%.1f s mark_as_read=%s", settings.poll_interval_seconds(), settings.MARK_AS_READ)

    if not settings.IMAP_PASSWORD:
        logger.error("IMAP password not configured. Please follow these steps:\n%s", APP_PASSWORD_HELP)
        return 1

    try:
        controller.connect()
    except AuthError as exc:
        logger.error("Login failed: %s\nTroubleshooting:\n%s", exc, APP_PASSWORD_HELP)
        return 1
    except ConnectError as exc:
        logger.error("Could not connect to %s:%s: %s", settings.IMAP_HOST, settings.IMAP_PORT, exc)
        return 1

    def _shutdown(signum, _frame) -> None:
        logger.info("Received %s, shutting down gracefully...", signal.Signals(signum).name)
        stop_event.set()

    if threading.current_thread() is threading.main_thread():
        signal.signal(signal.SIGINT, _shutdown)
        signal.signal(signal.SIGTERM, _shutdown)

    controller.on_connection_lost = stop_event.set

    try:
        controller.start_polling(settings.poll_interval_seconds())
        stop_event.wait()
    finally:
        controller.stop_polling()
        controller.disconnect()
    if controller.connection_lost:
        logger.error("Exiting after losing the IMAP connection; restart the ingestor to resume")
        return 2
    logger.info("Report ingestor stopped")
    return 0


def main() -> None:
    settings = Settings()
    configure_logging(settings.log_level(), settings.log_dir_path())
    sys.exit(run(settings))


if __name__ == "__main__":
    main()
