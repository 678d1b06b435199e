# application/use_cases/process_mail_usecase.py
from __future__ import annotations
import logging
from typing import Callable, Union

from domain.errors import StorageError
from domain.models import EmailInfo, ParsedMessage, Processed, SavedFile, Skipped
from application.services.classifier import is_report_email, select_pdf_attachments
from infrastructure.email.parser import parse_message
from infrastructure.filesystem.storage import ReportStore

logger = logging.getLogger(__name__)

SKIP_SUBJECT = "subject mismatch"
SKIP_NO_PDF = "no pdf attachments"


class ProcessMailUseCase:
    def __init__(
        self,
        *,
        store: ReportStore,
        parser: Callable[[bytes], ParsedMessage] = parse_message,
    ) -> None:
        self.store = store
        self.parser = parser

    def process(self, raw: bytes) -> Union[Processed, Skipped]:
        """
        Decodes, classifies and stores one raw message.
        ParseError propagates to the caller; StorageError only costs the attachment it happened on.
        """
        mail = self.parser(raw)
        logger.info("Processing email - From: %s, Subject: %s", mail.sender, mail.subject)
        return self.process_mail(mail)

    def process_mail(self, mail: ParsedMessage) -> Union[Processed, Skipped]:
        # 1) Subject
        if not is_report_email(mail.subject):
            logger.info("Skipped (subject mismatch): %r", mail.subject)
            return Skipped(reason=SKIP_SUBJECT)

        # 2) PDF attachments
        pdfs = select_pdf_attachments(mail.attachments)
        if not pdfs:
            logger.info("Skipped (no PDF attachments): %r", mail.subject)
            return Skipped(reason=SKIP_NO_PDF)

        # 3) Save each one; a failure does not stop the rest
        meta = mail.metadata()
        saved: list[SavedFile] = []
        for att in pdfs:
            try:
                saved.append(self.store.save(att, meta))
            except StorageError:
                logger.exception("Failed to save attachment %s", att.filename or "<unnamed>")

        if len(saved) < len(pdfs):
            logger.warning("Saved %d of %d PDF attachments", len(saved), len(pdfs))
        else:
            logger.info("Successfully processed %d PDF attachments", len(saved))

        return Processed(
            saved_files=tuple(saved),
            email_info=EmailInfo(sender=mail.sender, subject=mail.subject, date=mail.date),
        )
