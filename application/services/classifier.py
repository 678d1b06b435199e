# application/services/classifier.py
# Decides whether a message is a report and which attachments are PDFs.
from __future__ import annotations
from typing import Iterable, Optional

from domain.models import Attachment

REPORT_KEYWORD = "report"
PDF_CONTENT_TYPE = "application/pdf"
PDF_SUFFIX = ".pdf"


def is_report_email(subject: Optional[str]) -> bool:
    if subject is None:
        return False
    return REPORT_KEYWORD in subject.lower()


def is_pdf_attachment(att: Attachment) -> bool:
    ctype = (att.content_type or "").lower()
    name = (att.filename or "").lower()
    return ctype == PDF_CONTENT_TYPE or name.endswith(PDF_SUFFIX)


def select_pdf_attachments(attachments: Iterable[Attachment]) -> list[Attachment]:
    """Qualifying attachments, in the order they appear in the message."""
    return [att for att in attachments if is_pdf_attachment(att)]
