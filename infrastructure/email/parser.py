# infrastructure/email/parser.py
from __future__ import annotations
import logging
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Optional

import pyzmail

from domain.errors import ParseError
from domain.models import Attachment, ParsedMessage

logger = logging.getLogger(__name__)


def _parse_date(raw: str) -> Optional[datetime]:
    if not raw:
        return None
    try:
        return parsedate_to_datetime(raw)
    except (TypeError, ValueError):
        logger.debug("Unparseable Date header: %r", raw)
        return None


def parse_message(raw: bytes) -> ParsedMessage:
    """
    Decodes a raw RFC822 message into a ParsedMessage.
    Body parts (text/plain, text/html) are not attachments and are dropped.
    """
    if not raw:
        raise ParseError("empty message")
    try:
        msg = pyzmail.PyzMessage.factory(raw)
    except Exception as exc:
        raise ParseError(f"could not decode message: {exc}") from exc

    if not msg.keys():
        raise ParseError("message has no headers")

    # get_decoded_header returns "" for a missing header
    subject = msg.get_decoded_header("subject") if msg.get("subject") is not None else None
    sender = msg.get_decoded_header("from") or None
    date = _parse_date(msg.get_decoded_header("date"))

    atts: list[Attachment] = []
    for part in msg.mailparts:
        if part.is_body:
            continue
        payload = part.get_payload()
        if isinstance(payload, bytes):
            atts.append(Attachment(filename=part.filename or None, content_type=part.type or None, content=payload))

    logger.debug("Parsed message from=%s subject=%r attachments=%d", sender, subject, len(atts))
    return ParsedMessage(sender=sender, subject=subject, date=date, attachments=tuple(atts))
