"""
Tests for decoding raw messages into ParsedMessage.
"""

import unittest
from datetime import datetime, timezone

from domain.errors import ParseError
from infrastructure.email.parser import parse_message
from mail_factory import DOCX_TYPE, PDF_BYTES, build_message


class TestParseMessage(unittest.TestCase):

    def test_headers_and_attachments(self):
        raw = build_message(
            attachments=[
                ("q.pdf", "application/pdf", PDF_BYTES),
                ("notes.docx", DOCX_TYPE, b"PK\x03\x04docx"),
            ]
        )

        msg = parse_message(raw)

        self.assertEqual(msg.subject, "Weekly Report")
        self.assertIn("alice@example.com", msg.sender)
        self.assertEqual(msg.date, datetime(2026, 10, 16, 10, 0, tzinfo=timezone.utc))
        self.assertEqual([a.filename for a in msg.attachments], ["q.pdf", "notes.docx"])
        self.assertEqual(msg.attachments[0].content_type, "application/pdf")
        self.assertEqual(msg.attachments[0].content, PDF_BYTES)

    def test_body_is_not_an_attachment(self):
        msg = parse_message(build_message(attachments=[]))
        self.assertEqual(msg.attachments, ())

    def test_missing_subject_is_none(self):
        msg = parse_message(build_message(subject=None))
        self.assertIsNone(msg.subject)

    def test_missing_date_is_none(self):
        msg = parse_message(build_message(date=None))
        self.assertIsNone(msg.date)

    def test_empty_input_raises(self):
        with self.assertRaises(ParseError):
            parse_message(b"")

    def test_headerless_input_raises(self):
        with self.assertRaises(ParseError):
            parse_message(b"not an email at all")


if __name__ == "__main__":
    unittest.main()
