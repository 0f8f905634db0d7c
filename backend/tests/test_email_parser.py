"""Tests for date normalization and message parsing."""

from __future__ import annotations

import base64

import pytest

from job_inbox.email.parser import (
    canonical_date,
    extract_gmail_body,
    parse_email_address,
    parse_gmail_message,
    parse_pasted_email,
)


def _b64(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("2024-01-03", "2024-01-03T00:00:00.000Z"),
        ("2024-01-03T10:15:30Z", "2024-01-03T10:15:30.000Z"),
        ("2024-01-03T12:15:30.250+02:00", "2024-01-03T10:15:30.250Z"),
        ("Wed, 03 Jan 2024 10:15:30 +0000", "2024-01-03T10:15:30.000Z"),
        ("Wed, 03 Jan 2024 05:15:30 -0500", "2024-01-03T10:15:30.000Z"),
        ("1704276930000", "2024-01-03T10:15:30.000Z"),
        (1704276930000, "2024-01-03T10:15:30.000Z"),
    ],
)
def test_canonical_date(raw, expected):
    assert canonical_date(raw) == expected


def test_unparseable_date_falls_back_to_now():
    value = canonical_date("sometime last week")
    assert value.endswith("Z")
    assert len(value) == len("2024-01-03T10:15:30.000Z")


class TestAddresses:
    def test_named_address(self):
        parsed = parse_email_address('"Jane Doe" <jane@acme.io>')
        assert parsed.name == "Jane Doe"
        assert parsed.email == "jane@acme.io"

    def test_bare_address_is_name_and_email(self):
        parsed = parse_email_address("jane@acme.io")
        assert parsed.name == parsed.email == "jane@acme.io"


class TestGmailMessage:
    def test_multipart_prefers_plain_text(self):
        msg = {
            "payload": {
                "mimeType": "multipart/alternative",
                "parts": [
                    {"mimeType": "text/html", "body": {"data": _b64("<p>HTML</p>")}},
                    {"mimeType": "text/plain", "body": {"data": _b64("Plain text")}},
                ],
            }
        }
        assert extract_gmail_body(msg) == "Plain text"

    def test_html_only_is_stripped(self):
        msg = {
            "payload": {
                "mimeType": "multipart/alternative",
                "parts": [
                    {
                        "mimeType": "text/html",
                        "body": {"data": _b64("<style>p{}</style><p>Hello <b>there</b></p>")},
                    },
                ],
            }
        }
        assert extract_gmail_body(msg) == "Hello there"

    def test_parse_full_message(self, make_gmail_message):
        raw = make_gmail_message(
            "m1", "t1", "Recruiter <recruiter@acme.io>", "Interview", "Hi", 1704276930000,
            to="Me <me@example.com>, other@example.com",
        )
        parsed = parse_gmail_message(raw)
        assert parsed.message_id == "m1"
        assert parsed.thread_id == "t1"
        assert parsed.sender.email == "recruiter@acme.io"
        assert [r.email for r in parsed.recipients] == ["me@example.com", "other@example.com"]
        assert parsed.date == "2024-01-03T10:15:30.000Z"
        assert parsed.labels == ("INBOX",)

    def test_date_header_used_without_internal_date(self):
        raw = {
            "id": "m2",
            "payload": {
                "headers": [{"name": "date", "value": "Wed, 03 Jan 2024 10:15:30 +0000"}],
                "body": {"data": _b64("x")},
            },
        }
        assert parse_gmail_message(raw).date == "2024-01-03T10:15:30.000Z"


class TestPastedEmail:
    def test_header_block(self):
        parsed = parse_pasted_email(
            "From: Jane Doe <jane@acme.io>\n"
            "To: me@example.com\n"
            "Subject: Next steps\n"
            "Date: Wed, 03 Jan 2024 10:15:30 +0000\n"
            "\n"
            "Are you free Thursday?"
        )
        assert parsed.subject == "Next steps"
        assert parsed.sender.email == "jane@acme.io"
        assert parsed.date == "2024-01-03T10:15:30.000Z"
        assert parsed.body == "Are you free Thursday?"

    def test_free_text_uses_first_line_as_subject(self):
        parsed = parse_pasted_email("Coffee chat?\nWould love to hear about your work.")
        assert parsed.subject == "Coffee chat?"
        assert parsed.sender.email == ""
        assert "Would love" in parsed.body
