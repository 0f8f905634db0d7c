"""Email parsing: Gmail API payloads, pasted text, addresses and dates."""

from __future__ import annotations

import base64
import email as email_lib
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from email.header import decode_header, make_header
from email.utils import getaddresses, parsedate_to_datetime
from typing import List, Optional

import structlog
from bs4 import BeautifulSoup

logger = structlog.get_logger(__name__)

# Stored bodies are capped; the vector index and AI prompts truncate further
BODY_CHAR_LIMIT = 5000


@dataclass(frozen=True)
class EmailAddress:
    name: str
    email: str

    def as_dict(self) -> dict[str, str]:
        return {"name": self.name, "email": self.email}


@dataclass(frozen=True)
class ParsedEmail:
    """Provider-neutral view of one message, ready for the pipeline."""

    subject: str
    sender: EmailAddress
    date: str  # canonical ISO-8601 UTC
    body: str
    recipients: tuple[EmailAddress, ...] = ()
    labels: tuple[str, ...] = ()
    # Provider identifiers; None for pasted text
    message_id: Optional[str] = None
    thread_id: Optional[str] = None


# ── Dates ─────────────────────────────────────────────────


def format_iso(dt: datetime) -> str:
    """Render a datetime as ``YYYY-MM-DDTHH:MM:SS.mmmZ`` in UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def parse_any_date(value: object) -> Optional[datetime]:
    """Parse ISO-8601, RFC 2822 or epoch-millisecond dates; None if unparseable."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(float(value) / 1000.0, tz=timezone.utc)

    raw = str(value).strip()
    if raw.isdigit() and len(raw) >= 12:
        return datetime.fromtimestamp(int(raw) / 1000.0, tz=timezone.utc)
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        pass
    try:
        return parsedate_to_datetime(raw)
    except (TypeError, ValueError, IndexError):
        return None


def canonical_date(value: object) -> str:
    """Canonical ISO string for any supported date; falls back to now."""
    parsed = parse_any_date(value)
    if parsed is None:
        if value:
            logger.warning("email_date_unparseable", raw=str(value)[:60])
        parsed = datetime.now(timezone.utc)
    return format_iso(parsed)


# ── Addresses / headers ───────────────────────────────────


def decode_mime_text(value: Optional[str]) -> str:
    """Decode a MIME-encoded header value to a plain string."""
    if not value:
        return ""
    try:
        return str(make_header(decode_header(value))).strip()
    except Exception:
        return value.strip()


def parse_email_address(raw: str | None) -> EmailAddress:
    """Split ``"Jane Doe" <jane@acme.io>`` into name and address.

    A bare address is returned as both name and email.
    """
    raw = (raw or "").strip()
    matched = re.match(r"^(.+?)\s*<(.+?)>$", raw)
    if matched:
        return EmailAddress(name=matched.group(1).replace('"', "").strip(), email=matched.group(2).strip())
    return EmailAddress(name=raw, email=raw)


def parse_address_list(raw: str | None) -> tuple[EmailAddress, ...]:
    """Parse a comma-separated address header."""
    if not raw:
        return ()
    return tuple(
        EmailAddress(name=name or addr, email=addr)
        for name, addr in getaddresses([raw])
        if addr
    )


def get_gmail_header(msg: dict, name: str) -> str:
    """Return a header value from a Gmail API message (case-insensitive)."""
    headers = (msg.get("payload") or {}).get("headers") or []
    wanted = name.lower()
    for header in headers:
        if str(header.get("name", "")).lower() == wanted:
            return str(header.get("value", ""))
    return ""


# ── Body extraction ───────────────────────────────────────


def decode_base64url(data: str) -> str:
    """Decode Gmail's base64url body data."""
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8", errors="replace")


def _html_to_text(html: str) -> str:
    """Strip HTML tags and return readable text."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()
    return re.sub(r"\s+", " ", soup.get_text(" ", strip=True)).strip()


def _find_part_text(parts: List[dict], mime_type: str) -> str:
    for part in parts:
        body_data = (part.get("body") or {}).get("data")
        if part.get("mimeType") == mime_type and body_data:
            return decode_base64url(body_data)
        nested = part.get("parts")
        if nested:
            found = _find_part_text(nested, mime_type)
            if found:
                return found
    return ""


def extract_gmail_body(msg: dict) -> str:
    """Extract the plain-text body of a Gmail API message, falling back to HTML."""
    payload = msg.get("payload") or {}
    body_data = (payload.get("body") or {}).get("data")
    if body_data:
        text = decode_base64url(body_data)
        if payload.get("mimeType") == "text/html":
            return _html_to_text(text)
        return text

    parts = payload.get("parts") or []
    plain = _find_part_text(parts, "text/plain")
    if plain:
        return plain
    html = _find_part_text(parts, "text/html")
    return _html_to_text(html) if html else ""


# ── Top-level parsers ─────────────────────────────────────


def parse_gmail_message(msg: dict) -> ParsedEmail:
    """Parse a Gmail API ``format=full`` message into a ParsedEmail."""
    to_header = get_gmail_header(msg, "To")
    return ParsedEmail(
        subject=decode_mime_text(get_gmail_header(msg, "Subject")),
        sender=parse_email_address(decode_mime_text(get_gmail_header(msg, "From"))),
        recipients=parse_address_list(to_header) or (parse_email_address(to_header),),
        date=canonical_date(msg.get("internalDate") or get_gmail_header(msg, "Date")),
        body=extract_gmail_body(msg)[:BODY_CHAR_LIMIT],
        labels=tuple(msg.get("labelIds") or ()),
        message_id=msg.get("id"),
        thread_id=msg.get("threadId"),
    )


_HEADER_LINE = re.compile(r"^(from|to|subject|date)\s*:", re.IGNORECASE)


def parse_pasted_email(content: str) -> ParsedEmail:
    """Best-effort parse of pasted email text without the AI service.

    Text that starts with RFC 822 style headers is parsed with the stdlib
    email parser; otherwise the first non-empty line becomes the subject.
    """
    text = (content or "").strip()
    first_line = text.splitlines()[0] if text else ""

    if _HEADER_LINE.match(first_line):
        msg = email_lib.message_from_string(text)
        payload = msg.get_payload()
        body = payload if isinstance(payload, str) else ""
        return ParsedEmail(
            subject=decode_mime_text(msg.get("Subject", "")),
            sender=parse_email_address(decode_mime_text(msg.get("From", ""))),
            recipients=parse_address_list(msg.get("To", "")),
            date=canonical_date(decode_mime_text(msg.get("Date", ""))),
            body=body.strip()[:BODY_CHAR_LIMIT],
        )

    return ParsedEmail(
        subject=first_line[:200],
        sender=EmailAddress(name="", email=""),
        date=canonical_date(None),
        body=text[:BODY_CHAR_LIMIT],
    )
