"""Shared fixtures: in-memory database, seeded user data and provider stubs."""

from __future__ import annotations

import base64
from typing import Callable, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from job_inbox.config import AppConfig
from job_inbox.database import enable_sqlite_savepoints
from job_inbox.models import Base, Company, Contact, UserAccount

USER_ID = "user-1"
USER_EMAIL = "me@example.com"


@pytest.fixture
def db_session():
    """Create an in-memory SQLite database for testing."""
    engine = enable_sqlite_savepoints(create_engine("sqlite:///:memory:", echo=False))
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine)
    session = SessionLocal()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def config() -> AppConfig:
    return AppConfig(
        database_url="sqlite:///:memory:",
        llm_enabled=False,
        vector_index_enabled=False,
        webhook_secret="s3cret",
        scan_batch_size=2,
    )


@pytest.fixture
def acme(db_session: Session) -> Company:
    """A registered user with one company, Acme Robotics at acme.io."""
    db_session.add(UserAccount(id=USER_ID, email=USER_EMAIL))
    company = Company(id="co-acme", user_id=USER_ID, name="Acme Robotics", email_domain="acme.io")
    db_session.add(company)
    db_session.flush()
    return company


@pytest.fixture
def globex(db_session: Session, acme: Company) -> Company:
    """A second company known only through a contact's address."""
    company = Company(id="co-globex", user_id=USER_ID, name="Globex")
    db_session.add(company)
    db_session.add(
        Contact(user_id=USER_ID, company_id=company.id, name="Jane Roe", email="jane@globex.com")
    )
    db_session.flush()
    return company


def _b64(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


@pytest.fixture
def make_gmail_message() -> Callable[..., dict]:
    """Factory for Gmail API ``format=full`` message payloads."""

    def _make(
        msg_id: str,
        thread_id: str,
        sender: str,
        subject: str,
        body: str,
        internal_ms: int,
        to: str = USER_EMAIL,
        html: bool = False,
    ) -> dict:
        return {
            "id": msg_id,
            "threadId": thread_id,
            "labelIds": ["INBOX"],
            "internalDate": str(internal_ms),
            "payload": {
                "mimeType": "text/html" if html else "text/plain",
                "headers": [
                    {"name": "From", "value": sender},
                    {"name": "To", "value": to},
                    {"name": "Subject", "value": subject},
                ],
                "body": {"data": _b64(body), "size": len(body)},
            },
        }

    return _make


class StubGmailClient:
    """In-memory stand-in for GmailClient."""

    def __init__(self, messages: list[dict], auth_error: Optional[Exception] = None) -> None:
        self.messages = {m["id"]: m for m in messages}
        self.auth_error = auth_error
        self.queries: list[str] = []

    def __enter__(self) -> "StubGmailClient":
        return self

    def __exit__(self, *exc: object) -> None:
        return None

    def list_message_ids(self, query: str, max_results: int, deadline=None) -> list[dict]:
        if self.auth_error is not None:
            raise self.auth_error
        self.queries.append(query)
        refs = [{"id": m["id"], "threadId": m["threadId"]} for m in self.messages.values()]
        return refs[:max_results]

    def get_messages(self, message_ids, batch_size=None, deadline=None):
        return [self.messages[mid] for mid in message_ids], []


class RecordingVectorIndex:
    """Vector index stub that remembers what it was asked to store."""

    def __init__(self, matches=None) -> None:
        self.emails: list[str] = []
        self.contacts: list[str] = []
        self.matches = matches or []

    def upsert_emails(self, user_id, emails) -> int:
        self.emails.extend(e.id for e in emails)
        return len(emails)

    def upsert_contacts(self, user_id, contacts) -> int:
        self.contacts.extend(c.email for c in contacts)
        return len(contacts)

    def search_emails(self, user_id, query, top_k=10):
        return list(self.matches)


class FailingVectorIndex(RecordingVectorIndex):
    def upsert_emails(self, user_id, emails) -> int:
        raise RuntimeError("pinecone unavailable")
