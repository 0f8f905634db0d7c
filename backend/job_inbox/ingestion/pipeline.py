"""Shared pieces of the ingestion entry points: summaries and index loading."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import structlog
from sqlalchemy.orm import Session

from job_inbox.linking.resolver import DomainIndex, build_domain_index, extract_domain
from job_inbox.models import Company, Contact, UserAccount

logger = structlog.get_logger(__name__)


@dataclass
class MessageDetail:
    """Per-message outcome reported by the single-message entry points."""

    message_id: str
    thread_id: str
    is_new_thread: bool
    email_type: str
    company_id: Optional[str]
    company_name: Optional[str] = None


@dataclass
class IngestionSummary:
    """Counts and errors returned by every ingestion entry point."""

    total: int = 0
    imported: int = 0
    skipped: int = 0
    threads: int = 0
    errors: list[str] = field(default_factory=list)
    cancelled: bool = False
    message: Optional[MessageDetail] = None


def get_user_email(session: Session, user_id: str) -> Optional[str]:
    account = session.get(UserAccount, user_id)
    return account.email.lower() if account and account.email else None


def load_domain_index(session: Session, user_id: str, user_email: Optional[str] = None) -> DomainIndex:
    """Build the per-request DomainIndex from the user's companies and contacts."""
    companies = session.query(Company).filter(Company.user_id == user_id).all()
    contacts = (
        session.query(Contact)
        .filter(Contact.user_id == user_id, Contact.email.isnot(None))
        .all()
    )
    user_domain = extract_domain(user_email) if user_email else None
    return build_domain_index(companies, contacts, user_domain=user_domain)
