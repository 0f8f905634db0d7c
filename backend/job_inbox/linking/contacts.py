"""Contact upsert from AI drafts and company domain enrichment."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

import structlog
from sqlalchemy.orm import Session

from job_inbox.extraction.llm import DraftContact
from job_inbox.linking.resolver import GENERIC_DOMAINS, DomainIndex, extract_domain
from job_inbox.models import Company, Contact
from job_inbox.storage.vector_index import VectorIndex
from job_inbox.timeouts import call_with_timeout

logger = structlog.get_logger(__name__)


def _is_automated(address: str) -> bool:
    return "no-reply" in address or "noreply" in address


def upsert_extracted_contacts(
    session: Session,
    user_id: str,
    contacts: Sequence[DraftContact],
    index: DomainIndex,
    fallback_company: Optional[str] = None,
    user_email: Optional[str] = None,
    vector_index: Optional[VectorIndex] = None,
    vector_timeout_sec: float = 20,
) -> int:
    """Create or fill in contacts found in an email. Returns the number created.

    Contacts are deduplicated by lowercase email per user. The user's own
    address and automated senders are skipped. A contact is linked only to a
    company that already exists; companies are never created here. Existing
    contacts gain a missing position or company link but are never re-linked.
    """
    existing = {
        (c.email or "").lower(): c
        for c in session.query(Contact).filter(Contact.user_id == user_id).all()
        if c.email
    }
    companies_with_primary = {
        c.company_id for c in existing.values() if c.primary_contact and c.company_id
    }
    own = (user_email or "").lower()

    created: list[Contact] = []
    for person in contacts:
        if not person.email or not person.name:
            continue
        email_lower = person.email.lower()
        if email_lower == own or _is_automated(email_lower):
            continue

        match = (
            index.match_name(person.company)
            or index.match_name(fallback_company)
            or index.match_email(person.email)
        )
        company_id = match.company_id if match else None

        current = existing.get(email_lower)
        if current is not None:
            if person.position and not current.position:
                current.position = person.position
            if company_id and not current.company_id:
                current.company_id = company_id
                logger.info("contact_company_linked", contact_id=current.id, company_id=company_id)
            continue

        is_primary = bool(company_id) and company_id not in companies_with_primary
        if is_primary:
            companies_with_primary.add(company_id)

        contact = Contact(
            user_id=user_id,
            company_id=company_id,
            name=person.name,
            email=person.email,
            position=person.position or "",
            primary_contact=is_primary,
        )
        session.add(contact)
        existing[email_lower] = contact
        created.append(contact)

    session.flush()
    if created:
        logger.info("contacts_created", user_id=user_id, count=len(created))

    if created and vector_index is not None:
        try:
            call_with_timeout(
                vector_index.upsert_contacts,
                user_id,
                created,
                timeout_sec=vector_timeout_sec,
                label="Vector upsert",
            )
        except Exception as exc:
            logger.warning("contact_vector_upsert_failed", error=str(exc))

    return len(created)


@dataclass(frozen=True)
class EnrichmentResult:
    companies_enriched: int
    total_companies: int


def enrich_company_domains(session: Session, user_id: str) -> EnrichmentResult:
    """Write back ``email_domain`` for companies that lack one.

    The first contact at a non-generic domain supplies the company's domain.
    """
    companies = session.query(Company).filter(Company.user_id == user_id).all()
    contacts = (
        session.query(Contact)
        .filter(Contact.user_id == user_id, Contact.company_id.isnot(None))
        .all()
    )

    enriched = 0
    for company in companies:
        if company.email_domain:
            continue
        for contact in contacts:
            if contact.company_id != company.id:
                continue
            domain = extract_domain(contact.email)
            if domain and domain not in GENERIC_DOMAINS:
                company.email_domain = domain
                enriched += 1
                logger.info("company_domain_enriched", company_id=company.id, domain=domain)
                break

    session.flush()
    return EnrichmentResult(companies_enriched=enriched, total_companies=len(companies))
