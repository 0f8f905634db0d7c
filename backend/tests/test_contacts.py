"""Tests for contact upsert from AI drafts and company domain enrichment."""

from __future__ import annotations

from sqlalchemy.orm import Session

from conftest import USER_EMAIL, USER_ID, RecordingVectorIndex
from job_inbox.extraction.llm import DraftContact
from job_inbox.ingestion.pipeline import load_domain_index
from job_inbox.linking.contacts import enrich_company_domains, upsert_extracted_contacts
from job_inbox.models import Company, Contact


def _upsert(session: Session, contacts, **kwargs) -> int:
    index = load_domain_index(session, USER_ID, USER_EMAIL)
    return upsert_extracted_contacts(session, USER_ID, contacts, index, user_email=USER_EMAIL, **kwargs)


class TestUpsertExtractedContacts:
    def test_existing_contact_gains_company_link(self, db_session: Session, acme):
        db_session.add(Contact(user_id=USER_ID, name="Sam Lee", email="sam@recruitco.com"))
        db_session.flush()

        created = _upsert(
            db_session,
            [DraftContact(name="Sam Lee", email="Sam@RecruitCo.com", position="Recruiter", company="Acme Robotics")],
        )

        assert created == 0
        contact = db_session.query(Contact).one()
        assert contact.company_id == "co-acme"
        assert contact.position == "Recruiter"

    def test_existing_company_link_is_kept(self, db_session: Session, globex):
        created = _upsert(
            db_session,
            [DraftContact(name="Jane Roe", email="jane@globex.com", company="Acme Robotics")],
        )

        assert created == 0
        assert db_session.query(Contact).one().company_id == "co-globex"

    def test_first_contact_per_company_is_primary(self, db_session: Session, acme):
        index = RecordingVectorIndex()
        created = _upsert(
            db_session,
            [
                DraftContact(name="Sam Lee", email="sam@acme.io"),
                DraftContact(name="Kim Park", email="kim@acme.io"),
                DraftContact(name="Me", email=USER_EMAIL),
                DraftContact(name="Jobs", email="noreply@acme.io"),
            ],
            vector_index=index,
        )

        assert created == 2
        contacts = {c.email: c for c in db_session.query(Contact).all()}
        assert set(contacts) == {"sam@acme.io", "kim@acme.io"}
        assert contacts["sam@acme.io"].primary_contact is True
        assert contacts["kim@acme.io"].primary_contact is False
        assert index.contacts == ["sam@acme.io", "kim@acme.io"]

    def test_unknown_company_is_not_created(self, db_session: Session, acme):
        _upsert(db_session, [DraftContact(name="Lee", email="lee@startup.dev", company="Startup Inc")])

        assert db_session.query(Contact).one().company_id is None
        assert db_session.query(Company).count() == 1


def test_enrich_company_domains(db_session: Session, globex):
    db_session.add(Contact(user_id=USER_ID, company_id="co-globex", name="Pat", email="pat@gmail.com"))
    db_session.flush()

    result = enrich_company_domains(db_session, USER_ID)

    assert result.companies_enriched == 1
    assert result.total_companies == 2
    assert db_session.get(Company, "co-globex").email_domain == "globex.com"
