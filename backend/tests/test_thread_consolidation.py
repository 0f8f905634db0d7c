"""Tests for thread resolution, consolidation and the dedup guard.

Demonstrates:
1. Messages sharing a thread id consolidate into one EmailThread row
2. message_count / latest_date / email_type / company_id follow their merge rules
3. Thread creation is insert-if-absent keyed by (user_id, thread_id)
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Session

from job_inbox.email.parser import EmailAddress, ParsedEmail, canonical_date
from job_inbox.extraction.llm import EmailDraft
from job_inbox.ids import record_uuid
from job_inbox.linking.threads import (
    DedupGuard,
    ThreadState,
    consolidate,
    resolve_thread_id,
)
from job_inbox.models import EmailMessage, EmailThread
from job_inbox.storage.writer import DualStoreWriter, build_email_record

USER = "user-t"


def _parsed(date: str, sender: str = "recruiter@acme.io", to: str = "me@example.com") -> ParsedEmail:
    return ParsedEmail(
        subject="Robotics Engineer",
        sender=EmailAddress(name="Recruiter", email=sender),
        recipients=(EmailAddress(name="Me", email=to),),
        date=canonical_date(date),
        body="Hello",
    )


def _write(
    session: Session,
    thread_id: str,
    date: str,
    email_type: str = "general",
    company_id: Optional[str] = None,
    sender: str = "recruiter@acme.io",
    to: str = "me@example.com",
):
    record = build_email_record(
        USER,
        _parsed(date, sender, to),
        thread_id=thread_id,
        email_type=email_type,
        company_id=company_id,
        source="scan",
    )
    return DualStoreWriter(session).write(USER, record, company_id)


def _thread(session: Session, thread_id: str) -> EmailThread:
    return (
        session.query(EmailThread)
        .filter(EmailThread.user_id == USER, EmailThread.thread_id == thread_id)
        .one()
    )


class TestConsolidate:
    def test_two_messages_in_thread_t1(self, db_session: Session):
        first = _write(db_session, "t1", "2024-01-01")
        second = _write(db_session, "t1", "2024-01-03")

        assert first.thread.state is ThreadState.NEW
        assert second.thread.state is ThreadState.EXISTING
        thread = _thread(db_session, "t1")
        assert thread.message_count == 2
        assert thread.latest_date == "2024-01-03T00:00:00.000Z"
        assert db_session.query(EmailThread).count() == 1

    def test_latest_date_never_moves_backwards(self, db_session: Session):
        _write(db_session, "t1", "2024-01-03")
        update = _write(db_session, "t1", "2024-01-01").thread
        assert update.latest_date == "2024-01-03T00:00:00.000Z"
        assert update.message_count == 2

    def test_message_count_matches_member_count(self, db_session: Session):
        for day in range(1, 6):
            _write(db_session, "t-many", f"2024-02-0{day}")
        members = db_session.query(EmailMessage).filter(EmailMessage.thread_id == "t-many").count()
        thread = _thread(db_session, "t-many")
        assert thread.message_count == members == 5
        assert thread.latest_date == "2024-02-05T00:00:00.000Z"

    def test_thread_type_is_highest_priority_member(self, db_session: Session):
        _write(db_session, "t2", "2024-01-01", email_type="general")
        _write(db_session, "t2", "2024-01-02", email_type="rejection")
        _write(db_session, "t2", "2024-01-03", email_type="interview_scheduling")
        assert _thread(db_session, "t2").email_type == "rejection"

    def test_company_is_backfilled_never_replaced(self, db_session: Session):
        _write(db_session, "t3", "2024-01-01", company_id=None)
        assert _thread(db_session, "t3").company_id is None
        _write(db_session, "t3", "2024-01-02", company_id="co-1")
        _write(db_session, "t3", "2024-01-03", company_id="co-2")
        assert _thread(db_session, "t3").company_id == "co-1"

    def test_participants_are_unioned_by_email(self, db_session: Session):
        _write(db_session, "t4", "2024-01-01", sender="a@acme.io", to="me@example.com")
        _write(db_session, "t4", "2024-01-02", sender="A@ACME.IO", to="b@acme.io")
        emails = [p["email"].lower() for p in _thread(db_session, "t4").participants]
        assert emails == ["a@acme.io", "me@example.com", "b@acme.io"]

    def test_thread_row_id_is_deterministic(self, db_session: Session):
        _write(db_session, "t5", "2024-01-01")
        assert _thread(db_session, "t5").id == record_uuid(USER, "t5")

    def test_second_create_for_same_key_merges(self, db_session: Session):
        # Two writers that both resolved the thread as NEW
        records = [
            build_email_record(USER, _parsed(d), thread_id="race", email_type="general",
                               company_id=None, source="scan")
            for d in ("2024-03-01", "2024-03-02")
        ]
        for record in records:
            db_session.add(record)
        db_session.flush()
        a = consolidate(db_session, USER, "race", records[0], None)
        b = consolidate(db_session, USER, "race", records[1], None)
        assert a.is_new and not b.is_new
        assert b.message_count == 2
        assert db_session.query(EmailThread).filter(EmailThread.thread_id == "race").count() == 1


class TestResolveThreadId:
    def test_provider_thread_new_then_existing(self, db_session: Session):
        assert resolve_thread_id(db_session, USER, "gt-1").state is ThreadState.NEW
        _write(db_session, "gt-1", "2024-01-01")
        resolution = resolve_thread_id(db_session, USER, "gt-1")
        assert resolution.thread_id == "gt-1"
        assert resolution.state is ThreadState.EXISTING

    def test_threads_are_scoped_per_user(self, db_session: Session):
        _write(db_session, "gt-1", "2024-01-01")
        assert resolve_thread_id(db_session, "someone-else", "gt-1").state is ThreadState.NEW

    def test_ai_proposal_used_only_when_thread_exists(self, db_session: Session):
        draft = EmailDraft(matches_existing_thread=True, matched_thread_id="thread_pasted_1")
        minted = resolve_thread_id(db_session, USER, None, draft=draft)
        assert minted.state is ThreadState.NEW
        assert minted.thread_id.startswith("thread_pasted_")
        assert minted.thread_id != "thread_pasted_1"

        _write(db_session, "thread_pasted_1", "2024-01-01")
        matched = resolve_thread_id(db_session, USER, None, draft=draft)
        assert matched.thread_id == "thread_pasted_1"
        assert matched.state is ThreadState.EXISTING

    def test_no_provider_id_and_no_draft_mints(self, db_session: Session):
        resolution = resolve_thread_id(db_session, USER, None)
        assert resolution.is_new
        assert resolution.thread_id.startswith("thread_pasted_")


class TestDedupGuard:
    def test_check_and_add(self):
        guard = DedupGuard()
        assert guard.check_and_add("t1", "2024-01-01T00:00:00.000Z") is False
        assert guard.check_and_add("t1", "2024-01-01T00:00:00.000Z") is True
        assert guard.check_and_add("t1", "2024-01-02T00:00:00.000Z") is False
        assert len(guard) == 2

    def test_load_from_stored_messages(self, db_session: Session):
        _write(db_session, "t1", "2024-01-01")
        guard = DedupGuard.load(db_session, USER)
        assert "t1_2024-01-01T00:00:00.000Z" in guard.keys
        assert guard.check_and_add("t1", "2024-01-01T00:00:00.000Z") is True
        assert len(DedupGuard.load(db_session, "someone-else")) == 0
