"""End-to-end tests for the bulk mailbox scan against an in-memory Gmail stub."""

from __future__ import annotations

import pytest
from sqlalchemy import text
from sqlalchemy.orm import Session

from conftest import USER_ID, RecordingVectorIndex, StubGmailClient
from job_inbox.email.client import GmailAuthError
from job_inbox.errors import InputError, RequestTimeoutError
from job_inbox.ingestion.scan import run_email_scan
from job_inbox.models import EmailMessage, EmailThread, JobPosting
from job_inbox.timeouts import Deadline

JAN_1 = 1704067200000
DAY = 86_400_000


@pytest.fixture
def mailbox(make_gmail_message):
    return [
        make_gmail_message(
            "m1", "t1", "Recruiter <recruiter@acme.io>",
            "Interview for Robotics Engineer",
            "We'd like to set up a technical phone screen.",
            JAN_1 + DAY,
        ),
        make_gmail_message(
            "m2", "t1", "Recruiter <recruiter@acme.io>",
            "Re: Interview for Robotics Engineer",
            "Tuesday at 10 works.",
            JAN_1 + 3 * DAY,
        ),
        make_gmail_message(
            "m3", "t2", "Pat <pat@gmail.com>",
            "Referral",
            "<p>I referred you to <b>Acme Robotics</b> last week.</p>",
            JAN_1 + 2 * DAY,
            html=True,
        ),
        make_gmail_message(
            "m4", "t3", "Me <me@example.com>",
            "Following up on my application",
            "Hi Acme Robotics team, just checking in.",
            JAN_1 + 4 * DAY,
        ),
        make_gmail_message(
            "m5", "t4", "news@initech.com",
            "Hello",
            "Nothing to see here.",
            JAN_1 + 5 * DAY,
        ),
    ]


def _scan(session, config, gmail, **kwargs):
    return run_email_scan(session, config, USER_ID, gmail, "2024-01-01", "2024-01-31", **kwargs)


class TestEmailScan:
    def test_imports_company_mail_and_threads_it(self, db_session: Session, config, acme, mailbox):
        summary = _scan(db_session, config, StubGmailClient(mailbox))

        assert summary.total == 5
        assert summary.imported == 3
        assert summary.skipped == 2
        assert summary.threads == 2
        assert summary.errors == []
        assert summary.cancelled is False

        thread = (
            db_session.query(EmailThread)
            .filter(EmailThread.user_id == USER_ID, EmailThread.thread_id == "t1")
            .one()
        )
        assert thread.message_count == 2
        assert thread.latest_date == "2024-01-04T00:00:00.000Z"
        assert thread.email_type == "interview_scheduling"
        assert thread.company_id == "co-acme"

    def test_generic_sender_resolves_company_from_text(self, db_session: Session, config, acme, mailbox):
        _scan(db_session, config, StubGmailClient(mailbox))
        referral = db_session.query(EmailMessage).filter(EmailMessage.thread_id == "t2").one()
        assert referral.company_id == "co-acme"
        assert "<b>" not in referral.body

    def test_own_and_unknown_senders_are_not_imported(self, db_session: Session, config, acme, mailbox):
        _scan(db_session, config, StubGmailClient(mailbox))
        stored_threads = {m.thread_id for m in db_session.query(EmailMessage).all()}
        assert stored_threads == {"t1", "t2"}

    def test_same_thread_and_date_is_skipped(self, db_session: Session, config, acme, mailbox, make_gmail_message):
        twin = make_gmail_message(
            "m1-copy", "t1", "Recruiter <recruiter@acme.io>",
            "Interview for Robotics Engineer", "Same message, new id.", JAN_1 + DAY,
        )
        summary = _scan(db_session, config, StubGmailClient([*mailbox, twin]))

        assert summary.imported == 3
        assert summary.skipped == 3
        thread = db_session.query(EmailThread).filter(EmailThread.thread_id == "t1").one()
        assert thread.message_count == 2

    def test_rescan_imports_nothing(self, db_session: Session, config, acme, mailbox):
        gmail = StubGmailClient(mailbox)
        _scan(db_session, config, gmail)
        again = _scan(db_session, config, gmail)

        assert again.imported == 0
        assert again.skipped == 5
        assert db_session.query(EmailMessage).count() == 3
        thread = db_session.query(EmailThread).filter(EmailThread.thread_id == "t1").one()
        assert thread.message_count == 2

    def test_messages_are_mirrored_to_vector_index(self, db_session: Session, config, acme, mailbox):
        index = RecordingVectorIndex()
        _scan(db_session, config, StubGmailClient(mailbox), vector_index=index)
        assert len(index.emails) == 3

    def test_query_excludes_bulk_categories(self, db_session: Session, config, acme, mailbox):
        gmail = StubGmailClient(mailbox)
        _scan(db_session, config, gmail)
        assert gmail.queries[0].startswith("after:1704067200 ")
        assert "-category:promotions" in gmail.queries[0]

    def test_job_posting_status_advances(self, db_session: Session, config, acme, mailbox):
        db_session.add(JobPosting(user_id=USER_ID, company_id="co-acme", title="Robotics Engineer", status="applied"))
        db_session.flush()
        _scan(db_session, config, StubGmailClient(mailbox))
        posting = db_session.query(JobPosting).one()
        assert posting.status == "interviewing"

    def test_withdrawn_posting_is_left_alone(self, db_session: Session, config, acme, mailbox):
        db_session.add(JobPosting(user_id=USER_ID, company_id="co-acme", status="withdrew"))
        db_session.flush()
        _scan(db_session, config, StubGmailClient(mailbox))
        assert db_session.query(JobPosting).one().status == "withdrew"


class TestEmailScanFailures:
    def test_revoked_token_aborts(self, db_session: Session, config, acme, mailbox):
        gmail = StubGmailClient(mailbox, auth_error=GmailAuthError("Token expired"))
        with pytest.raises(GmailAuthError):
            _scan(db_session, config, gmail)
        assert db_session.query(EmailMessage).count() == 0

    def test_invalid_range(self, db_session: Session, config, acme, mailbox):
        with pytest.raises(InputError):
            run_email_scan(db_session, config, USER_ID, StubGmailClient(mailbox), "2024-02-01", "2024-01-01")

    def test_expired_deadline_raises(self, db_session: Session, config, acme, mailbox):
        with pytest.raises(RequestTimeoutError):
            _scan(db_session, config, StubGmailClient(mailbox), deadline=Deadline(0))

    def test_empty_mailbox(self, db_session: Session, config, acme):
        summary = _scan(db_session, config, StubGmailClient([]))
        assert summary.total == 0
        assert summary.imported == 0

    def test_failed_write_is_reported_and_scan_continues(
        self, db_session: Session, config, acme, mailbox, make_gmail_message
    ):
        db_session.execute(text(
            "CREATE TRIGGER reject_referral BEFORE INSERT ON emails "
            "WHEN NEW.subject = 'Referral' "
            "BEGIN SELECT RAISE(ABORT, 'emails unavailable'); END"
        ))
        # Same thread and date as the rejected message, so it is only
        # imported if the failed key was released again
        retry = make_gmail_message(
            "m3-retry", "t2", "Pat <pat@gmail.com>",
            "Referral update",
            "Acme Robotics should reach out soon.",
            JAN_1 + 2 * DAY,
        )
        summary = _scan(db_session, config, StubGmailClient([*mailbox, retry]))
        db_session.commit()

        assert summary.imported == 3
        assert summary.threads == 2
        assert len(summary.errors) == 1
        assert summary.errors[0].startswith("Failed to import message m3:")
        stored = {m.subject for m in db_session.query(EmailMessage).all()}
        assert "Referral" not in stored
        assert "Referral update" in stored
        t2 = db_session.query(EmailThread).filter(EmailThread.thread_id == "t2").one()
        assert t2.message_count == 1

    def test_job_state_failure_keeps_imported_mail(self, db_session: Session, config, acme, mailbox):
        db_session.add(JobPosting(user_id=USER_ID, company_id="co-acme", title="Robotics Engineer", status="applied"))
        db_session.flush()
        db_session.execute(text(
            "CREATE TRIGGER freeze_postings BEFORE UPDATE ON job_postings "
            "BEGIN SELECT RAISE(ABORT, 'postings locked'); END"
        ))

        summary = _scan(db_session, config, StubGmailClient(mailbox))
        db_session.commit()

        assert summary.imported == 3
        assert any(e.startswith("Job state update failed") for e in summary.errors)
        assert db_session.query(EmailMessage).count() == 3
        assert db_session.query(JobPosting).one().status == "applied"
