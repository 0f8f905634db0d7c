"""Advance job posting statuses from freshly imported emails."""

from __future__ import annotations

from typing import Iterable

import structlog
from sqlalchemy.orm import Session

from job_inbox.extraction.rules import infer_status_from_email, should_replace_status
from job_inbox.models import EmailMessage, JobPosting

logger = structlog.get_logger(__name__)


def update_job_state_from_emails(
    session: Session,
    user_id: str,
    imported: Iterable[EmailMessage],
) -> int:
    """Replay imported emails oldest first and write each company's final status.

    Only the status implied by the most recent signal is written, and only
    when it differs from the stored one. Returns the number of postings updated.
    """
    emails = sorted((e for e in imported if e.company_id), key=lambda e: e.date)
    if not emails:
        return 0

    postings: dict[str, JobPosting] = {}
    for posting in (
        session.query(JobPosting)
        .filter(JobPosting.user_id == user_id, JobPosting.company_id.isnot(None))
        .all()
    ):
        postings.setdefault(posting.company_id, posting)

    final_status: dict[str, str] = {}
    for email in emails:
        posting = postings.get(email.company_id)
        if posting is None:
            continue
        inferred = infer_status_from_email(email.email_type, email.subject, email.body)
        if not inferred:
            continue
        current = final_status.get(email.company_id) or posting.status
        if should_replace_status(current, inferred):
            final_status[email.company_id] = inferred

    updated = 0
    for company_id, status in final_status.items():
        posting = postings[company_id]
        if posting.status != status:
            logger.info(
                "job_status_updated",
                job_posting_id=posting.id,
                company_id=company_id,
                old_status=posting.status,
                new_status=status,
            )
            posting.status = status
            updated += 1

    session.flush()
    return updated
