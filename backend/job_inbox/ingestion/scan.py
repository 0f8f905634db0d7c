"""Bulk historical import from the mail provider.

Pipeline per message, strictly sequential after the parallel fetch:
own-address filter -> company resolution -> dedup guard -> classify ->
thread resolution -> dual-store write. Messages that match no known company
are skipped, never imported.
"""

from __future__ import annotations

from typing import Optional

import structlog
from sqlalchemy.orm import Session

from job_inbox.config import AppConfig
from job_inbox.email.classifier import classify_email
from job_inbox.email.client import GmailAuthError, GmailClient, build_scan_query
from job_inbox.email.parser import parse_gmail_message
from job_inbox.errors import InputError, RequestTimeoutError
from job_inbox.ingestion.job_state import update_job_state_from_emails
from job_inbox.ingestion.pipeline import IngestionSummary, get_user_email, load_domain_index
from job_inbox.linking.threads import DedupGuard, resolve_thread_id
from job_inbox.models import EmailMessage
from job_inbox.storage.vector_index import VectorIndex
from job_inbox.storage.writer import DualStoreWriter, build_email_record
from job_inbox.timeouts import Deadline

logger = structlog.get_logger(__name__)

# Body prefix searched for company names when the sender does not match
TEXT_MATCH_BODY_CHARS = 500


def run_email_scan(
    session: Session,
    config: AppConfig,
    user_id: str,
    gmail: GmailClient,
    start_date: str,
    end_date: str,
    vector_index: Optional[VectorIndex] = None,
    deadline: Optional[Deadline] = None,
) -> IngestionSummary:
    """Import the user's job-related mail for a date range.

    Args:
        session: Database session; flushed per message, committed by the caller.
        config: Application config (limits, batch size).
        user_id: Owner of the import.
        gmail: Mail provider client authenticated as the user.
        start_date: Inclusive start, ``YYYY-MM-DD`` or ISO-8601.
        end_date: Inclusive end, ``YYYY-MM-DD`` or ISO-8601.
        vector_index: Optional vector mirror.
        deadline: Request time limit; exceeding it commits flushed work and raises.

    Raises:
        InputError: Invalid date range.
        GmailAuthError: The provider rejected the token; nothing else runs.
        RequestTimeoutError: The deadline elapsed.
    """
    try:
        query = build_scan_query(start_date, end_date)
    except ValueError as exc:
        raise InputError(f"Invalid date range: {exc}") from exc

    summary = IngestionSummary()
    user_email = get_user_email(session, user_id)
    index = load_domain_index(session, user_id, user_email)

    refs = gmail.list_message_ids(query, config.scan_message_limit, deadline=deadline)
    if not refs:
        logger.info("email_scan_complete", user_id=user_id, total=0)
        return summary

    raw_messages, fetch_errors = gmail.get_messages(
        [r["id"] for r in refs], config.scan_batch_size, deadline=deadline
    )
    summary.total = len(raw_messages)
    summary.errors.extend(fetch_errors)

    guard = DedupGuard.load(session, user_id)
    writer = DualStoreWriter(
        session,
        vector_index,
        deadline=deadline,
        vector_timeout_sec=config.vector_timeout_sec,
    )
    own_address = (user_email or "").lower()
    known_threads: set[str] = set()
    imported: list[EmailMessage] = []

    try:
        for raw in raw_messages:
            if deadline is not None:
                deadline.check()

            try:
                parsed = parse_gmail_message(raw)
            except Exception as exc:
                logger.warning("gmail_message_parse_failed", message_id=raw.get("id"), error=str(exc))
                summary.errors.append(f"Failed to parse message {raw.get('id')}: {exc}")
                continue

            sender = parsed.sender.email.lower()
            if own_address and sender == own_address:
                summary.skipped += 1
                continue

            match = index.match_email(parsed.sender.email) or index.match_text(
                f"{parsed.subject} {parsed.body[:TEXT_MATCH_BODY_CHARS]}"
            )
            if match is None:
                summary.skipped += 1
                continue

            thread_key = parsed.thread_id or parsed.message_id or ""
            if guard.check_and_add(thread_key, parsed.date):
                logger.debug("email_duplicate_skipped", thread_id=thread_key, date=parsed.date)
                summary.skipped += 1
                continue

            email_type = classify_email(parsed.subject, parsed.body, parsed.sender.email)
            try:
                # A failed write rolls back only this message's savepoint
                with session.begin_nested():
                    resolution = resolve_thread_id(
                        session, user_id, thread_key, known_thread_ids=known_threads
                    )
                    record = build_email_record(
                        user_id,
                        parsed,
                        thread_id=resolution.thread_id,
                        email_type=email_type,
                        company_id=match.company_id,
                        source="scan",
                        provider_message_id=parsed.message_id,
                    )
                    result = writer.write(user_id, record, match.company_id)
            except (GmailAuthError, RequestTimeoutError):
                raise
            except Exception as exc:
                logger.error("email_write_failed", message_id=parsed.message_id, error=str(exc))
                summary.errors.append(f"Failed to import message {parsed.message_id}: {exc}")
                guard.discard(thread_key, parsed.date)
                continue

            summary.errors.extend(result.errors)
            if not result.created:
                summary.skipped += 1
                continue

            known_threads.add(resolution.thread_id)
            summary.imported += 1
            imported.append(record)
    except RequestTimeoutError:
        summary.cancelled = True
        logger.warning(
            "email_scan_deadline_exceeded",
            user_id=user_id,
            imported=summary.imported,
            skipped=summary.skipped,
        )
        session.commit()
        raise

    summary.threads = len(known_threads)

    if imported:
        try:
            with session.begin_nested():
                updated = update_job_state_from_emails(session, user_id, imported)
            logger.info("job_state_updated", user_id=user_id, updated=updated)
        except Exception as exc:
            logger.error("job_state_update_failed", user_id=user_id, error=str(exc))
            summary.errors.append(f"Job state update failed: {exc}")

    logger.info(
        "email_scan_complete",
        user_id=user_id,
        total=summary.total,
        imported=summary.imported,
        skipped=summary.skipped,
        threads=summary.threads,
        errors=len(summary.errors),
    )
    return summary
