"""Single-message ingestion: pasted text and webhook pushes.

Both paths share company resolution, classification and the dual-store
write with the bulk scan, so identical input yields the same type and
company. The AI draft is advisory: it fills gaps (company name, thread
proposal, contacts) but never decides the stored email type.
"""

from __future__ import annotations

import hmac
from typing import Optional

import structlog
from pydantic import ValidationError
from sqlalchemy import func
from sqlalchemy.orm import Session

from job_inbox.config import AppConfig
from job_inbox.email.classifier import classify_email
from job_inbox.email.parser import (
    BODY_CHAR_LIMIT,
    EmailAddress,
    ParsedEmail,
    canonical_date,
    parse_pasted_email,
)
from job_inbox.errors import (
    AuthenticationError,
    InputError,
    RequestTimeoutError,
    UpstreamError,
)
from job_inbox.extraction.llm import EmailDraft, LLMProvider, build_thread_context
from job_inbox.ingestion.pipeline import (
    IngestionSummary,
    MessageDetail,
    get_user_email,
    load_domain_index,
)
from job_inbox.linking.contacts import upsert_extracted_contacts
from job_inbox.linking.resolver import CompanyMatch, DomainIndex
from job_inbox.linking.threads import resolve_thread_id
from job_inbox.models import UserAccount
from job_inbox.schemas import WebhookEmailIn
from job_inbox.storage.vector_index import VectorIndex
from job_inbox.storage.writer import DualStoreWriter, build_email_record
from job_inbox.timeouts import Deadline, bounded_timeout, call_with_timeout

logger = structlog.get_logger(__name__)

TEXT_MATCH_BODY_CHARS = 500


# ---------------------------------------------------------------------------
# Shared steps
# ---------------------------------------------------------------------------

def resolve_company(
    index: DomainIndex,
    parsed: ParsedEmail,
    draft: Optional[EmailDraft] = None,
) -> Optional[CompanyMatch]:
    """Sender address, then subject/body text, then the AI's company guess."""
    match = index.match_email(parsed.sender.email) or index.match_text(
        f"{parsed.subject} {parsed.body[:TEXT_MATCH_BODY_CHARS]}"
    )
    if match is None and draft is not None and draft.company:
        match = index.match_name(draft.company) or index.match_text(draft.company)
        if match:
            logger.info("company_matched_by_ai_guess", company=draft.company)
    return match


def _draft_email(
    config: AppConfig,
    user_id: str,
    content: str,
    llm_provider: Optional[LLMProvider],
    vector_index: Optional[VectorIndex],
    deadline: Optional[Deadline],
) -> Optional[EmailDraft]:
    """Ask the AI provider for a draft.

    Returns None when no provider is configured. A configured provider that
    fails or times out fails the request with UpstreamError before anything
    is written.
    """
    if llm_provider is None:
        return None

    context = build_thread_context(
        vector_index,
        user_id,
        content,
        char_limit=config.thread_context_char_limit,
        top_k=config.thread_context_top_k,
        timeout_sec=bounded_timeout(config.vector_timeout_sec, deadline),
    )
    try:
        return call_with_timeout(
            llm_provider.parse_email,
            content[: config.llm_input_char_limit],
            context,
            timeout_sec=bounded_timeout(config.llm_timeout_sec, deadline),
        )
    except Exception as exc:
        logger.warning("llm_extraction_failed", user_id=user_id, error=str(exc))
        if isinstance(exc, (RequestTimeoutError, UpstreamError)):
            raise
        raise UpstreamError(f"AI extraction failed: {exc}") from exc


def _parsed_from_draft(draft: EmailDraft, content: str) -> ParsedEmail:
    fallback = parse_pasted_email(content)
    sender = (
        EmailAddress(name=draft.from_name or draft.from_email, email=draft.from_email)
        if draft.from_email
        else fallback.sender
    )
    recipients = (
        (EmailAddress(name=draft.to_name or draft.to_email, email=draft.to_email),)
        if draft.to_email
        else fallback.recipients
    )
    return ParsedEmail(
        subject=draft.subject or fallback.subject,
        sender=sender,
        recipients=recipients,
        date=canonical_date(draft.date) if draft.date else fallback.date,
        body=(draft.body or fallback.body)[:BODY_CHAR_LIMIT],
    )


def _ingest_one(
    session: Session,
    user_id: str,
    parsed: ParsedEmail,
    draft: Optional[EmailDraft],
    summary: IngestionSummary,
    *,
    source: str,
    user_email: Optional[str],
    vector_index: Optional[VectorIndex],
    deadline: Optional[Deadline],
    vector_timeout_sec: float,
) -> IngestionSummary:
    index = load_domain_index(session, user_id, user_email)
    match = resolve_company(index, parsed, draft)
    company_id = match.company_id if match else None

    email_type = classify_email(parsed.subject, parsed.body, parsed.sender.email)
    if draft is not None and draft.email_type != email_type:
        logger.info("email_type_ai_disagrees", rules=email_type, ai=draft.email_type)

    if deadline is not None:
        deadline.check()

    resolution = resolve_thread_id(session, user_id, parsed.thread_id, draft=draft)
    record = build_email_record(
        user_id,
        parsed,
        thread_id=resolution.thread_id,
        email_type=email_type,
        company_id=company_id,
        source=source,
        provider_message_id=parsed.message_id,
    )
    writer = DualStoreWriter(
        session, vector_index, deadline=deadline, vector_timeout_sec=vector_timeout_sec
    )
    result = writer.write(user_id, record, company_id)

    summary.total = 1
    summary.threads = 1
    summary.errors.extend(result.errors)
    if result.created:
        summary.imported = 1
    else:
        summary.skipped = 1
    summary.message = MessageDetail(
        message_id=result.message_id,
        thread_id=result.thread.thread_id,
        is_new_thread=result.thread.is_new,
        email_type=email_type,
        company_id=company_id,
        company_name=match.company_name if match else None,
    )

    if result.created and draft is not None and draft.contacts:
        try:
            with session.begin_nested():
                upsert_extracted_contacts(
                    session,
                    user_id,
                    draft.contacts,
                    index,
                    fallback_company=draft.company or (match.company_name if match else None),
                    user_email=user_email,
                    vector_index=vector_index,
                    vector_timeout_sec=bounded_timeout(vector_timeout_sec, deadline),
                )
        except Exception as exc:
            logger.warning("contact_extraction_failed", user_id=user_id, error=str(exc))
            summary.errors.append(f"Contact extraction failed: {exc}")

    logger.info(
        "email_ingested",
        user_id=user_id,
        source=source,
        message_id=result.message_id,
        thread_id=result.thread.thread_id,
        is_new_thread=result.thread.is_new,
        email_type=email_type,
        company_id=company_id,
    )
    return summary


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

def ingest_pasted_email(
    session: Session,
    config: AppConfig,
    user_id: str,
    content: str,
    llm_provider: Optional[LLMProvider] = None,
    vector_index: Optional[VectorIndex] = None,
    deadline: Optional[Deadline] = None,
) -> IngestionSummary:
    """Ingest one pasted email.

    Without an AI provider the text is parsed heuristically. The pasted
    path never consults the dedup guard.
    """
    if not content or not content.strip():
        raise InputError("content is required")

    summary = IngestionSummary()
    draft = _draft_email(config, user_id, content, llm_provider, vector_index, deadline)
    parsed = _parsed_from_draft(draft, content) if draft else parse_pasted_email(content)

    return _ingest_one(
        session,
        user_id,
        parsed,
        draft,
        summary,
        source="paste",
        user_email=get_user_email(session, user_id),
        vector_index=vector_index,
        deadline=deadline,
        vector_timeout_sec=config.vector_timeout_sec,
    )


def verify_webhook_secret(config: AppConfig, provided: object) -> None:
    """Constant-time shared-secret check. Raises AuthenticationError."""
    expected = config.webhook_secret.get_secret_value()
    if not expected or not isinstance(provided, str) or not provided:
        raise AuthenticationError("Unauthorized")
    if not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        raise AuthenticationError("Unauthorized")


def ingest_webhook_email(
    session: Session,
    config: AppConfig,
    payload: dict,
    llm_provider: Optional[LLMProvider] = None,
    vector_index: Optional[VectorIndex] = None,
    deadline: Optional[Deadline] = None,
) -> IngestionSummary:
    """Ingest one pushed email.

    The secret is verified before anything else is read. The sending user
    is the registered account whose email equals ``from``; when there is
    none the summary carries an error and nothing is written.
    """
    if not isinstance(payload, dict):
        raise InputError("Invalid JSON body")
    verify_webhook_secret(config, payload.get("secret"))

    try:
        push = WebhookEmailIn.model_validate(payload)
    except ValidationError as exc:
        raise InputError(f"Invalid webhook payload: {exc.error_count()} error(s)") from exc
    missing = push.missing_fields()
    if missing:
        raise InputError("Missing required fields: from, subject, bodyText")

    sender = push.from_.strip().lower()
    account = (
        session.query(UserAccount)
        .filter(func.lower(UserAccount.email) == sender)
        .first()
    )
    summary = IngestionSummary()
    if account is None:
        logger.warning("webhook_unknown_user", sender=sender)
        summary.errors.append(f"No registered user found for email: {push.from_}")
        return summary

    user_id = account.id
    draft = _draft_email(config, user_id, push.as_text(), llm_provider, vector_index, deadline)

    # Structured fields are authoritative over the AI draft
    parsed = ParsedEmail(
        subject=push.subject,
        sender=EmailAddress(name=push.from_name or push.from_, email=push.from_),
        recipients=tuple(EmailAddress(name=t.name or t.email, email=t.email) for t in push.to if t.email),
        date=canonical_date(push.date),
        body=push.body_text[:BODY_CHAR_LIMIT],
        labels=tuple(push.labels),
        message_id=push.gmail_message_id or None,
        thread_id=push.gmail_thread_id or None,
    )

    logger.info(
        "webhook_email_received",
        user_id=user_id,
        gmail_thread_id=push.gmail_thread_id,
        has_draft=draft is not None,
    )
    return _ingest_one(
        session,
        user_id,
        parsed,
        draft,
        summary,
        source="webhook",
        user_email=account.email.lower(),
        vector_index=vector_index,
        deadline=deadline,
        vector_timeout_sec=config.vector_timeout_sec,
    )
