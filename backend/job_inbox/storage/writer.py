"""Dual-store writer: primary SQL store first, vector index best-effort."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import structlog
from sqlalchemy.orm import Session

from job_inbox.email.parser import ParsedEmail
from job_inbox.ids import random_uuid, record_uuid
from job_inbox.linking.threads import ThreadState, ThreadUpdate, consolidate
from job_inbox.models import EmailMessage, EmailThread
from job_inbox.storage.vector_index import VectorIndex
from job_inbox.timeouts import Deadline, bounded_timeout, call_with_timeout

logger = structlog.get_logger(__name__)

__all__ = ["DualStoreWriter", "WriteResult", "build_email_record", "record_uuid"]


@dataclass
class WriteResult:
    """Outcome of writing one message."""

    message_id: str
    thread: ThreadUpdate
    # False when the message id was already stored (nothing written)
    created: bool = True
    errors: list[str] = field(default_factory=list)


def build_email_record(
    user_id: str,
    parsed: ParsedEmail,
    *,
    thread_id: str,
    email_type: str,
    company_id: Optional[str],
    source: str,
    provider_message_id: Optional[str] = None,
) -> EmailMessage:
    """Build an unsaved EmailMessage.

    Messages with a provider id get a deterministic id so re-imports collide;
    pasted messages get a random one.
    """
    message_id = (
        record_uuid(user_id, provider_message_id) if provider_message_id else random_uuid()
    )
    return EmailMessage(
        id=message_id,
        user_id=user_id,
        thread_id=thread_id,
        subject=parsed.subject,
        from_name=parsed.sender.name,
        from_email=parsed.sender.email,
        to_list=[r.as_dict() for r in parsed.recipients],
        date=parsed.date,
        body=parsed.body,
        labels=list(parsed.labels),
        email_type=email_type,
        company_id=company_id,
        source=source,
    )


def _stored_thread(session: Session, user_id: str, thread_id: str) -> ThreadUpdate:
    thread = (
        session.query(EmailThread)
        .filter(EmailThread.user_id == user_id, EmailThread.thread_id == thread_id)
        .one()
    )
    return ThreadUpdate(
        thread_id=thread.thread_id,
        state=ThreadState.EXISTING,
        message_count=thread.message_count,
        latest_date=thread.latest_date,
        email_type=thread.email_type,
        company_id=thread.company_id,
        participants=tuple(thread.participants or ()),
    )


class DualStoreWriter:
    """Writes a message, its thread aggregate and its vector mirror.

    Usage::

        writer = DualStoreWriter(session, vector_index, deadline=deadline)
        result = writer.write(user_id, record, company_id)

    Vector calls are cut off after ``vector_timeout_sec`` or when the
    request deadline runs out, whichever comes first.
    """

    def __init__(
        self,
        session: Session,
        vector_index: Optional[VectorIndex] = None,
        *,
        deadline: Optional[Deadline] = None,
        vector_timeout_sec: float = 20,
    ) -> None:
        self._session = session
        self._vector_index = vector_index
        self._deadline = deadline
        self._vector_timeout_sec = vector_timeout_sec

    def write(self, user_id: str, message: EmailMessage, company_id: Optional[str]) -> WriteResult:
        """Insert the message, consolidate its thread, mirror it to the vector index.

        A message id that is already stored is a no-op; the thread is not
        consolidated a second time. Vector failures are reported in
        ``WriteResult.errors`` and never undo the primary write.
        """
        session = self._session
        if session.get(EmailMessage, message.id) is not None:
            logger.info("email_already_stored", message_id=message.id, thread_id=message.thread_id)
            return WriteResult(
                message_id=message.id,
                thread=_stored_thread(session, user_id, message.thread_id),
                created=False,
            )

        message.company_id = message.company_id or company_id
        session.add(message)
        session.flush()

        thread = consolidate(session, user_id, message.thread_id, message, company_id)
        result = WriteResult(message_id=message.id, thread=thread)

        if self._vector_index is not None:
            try:
                call_with_timeout(
                    self._vector_index.upsert_emails,
                    user_id,
                    [message],
                    timeout_sec=bounded_timeout(self._vector_timeout_sec, self._deadline),
                    label="Vector upsert",
                )
            except Exception as exc:
                logger.warning("vector_upsert_failed", message_id=message.id, error=str(exc))
                result.errors.append(f"Vector index upsert failed for {message.id}: {exc}")

        return result
