"""Thread resolution, consolidation and per-run deduplication.

Thread linking strategies (in priority order):
1. Provider thread id - authoritative whenever the mail provider supplies one
2. AI-proposed thread id - only if that thread already exists for the user
3. Mint a new id - ``thread_pasted_<epoch-millis>``

Consolidation is a single conditional upsert keyed by ``(user_id, thread_id)``:
the row is inserted if absent, otherwise its aggregate fields are merged in
SQL so two concurrent first messages cannot create two threads.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Iterable, Optional

import structlog
from sqlalchemy import case, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from job_inbox.email.classifier import dominant_type
from job_inbox.ids import record_uuid
from job_inbox.models import EmailMessage, EmailThread

if TYPE_CHECKING:
    from job_inbox.extraction.llm import EmailDraft

logger = structlog.get_logger(__name__)

MINTED_THREAD_PREFIX = "thread_pasted_"


class ThreadState(str, Enum):
    NEW = "new"
    EXISTING = "existing"


@dataclass(frozen=True)
class ThreadResolution:
    """Which thread a message belongs to, decided before any write."""

    thread_id: str
    state: ThreadState

    @property
    def is_new(self) -> bool:
        return self.state is ThreadState.NEW


@dataclass(frozen=True)
class ThreadUpdate:
    """Thread aggregate after a message has been consolidated into it."""

    thread_id: str
    state: ThreadState
    message_count: int
    latest_date: Optional[str]
    email_type: str
    company_id: Optional[str]
    participants: tuple[dict, ...] = ()

    @property
    def is_new(self) -> bool:
        return self.state is ThreadState.NEW


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

def thread_exists(session: Session, user_id: str, thread_id: str) -> bool:
    existing = (
        session.query(EmailThread.id)
        .filter(EmailThread.user_id == user_id, EmailThread.thread_id == thread_id)
        .first()
    )
    return existing is not None


def mint_thread_id() -> str:
    """New thread id for messages without a provider thread."""
    return f"{MINTED_THREAD_PREFIX}{int(time.time() * 1000)}"


def resolve_thread_id(
    session: Session,
    user_id: str,
    provider_thread_id: Optional[str],
    draft: Optional["EmailDraft"] = None,
    known_thread_ids: Optional[set[str]] = None,
) -> ThreadResolution:
    """Decide the thread id and NEW/EXISTING state for an incoming message.

    Args:
        session: Database session.
        user_id: Owner of the message.
        provider_thread_id: Thread id from the mail provider, if any.
        draft: AI extraction result; may propose an existing thread.
        known_thread_ids: Thread ids already written in this run, checked
            before hitting the database.
    """
    if provider_thread_id:
        known = known_thread_ids is not None and provider_thread_id in known_thread_ids
        if known or thread_exists(session, user_id, provider_thread_id):
            return ThreadResolution(provider_thread_id, ThreadState.EXISTING)
        return ThreadResolution(provider_thread_id, ThreadState.NEW)

    proposed = draft.matched_thread_id if draft and draft.matches_existing_thread else None
    if proposed:
        if thread_exists(session, user_id, proposed):
            logger.info("thread_matched_by_ai", thread_id=proposed)
            return ThreadResolution(proposed, ThreadState.EXISTING)
        logger.warning("thread_ai_match_unknown", proposed_thread_id=proposed)

    minted = mint_thread_id()
    if known_thread_ids is not None and minted in known_thread_ids:
        # Two pasted messages within the same millisecond
        minted = f"{minted}_{len(known_thread_ids)}"
    return ThreadResolution(minted, ThreadState.NEW)


# ---------------------------------------------------------------------------
# Consolidation
# ---------------------------------------------------------------------------

def _participants_of(message: EmailMessage) -> list[dict]:
    people = [{"name": message.from_name or "", "email": message.from_email or ""}]
    for entry in message.to_list or []:
        if isinstance(entry, dict):
            people.append({"name": entry.get("name", ""), "email": entry.get("email", "")})
    return merge_participants([], people)


def merge_participants(existing: Iterable[dict], incoming: Iterable[dict]) -> list[dict]:
    """Union of participants keyed by lowercase email, first-seen order."""
    merged: list[dict] = []
    seen: set[str] = set()
    for person in [*existing, *incoming]:
        key = (person.get("email") or "").strip().lower()
        if not key or key in seen:
            continue
        seen.add(key)
        merged.append({"name": person.get("name", ""), "email": person.get("email", "")})
    return merged


def _insert_if_absent(session: Session, values: dict) -> bool:
    """Insert a thread row unless one exists. Returns True if this call created it."""
    dialect = session.get_bind().dialect.name
    if dialect in ("sqlite", "postgresql"):
        insert_fn = sqlite_insert if dialect == "sqlite" else pg_insert
        stmt = insert_fn(EmailThread).values(**values).on_conflict_do_nothing()
        result = session.execute(stmt)
        return result.rowcount == 1

    try:
        with session.begin_nested():
            session.add(EmailThread(**values))
        return True
    except IntegrityError:
        return False


def consolidate(
    session: Session,
    user_id: str,
    thread_id: str,
    message: EmailMessage,
    company_id: Optional[str],
) -> ThreadUpdate:
    """Create the thread for ``message`` or merge ``message`` into it.

    NEW threads start with ``message_count = 1``. EXISTING threads get their
    count incremented, ``latest_date`` raised if the message is newer,
    ``company_id`` backfilled (never cleared), participants unioned and
    ``email_type`` raised to the highest-priority member type.
    """
    session.flush()
    now = datetime.now(timezone.utc)
    participants = _participants_of(message)

    created = _insert_if_absent(
        session,
        {
            "id": record_uuid(user_id, thread_id),
            "user_id": user_id,
            "thread_id": thread_id,
            "subject": message.subject or "",
            "participants": participants,
            "company_id": company_id,
            "latest_date": message.date,
            "email_type": message.email_type or "general",
            "message_count": 1,
            "updated_at": now,
        },
    )

    key = (EmailThread.user_id == user_id, EmailThread.thread_id == thread_id)
    if not created:
        values: dict = {
            "message_count": EmailThread.message_count + 1,
            "latest_date": case(
                (
                    or_(EmailThread.latest_date.is_(None), EmailThread.latest_date < message.date),
                    message.date,
                ),
                else_=EmailThread.latest_date,
            ),
            "updated_at": now,
        }
        if company_id:
            values["company_id"] = func.coalesce(EmailThread.company_id, company_id)
        session.execute(
            update(EmailThread)
            .where(*key)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

    thread = session.execute(
        select(EmailThread).where(*key).execution_options(populate_existing=True)
    ).scalar_one()

    if not created:
        thread.participants = merge_participants(thread.participants or [], participants)
        thread.email_type = dominant_type([thread.email_type, message.email_type or "general"])
        if not thread.subject and message.subject:
            thread.subject = message.subject
        session.flush()

    state = ThreadState.NEW if created else ThreadState.EXISTING
    logger.info(
        "thread_created" if created else "thread_updated",
        thread_id=thread_id,
        message_count=thread.message_count,
        latest_date=thread.latest_date,
        email_type=thread.email_type,
        company_id=thread.company_id,
    )
    return ThreadUpdate(
        thread_id=thread_id,
        state=state,
        message_count=thread.message_count,
        latest_date=thread.latest_date,
        email_type=thread.email_type,
        company_id=thread.company_id,
        participants=tuple(thread.participants or ()),
    )


# ---------------------------------------------------------------------------
# Dedup guard
# ---------------------------------------------------------------------------

@dataclass
class DedupGuard:
    """Set of ``"{thread_id}_{date}"`` keys seen in this run or already stored."""

    keys: set[str] = field(default_factory=set)

    @staticmethod
    def key(thread_id: str, date: str) -> str:
        return f"{thread_id}_{date}"

    @classmethod
    def load(cls, session: Session, user_id: str) -> "DedupGuard":
        """Preload keys from the user's stored messages."""
        rows = (
            session.query(EmailMessage.thread_id, EmailMessage.date)
            .filter(EmailMessage.user_id == user_id)
            .all()
        )
        guard = cls({cls.key(thread_id, date) for thread_id, date in rows})
        logger.debug("dedup_guard_loaded", user_id=user_id, keys=len(guard.keys))
        return guard

    def check_and_add(self, thread_id: str, date: str) -> bool:
        """Return True if already seen (caller skips), else record the key."""
        k = self.key(thread_id, date)
        if k in self.keys:
            return True
        self.keys.add(k)
        return False

    def discard(self, thread_id: str, date: str) -> None:
        """Forget a key whose message was not stored after all."""
        self.keys.discard(self.key(thread_id, date))

    def __len__(self) -> int:
        return len(self.keys)
