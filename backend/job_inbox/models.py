"""SQLAlchemy ORM models for all database tables."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Shared declarative base for all models."""


class UserAccount(Base):
    """A registered account; webhook pushes are routed by its email."""

    __tablename__ = "user_accounts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    email: Mapped[str] = mapped_column(String(300), nullable=False, unique=True, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    def __repr__(self) -> str:
        return f"<UserAccount id={self.id!r} email={self.email!r}>"


class Company(Base):
    """A company the user is in contact with."""

    __tablename__ = "companies"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    email_domain: Mapped[str | None] = mapped_column(String(200), nullable=True)
    location: Mapped[str | None] = mapped_column(String(200), nullable=True)

    def __repr__(self) -> str:
        return f"<Company id={self.id!r} name={self.name!r} domain={self.email_domain!r}>"


class Contact(Base):
    """A person linked to a company."""

    __tablename__ = "contacts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    company_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    email: Mapped[str | None] = mapped_column(String(300), nullable=True)
    position: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    primary_contact: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return f"<Contact id={self.id!r} email={self.email!r} company_id={self.company_id!r}>"


class EmailMessage(Base):
    """An ingested email. Immutable once written."""

    __tablename__ = "emails"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    thread_id: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    subject: Mapped[str] = mapped_column(Text, nullable=False, default="")
    from_name: Mapped[str] = mapped_column(String(300), nullable=False, default="")
    from_email: Mapped[str] = mapped_column(String(300), nullable=False, default="")
    to_list: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    # Canonical ISO-8601 UTC string; string order equals chronological order
    date: Mapped[str] = mapped_column(String(40), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False, default="")
    labels: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    email_type: Mapped[str] = mapped_column(String(40), nullable=False, default="general")
    company_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    source: Mapped[str] = mapped_column(String(20), nullable=False, default="scan")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    def __repr__(self) -> str:
        return f"<EmailMessage id={self.id!r} thread={self.thread_id!r} type={self.email_type!r}>"


class EmailThread(Base):
    """Conversation aggregate derived from its member EmailMessages."""

    __tablename__ = "email_threads"
    __table_args__ = (
        UniqueConstraint("user_id", "thread_id", name="uq_user_thread"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    thread_id: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    subject: Mapped[str] = mapped_column(Text, nullable=False, default="")
    participants: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    company_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    latest_date: Mapped[str | None] = mapped_column(String(40), nullable=True)
    email_type: Mapped[str] = mapped_column(String(40), nullable=False, default="general")
    message_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    def __repr__(self) -> str:
        return (
            f"<EmailThread thread={self.thread_id!r} count={self.message_count} "
            f"latest={self.latest_date!r} type={self.email_type!r}>"
        )


class JobPosting(Base):
    """A job the user is tracking; its status advances from imported emails."""

    __tablename__ = "job_postings"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    company_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    title: Mapped[str | None] = mapped_column(String(300), nullable=True)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="interested")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    def __repr__(self) -> str:
        return f"<JobPosting id={self.id!r} company_id={self.company_id!r} status={self.status!r}>"
