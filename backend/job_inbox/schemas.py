"""Pydantic schemas for API request/response validation."""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from job_inbox.ingestion.pipeline import IngestionSummary


# ── Requests ──────────────────────────────────────────────


class ScanRequest(BaseModel):
    """Body of ``POST /api/email/scan``; dates are ``YYYY-MM-DD`` or ISO-8601."""

    start_date: str = Field(..., alias="startDate", min_length=1)
    end_date: str = Field(..., alias="endDate", min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class IngestEmailIn(BaseModel):
    content: str = Field(..., min_length=1)


class WebhookRecipient(BaseModel):
    name: str = ""
    email: str = ""


class WebhookEmailIn(BaseModel):
    """Push payload from the mail forwarding integration."""

    secret: str = ""
    from_: str = Field("", alias="from")
    from_name: Optional[str] = Field(None, alias="fromName")
    to: List[WebhookRecipient] = Field(default_factory=list)
    subject: str = ""
    body_text: str = Field("", alias="bodyText")
    date: Optional[str] = None
    gmail_thread_id: Optional[str] = Field(None, alias="gmailThreadId")
    gmail_message_id: Optional[str] = Field(None, alias="gmailMessageId")
    labels: List[str] = Field(default_factory=list)
    in_reply_to: Optional[str] = Field(None, alias="inReplyTo")
    references: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def missing_fields(self) -> list[str]:
        required = {"from": self.from_, "subject": self.subject, "bodyText": self.body_text}
        return [name for name, value in required.items() if not value or not value.strip()]

    def as_text(self) -> str:
        """Header-style rendering used as AI input."""
        lines = [
            f"From: {self.from_name or self.from_} <{self.from_}>",
            "To: " + ", ".join(f"{t.name} <{t.email}>" for t in self.to) if self.to else "",
            f"Subject: {self.subject}",
            f"Date: {self.date}" if self.date else "",
            f"In-Reply-To: {self.in_reply_to}" if self.in_reply_to else "",
            f"References: {self.references}" if self.references else "",
        ]
        return "\n".join(line for line in lines if line) + "\n\n" + self.body_text


# ── Responses ─────────────────────────────────────────────


class IngestionSummaryOut(BaseModel):
    success: bool = True
    total: int = 0
    imported: int = 0
    skipped: int = 0
    threads: int = 0
    errors: List[str] = Field(default_factory=list)
    cancelled: bool = False
    email_id: Optional[str] = Field(None, serialization_alias="emailId")
    thread_id: Optional[str] = Field(None, serialization_alias="threadId")
    is_new_thread: Optional[bool] = Field(None, serialization_alias="isNewThread")
    email_type: Optional[str] = Field(None, serialization_alias="emailType")
    company_id: Optional[str] = Field(None, serialization_alias="companyId")
    company_name: Optional[str] = Field(None, serialization_alias="companyName")
    error: Optional[str] = None

    @classmethod
    def from_summary(cls, summary: "IngestionSummary") -> "IngestionSummaryOut":
        detail = summary.message
        return cls(
            success=not summary.cancelled,
            total=summary.total,
            imported=summary.imported,
            skipped=summary.skipped,
            threads=summary.threads,
            errors=list(summary.errors),
            cancelled=summary.cancelled,
            email_id=detail.message_id if detail else None,
            thread_id=detail.thread_id if detail else None,
            is_new_thread=detail.is_new_thread if detail else None,
            email_type=detail.email_type if detail else None,
            company_id=detail.company_id if detail else None,
            company_name=detail.company_name if detail else None,
        )


class EnrichDomainsOut(BaseModel):
    success: bool = True
    companies_enriched: int = Field(0, serialization_alias="companiesEnriched")
    total_companies: int = Field(0, serialization_alias="totalCompanies")


class HealthOut(BaseModel):
    status: str = "ok"
    database: str = "ok"
