"""Phrase rules that infer a job posting status from an email."""

from __future__ import annotations

from typing import Literal, Optional

JobStatus = Literal["interested", "applied", "interviewing", "offer", "rejected", "withdrew"]

# ── Phrase lists ──────────────────────────────────────────

STATUS_REJECTION_PHRASES: tuple[str, ...] = (
    "move forward with another candidate",
    "not considering",
    "unfortunately we won't be advancing",
    "decided not to proceed",
    "position has been filled",
    "not a fit",
    "won't be moving forward",
    "after careful consideration",
    "we regret to inform",
    "not selected",
    "will not be proceeding",
    "not moving forward",
    "other candidates",
    "decided not to move forward",
    "won't be advancing",
    "unfortunately",
)

STATUS_OFFER_PHRASES: tuple[str, ...] = (
    "pleased to extend",
    "offer letter",
    "compensation package",
    "extend an offer",
    "we'd like to offer",
    "formal offer",
    "offer of employment",
)

STATUS_INTERVIEW_PHRASES: tuple[str, ...] = (
    "schedule an interview",
    "schedule a call",
    "phone screen",
    "technical interview",
    "on-site interview",
    "interview invitation",
    "interview request",
    "zoom link",
    "meet the team",
    "panel interview",
    "final round",
    "next steps in the interview",
)

STATUS_APPLIED_PHRASES: tuple[str, ...] = (
    "received your application",
    "application received",
    "application confirmed",
    "thank you for applying",
    "we received your",
)

# Email types that map straight to a status without a text scan
_TYPE_TO_STATUS: dict[str, JobStatus] = {
    "rejection": "rejected",
    "offer": "offer",
    "interview_scheduling": "interviewing",
    "confirmation": "applied",
}

_PHRASE_RULES: tuple[tuple[JobStatus, tuple[str, ...]], ...] = (
    ("rejected", STATUS_REJECTION_PHRASES),
    ("offer", STATUS_OFFER_PHRASES),
    ("interviewing", STATUS_INTERVIEW_PHRASES),
    ("applied", STATUS_APPLIED_PHRASES),
)


def infer_status_from_email(email_type: str, subject: str, body: str) -> Optional[JobStatus]:
    """Infer a job status from an email; None when there is no clear signal."""
    mapped = _TYPE_TO_STATUS.get(email_type)
    if mapped:
        return mapped

    text = f"{subject} {body}".lower()
    for status, phrases in _PHRASE_RULES:
        if any(p in text for p in phrases):
            return status
    return None


def should_replace_status(current: Optional[str], new: str) -> bool:
    """Whether a newer email's status replaces the current one.

    The latest signal wins, except a user-set ``withdrew`` is never overwritten.
    """
    current_status = (current or "interested").lower()
    if current_status == "withdrew":
        return False
    return current_status != new
