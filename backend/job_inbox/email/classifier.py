"""Keyword-based classifier assigning one EmailType to an email.

Rules are evaluated in order and the first match wins. Rejection and offer
checks must run before the broader interview / outreach checks because
rejection emails often mention an interview without scheduling one.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable, Literal

import structlog

logger = structlog.get_logger(__name__)

EmailType = Literal[
    "confirmation",
    "recruiter_outreach",
    "interview_scheduling",
    "rejection",
    "offer",
    "negotiation",
    "follow_up",
    "spam",
    "newsletter",
    "general",
]

EMAIL_TYPES: tuple[str, ...] = (
    "confirmation",
    "recruiter_outreach",
    "interview_scheduling",
    "rejection",
    "offer",
    "negotiation",
    "follow_up",
    "spam",
    "newsletter",
    "general",
)

# Thread type priority, highest first. Anything not listed ranks with general.
THREAD_TYPE_PRIORITY: tuple[str, ...] = (
    "offer",
    "negotiation",
    "rejection",
    "interview_scheduling",
    "recruiter_outreach",
    "confirmation",
    "follow_up",
)


@dataclass(frozen=True)
class _Signals:
    """Lowercased views of an email used by the rule predicates."""

    subject: str
    body: str
    sender: str

    @property
    def text(self) -> str:
        return f"{self.subject} {self.body}"


def _any_in(haystack: str, needles: Iterable[str]) -> bool:
    return any(n in haystack for n in needles)


# ── Phrase lists ──────────────────────────────────────────

REJECTION_PHRASES: tuple[str, ...] = (
    "decided not to move forward",
    "not moving forward",
    "other candidates",
    "won't be moving forward",
    "won't be advancing",
    "unfortunately",
)

OFFER_PHRASES: tuple[str, ...] = (
    "pleased to extend",
    "offer letter",
    "compensation package",
)

NEGOTIATION_PHRASES: tuple[str, ...] = (
    "counter",
    "negotiate",
    "revised offer",
    "additional equity",
    "signing bonus",
)

OUTREACH_PHRASES: tuple[str, ...] = (
    "came across your profile",
    "impressed by your",
    "reaching out",
    "love to connect",
    "opportunity that might",
)

FOLLOW_UP_PHRASES: tuple[str, ...] = (
    "checking in",
    "following up",
    "just wanted to",
)


# ── Predicates ────────────────────────────────────────────

def _is_noreply_newsletter(s: _Signals) -> bool:
    return "no-reply" in s.sender and _any_in(s.body, ("unsubscribe", "job alert"))


def _is_job_board_spam(s: _Signals) -> bool:
    return (
        "unsubscribe" in s.body
        and "job opportunities" in s.body
        and "interview" not in s.body
    )


def _is_newsletter(s: _Signals) -> bool:
    return "unsubscribe" in s.text and "newsletter" in s.text


def _has_rejection_phrasing(s: _Signals) -> bool:
    return "update on your" in s.subject or _any_in(s.body, REJECTION_PHRASES)


def _is_rejection_with_offer(s: _Signals) -> bool:
    # Offer language outweighs negative framing ("unfortunately the offer...")
    return _has_rejection_phrasing(s) and "offer" in s.body and "not" not in s.body


def _is_offer(s: _Signals) -> bool:
    return (
        "offer" in s.subject
        or _any_in(s.body, OFFER_PHRASES)
        or ("offer" in s.text and _any_in(s.text, ("extend", "compensation", "package")))
    )


def _is_negotiation(s: _Signals) -> bool:
    return _any_in(s.body, NEGOTIATION_PHRASES) or "salary" in s.text


def _is_interview_scheduling(s: _Signals) -> bool:
    return (
        _any_in(s.subject, ("interview", "onsite", "phone screen"))
        or "technical phone screen" in s.body
        or ("schedule" in s.text and _any_in(s.text, ("interview", "call", "meeting")))
    )


def _is_confirmation(s: _Signals) -> bool:
    return (
        _any_in(s.subject, ("application received", "application confirmed"))
        or _any_in(s.body, ("thank you for applying", "received your application"))
        or ("application" in s.text and _any_in(s.text, ("received", "confirmed", "thank")))
    )


def _is_recruiter_outreach(s: _Signals) -> bool:
    return _any_in(s.body, OUTREACH_PHRASES) or _any_in(
        s.text, ("recruiter", "opportunity", "role", "position")
    )


def _is_follow_up(s: _Signals) -> bool:
    return "follow" in s.subject or _any_in(s.body, FOLLOW_UP_PHRASES)


# Ordered decision list: (label, predicate). First match wins.
RULES: tuple[tuple[str, Callable[[_Signals], bool]], ...] = (
    ("newsletter", _is_noreply_newsletter),
    ("spam", _is_job_board_spam),
    ("newsletter", _is_newsletter),
    ("offer", _is_rejection_with_offer),
    ("rejection", _has_rejection_phrasing),
    ("offer", _is_offer),
    ("negotiation", _is_negotiation),
    ("interview_scheduling", _is_interview_scheduling),
    ("confirmation", _is_confirmation),
    ("recruiter_outreach", _is_recruiter_outreach),
    ("follow_up", _is_follow_up),
)


def classify_email(subject: str, body: str, from_email: str = "") -> EmailType:
    """Return the EmailType for an email.

    Args:
        subject: Decoded subject line.
        body: Plain-text body.
        from_email: Sender address; used for the no-reply newsletter check.
    """
    signals = _Signals(
        subject=(subject or "").lower(),
        body=(body or "").lower(),
        sender=(from_email or "").lower(),
    )
    for label, predicate in RULES:
        if predicate(signals):
            logger.debug("email_classified", email_type=label, rule=predicate.__name__)
            return label  # type: ignore[return-value]
    return "general"


def thread_type_priority(email_type: str | None) -> int:
    """Rank of an email type within a thread; higher wins."""
    try:
        return len(THREAD_TYPE_PRIORITY) - THREAD_TYPE_PRIORITY.index(email_type or "")
    except ValueError:
        return 0


def dominant_type(types: Iterable[str]) -> str:
    """Return the highest-priority type among thread members.

    Unranked types (general, spam, newsletter) tie; the earliest one is kept.
    """
    best: str | None = None
    for email_type in types:
        if best is None or thread_type_priority(email_type) > thread_type_priority(best):
            best = email_type
    return best or "general"
