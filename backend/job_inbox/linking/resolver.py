"""Company resolution from email addresses, domains and free text.

A ``DomainIndex`` is built once per request from the user's companies and
contacts and never cached across requests. Lookup priority for an address:

1. Contact domain - a known contact at a non-generic domain
2. Company domain - the company's registered ``email_domain``
3. Contact email - exact address of a known contact
4. Name containment - normalized company name inside the domain, or the
   domain's first label inside the normalized name

Generic webmail providers and the user's own domain never match by domain.
Free-text and title matching are lower precision and are only used when
domain matching fails.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, Optional, Protocol

import structlog

logger = structlog.get_logger(__name__)

GENERIC_DOMAINS: frozenset[str] = frozenset({
    "gmail.com", "yahoo.com", "hotmail.com", "outlook.com", "aol.com",
    "icloud.com", "mail.com", "protonmail.com", "live.com", "msn.com",
    "me.com", "mac.com", "googlemail.com", "ymail.com",
})

# Names shorter than this are too ambiguous for free-text containment
MIN_TEXT_MATCH_LEN = 3


@dataclass(frozen=True)
class CompanyMatch:
    """A resolved company identity."""

    company_id: str
    company_name: str


class CompanyLike(Protocol):
    id: str
    name: str
    email_domain: Optional[str]


class ContactLike(Protocol):
    email: Optional[str]
    company_id: Optional[str]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def normalize_name(value: str) -> str:
    """Lowercase and strip whitespace, hyphens and underscores.

    Examples:
        "Acme Robotics" -> "acmerobotics"
        "Jane-Street"   -> "janestreet"
    """
    return re.sub(r"[\s\-_]+", "", value.lower())


def extract_domain(address: str | None) -> str:
    """Return the lowercased domain of an email address, or ''."""
    if not address or "@" not in address:
        return ""
    return address.rsplit("@", 1)[1].strip().strip(">").lower()


# ---------------------------------------------------------------------------
# Domain index
# ---------------------------------------------------------------------------

@dataclass
class DomainIndex:
    """Lookup tables for one user's companies and contacts."""

    excluded_domains: frozenset[str]
    name_to_id: dict[str, str] = field(default_factory=dict)
    id_to_name: dict[str, str] = field(default_factory=dict)
    domain_to_id: dict[str, str] = field(default_factory=dict)
    contact_domain_to_id: dict[str, str] = field(default_factory=dict)
    contact_email_to_id: dict[str, str] = field(default_factory=dict)
    title_patterns: list[tuple[str, re.Pattern[str]]] = field(default_factory=list)

    def _result(self, company_id: str) -> CompanyMatch:
        return CompanyMatch(company_id, self.id_to_name.get(company_id, "Unknown"))

    def is_excluded(self, domain: str) -> bool:
        return domain in self.excluded_domains

    def _match_exact_domain(self, domain: str) -> Optional[CompanyMatch]:
        if not domain or self.is_excluded(domain):
            return None
        if domain in self.contact_domain_to_id:
            return self._result(self.contact_domain_to_id[domain])
        if domain in self.domain_to_id:
            return self._result(self.domain_to_id[domain])
        return None

    def _match_domain_by_name(self, domain: str) -> Optional[CompanyMatch]:
        if not domain or self.is_excluded(domain):
            return None
        local_part = domain.split(".")[0]
        for lower, company_id in self.name_to_id.items():
            normalized = normalize_name(lower)
            if not normalized:
                continue
            if normalized in domain or (local_part and local_part in normalized):
                return self._result(company_id)
        return None

    # ── Public API ────────────────────────────────────────
    def match_email(self, address: str | None) -> Optional[CompanyMatch]:
        """Resolve a sender/recipient address to a company, or None."""
        if not address:
            return None
        domain = extract_domain(address)

        matched = self._match_exact_domain(domain)
        if matched:
            return matched

        email_lower = address.strip().lower()
        if email_lower in self.contact_email_to_id:
            return self._result(self.contact_email_to_id[email_lower])

        return self._match_domain_by_name(domain)

    def match_domains(self, domains: Iterable[str]) -> Optional[CompanyMatch]:
        """Resolve the first hit across several candidate domains."""
        candidates = [d.strip().lower() for d in domains if d and d.strip()]
        for domain in candidates:
            matched = self._match_exact_domain(domain)
            if matched:
                return matched
        for domain in candidates:
            matched = self._match_domain_by_name(domain)
            if matched:
                return matched
        return None

    def match_text(self, text: str | None) -> Optional[CompanyMatch]:
        """Find a company name (>= 3 chars) contained in free text."""
        if not text:
            return None
        lower = text.lower()
        for name, company_id in self.name_to_id.items():
            if len(name) >= MIN_TEXT_MATCH_LEN and name in lower:
                return self._result(company_id)
        return None

    def match_title(self, title: str | None) -> Optional[CompanyMatch]:
        """Word-boundary match of a company name inside a short title."""
        if not title:
            return None
        for company_id, pattern in self.title_patterns:
            if pattern.search(title):
                return self._result(company_id)
        return None

    def match_name(self, name: str | None) -> Optional[CompanyMatch]:
        """Exact case-insensitive company name lookup."""
        if not name:
            return None
        company_id = self.name_to_id.get(name.strip().lower())
        return self._result(company_id) if company_id else None


def build_domain_index(
    companies: Iterable[CompanyLike],
    contacts: Iterable[ContactLike],
    user_domain: str | None = None,
) -> DomainIndex:
    """Build a DomainIndex from the user's companies and contacts.

    Args:
        companies: Records with ``id``, ``name`` and optional ``email_domain``.
        contacts: Records with optional ``email`` and ``company_id``.
        user_domain: The user's own domain; excluded like a generic provider.
    """
    excluded = set(GENERIC_DOMAINS)
    if user_domain and user_domain.lower() not in GENERIC_DOMAINS:
        excluded.add(user_domain.lower())
    index = DomainIndex(excluded_domains=frozenset(excluded))

    for company in companies:
        if not company.name:
            continue
        lower = company.name.strip().lower()
        index.name_to_id[lower] = company.id
        index.id_to_name[company.id] = company.name
        if company.email_domain:
            # One canonical domain per company
            index.domain_to_id[company.email_domain.strip().lower()] = company.id
        index.title_patterns.append(
            (company.id, re.compile(rf"\b{re.escape(lower)}\b", re.IGNORECASE))
        )

    for contact in contacts:
        if not contact.email or not contact.company_id:
            continue
        index.contact_email_to_id[contact.email.strip().lower()] = contact.company_id
        domain = extract_domain(contact.email)
        if domain and domain not in excluded:
            index.contact_domain_to_id[domain] = contact.company_id

    logger.debug(
        "domain_index_built",
        companies=len(index.name_to_id),
        company_domains=len(index.domain_to_id),
        contact_domains=len(index.contact_domain_to_id),
        contact_emails=len(index.contact_email_to_id),
    )
    return index
