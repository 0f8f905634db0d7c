"""Tests for company resolution through the DomainIndex."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import pytest

from job_inbox.linking.resolver import (
    build_domain_index,
    extract_domain,
    normalize_name,
)


@dataclass
class _Company:
    id: str
    name: str
    email_domain: Optional[str] = None


@dataclass
class _Contact:
    email: Optional[str]
    company_id: Optional[str]


@pytest.fixture
def index():
    companies = [
        _Company("c-acme", "Acme Robotics", "acme.io"),
        _Company("c-globex", "Globex"),
        _Company("c-webmail", "Gmail Fans", "gmail.com"),
        _Company("c-short", "AB"),
    ]
    contacts = [
        _Contact("jane@globex.com", "c-globex"),
        _Contact("pat@gmail.com", "c-acme"),
        _Contact(None, "c-acme"),
    ]
    return build_domain_index(companies, contacts)


class TestMatchEmail:
    def test_company_domain(self, index):
        match = index.match_email("recruiter@acme.io")
        assert match is not None
        assert match.company_id == "c-acme"
        assert match.company_name == "Acme Robotics"

    def test_domain_is_case_insensitive(self, index):
        assert index.match_email("Recruiter@ACME.IO").company_id == "c-acme"

    def test_contact_domain(self, index):
        assert index.match_email("someone.else@globex.com").company_id == "c-globex"

    def test_generic_domain_never_matches_by_domain(self, index):
        # gmail.com is registered as a company domain but is a generic provider
        assert index.match_email("stranger@gmail.com") is None

    def test_contact_email_on_generic_domain(self, index):
        assert index.match_email("pat@gmail.com").company_id == "c-acme"

    def test_name_contained_in_domain(self, index):
        assert index.match_email("hr@acmerobotics.com").company_id == "c-acme"

    def test_unknown_sender(self, index):
        assert index.match_email("hello@initech.com") is None

    def test_empty_input(self, index):
        assert index.match_email("") is None
        assert index.match_email(None) is None

    def test_user_domain_is_excluded(self):
        idx = build_domain_index([_Company("c-acme", "Acme Robotics", "acme.io")], [], user_domain="acme.io")
        assert idx.match_email("colleague@acme.io") is None


class TestOtherMatchers:
    def test_match_domains_prefers_exact_over_containment(self, index):
        assert index.match_domains(["gmail.com", "acmerobotics.com", "globex.com"]).company_id == "c-globex"

    def test_match_domains_falls_back_to_containment(self, index):
        assert index.match_domains(["acmerobotics.com"]).company_id == "c-acme"

    def test_match_text(self, index):
        assert index.match_text("Your referral to Acme Robotics is in").company_id == "c-acme"

    def test_match_text_ignores_short_names(self, index):
        assert index.match_text("ab testing notes") is None

    def test_match_title_respects_word_boundaries(self, index):
        assert index.match_title("Senior Engineer - Acme Robotics").company_id == "c-acme"
        assert index.match_title("Acme Roboticsville meetup") is None

    def test_match_name_is_exact(self, index):
        assert index.match_name("  acme robotics ").company_id == "c-acme"
        assert index.match_name("Acme") is None


class TestHelpers:
    def test_normalize_name(self):
        assert normalize_name("Jane-Street Capital_Group") == "janestreetcapitalgroup"

    def test_extract_domain(self):
        assert extract_domain("Bob@Example.COM") == "example.com"
        assert extract_domain("not-an-address") == ""
