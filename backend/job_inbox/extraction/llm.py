"""LLM-based email extraction with provider abstraction."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import structlog

from job_inbox.config import AppConfig
from job_inbox.email.classifier import EMAIL_TYPES
from job_inbox.errors import UpstreamError
from job_inbox.timeouts import call_with_timeout

logger = structlog.get_logger(__name__)


def _normalize_llm_text(value: str) -> str:
    return re.sub(r"\s+", " ", (value or "").replace("\u200b", " ")).strip()


@dataclass(frozen=True)
class DraftContact:
    """A person the AI found in the email."""

    name: str
    email: str
    position: str = ""
    company: str = ""


@dataclass(frozen=True)
class EmailDraft:
    """Structured output from an AI extraction call. Advisory only."""

    subject: str = ""
    from_name: str = ""
    from_email: str = ""
    to_name: str = ""
    to_email: str = ""
    date: str = ""
    body: str = ""
    email_type: str = "general"
    company: str = ""
    auto_title: str = ""
    matches_existing_thread: bool = False
    matched_thread_id: Optional[str] = None
    contacts: tuple[DraftContact, ...] = ()


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"true", "1", "yes"}


def draft_from_dict(parsed: dict) -> EmailDraft:
    """Validate loosely-typed JSON from the model into an EmailDraft."""
    email_type = str(parsed.get("email_type") or "").strip().lower()
    if email_type not in EMAIL_TYPES:
        email_type = "general"

    contacts: list[DraftContact] = []
    for raw in parsed.get("contacts") or []:
        if not isinstance(raw, dict):
            continue
        name = _normalize_llm_text(str(raw.get("name") or ""))
        address = str(raw.get("email") or "").strip()
        if not name or not address:
            continue
        contacts.append(
            DraftContact(
                name=name,
                email=address,
                position=_normalize_llm_text(str(raw.get("position") or "")),
                company=_normalize_llm_text(str(raw.get("company") or "")),
            )
        )

    matches = _as_bool(parsed.get("matches_existing_thread", False))
    matched_id = str(parsed.get("matched_thread_id") or "").strip() or None

    return EmailDraft(
        subject=_normalize_llm_text(str(parsed.get("subject") or "")),
        from_name=_normalize_llm_text(str(parsed.get("from_name") or "")),
        from_email=str(parsed.get("from_email") or "").strip(),
        to_name=_normalize_llm_text(str(parsed.get("to_name") or "")),
        to_email=str(parsed.get("to_email") or "").strip(),
        date=str(parsed.get("date") or "").strip(),
        body=str(parsed.get("body") or ""),
        email_type=email_type,
        company=_normalize_llm_text(str(parsed.get("company") or "")),
        auto_title=_normalize_llm_text(str(parsed.get("auto_title") or "")),
        matches_existing_thread=matches and matched_id is not None,
        matched_thread_id=matched_id if matches else None,
        contacts=tuple(contacts),
    )


class LLMProvider(Protocol):
    """Protocol that any LLM provider must implement."""

    def parse_email(self, content: str, thread_context: str = "") -> EmailDraft: ...


# ── OpenAI Provider ───────────────────────────────────────


class OpenAIProvider:
    """OpenAI-backed email extraction (GPT-4o-mini, GPT-4o, etc.)."""

    def __init__(self, config: AppConfig, client: Any = None) -> None:
        if client is None:
            from openai import OpenAI

            client = OpenAI(
                api_key=config.llm_api_key.get_secret_value(),
                timeout=config.llm_timeout_sec,
                max_retries=0,  # hard timeout is enforced by call_with_timeout
            )
        self._config = config
        self._client = client

    _SYSTEM_PROMPT = (
        "You parse a single pasted email for a job-search tracker and return strict JSON only "
        "with keys: subject, from_name, from_email, to_name, to_email, date, body, email_type, "
        "company, auto_title, matches_existing_thread, matched_thread_id, contacts.\n\n"
        "Rules:\n"
        "- date: ISO-8601 if present in the email, otherwise your best guess or empty string.\n"
        "- body: the message text without quoted replies or signatures.\n"
        "- email_type: exactly one of "
        + ", ".join(f"'{t}'" for t in EMAIL_TYPES)
        + ".\n"
        "- company: the hiring company this email relates to, or empty string. "
        "Never use ATS vendors (Greenhouse, Lever, Workday) as the company.\n"
        "- auto_title: a concise title in the form 'Subject - From (Company)'.\n"
        "- matches_existing_thread / matched_thread_id: if the subject, sender or content closely "
        "matches one of the EXISTING THREADS listed by the user, set matches_existing_thread=true "
        "and matched_thread_id to that thread's threadId; otherwise false and null.\n"
        "- contacts: list of {name, email, position, company} for the sender and any person "
        "referenced with both a name and an email address."
    )

    def parse_email(self, content: str, thread_context: str = "") -> EmailDraft:
        cfg = self._config
        snippet = (content or "")[: cfg.llm_input_char_limit]

        user_prompt = (
            "EXISTING EMAIL THREADS (from vector search):\n"
            f"{thread_context or 'No existing threads found.'}\n\n"
            f"EMAIL CONTENT:\n{snippet}\n\nReturn JSON."
        )

        resp = self._client.chat.completions.create(
            model=cfg.llm_model,
            timeout=cfg.llm_timeout_sec,
            temperature=0,
            response_format={"type": "json_object"},
            messages=[
                {"role": "system", "content": self._SYSTEM_PROMPT},
                {"role": "user", "content": user_prompt},
            ],
        )

        raw = (resp.choices[0].message.content or "").strip()
        try:
            parsed = json.loads(raw) if raw else {}
        except json.JSONDecodeError as exc:
            raise UpstreamError(f"LLM returned invalid JSON: {exc}") from exc

        usage = getattr(resp, "usage", None)
        logger.info(
            "llm_email_parsed",
            model=cfg.llm_model,
            prompt_tokens=int(getattr(usage, "prompt_tokens", 0) or 0),
            completion_tokens=int(getattr(usage, "completion_tokens", 0) or 0),
        )
        return draft_from_dict(parsed if isinstance(parsed, dict) else {})


# ── Factory ───────────────────────────────────────────────

_PROVIDERS: dict[str, type] = {
    "openai": OpenAIProvider,
}


def create_llm_provider(config: AppConfig) -> Optional[LLMProvider]:
    """Instantiate the configured LLM provider, or None when disabled."""
    if not config.llm_enabled or not config.llm_api_key.get_secret_value():
        return None
    provider_cls = _PROVIDERS.get(config.llm_provider.lower())
    if provider_cls is None:
        raise ValueError(
            f"Unknown LLM provider: {config.llm_provider!r}. "
            f"Available: {', '.join(_PROVIDERS)}"
        )
    return provider_cls(config)


# ── Thread context ────────────────────────────────────────


def build_thread_context(
    vector_index: Any,
    user_id: str,
    content: str,
    char_limit: int = 2000,
    top_k: int = 10,
    timeout_sec: float = 10,
) -> str:
    """Describe similar stored threads for the AI thread-matching prompt.

    Returns an empty string when there is no index, or when the search fails
    or takes longer than ``timeout_sec``.
    """
    if vector_index is None:
        return ""
    try:
        matches = call_with_timeout(
            vector_index.search_emails,
            user_id,
            (content or "")[:char_limit],
            top_k,
            timeout_sec=timeout_sec,
            label="Vector search",
        )
    except Exception as exc:
        logger.warning("thread_context_search_failed", error=str(exc))
        return ""

    lines = []
    for match in matches:
        meta = match.metadata
        if not meta:
            continue
        lines.append(
            f"threadId: {meta.get('thread_id', '')}, subject: \"{meta.get('subject', '')}\", "
            f"from: {meta.get('from_name', '')} ({meta.get('from', '')}), type: {meta.get('type', '')}"
        )
    return "\n".join(lines)
