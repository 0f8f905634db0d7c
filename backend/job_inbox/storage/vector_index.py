"""Similarity-searchable mirror of ingested emails and contacts (Pinecone).

The vector index is secondary and non-authoritative: callers treat every
failure here as best-effort and never roll back the primary store.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, Sequence

import structlog

from job_inbox.config import AppConfig

logger = structlog.get_logger(__name__)

EMAILS_NAMESPACE = "emails"
CONTACTS_NAMESPACE = "contacts"

# Pinecone inference accepts at most 96 inputs per embed call
EMBED_BATCH_SIZE = 96
UPSERT_CHUNK_SIZE = 100
EMBED_BODY_CHARS = 2000


@dataclass(frozen=True)
class VectorMatch:
    id: str
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)


class VectorIndex(Protocol):
    """Protocol that any vector index backend must implement."""

    def upsert_emails(self, user_id: str, emails: Sequence[Any]) -> int: ...

    def upsert_contacts(self, user_id: str, contacts: Sequence[Any]) -> int: ...

    def search_emails(self, user_id: str, query: str, top_k: int = 10) -> list[VectorMatch]: ...


def email_text(message: Any) -> str:
    """Text embedded for an email: subject, sender name and the body head."""
    return f"{message.subject} | From: {message.from_name} | {(message.body or '')[:EMBED_BODY_CHARS]}"


def contact_text(contact: Any, company_name: str = "") -> str:
    return f"{contact.name} | {company_name} | {contact.position or ''} | {contact.email or ''}"


# ── Pinecone ──────────────────────────────────────────────


class PineconeVectorIndex:
    """Pinecone-backed index using Pinecone inference for embeddings."""

    def __init__(self, config: AppConfig, client: Any = None) -> None:
        if client is None:
            from pinecone import Pinecone

            client = Pinecone(api_key=config.pinecone_api_key.get_secret_value())
        self._config = config
        self._pc = client
        self._index = self._pc.Index(config.pinecone_index)

    def _embed(self, texts: list[str], input_type: str = "passage") -> list[list[float]]:
        vectors: list[list[float]] = []
        for start in range(0, len(texts), EMBED_BATCH_SIZE):
            batch = texts[start:start + EMBED_BATCH_SIZE]
            result = self._pc.inference.embed(
                model=self._config.embed_model,
                inputs=batch,
                parameters={"input_type": input_type, "truncate": "END"},
            )
            vectors.extend(item["values"] for item in result)
        return vectors

    def _upsert(self, namespace: str, records: list[dict]) -> int:
        for start in range(0, len(records), UPSERT_CHUNK_SIZE):
            self._index.upsert(
                vectors=records[start:start + UPSERT_CHUNK_SIZE],
                namespace=namespace,
            )
        logger.debug("vector_upserted", namespace=namespace, count=len(records))
        return len(records)

    def upsert_emails(self, user_id: str, emails: Sequence[Any]) -> int:
        if not emails:
            return 0
        values = self._embed([email_text(e) for e in emails])
        records = [
            {
                "id": e.id,
                "values": vec,
                "metadata": {
                    "user_id": user_id,
                    "thread_id": e.thread_id,
                    "subject": e.subject,
                    "from": e.from_email,
                    "from_name": e.from_name,
                    "date": e.date,
                    "type": e.email_type,
                    "company_id": e.company_id or "",
                },
            }
            for e, vec in zip(emails, values)
        ]
        return self._upsert(EMAILS_NAMESPACE, records)

    def upsert_contacts(self, user_id: str, contacts: Sequence[Any]) -> int:
        if not contacts:
            return 0
        values = self._embed([contact_text(c) for c in contacts])
        records = [
            {
                "id": c.id,
                "values": vec,
                "metadata": {
                    "user_id": user_id,
                    "name": c.name,
                    "email": c.email or "",
                    "position": c.position or "",
                    "company_id": c.company_id or "",
                },
            }
            for c, vec in zip(contacts, values)
        ]
        return self._upsert(CONTACTS_NAMESPACE, records)

    def search_emails(self, user_id: str, query: str, top_k: int = 10) -> list[VectorMatch]:
        [vector] = self._embed([query], input_type="query")
        results = self._index.query(
            vector=vector,
            top_k=top_k,
            namespace=EMAILS_NAMESPACE,
            filter={"user_id": {"$eq": user_id}},
            include_metadata=True,
        )
        return [
            VectorMatch(id=m.id, score=float(m.score or 0.0), metadata=dict(m.metadata or {}))
            for m in (results.matches or [])
        ]


def create_vector_index(config: AppConfig) -> Optional[VectorIndex]:
    """Return the configured vector index, or None when disabled."""
    if not config.vector_index_enabled:
        return None
    if not config.pinecone_api_key.get_secret_value():
        logger.warning("vector_index_disabled_no_api_key")
        return None
    return PineconeVectorIndex(config)
