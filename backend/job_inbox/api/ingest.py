"""Pasted-email ingestion endpoint."""

from __future__ import annotations

from typing import Optional

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from job_inbox.api.deps import get_llm_provider, get_vector_index, http_error, require_user_id
from job_inbox.config import AppConfig, get_config
from job_inbox.database import get_db
from job_inbox.errors import IngestionError
from job_inbox.extraction.llm import LLMProvider
from job_inbox.ingestion.single import ingest_pasted_email
from job_inbox.schemas import IngestEmailIn, IngestionSummaryOut
from job_inbox.storage.vector_index import VectorIndex
from job_inbox.timeouts import Deadline

logger = structlog.get_logger(__name__)
router = APIRouter(prefix="/api/emails", tags=["emails"])


@router.post("/ingest", response_model=IngestionSummaryOut)
def ingest_email(
    body: IngestEmailIn,
    user_id: str = Depends(require_user_id),
    db: Session = Depends(get_db),
    config: AppConfig = Depends(get_config),
    llm_provider: Optional[LLMProvider] = Depends(get_llm_provider),
    vector_index: Optional[VectorIndex] = Depends(get_vector_index),
) -> IngestionSummaryOut:
    """Parse, classify, thread and store one pasted email."""
    with structlog.contextvars.bound_contextvars(user_id=user_id):
        try:
            summary = ingest_pasted_email(
                db,
                config,
                user_id,
                body.content,
                llm_provider=llm_provider,
                vector_index=vector_index,
                deadline=Deadline(config.request_deadline_sec),
            )
        except IngestionError as exc:
            raise http_error(exc) from exc
    return IngestionSummaryOut.from_summary(summary)
