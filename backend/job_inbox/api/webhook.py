"""Inbound email push endpoint."""

from __future__ import annotations

from typing import Any, Optional

import structlog
from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from job_inbox.api.deps import get_llm_provider, get_vector_index, http_error
from job_inbox.config import AppConfig, get_config
from job_inbox.database import get_db
from job_inbox.errors import IngestionError
from job_inbox.extraction.llm import LLMProvider
from job_inbox.ingestion.single import ingest_webhook_email
from job_inbox.schemas import IngestionSummaryOut
from job_inbox.storage.vector_index import VectorIndex
from job_inbox.timeouts import Deadline

logger = structlog.get_logger(__name__)
router = APIRouter(prefix="/api/webhook", tags=["webhook"])


@router.post("/email", response_model=IngestionSummaryOut)
def receive_email(
    payload: Any = Body(None),
    db: Session = Depends(get_db),
    config: AppConfig = Depends(get_config),
    llm_provider: Optional[LLMProvider] = Depends(get_llm_provider),
    vector_index: Optional[VectorIndex] = Depends(get_vector_index),
) -> IngestionSummaryOut:
    """Authenticate a push by shared secret and ingest its email.

    An unknown sender is not an error for the pusher: the response is 200
    with ``success=false`` and nothing is stored.
    """
    try:
        summary = ingest_webhook_email(
            db,
            config,
            payload,
            llm_provider=llm_provider,
            vector_index=vector_index,
            deadline=Deadline(config.request_deadline_sec),
        )
    except IngestionError as exc:
        raise http_error(exc) from exc

    out = IngestionSummaryOut.from_summary(summary)
    if summary.message is None and summary.errors:
        out.success = False
        out.error = summary.errors[0]
    return out
