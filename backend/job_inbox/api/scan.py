"""Bulk mailbox scan endpoint."""

from __future__ import annotations

from typing import Optional

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from job_inbox.api.deps import (
    GmailFactory,
    get_gmail_factory,
    get_vector_index,
    http_error,
    require_google_token,
    require_user_id,
)
from job_inbox.config import AppConfig, get_config
from job_inbox.database import get_db
from job_inbox.errors import IngestionError
from job_inbox.ingestion.scan import run_email_scan
from job_inbox.schemas import IngestionSummaryOut, ScanRequest
from job_inbox.storage.vector_index import VectorIndex
from job_inbox.timeouts import Deadline

logger = structlog.get_logger(__name__)
router = APIRouter(prefix="/api/email", tags=["email"])


@router.post("/scan", response_model=IngestionSummaryOut)
def scan_mailbox(
    body: ScanRequest,
    user_id: str = Depends(require_user_id),
    google_token: str = Depends(require_google_token),
    db: Session = Depends(get_db),
    config: AppConfig = Depends(get_config),
    vector_index: Optional[VectorIndex] = Depends(get_vector_index),
    gmail_factory: GmailFactory = Depends(get_gmail_factory),
) -> IngestionSummaryOut:
    """Import job-related mail between ``startDate`` and ``endDate``."""
    with structlog.contextvars.bound_contextvars(user_id=user_id):
        logger.info("email_scan_requested", start_date=body.start_date, end_date=body.end_date)
        try:
            with gmail_factory(config, google_token) as gmail:
                summary = run_email_scan(
                    db,
                    config,
                    user_id,
                    gmail,
                    body.start_date,
                    body.end_date,
                    vector_index=vector_index,
                    deadline=Deadline(config.scan_deadline_sec),
                )
        except IngestionError as exc:
            raise http_error(exc) from exc
    return IngestionSummaryOut.from_summary(summary)
