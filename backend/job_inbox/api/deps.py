"""Shared FastAPI dependencies and error translation for the ingestion routes."""

from __future__ import annotations

from typing import Callable, Optional

import structlog
from fastapi import Depends, Header, HTTPException

from job_inbox.config import AppConfig, get_config
from job_inbox.email.client import GmailClient
from job_inbox.errors import IngestionError
from job_inbox.extraction.llm import LLMProvider, create_llm_provider
from job_inbox.storage.vector_index import VectorIndex, create_vector_index

logger = structlog.get_logger(__name__)

GmailFactory = Callable[[AppConfig, str], GmailClient]


def require_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Caller identity from the ``x-user-id`` header."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing x-user-id header")
    return x_user_id.strip()


def require_google_token(x_google_token: Optional[str] = Header(None)) -> str:
    if not x_google_token or not x_google_token.strip():
        raise HTTPException(status_code=401, detail="Missing Google token")
    return x_google_token.strip()


def get_llm_provider(config: AppConfig = Depends(get_config)) -> Optional[LLMProvider]:
    return create_llm_provider(config)


def get_vector_index(config: AppConfig = Depends(get_config)) -> Optional[VectorIndex]:
    return create_vector_index(config)


def get_gmail_factory() -> GmailFactory:
    """Factory building a Gmail client for a bearer token; overridden in tests."""
    return GmailClient


def http_error(exc: IngestionError) -> HTTPException:
    """Translate an ingestion failure into the HTTP error the caller sees."""
    if exc.status_code >= 500:
        logger.error("ingestion_request_failed", error=str(exc), status=exc.status_code)
    else:
        logger.info("ingestion_request_rejected", error=str(exc), status=exc.status_code)
    return HTTPException(status_code=exc.status_code, detail=str(exc))
