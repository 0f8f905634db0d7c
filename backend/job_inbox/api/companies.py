"""Company maintenance endpoints."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from job_inbox.api.deps import require_user_id
from job_inbox.database import get_db
from job_inbox.linking.contacts import enrich_company_domains
from job_inbox.schemas import EnrichDomainsOut

logger = structlog.get_logger(__name__)
router = APIRouter(prefix="/api/companies", tags=["companies"])


@router.post("/enrich-domains", response_model=EnrichDomainsOut)
def enrich_domains(
    user_id: str = Depends(require_user_id),
    db: Session = Depends(get_db),
) -> EnrichDomainsOut:
    """Fill in missing company email domains from known contacts."""
    result = enrich_company_domains(db, user_id)
    logger.info(
        "company_domains_enriched",
        user_id=user_id,
        enriched=result.companies_enriched,
        total=result.total_companies,
    )
    return EnrichDomainsOut(
        companies_enriched=result.companies_enriched,
        total_companies=result.total_companies,
    )
