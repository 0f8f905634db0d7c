"""FastAPI application entry point."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from job_inbox.api.companies import router as companies_router
from job_inbox.api.ingest import router as ingest_router
from job_inbox.api.scan import router as scan_router
from job_inbox.api.webhook import router as webhook_router
from job_inbox.config import AppConfig, get_config
from job_inbox.database import get_db, init_db
from job_inbox.logging_config import setup_logging
from job_inbox.schemas import HealthOut

logger = structlog.get_logger(__name__)

# Module-level config cache
_config: AppConfig | None = None


def _get_config() -> AppConfig:
    global _config
    if _config is None:
        _config = get_config()
    return _config


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup and shutdown lifecycle."""
    config = _get_config()
    setup_logging(level=config.log_level, log_file=config.log_file)
    init_db(config)
    logger.info(
        "server_starting",
        host=config.host,
        port=config.port,
        llm_enabled=config.llm_enabled,
        llm_provider=config.llm_provider if config.llm_enabled else "disabled",
        vector_index_enabled=config.vector_index_enabled,
    )
    yield
    logger.info("server_shutting_down")


async def _invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.info("request_invalid", path=request.url.path, errors=len(exc.errors()))
    return JSONResponse(status_code=400, content={"detail": "Invalid request body"})


def create_app() -> FastAPI:
    """Create and configure the FastAPI app."""
    config = _get_config()

    app = FastAPI(
        title="Job Inbox",
        description="Resolve, classify and thread job-search email into a structured store",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(RequestValidationError, _invalid_request)

    app.include_router(scan_router)
    app.include_router(ingest_router)
    app.include_router(webhook_router)
    app.include_router(companies_router)

    @app.get("/api/health", tags=["health"], response_model=HealthOut)
    def health_check(db: Session = Depends(get_db)) -> HealthOut:
        db.execute(text("SELECT 1"))
        return HealthOut()

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    config = _get_config()
    uvicorn.run(
        "job_inbox.main:app",
        host=config.host,
        port=config.port,
        reload=True,
    )
