"""Ingestion error taxonomy.

Resolution misses (no company, no thread) are not errors and never raise.
Vector index failures are logged and reported in summaries, never raised.
"""

from __future__ import annotations


class IngestionError(Exception):
    """Base class for failures that abort an ingestion request."""

    status_code: int = 500


class InputError(IngestionError):
    """Malformed request body or missing required fields."""

    status_code = 400


class AuthenticationError(IngestionError):
    """Missing or invalid caller credentials (user header, shared secret)."""

    status_code = 401


class UpstreamAuthError(AuthenticationError):
    """The upstream provider rejected our token; the user must re-authenticate."""


class UpstreamError(IngestionError):
    """An upstream dependency (mail provider, AI service) failed."""

    status_code = 502


class RequestTimeoutError(IngestionError):
    """The request deadline elapsed before the work finished."""

    status_code = 504
