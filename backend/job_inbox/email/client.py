"""Gmail REST client with retry logic and bounded parallel fetching."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, time as dtime, timezone
from typing import List, Optional, Sequence

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from job_inbox.config import AppConfig
from job_inbox.errors import RequestTimeoutError, UpstreamAuthError, UpstreamError
from job_inbox.timeouts import Deadline, bounded_timeout

logger = structlog.get_logger(__name__)

EXCLUDED_CATEGORIES = "-category:promotions -category:social -category:forums"


class GmailAuthError(UpstreamAuthError):
    """Gmail rejected the bearer token (HTTP 401)."""


class _TransientGmailError(Exception):
    """Rate limiting or server-side failure worth retrying."""


# Transient errors worth retrying
_RETRYABLE = (_TransientGmailError, httpx.TransportError)


def _to_datetime(value: str, end_of_day: bool) -> datetime:
    if "T" in value:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        day = datetime.strptime(value, "%Y-%m-%d").date()
        parsed = datetime.combine(day, dtime(23, 59, 59) if end_of_day else dtime(0, 0, 0))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def build_scan_query(start_date: str, end_date: str) -> str:
    """Gmail search query for a date range, excluding bulk categories.

    Date-only values cover whole days: the start from midnight, the end
    through 23:59:59.
    """
    after = int(_to_datetime(start_date, end_of_day=False).timestamp())
    before = int(_to_datetime(end_date, end_of_day=True).timestamp())
    if before <= after:
        raise ValueError("endDate must be after startDate")
    return f"after:{after} before:{before} {EXCLUDED_CATEGORIES}"


class GmailClient:
    """Gmail API wrapper with retry, timeout, and context-manager support.

    Usage::

        with GmailClient(config, token) as gmail:
            refs = gmail.list_message_ids(query, max_results=200)
            messages, errors = gmail.get_messages([r["id"] for r in refs])
    """

    def __init__(
        self,
        config: AppConfig,
        token: str,
        http: Optional[httpx.Client] = None,
    ) -> None:
        self._config = config
        self._base = config.gmail_api_base.rstrip("/")
        self._headers = {"Authorization": f"Bearer {token}"}
        self._owns_http = http is None
        self._http = http or httpx.Client(timeout=config.gmail_timeout_sec)

    # ── Context manager ───────────────────────────────────
    def __enter__(self) -> "GmailClient":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_http:
            self._http.close()

    # ── Requests ──────────────────────────────────────────
    @retry(
        retry=retry_if_exception_type(_RETRYABLE),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        reraise=True,
    )
    def _get(self, path: str, params: dict, deadline: Optional[Deadline] = None) -> dict:
        # Checked per attempt: a retry that starts past the deadline raises RequestTimeoutError
        timeout = bounded_timeout(self._config.gmail_timeout_sec, deadline)
        resp = self._http.get(
            f"{self._base}/{path}", params=params, headers=self._headers, timeout=timeout
        )
        if resp.status_code == 401:
            raise GmailAuthError("Google token expired or invalid")
        if resp.status_code == 429 or resp.status_code >= 500:
            logger.warning("gmail_transient_error", path=path, status=resp.status_code)
            raise _TransientGmailError(f"Gmail API {resp.status_code}")
        if resp.status_code >= 400:
            raise UpstreamError(f"Gmail API error {resp.status_code}: {resp.text[:200]}")
        return resp.json()

    def list_message_ids(
        self,
        query: str,
        max_results: int,
        deadline: Optional[Deadline] = None,
    ) -> List[dict]:
        """Return ``[{id, threadId}, ...]`` for messages matching *query*."""
        try:
            data = self._get("messages", {"q": query, "maxResults": max_results}, deadline)
        except (_TransientGmailError, httpx.TransportError) as exc:
            raise UpstreamError(f"Gmail list failed: {exc}") from exc
        refs = data.get("messages") or []
        logger.info("gmail_messages_listed", count=len(refs), query=query)
        return refs

    def get_message(self, message_id: str, deadline: Optional[Deadline] = None) -> dict:
        """Fetch one message in ``format=full``."""
        return self._get(f"messages/{message_id}", {"format": "full"}, deadline)

    def get_messages(
        self,
        message_ids: Sequence[str],
        batch_size: Optional[int] = None,
        deadline: Optional[Deadline] = None,
    ) -> tuple[List[dict], List[str]]:
        """Fetch messages in parallel batches.

        Returns (messages, errors). A message that fails to fetch is reported
        in ``errors`` and skipped; an auth failure aborts the whole fetch.
        """
        size = batch_size or self._config.scan_batch_size
        messages: List[dict] = []
        errors: List[str] = []

        for start in range(0, len(message_ids), size):
            if deadline is not None:
                deadline.check()
            batch = list(message_ids[start:start + size])
            with ThreadPoolExecutor(max_workers=len(batch)) as pool:
                futures = [(mid, pool.submit(self.get_message, mid, deadline)) for mid in batch]
                for mid, future in futures:
                    try:
                        messages.append(future.result())
                    except (GmailAuthError, RequestTimeoutError):
                        raise
                    except Exception as exc:
                        logger.warning("gmail_fetch_failed", message_id=mid, error=str(exc))
                        errors.append(f"Failed to fetch message {mid}: {exc}")

        logger.info("gmail_messages_fetched", fetched=len(messages), failed=len(errors))
        return messages, errors
