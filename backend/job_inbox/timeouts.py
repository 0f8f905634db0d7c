"""Request deadlines and hard timeouts for outbound calls."""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import Any, Callable, Optional, TypeVar

from job_inbox.errors import RequestTimeoutError, UpstreamError

T = TypeVar("T")


class Deadline:
    """Wall-clock time limit for one request.

    Usage::

        deadline = Deadline(config.request_deadline_sec)
        client.get(url, timeout=deadline.clip(30))
        deadline.check()
    """

    def __init__(self, seconds: float) -> None:
        self.seconds = seconds
        self._expires_at = time.monotonic() + seconds

    @property
    def remaining(self) -> float:
        return max(0.0, self._expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        return self.remaining <= 0

    def clip(self, timeout: float) -> float:
        """Shorten ``timeout`` to the time remaining."""
        self.check()
        return min(float(timeout), self.remaining)

    def check(self) -> None:
        if self.expired:
            raise RequestTimeoutError(f"Request deadline of {self.seconds:.0f}s exceeded")


def bounded_timeout(limit: float, deadline: Optional[Deadline]) -> float:
    """``limit`` shortened to what is left of ``deadline``, if any."""
    return deadline.clip(limit) if deadline is not None else float(limit)


def call_with_timeout(
    fn: Callable[..., T],
    *args: Any,
    timeout_sec: float = 45,
    label: str = "LLM",
) -> T:
    """Run ``fn(*args)`` with a hard thread-based timeout.

    SDK-level timeouts are not always honoured, so the call runs in a worker
    thread and is abandoned once ``timeout_sec`` passes.

    Raises:
        UpstreamError: The call did not finish in time.
    """
    executor = ThreadPoolExecutor(max_workers=1)
    future = executor.submit(fn, *args)
    try:
        return future.result(timeout=timeout_sec)
    except FuturesTimeoutError:
        future.cancel()
        raise UpstreamError(f"{label} hard-timeout after {timeout_sec:.1f}s")
    finally:
        executor.shutdown(wait=False, cancel_futures=True)
