"""Company resolution and thread consolidation for ingested email."""

from job_inbox.linking.resolver import (
    CompanyMatch,
    DomainIndex,
    build_domain_index,
)
from job_inbox.linking.threads import (
    DedupGuard,
    ThreadResolution,
    ThreadState,
    ThreadUpdate,
    consolidate,
    resolve_thread_id,
)

__all__ = [
    "CompanyMatch",
    "DomainIndex",
    "build_domain_index",
    "DedupGuard",
    "ThreadResolution",
    "ThreadState",
    "ThreadUpdate",
    "consolidate",
    "resolve_thread_id",
]
