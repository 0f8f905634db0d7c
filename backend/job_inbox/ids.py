"""Deterministic record identifiers."""

from __future__ import annotations

import uuid

# Fixed namespace so the same natural key always maps to the same id
RECORD_NAMESPACE = uuid.UUID("a1b2c3d4-e5f6-7890-abcd-ef1234567890")


def record_uuid(*parts: str) -> str:
    """UUIDv5 over the ``/``-joined natural key.

    Examples:
        record_uuid(user_id, thread_id)             -> thread row id
        record_uuid(user_id, provider_message_id)   -> imported message id
    """
    return str(uuid.uuid5(RECORD_NAMESPACE, "/".join(str(p) for p in parts)))


def random_uuid() -> str:
    return str(uuid.uuid4())
