"""
Revocation store port.

Entries are keyed by the SHA-256 hex of a token (never the raw token)
and carry a TTL equal to the token's remaining lifetime, so the store can
prune them without a sweep job.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol

from pydantic import BaseModel


class RevocationEntry(BaseModel):
    user_id: Optional[int] = None
    session_id: Optional[str] = None
    reason: str
    expires_at: datetime
    revoked_at: datetime


class RevocationStorePort(Protocol):
    async def add(self, token_hash: str, entry: RevocationEntry, ttl_seconds: int) -> bool:
        """Store the entry unless one exists. Returns True if newly added."""
        ...

    async def contains(self, token_hash: str) -> bool: ...

    async def get(self, token_hash: str) -> Optional[RevocationEntry]: ...


__all__ = ["RevocationEntry", "RevocationStorePort"]
