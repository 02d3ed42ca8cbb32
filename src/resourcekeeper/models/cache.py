from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class CacheEntry(BaseModel):
    """Last successfully fetched payload for a descriptor."""

    descriptor_id: str
    payload: str
    fetched_at: datetime
    source_url: str  # Source the payload was fetched from; must stay in the descriptor's list
