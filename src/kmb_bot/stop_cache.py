from __future__ import annotations

import logging
from typing import Optional

from .kmb_api import KmbClient
from .models import StopDetail

logger = logging.getLogger(__name__)


class StopDetailCache:
    """Permanent in-memory cache of stop details, filled on first lookup.

    Entries live for the lifetime of the process and are never refreshed.
    Failed fetches are not stored.
    """

    def __init__(self, client: KmbClient) -> None:
        self._client = client
        self._store: dict[str, StopDetail] = {}

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, stop_id: object) -> bool:
        return stop_id in self._store

    def peek(self, stop_id: str) -> Optional[StopDetail]:
        """Return a cached detail without touching the network."""
        return self._store.get(stop_id)

    async def get(self, stop_id: str) -> StopDetail:
        cached = self._store.get(stop_id)
        if cached is not None:
            logger.debug("stop cache hit stop_id=%s", stop_id)
            return cached

        detail = await self._client.get_stop(stop_id)
        self._store[stop_id] = detail
        logger.debug("stop cache fill stop_id=%s size=%s", stop_id, len(self._store))
        return detail
