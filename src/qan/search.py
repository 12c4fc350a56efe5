"""Search filter narrowing a profile to query classes that match free text."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from qan.query import SearchQuery

if TYPE_CHECKING:
    from qan.models import TimeWindow
    from qan.store import MetricStore

logger = logging.getLogger("qan.search")


class QueryClassFilter:
    """Resolves search text to query class ids active in a window.

    A class matches when its checksum equals the text, its abstract starts
    with it, or its fingerprint contains it.
    """

    def __init__(self, store: MetricStore) -> None:
        self._store = store

    async def resolve(self, instance_id: int, window: TimeWindow, search: str) -> set[int]:
        ids = await self._store.search_class_ids(
            SearchQuery(instance_id=instance_id, window=window, text=search)
        )
        logger.debug("Search %r matched %d query classes", search, len(ids))
        return ids
