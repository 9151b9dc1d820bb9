"""
Retention - retiring debugging facts once they stop being useful.

Only debugging facts expire:
- resolved ones 7 days after they were resolved
- unresolved ones 30 days after they happened

Everything else stays until something supersedes it.

The sweep first walks every page and collects the expired ids, then deletes
them. Deleting while paging would shift the offsets and skip records.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Callable, Optional

from recollect.config import RetentionConfig
from recollect.interfaces import VectorStore
from recollect.log import get_logger
from recollect.models import ConversationFact, FactCategory, utcnow

logger = get_logger("retention")


class RetentionSweeper:
    def __init__(
        self,
        store: VectorStore,
        workspace_id: str,
        config: Optional[RetentionConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self.workspace_id = workspace_id
        self.config = config or RetentionConfig()
        self._clock = clock
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def is_expired(self, fact: ConversationFact, now: datetime) -> bool:
        if fact.category != FactCategory.DEBUGGING:
            return False
        if fact.resolved:
            anchor = fact.resolved_at or fact.reference_time
            return now - anchor > timedelta(days=self.config.resolved_ttl_days)
        return now - fact.reference_time > timedelta(days=self.config.unresolved_ttl_days)

    async def run_cleanup(self, now: Optional[datetime] = None) -> int:
        """Delete expired debugging facts. Returns how many were deleted.

        Store errors and malformed payloads propagate.
        """
        async with self._lock:
            now = now or self._clock()
            filters = {"workspace_id": self.workspace_id, "category": FactCategory.DEBUGGING.value}
            expired: list[str] = []
            scanned = 0
            cursor = None
            while True:
                records, cursor = await self._store.filter(self.config.page_size, filters, cursor)
                for record in records:
                    scanned += 1
                    fact = ConversationFact.from_payload(record.id, record.payload)
                    if self.is_expired(fact, now):
                        expired.append(record.id)
                if cursor is None:
                    break

            for fact_id in expired:
                await self._store.delete(fact_id)

            if expired:
                logger.info(f"Retention removed {len(expired)} of {scanned} debugging facts in {self.workspace_id}")
            else:
                logger.debug(f"Retention found nothing to remove among {scanned} debugging facts")
            return len(expired)

    def start(self):
        if self.running:
            return
        self._task = asyncio.ensure_future(self._loop())
        logger.info(f"Retention sweeper started (every {self.config.interval_minutes} min)")

    async def stop(self):
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _loop(self):
        while True:
            await asyncio.sleep(self.config.interval_minutes * 60)
            try:
                await self.run_cleanup()
            except Exception as e:
                logger.error(f"Retention sweep failed, retrying next interval: {e}", exc_info=True)
