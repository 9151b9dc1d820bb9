"""
Search - finding the facts that matter for a question.

Similarity alone surfaces stale facts: a superseded architecture decision
can be a perfect textual match. So every hit is re-ranked:

    score = alpha * similarity + (1 - alpha) * temporal

with alpha = 0.65 by default. Ties keep the vector store's order.
"""

from datetime import datetime
from typing import Callable, Optional

from recollect.errors import MalformedFactError
from recollect.interfaces import Embedder, VectorStore
from recollect.lifecycle.temporal import TemporalScorer, blend
from recollect.log import get_logger
from recollect.models import ConversationFact, ScoredFact, utcnow

logger = get_logger("search")


def to_facts(records) -> list[tuple[ConversationFact, float]]:
    """(fact, similarity) pairs, skipping records that don't parse."""
    pairs = []
    for record in records:
        try:
            fact = ConversationFact.from_payload(record.id, record.payload, record.vector)
        except MalformedFactError as e:
            logger.warning(f"Skipping malformed search hit: {e}")
            continue
        pairs.append((fact, record.score if record.score is not None else 0.0))
    return pairs


class MemorySearchService:
    def __init__(
        self,
        embedder: Embedder,
        store: VectorStore,
        workspace_id: str,
        temporal: Optional[TemporalScorer] = None,
        blend_alpha: float = 0.65,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._embedder = embedder
        self._store = store
        self.workspace_id = workspace_id
        self._temporal = temporal or TemporalScorer()
        self.blend_alpha = blend_alpha
        self._clock = clock

    def rank(self, pairs: list[tuple[ConversationFact, float]], now: Optional[datetime] = None) -> list[ScoredFact]:
        now = now or self._clock()
        scored = []
        for fact, similarity in pairs:
            temporal = self._temporal.score(fact, now)
            scored.append(ScoredFact(fact, similarity, temporal, blend(similarity, temporal, self.blend_alpha)))
        # sorted() is stable, equal scores keep store order
        return sorted(scored, key=lambda s: s.score, reverse=True)

    async def search(
        self,
        query: str,
        limit: int = 10,
        filters: Optional[dict] = None,
        after: Optional[datetime] = None,
        before: Optional[datetime] = None,
    ) -> list[ScoredFact]:
        vector = await self._embedder.embed(query)
        conditions = {"workspace_id": self.workspace_id}
        conditions.update(filters or {})
        records = await self._store.search(query, vector, limit, conditions)

        pairs = to_facts(records)
        if after is not None:
            pairs = [(f, s) for f, s in pairs if f.reference_time >= after]
        if before is not None:
            pairs = [(f, s) for f, s in pairs if f.reference_time <= before]
        return self.rank(pairs)
