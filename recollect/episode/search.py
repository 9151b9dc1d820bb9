"""
Episode search - answering "when did we talk about X?"

Facts carry the id and title of the episode they came from, so a plain fact
search can be folded back into episodes: fetch a wide net of hits, group by
episode, rank groups by the average confidence of their facts (plus a small
bonus for episodes with more than three facts).
"""

from datetime import datetime
from typing import Callable, Optional

from recollect.interfaces import Embedder, VectorStore
from recollect.lifecycle.temporal import TemporalScorer
from recollect.log import get_logger
from recollect.models import ConversationFact, EpisodeDetails, EpisodeSearchResult, utcnow
from recollect.search import to_facts

logger = get_logger("episode.search")

SEARCH_WIDTH = 50
DETAILS_SCAN = 200
COHERENCE_BONUS = 0.1
UNKNOWN_EPISODE = "unknown"


def format_timeframe(facts: list[ConversationFact]) -> str:
    if not facts:
        return "Unknown timeframe"
    times = sorted(f.reference_time for f in facts)
    earliest, latest = times[0].date(), times[-1].date()
    if earliest == latest:
        return earliest.isoformat()
    return f"{earliest.isoformat()} - {latest.isoformat()}"


def episode_relevance(facts: list[ConversationFact]) -> float:
    average = sum(f.confidence for f in facts) / len(facts)
    return average + (COHERENCE_BONUS if len(facts) > 3 else 0.0)


class EpisodeSearchService:
    def __init__(
        self,
        embedder: Embedder,
        store: VectorStore,
        workspace_id: str,
        temporal: Optional[TemporalScorer] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._embedder = embedder
        self._store = store
        self.workspace_id = workspace_id
        self._temporal = temporal or TemporalScorer()
        self._clock = clock

    async def search_episodes(self, query: str, limit: int = 5) -> list[EpisodeSearchResult]:
        vector = await self._embedder.embed(query)
        records = await self._store.search(query, vector, SEARCH_WIDTH, {"workspace_id": self.workspace_id})

        groups: dict[str, list[ConversationFact]] = {}
        for fact, _ in to_facts(records):
            groups.setdefault(fact.episode_id or UNKNOWN_EPISODE, []).append(fact)

        results = []
        for episode_id, facts in groups.items():
            facts.sort(key=lambda f: f.confidence, reverse=True)
            context = next((f.episode_context for f in facts if f.episode_context), None)
            results.append(EpisodeSearchResult(
                episode_id=episode_id,
                episode_context=context or "Episode context unavailable",
                relevance_score=episode_relevance(facts),
                fact_count=len(facts),
                facts=facts,
                timeframe=format_timeframe(facts),
            ))
        results.sort(key=lambda r: r.relevance_score, reverse=True)
        return results[:max(0, limit)]

    async def get_episode_details(self, episode_id: str, limit: int = 5) -> Optional[EpisodeDetails]:
        """Top facts of one episode by temporal score. None when the episode has no facts."""
        limit = min(20, max(1, int(limit)))
        records, _ = await self._store.filter(
            DETAILS_SCAN,
            {"workspace_id": self.workspace_id, "episode_id": episode_id},
        )
        facts = [fact for fact, _ in to_facts(records)]
        if not facts:
            return None

        now = self._clock()
        facts.sort(key=lambda f: self._temporal.score(f, now), reverse=True)
        context = next((f.episode_context for f in facts if f.episode_context), None)
        return EpisodeDetails(
            episode_id=episode_id,
            episode_context=context or "Episode context unavailable",
            timeframe=format_timeframe(facts),
            facts=facts[:limit],
        )
