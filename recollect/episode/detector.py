"""
Episode detection - cutting a conversation into coherent stretches.

Boundaries come from three places:

1. Time gaps (forced): nobody continues a thought after 30 minutes of silence
2. Size (forced): an episode never grows past max_messages
3. Topic drift (soft): each message is embedded, we keep a running centroid
   of the open episode, and a message far from it starts a new episode

"Far" adapts to the conversation: the threshold is median + k * MAD of the
distances seen so far in the episode, so a rambling chat needs a bigger jump
than a focused one. Until the episode has min_window messages and three
distances, nothing is far.

In llm_verified mode the LLM reviews soft boundaries and can veto them.
Forced boundaries are never up for review.
"""

import json
import re
from datetime import timedelta
from typing import Optional

import numpy as np

from recollect.config import EpisodeConfig
from recollect.episode.context import EpisodeContextGenerator, fallback_description
from recollect.interfaces import Embedder, LlmProvider
from recollect.log import get_logger
from recollect.models import ConversationEpisode, Message, ProjectContext

logger = get_logger("episode.detector")

MIN_DISTANCES = 3
MAD_FLOOR = 1e-6
CENTROID_WEIGHT_CAP = 1000


def cosine_distance(a: np.ndarray, b: np.ndarray) -> float:
    na = float(np.linalg.norm(a))
    nb = float(np.linalg.norm(b))
    if na == 0.0 or nb == 0.0:
        return 1.0
    return 1.0 - float(np.dot(a, b)) / (na * nb)


def dot_distance(a: np.ndarray, b: np.ndarray) -> float:
    return max(0.0, 1.0 - float(np.dot(a, b)))


def adaptive_threshold(distances: list[float], k: float) -> float:
    """median + k * MAD, or infinity while there is too little history."""
    if len(distances) < MIN_DISTANCES:
        return float("inf")
    values = np.asarray(distances, dtype=float)
    med = float(np.median(values))
    mad = float(np.median(np.abs(values - med))) or MAD_FLOOR
    return med + k * mad


class EpisodeDetector:
    """Usage:
        detector = EpisodeDetector(context_generator, embedder, llm, config.episodes)
        episodes = await detector.detect(messages, "/path/to/workspace")
    """

    def __init__(
        self,
        context_generator: Optional[EpisodeContextGenerator] = None,
        embedder: Optional[Embedder] = None,
        llm: Optional[LlmProvider] = None,
        config: Optional[EpisodeConfig] = None,
    ):
        self.config = config or EpisodeConfig()
        seg = self.config.segmentation
        self._context = context_generator
        self._embedder = embedder
        self._llm = llm
        self.time_gap = timedelta(minutes=self.config.time_gap_min)
        self.max_messages = self.config.max_messages
        self.topic_patterns = [re.compile(p, re.IGNORECASE) for p in self.config.topic_patterns]
        self.drift_k = seg.drift_k
        self.min_window = seg.min_window
        self._distance = dot_distance if seg.distance == "dot" else cosine_distance
        self.use_refiner = seg.boundary_refiner if seg.boundary_refiner is not None else seg.mode == "llm_verified"

    async def detect(
        self,
        messages: list[Message],
        workspace_id: str,
        project_context: Optional[ProjectContext] = None,
    ) -> list[ConversationEpisode]:
        messages = list(messages)
        if not messages:
            return []

        forced = self._time_gap_breakpoints(messages)
        soft = self._topic_breakpoints(messages) - forced
        soft |= await self._semantic_breakpoints(messages, forced)
        soft -= forced

        titles: dict[int, str] = {}
        if self.use_refiner and self._llm is not None:
            soft, titles = await self._refine(messages, soft, project_context)

        starts = self._episode_starts(len(messages), forced | soft)
        episodes = []
        for start, end in zip(starts, starts[1:] + [len(messages)]):
            episode = ConversationEpisode.from_messages(messages[start:end], workspace_id)
            episode.context_description = titles.get(start) or await self._describe(episode, project_context)
            episodes.append(episode)
        logger.debug(f"Detected {len(episodes)} episodes in {len(messages)} messages")
        return episodes

    # -------------------------------------------------------------------------
    # Candidates
    # -------------------------------------------------------------------------

    def _time_gap_breakpoints(self, messages: list[Message]) -> set[int]:
        breakpoints = set()
        for i in range(1, len(messages)):
            prev, curr = messages[i - 1].timestamp, messages[i].timestamp
            if prev is not None and curr is not None and curr - prev > self.time_gap:
                breakpoints.add(i)
        return breakpoints

    def _topic_breakpoints(self, messages: list[Message]) -> set[int]:
        if not self.topic_patterns:
            return set()
        return {
            i for i in range(1, len(messages))
            if any(p.search(messages[i].content) for p in self.topic_patterns)
        }

    async def _semantic_breakpoints(self, messages: list[Message], forced: set[int]) -> set[int]:
        if self._embedder is None or len(messages) < 2:
            return set()
        try:
            vectors = await self._embedder.embed_batch([m.content for m in messages])
        except Exception as e:
            logger.warning(f"Embedding failed, skipping semantic segmentation: {e}")
            return set()
        if len(vectors) != len(messages):
            logger.warning(f"Embedder returned {len(vectors)} vectors for {len(messages)} messages")
            return set()

        breakpoints = set()
        centroid: Optional[np.ndarray] = None
        weight = 0
        distances: list[float] = []
        episode_size = 0

        for i, raw in enumerate(vectors):
            vector = np.asarray(raw, dtype=float)
            if i in forced or centroid is None or vector.shape != centroid.shape:
                centroid, weight, distances, episode_size = vector.copy(), 1, [], 1
                continue

            d = self._distance(vector, centroid)
            distances.append(d)
            if episode_size >= self.min_window and d > adaptive_threshold(distances, self.drift_k):
                breakpoints.add(i)
                centroid, weight, distances, episode_size = vector.copy(), 1, [], 1
                continue

            n = min(weight, CENTROID_WEIGHT_CAP)
            centroid = (centroid * n + vector) / (n + 1)
            weight += 1
            episode_size += 1

        return breakpoints

    def _episode_starts(self, total: int, breakpoints: set[int]) -> list[int]:
        """Sorted episode start indices, with size cuts inserted."""
        starts = [0]
        for bp in sorted(b for b in breakpoints if 0 < b < total) + [total]:
            while bp - starts[-1] > self.max_messages:
                starts.append(starts[-1] + self.max_messages)
            if bp < total:
                starts.append(bp)
        return starts

    # -------------------------------------------------------------------------
    # LLM refinement and titles
    # -------------------------------------------------------------------------

    async def _refine(
        self,
        messages: list[Message],
        soft: set[int],
        project: Optional[ProjectContext],
    ) -> tuple[set[int], dict[int, str]]:
        """Keep only the soft boundaries the LLM agrees with. Failure keeps them all."""
        convo = [
            {"i": i, "role": m.role, "c": m.content[:400] + ("..." if len(m.content) > 400 else "")}
            for i, m in enumerate(messages)
        ]
        project_line = ""
        if project is not None:
            project_line = f"Project: {project.workspace_name} ({project.language})"
        prompt = f"""You will segment a technical chat into coherent episodes.
Return JSON: {{"boundaries": number[], "titles": string[]}}
Rules: boundaries are 0-based message indices where a new episode begins and must include 0; keep episodes at most {self.max_messages} messages; merge trivial one-liners into neighbours; only split when the topic clearly shifts.
Candidate boundaries: {sorted(soft)}
{project_line}
Messages: {json.dumps(convo)}"""

        try:
            reply = await self._llm.generate_json(prompt, temperature=0.2, max_tokens=500)
        except Exception as e:
            logger.warning(f"Boundary refinement failed, keeping candidates: {e}")
            return soft, {}

        raw = reply.get("boundaries") if isinstance(reply, dict) else None
        if not isinstance(raw, list):
            return soft, {}
        accepted = sorted({0} | {
            b for b in raw
            if isinstance(b, int) and not isinstance(b, bool) and 0 <= b < len(messages)
        })
        titles_raw = reply.get("titles") if isinstance(reply.get("titles"), list) else []
        titles = {
            start: title.strip()
            for start, title in zip(accepted, titles_raw)
            if isinstance(title, str) and title.strip()
        }
        kept = soft & set(accepted)
        if len(kept) != len(soft):
            logger.debug(f"LLM vetoed boundaries {sorted(soft - kept)}")
        return kept, titles

    async def _describe(self, episode: ConversationEpisode, project: Optional[ProjectContext]) -> str:
        if self._context is None:
            return fallback_description(episode.messages)
        try:
            return await self._context.describe(episode.messages, project)
        except Exception as e:
            logger.warning(f"Episode description failed: {e}")
            return fallback_description(episode.messages)
