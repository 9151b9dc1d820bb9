"""
Conflict resolution - deciding what a new fact does to the old ones.

Given a candidate fact, look at its nearest stored neighbours (same
workspace, same category, not superseded) and pick one action:

    IGNORE           we already know exactly this
    SUPERSEDE        a new architecture decision replaces a similar old one
    DELETE_EXISTING  a debugging fact says the old problem is fixed
    ADD              anything else

First matching rule wins, so the same neighbours always give the same answer.
"""

import re
from typing import Optional

from recollect.interfaces import Embedder, VectorStore
from recollect.log import get_logger
from recollect.models import (
    CategorizedFactInput,
    FactCategory,
    MemoryAction,
    MemoryActionType,
)

logger = get_logger("resolver")

RESOLUTION_PATTERN = re.compile(r"fixed|resolve|resolved|no longer", re.IGNORECASE)


def is_resolution(content: str) -> bool:
    """Does this debugging fact announce that a problem went away?"""
    return bool(RESOLUTION_PATTERN.search(content or ""))


def _normalize(content: str) -> str:
    return (content or "").strip().lower()


class ConflictResolver:
    NEIGHBOURS = 8
    DUPLICATE_THRESHOLD = 0.95
    SUPERSEDE_THRESHOLD = 0.8
    RESOLUTION_THRESHOLD = 0.85

    def __init__(self, store: VectorStore, workspace_id: str, embedder: Optional[Embedder] = None):
        self._store = store
        self.workspace_id = workspace_id
        self._embedder = embedder

    async def resolve(self, fact: CategorizedFactInput) -> list[MemoryAction]:
        if fact.embedding is None:
            if self._embedder is None:
                return [MemoryAction(MemoryActionType.ADD, fact, reasoning="No embedding available")]
            fact.embedding = await self._embedder.embed(fact.content)

        neighbours = await self._store.search(
            fact.content,
            fact.embedding,
            self.NEIGHBOURS,
            {"workspace_id": self.workspace_id, "category": fact.category.value},
        )
        content = _normalize(fact.content)
        active = [r for r in neighbours if not r.payload.get("superseded_by")]

        for record in active:
            score = record.score or 0.0
            if score > self.DUPLICATE_THRESHOLD and _normalize(record.payload.get("content")) == content:
                return [MemoryAction(
                    MemoryActionType.IGNORE, fact, [record.id],
                    reasoning=f"Duplicate of {record.id} (similarity {score:.3f})",
                )]

        if fact.category == FactCategory.ARCHITECTURE:
            targets = [
                r.id for r in active
                if (r.score or 0.0) > self.SUPERSEDE_THRESHOLD
                and _normalize(r.payload.get("content")) != content
            ]
            if targets:
                return [MemoryAction(
                    MemoryActionType.SUPERSEDE, fact, targets,
                    reasoning=f"Newer architecture decision replaces {len(targets)} similar fact(s)",
                )]

        if fact.category == FactCategory.DEBUGGING and is_resolution(fact.content):
            targets = [r.id for r in neighbours if (r.score or 0.0) > self.RESOLUTION_THRESHOLD]
            if targets:
                return [MemoryAction(
                    MemoryActionType.DELETE_EXISTING, fact, targets,
                    reasoning=f"Resolution retires {len(targets)} open debugging fact(s)",
                )]

        return [MemoryAction(MemoryActionType.ADD, fact, reasoning="New information")]
