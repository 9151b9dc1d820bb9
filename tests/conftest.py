"""
Shared test fixtures - fakes for every outside dependency.

- FakeEmbedder: deterministic vectors, with explicit vectors for chosen texts
  so tests control similarity exactly
- FakeLlm: replays scripted JSON replies (or raises)
- InMemoryVectorStore: the VectorStore contract over a dict, cosine scored
"""

import hashlib
import math
import shutil
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from recollect.errors import DimensionMismatchError, EmbeddingError, LlmResponseError
from recollect.models import ConversationFact, FactCategory, Message, VectorRecord

DIM = 8
NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def unit(index: int, dim: int = DIM) -> list[float]:
    vector = [0.0] * dim
    vector[index] = 1.0
    return vector


def similar_to(base_index: int, similarity: float, other_index: int = None, dim: int = DIM) -> list[float]:
    """Unit vector whose cosine similarity with unit(base_index) is exactly `similarity`."""
    other = other_index if other_index is not None else (base_index + 1) % dim
    vector = [0.0] * dim
    vector[base_index] = similarity
    vector[other] = math.sqrt(max(0.0, 1.0 - similarity * similarity))
    return vector


def cosine(a, b) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    na = math.sqrt(sum(x * x for x in a))
    nb = math.sqrt(sum(y * y for y in b))
    if na == 0 or nb == 0:
        return 0.0
    return dot / (na * nb)


class FakeEmbedder:
    def __init__(self, dimension: int = DIM, vectors: dict = None):
        self._dimension = dimension
        self.vectors = dict(vectors or {})
        self.embed_calls = []
        self.batch_calls = []
        self.fail = False

    @property
    def dimension(self) -> int:
        return self._dimension

    def _vector(self, text: str) -> list[float]:
        if text in self.vectors:
            return list(self.vectors[text])
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        raw = [(b / 255.0) - 0.5 for b in digest[:self._dimension]]
        norm = math.sqrt(sum(x * x for x in raw)) or 1.0
        return [x / norm for x in raw]

    async def embed(self, text: str) -> list[float]:
        self.embed_calls.append(text)
        if self.fail:
            raise EmbeddingError("embedding service down")
        return self._vector(text)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.batch_calls.append(list(texts))
        if self.fail:
            raise EmbeddingError("embedding service down")
        return [self._vector(t) for t in texts]


class FakeLlm:
    """Replies are consumed in order; an Exception instance is raised instead of returned."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.prompts = []
        self.kwargs = []

    async def generate_json(self, prompt, temperature=None, max_tokens=None):
        self.prompts.append(prompt)
        self.kwargs.append({"temperature": temperature, "max_tokens": max_tokens})
        if not self.replies:
            raise LlmResponseError("no scripted reply left")
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        return reply


def _matches(payload: dict, filters: dict) -> bool:
    for key, value in (filters or {}).items():
        if hasattr(value, "value"):
            value = value.value
        if payload.get(key) != value:
            return False
    return True


class InMemoryVectorStore:
    def __init__(self, dimension: int = DIM, name: str = "ws-test-memory"):
        self.dimension = dimension
        self.name = name
        self.records: dict[str, VectorRecord] = {}
        self.search_calls = 0
        self.ensure_calls = []
        self.fail_search = False
        self.fail_writes = False
        self.deleted = []

    def collection_name(self) -> str:
        return self.name

    async def ensure_collection(self, name, dimension):
        self.ensure_calls.append((name, dimension))
        return len(self.ensure_calls) == 1

    def _check_write(self):
        if self.fail_writes:
            raise RuntimeError("vector store write failed")

    async def upsert(self, records):
        self._check_write()
        for record in records:
            self.records[record.id] = VectorRecord(record.id, list(record.vector), dict(record.payload))

    async def insert(self, vectors, ids, payloads):
        self._check_write()
        for vector, fact_id, payload in zip(vectors, ids, payloads):
            if len(vector) != self.dimension:
                raise DimensionMismatchError(self.dimension, len(vector), where="insert")
            self.records[fact_id] = VectorRecord(fact_id, list(vector), dict(payload))

    async def update(self, id, vector, payload):
        self._check_write()
        existing = self.records[id]
        merged = dict(existing.payload)
        merged.update(payload)
        self.records[id] = VectorRecord(id, list(vector) if vector is not None else existing.vector, merged)

    async def delete(self, id):
        self._check_write()
        self.deleted.append(id)
        self.records.pop(id, None)

    async def get(self, id):
        return self.records.get(id)

    async def search(self, query_text, vector, limit, filters=None):
        if len(vector) != self.dimension:
            return []
        self.search_calls += 1
        if self.fail_search:
            return []
        hits = [
            VectorRecord(r.id, r.vector, dict(r.payload), cosine(vector, r.vector))
            for r in self.records.values()
            if _matches(r.payload, filters)
        ]
        hits.sort(key=lambda r: r.score, reverse=True)
        return hits[:limit]

    async def filter(self, limit, filters=None, cursor=None):
        offset = int(cursor or 0)
        matching = [r for r in self.records.values() if _matches(r.payload, filters)]
        page = matching[offset:offset + limit]
        next_cursor = offset + len(page) if offset + len(page) < len(matching) else None
        return page, next_cursor

    async def clear_collection(self):
        self.records.clear()

    async def delete_collection(self):
        self.records.clear()

    def by_category(self, category) -> list[VectorRecord]:
        value = category.value if hasattr(category, "value") else category
        return [r for r in self.records.values() if r.payload.get("category") == value]


def make_fact(
    content: str,
    category: FactCategory = FactCategory.DEBUGGING,
    reference_time: datetime = NOW,
    workspace_id: str = "/ws/demo",
    confidence: float = 0.7,
    **kwargs,
) -> ConversationFact:
    return ConversationFact(
        id=kwargs.pop("id", hashlib.sha1(content.encode()).hexdigest()[:12]),
        content=content,
        category=category,
        confidence=confidence,
        reference_time=reference_time,
        ingestion_time=reference_time,
        workspace_id=workspace_id,
        **kwargs,
    )


def conversation(*contents, start: datetime = NOW, step: timedelta = timedelta(minutes=1)) -> list[Message]:
    """Alternating user/assistant messages one minute apart."""
    return [
        Message("user" if i % 2 == 0 else "assistant", text, start + step * i)
        for i, text in enumerate(contents)
    ]


@pytest.fixture
def temp_data_dir():
    """Create a temporary directory for test data."""
    temp_dir = Path(tempfile.mkdtemp())
    yield temp_dir
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def store():
    return InMemoryVectorStore()
