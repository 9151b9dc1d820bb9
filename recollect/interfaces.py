"""
Contracts with the outside world.

The core only ever talks to these. Default implementations live in
recollect.embedder, recollect.llm, recollect.storage and recollect.hints,
and tests plug in fakes.
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, runtime_checkable

from recollect.models import ProjectContext, VectorRecord


@runtime_checkable
class Embedder(Protocol):
    @property
    def dimension(self) -> int: ...

    async def embed(self, text: str) -> list[float]: ...

    async def embed_batch(self, texts: list[str]) -> list[list[float]]: ...


@runtime_checkable
class LlmProvider(Protocol):
    async def generate_json(
        self,
        prompt: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> dict: ...


@runtime_checkable
class VectorStore(Protocol):
    """Per-workspace vector storage.

    Filters are equality conjunctions ({"category": "debugging", ...}).
    search() returns [] on a dimension mismatch without touching the backend,
    and [] on backend failure. Writes propagate errors.
    """

    def collection_name(self) -> str: ...

    async def ensure_collection(self, name: str, dimension: int) -> bool: ...

    async def upsert(self, records: list[VectorRecord]) -> None: ...

    async def insert(self, vectors: list[list[float]], ids: list[str], payloads: list[dict]) -> None: ...

    async def update(self, id: str, vector: Optional[list[float]], payload: dict) -> None: ...

    async def delete(self, id: str) -> None: ...

    async def get(self, id: str) -> Optional[VectorRecord]: ...

    async def search(
        self,
        query_text: str,
        vector: list[float],
        limit: int,
        filters: Optional[dict] = None,
    ) -> list[VectorRecord]: ...

    async def filter(
        self,
        limit: int,
        filters: Optional[dict] = None,
        cursor: Any = None,
    ) -> tuple[list[VectorRecord], Any]: ...

    async def clear_collection(self) -> None: ...

    async def delete_collection(self) -> None: ...


@dataclass
class Hints:
    """Vocabulary that helps name an episode: dependency names, directories, tags."""
    deps: list[str] = field(default_factory=list)
    dirs: list[str] = field(default_factory=list)
    memory_tags: list[str] = field(default_factory=list)
    extra: list[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.deps or self.dirs or self.memory_tags or self.extra)


@runtime_checkable
class HintsProvider(Protocol):
    async def get_hints(self, project: Optional[ProjectContext] = None) -> Hints: ...
