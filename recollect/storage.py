"""
Storage Layer - where facts live.

Each workspace gets its own ChromaDB collection, named from a hash of the
workspace path so two checkouts never share memories:

    /home/me/projects/shop  ->  ws-3f1c9a0b7d2e4f61-memory

Every operation goes through the shared CollectionCoordinator first, which
hands out the connection and makes sure the collection exists with the right
embedding dimension. ChromaDB calls are blocking, so they run in a worker
thread.

Reads forgive, writes don't:
- search() returns [] when the vector is the wrong size (without asking the
  database) or when the database errors
- insert/update/delete raise
"""

import asyncio
import hashlib
import json
from enum import Enum
from typing import Any, Optional

from recollect.config import DEFAULT_STORE_PATH
from recollect.coordinator import CollectionCoordinator
from recollect.errors import CollectionNotReadyError, DimensionMismatchError
from recollect.log import get_logger
from recollect.models import VectorRecord

logger = get_logger("storage")

INCLUDE = ["metadatas", "embeddings", "documents"]


def collection_name_for(workspace_path: str) -> str:
    digest = hashlib.sha256(workspace_path.encode("utf-8")).hexdigest()[:16]
    return f"ws-{digest}-memory"


def build_where(filters: Optional[dict]) -> Optional[dict]:
    """Equality conjunction -> ChromaDB where clause."""
    if not filters:
        return None
    clauses = [{key: _scalar(value)} for key, value in filters.items()]
    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


def _scalar(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (str, int, float, bool)):
        return value
    return json.dumps(value, default=str)


def to_metadata(payload: dict) -> dict:
    """ChromaDB metadata only holds scalars; None is dropped, the rest JSON-encoded."""
    return {key: _scalar(value) for key, value in payload.items() if value is not None}


def _to_list(vector) -> Optional[list[float]]:
    if vector is None:
        return None
    return [float(x) for x in vector]


class ChromaMemoryStore:
    """VectorStore backed by one ChromaDB collection per workspace.

    Usage:
        store = ChromaMemoryStore(coordinator, "/path/to/workspace", dimension=768)
        await store.ensure_collection()
        await store.insert([vector], ["fact-1"], [{"content": "Uses PostgreSQL", ...}])
        hits = await store.search("database", query_vector, limit=5)
    """

    def __init__(
        self,
        coordinator: CollectionCoordinator,
        workspace_path: str,
        dimension: int,
        endpoint: str = DEFAULT_STORE_PATH,
        credential: Optional[str] = None,
    ):
        self._coordinator = coordinator
        self.workspace_id = workspace_path
        self.dimension = dimension
        self._endpoint = endpoint
        self._credential = credential
        self._name = collection_name_for(workspace_path)
        self._cached: Optional[tuple[Any, Any]] = None

    def collection_name(self) -> str:
        return self._name

    async def ensure_collection(self, name: Optional[str] = None, dimension: Optional[int] = None) -> bool:
        if name is not None:
            self._name = name
        if dimension is not None:
            self.dimension = dimension
        await self._coordinator.get_connection(self._endpoint, self._credential)
        created = await self._coordinator.ensure_collection(self._name, self.workspace_id, self.dimension)
        if created:
            self._cached = None
        return created

    async def _collection(self):
        client = await self._coordinator.get_connection(self._endpoint, self._credential)
        created = await self._coordinator.ensure_collection(self._name, self.workspace_id, self.dimension)
        if created or self._cached is None or self._cached[0] is not client:
            try:
                collection = await self._coordinator.get_collection(self._name)
            except Exception as e:
                # Dropped behind our back; the next call rebuilds it.
                self._coordinator.force_cleanup(self._name, self.workspace_id)
                self._cached = None
                raise CollectionNotReadyError(f"Collection {self._name} is not available: {e}") from e
            self._cached = (client, collection)
        return self._cached[1]

    def _check_vector(self, vector, where: str):
        if vector is None or len(vector) != self.dimension:
            actual = None if vector is None else len(vector)
            raise DimensionMismatchError(self.dimension, actual, where=where)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def insert(self, vectors: list[list[float]], ids: list[str], payloads: list[dict]):
        if not ids:
            return
        for vector in vectors:
            self._check_vector(vector, "insert")
        collection = await self._collection()
        await asyncio.to_thread(
            collection.add,
            ids=list(ids),
            embeddings=[_to_list(v) for v in vectors],
            metadatas=[to_metadata(p) for p in payloads],
            documents=[str(p.get("content", "")) for p in payloads],
        )

    async def upsert(self, records: list[VectorRecord]):
        if not records:
            return
        for record in records:
            self._check_vector(record.vector, "upsert")
        collection = await self._collection()
        await asyncio.to_thread(
            collection.upsert,
            ids=[r.id for r in records],
            embeddings=[_to_list(r.vector) for r in records],
            metadatas=[to_metadata(r.payload) for r in records],
            documents=[str(r.payload.get("content", "")) for r in records],
        )

    async def update(self, id: str, vector: Optional[list[float]], payload: dict):
        """Merge `payload` into the stored record, optionally replacing its vector."""
        existing = await self._get(id)
        if existing is None:
            raise KeyError(f"No stored fact with id {id}")
        merged = dict(existing.payload)
        merged.update(payload)
        await self.upsert([VectorRecord(
            id=id,
            vector=vector if vector is not None else existing.vector,
            payload=merged,
        )])

    async def delete(self, id: str):
        collection = await self._collection()
        await asyncio.to_thread(collection.delete, ids=[id])

    async def clear_collection(self):
        collection = await self._collection()
        while True:
            result = await asyncio.to_thread(collection.get, limit=500, include=[])
            ids = result.get("ids") or []
            if not ids:
                break
            await asyncio.to_thread(collection.delete, ids=ids)
        logger.info(f"Cleared collection {self._name}")

    async def delete_collection(self):
        await self._coordinator.get_connection(self._endpoint, self._credential)
        await self._coordinator.delete_collection(self._name, self.workspace_id)
        self._cached = None
        logger.info(f"Deleted collection {self._name}")

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def _get(self, id: str) -> Optional[VectorRecord]:
        collection = await self._collection()
        result = await asyncio.to_thread(collection.get, ids=[id], include=INCLUDE)
        records = _records(result)
        return records[0] if records else None

    async def get(self, id: str) -> Optional[VectorRecord]:
        return await self._get(id)

    async def search(
        self,
        query_text: str,
        vector: list[float],
        limit: int,
        filters: Optional[dict] = None,
    ) -> list[VectorRecord]:
        if vector is None or len(vector) != self.dimension:
            logger.warning(
                f"Search vector has dimension {None if vector is None else len(vector)}, "
                f"collection expects {self.dimension}; returning no results"
            )
            return []
        try:
            collection = await self._collection()
            result = await asyncio.to_thread(
                collection.query,
                query_embeddings=[_to_list(vector)],
                n_results=max(1, int(limit)),
                where=build_where(filters),
                include=INCLUDE + ["distances"],
            )
        except Exception as e:
            logger.warning(f"Search failed in {self._name}: {e}")
            return []
        return _query_records(result)

    async def filter(
        self,
        limit: int,
        filters: Optional[dict] = None,
        cursor: Any = None,
    ) -> tuple[list[VectorRecord], Any]:
        """One page of records matching `filters`; cursor is an offset."""
        offset = int(cursor or 0)
        collection = await self._collection()
        result = await asyncio.to_thread(
            collection.get,
            where=build_where(filters),
            limit=limit,
            offset=offset,
            include=INCLUDE,
        )
        records = _records(result)
        next_cursor = offset + len(records) if len(records) == limit else None
        return records, next_cursor


def _records(result: dict) -> list[VectorRecord]:
    ids = result.get("ids") or []
    metadatas = result.get("metadatas")
    embeddings = result.get("embeddings")
    records = []
    for i, fact_id in enumerate(ids):
        payload = dict(metadatas[i] or {}) if metadatas is not None else {}
        vector = _to_list(embeddings[i]) if embeddings is not None and len(embeddings) > i else None
        records.append(VectorRecord(id=fact_id, vector=vector, payload=payload))
    return records


def _query_records(result: dict) -> list[VectorRecord]:
    ids = (result.get("ids") or [[]])[0]
    metadatas = result.get("metadatas")
    embeddings = result.get("embeddings")
    distances = result.get("distances")
    records = []
    for i, fact_id in enumerate(ids):
        payload = dict(metadatas[0][i] or {}) if metadatas is not None else {}
        vector = None
        if embeddings is not None and len(embeddings) > 0 and embeddings[0] is not None:
            vector = _to_list(embeddings[0][i])
        score = None
        if distances is not None and distances[0] is not None:
            score = 1.0 - float(distances[0][i])
        records.append(VectorRecord(id=fact_id, vector=vector, payload=payload, score=score))
    return records
