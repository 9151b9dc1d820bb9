"""
Collection Lifecycle Coordinator - one shared door to the vector database.

Think of this like a building manager:
1. There is one front door (the client connection), shared by every workspace
2. Rooms (collections) are built once, even if ten people ask at the same time
3. Every room's size (embedding dimension) is checked after it is built
4. A caretaker walks the halls every 30 seconds, locking rooms nobody uses
5. If the door keeps jamming, a circuit breaker stops people from trying
   for a while instead of hammering it

The coordinator is a plain object. The composition root builds one and hands
it to every store; tests build their own with a fake client and a fake clock.
"""

import asyncio
import time
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Callable, Optional
from urllib.parse import urlparse

import chromadb
from chromadb.config import Settings

from recollect.config import CoordinatorConfig
from recollect.errors import (
    CircuitOpenError,
    DimensionMismatchError,
    VectorStoreConnectionError,
    VectorStoreError,
)
from recollect.log import get_logger
from recollect.models import CircuitState, CollectionStatus

logger = get_logger("coordinator")

Clock = Callable[[], float]


def default_client_factory(endpoint: str, credential: Optional[str] = None):
    """HTTP(S) endpoints get an HttpClient, anything else is a local directory."""
    settings = Settings(anonymized_telemetry=False, allow_reset=True)
    if endpoint.startswith(("http://", "https://")):
        parsed = urlparse(endpoint)
        ssl = parsed.scheme == "https"
        headers = {"Authorization": f"Bearer {credential}"} if credential else None
        return chromadb.HttpClient(
            host=parsed.hostname or "localhost",
            port=parsed.port or (443 if ssl else 8000),
            ssl=ssl,
            headers=headers,
            settings=settings,
        )
    path = Path(endpoint).expanduser()
    path.mkdir(parents=True, exist_ok=True)
    return chromadb.PersistentClient(path=str(path), settings=settings)


# =============================================================================
# CIRCUIT BREAKER
# =============================================================================

class CircuitBreaker:
    """CLOSED -> OPEN after `threshold` consecutive failures.

    OPEN refuses everything until `cooldown` seconds pass, then lets exactly
    one trial through (HALF_OPEN). The trial's outcome closes or reopens it.
    """

    def __init__(self, threshold: int = 5, cooldown: float = 60.0, clock: Clock = time.monotonic):
        self.threshold = threshold
        self.cooldown = cooldown
        self._clock = clock
        self.state = CircuitState.CLOSED
        self.failures = 0
        self.last_failure_time: Optional[float] = None
        self.next_attempt_time: Optional[float] = None
        self._trial_in_flight = False

    def allow_request(self) -> bool:
        if self.state == CircuitState.CLOSED:
            return True
        if self.state == CircuitState.OPEN:
            if self._clock() < (self.next_attempt_time or 0.0):
                return False
            self.state = CircuitState.HALF_OPEN
            self._trial_in_flight = True
            logger.info("Circuit breaker half-open, allowing one trial connection")
            return True
        # HALF_OPEN
        if self._trial_in_flight:
            return False
        self._trial_in_flight = True
        return True

    def record_success(self):
        if self.state != CircuitState.CLOSED:
            logger.info("Circuit breaker closed")
        self.state = CircuitState.CLOSED
        self.failures = 0
        self.next_attempt_time = None
        self._trial_in_flight = False

    def record_failure(self):
        now = self._clock()
        self.failures += 1
        self.last_failure_time = now
        self._trial_in_flight = False
        if self.state == CircuitState.HALF_OPEN or self.failures >= self.threshold:
            if self.state != CircuitState.OPEN:
                logger.warning(f"Circuit breaker open after {self.failures} failures, cooling down {self.cooldown}s")
            self.state = CircuitState.OPEN
            self.next_attempt_time = now + self.cooldown

    def retry_after(self) -> float:
        if self.next_attempt_time is None:
            return 0.0
        return max(0.0, self.next_attempt_time - self._clock())

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "failures": self.failures,
            "last_failure_time": self.last_failure_time,
            "next_attempt_time": self.next_attempt_time,
        }


# =============================================================================
# COORDINATOR
# =============================================================================

@dataclass
class CollectionState:
    name: str
    workspace: str
    dimension: int
    status: CollectionStatus
    created_at: float
    last_accessed: float

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        return data


def collection_dimension(collection) -> Optional[int]:
    """Dimension recorded in metadata, else inferred from a stored vector."""
    metadata = collection.metadata or {}
    dim = metadata.get("dimension")
    if dim is not None:
        return int(dim)
    peek = collection.peek(1)
    embeddings = peek.get("embeddings") if peek else None
    if embeddings is not None and len(embeddings) > 0:
        return len(embeddings[0])
    return None


class CollectionCoordinator:
    """Shared connection, collection registry, health monitor and breaker."""

    def __init__(
        self,
        config: Optional[CoordinatorConfig] = None,
        client_factory: Callable[[str, Optional[str]], Any] = default_client_factory,
        clock: Clock = time.monotonic,
    ):
        self.config = config or CoordinatorConfig()
        self._client_factory = client_factory
        self._clock = clock
        self._breaker = CircuitBreaker(
            threshold=self.config.failure_threshold,
            cooldown=self.config.cooldown,
            clock=clock,
        )
        self._client = None
        self._client_key: Optional[tuple] = None
        self._connect_lock = asyncio.Lock()
        self._registry: dict[tuple[str, str], CollectionState] = {}
        self._in_flight: dict[tuple[str, str], tuple[int, asyncio.Future]] = {}
        self._health_task: Optional[asyncio.Task] = None
        self._heartbeat_task: Optional[asyncio.Task] = None

    # -------------------------------------------------------------------------
    # Connection
    # -------------------------------------------------------------------------

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    @property
    def client(self):
        return self._client

    async def get_connection(self, endpoint: str, credential: Optional[str] = None):
        """Return the shared client, creating it when the parameters changed."""
        key = (endpoint, credential)
        if self._client is not None and self._client_key == key:
            if self._breaker.state != CircuitState.OPEN:
                self._schedule_heartbeat()
            return self._client

        async with self._connect_lock:
            if self._client is not None and self._client_key == key:
                return self._client

            if not self._breaker.allow_request():
                raise CircuitOpenError(self._breaker.retry_after())

            try:
                client = await asyncio.to_thread(self._client_factory, endpoint, credential)
            except Exception as e:
                self._breaker.record_failure()
                logger.warning(f"Vector store connection to {endpoint} failed: {e}")
                raise VectorStoreConnectionError(f"Vector store not accessible at {endpoint}: {e}") from e

            self._breaker.record_success()
            if self._client_key is not None and self._client_key != key:
                # Different backend, nothing we knew about collections holds.
                self._registry.clear()
            self._client = client
            self._client_key = key
            logger.info(f"Connected to vector store at {endpoint}")
            self._start_health_monitor()
            return client

    def _schedule_heartbeat(self):
        if self._heartbeat_task is not None and not self._heartbeat_task.done():
            return
        self._heartbeat_task = asyncio.ensure_future(self._heartbeat(self._client))

    async def _heartbeat(self, client):
        try:
            await asyncio.to_thread(client.heartbeat)
        except Exception as e:
            logger.warning(f"Vector store heartbeat failed, dropping connection: {e}")
            self._breaker.record_failure()
            if self._client is client:
                self._client = None

    def _require_client(self):
        if self._client is None:
            raise VectorStoreConnectionError("No vector store connection, call get_connection() first")
        return self._client

    # -------------------------------------------------------------------------
    # Collections
    # -------------------------------------------------------------------------

    async def ensure_collection(self, name: str, workspace: str, dimension: int) -> bool:
        """Make sure `name` exists with `dimension`. True when it was (re)created.

        Concurrent callers for the same (name, workspace) share one creation.
        """
        key = (name, workspace)
        while True:
            state = self._registry.get(key)
            if state is not None and state.status == CollectionStatus.READY and state.dimension == dimension:
                state.last_accessed = self._clock()
                return False

            pending = self._in_flight.get(key)
            if pending is None:
                task = asyncio.ensure_future(self._create_collection(name, workspace, dimension))
                self._in_flight[key] = (dimension, task)
                task.add_done_callback(lambda t, key=key: self._creation_done(key, t))
                return await asyncio.shield(task)

            pending_dim, task = pending
            if pending_dim == dimension:
                return await asyncio.shield(task)
            # Someone is building it with another dimension; let that finish, then redo.
            try:
                await asyncio.shield(task)
            except Exception:
                pass

    def _creation_done(self, key: tuple[str, str], task: asyncio.Future):
        current = self._in_flight.get(key)
        if current is not None and current[1] is task:
            del self._in_flight[key]
        if not task.cancelled():
            task.exception()

    async def _create_collection(self, name: str, workspace: str, dimension: int) -> bool:
        client = self._require_client()
        now = self._clock()
        state = CollectionState(name, workspace, dimension, CollectionStatus.CREATING, now, now)
        self._registry[(name, workspace)] = state

        try:
            created = await asyncio.to_thread(self._create_sync, client, name, dimension)
            collection = await asyncio.to_thread(client.get_collection, name)
            actual = await asyncio.to_thread(collection_dimension, collection)
        except Exception as e:
            state.status = CollectionStatus.ERROR
            raise VectorStoreError(f"Failed to ensure collection {name}: {e}") from e

        if actual != dimension:
            state.status = CollectionStatus.ERROR
            logger.error(f"Collection {name} has dimension {actual} after creation, expected {dimension}")
            raise DimensionMismatchError(dimension, actual, where=name)

        state.status = CollectionStatus.READY
        state.created_at = self._clock()
        state.last_accessed = state.created_at
        if created:
            logger.info(f"Created collection {name} (dimension {dimension}) for {workspace}")
        return created

    def _create_sync(self, client, name: str, dimension: int) -> bool:
        existing = self._find_collection(client, name)
        if existing is not None:
            current = collection_dimension(existing)
            if current == dimension:
                return False
            logger.warning(f"Collection {name} has dimension {current}, expected {dimension}; recreating")
            client.delete_collection(name)
        client.create_collection(
            name=name,
            metadata={"hnsw:space": "cosine", "dimension": dimension},
        )
        return True

    @staticmethod
    def _find_collection(client, name: str):
        try:
            return client.get_collection(name)
        except Exception:
            # chromadb raises different "not found" types across releases
            return None

    async def get_collection(self, name: str):
        client = self._require_client()
        return await asyncio.to_thread(client.get_collection, name)

    async def delete_collection(self, name: str, workspace: str):
        client = self._require_client()
        if await asyncio.to_thread(self._find_collection, client, name) is not None:
            await asyncio.to_thread(client.delete_collection, name)
        self.force_cleanup(name, workspace)

    def touch(self, name: str, workspace: str):
        state = self._registry.get((name, workspace))
        if state is not None:
            state.last_accessed = self._clock()

    def force_cleanup(self, name: str, workspace: str) -> bool:
        """Forget a collection so the next ensure_collection() starts fresh."""
        key = (name, workspace)
        pending = self._in_flight.pop(key, None)
        if pending is not None and not pending[1].done():
            pending[1].cancel()
        return self._registry.pop(key, None) is not None or pending is not None

    def get_collection_state(self, name: str, workspace: str) -> Optional[CollectionState]:
        return self._registry.get((name, workspace))

    def list_collections(self) -> list[CollectionState]:
        return list(self._registry.values())

    def circuit_state(self) -> dict:
        return self._breaker.to_dict()

    # -------------------------------------------------------------------------
    # Health monitoring
    # -------------------------------------------------------------------------

    def _start_health_monitor(self):
        if self._health_task is not None and not self._health_task.done():
            return
        self._health_task = asyncio.ensure_future(self._health_loop())

    async def _health_loop(self):
        while True:
            await asyncio.sleep(self.config.health_check_interval)
            try:
                await self.run_health_check()
            except Exception as e:
                logger.warning(f"Collection health check failed: {e}")

    async def run_health_check(self):
        """Evict idle entries and flag ready collections that disappeared."""
        now = self._clock()
        for key, state in list(self._registry.items()):
            if now - state.last_accessed > self.config.idle_timeout:
                del self._registry[key]
                logger.info(f"Evicted idle collection {state.name} ({state.workspace})")
                continue
            if state.status != CollectionStatus.READY:
                continue
            if now - state.created_at < self.config.settle_window:
                continue
            client = self._client
            if client is None:
                continue
            found = await asyncio.to_thread(self._find_collection, client, state.name)
            if found is None:
                state.status = CollectionStatus.ERROR
                logger.warning(f"Collection {state.name} is no longer accessible")

    async def close(self):
        for task in (self._health_task, self._heartbeat_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._health_task = None
        self._heartbeat_task = None
        for _, task in list(self._in_flight.values()):
            if not task.done():
                task.cancel()
        self._in_flight.clear()
        self._registry.clear()
        self._client = None
        self._client_key = None
