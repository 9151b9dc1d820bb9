"""
Memory Orchestrator - the front desk for one workspace's memory.

The host hands it messages as the conversation happens. It:
1. Makes sure the collection exists (once, even with concurrent callers)
2. Buffers messages and, in the background, cuts them into episodes
3. Extracts facts from each episode
4. Reconciles each fact with what's stored (add, ignore, supersede, resolve)
5. Answers searches, ranking by similarity blended with freshness

State goes standby -> indexing -> indexed, or error with a message a human
can act on ("Vector store not accessible").

Usage:
    orchestrator = MemoryOrchestrator("/path/to/workspace", store, embedder, llm)
    await orchestrator.start()
    await orchestrator.collect_message(Message("user", "Let's use PostgreSQL"))
    hits = await orchestrator.search("which database?")
"""

import asyncio
import json
import uuid
from datetime import datetime
from typing import Awaitable, Callable, Optional

from recollect.config import MemoryConfig
from recollect.episode.context import EpisodeContextGenerator
from recollect.episode.detector import EpisodeDetector
from recollect.episode.search import EpisodeSearchService
from recollect.errors import (
    CircuitOpenError,
    DimensionMismatchError,
    EmbeddingError,
    InitializationError,
    InvalidMessageError,
    LlmResponseError,
    ProcessingError,
    RecollectError,
    VectorStoreConnectionError,
)
from recollect.extractor import FactExtractor
from recollect.hints import build_hints_provider
from recollect.interfaces import Embedder, HintsProvider, LlmProvider, VectorStore
from recollect.lifecycle.retention import RetentionSweeper
from recollect.lifecycle.temporal import TemporalScorer
from recollect.log import get_logger
from recollect.models import (
    ROLES,
    CategorizedFactInput,
    ConversationEpisode,
    ConversationFact,
    EpisodeDetails,
    EpisodeSearchResult,
    MemoryAction,
    MemoryActionType,
    MemoryStatus,
    Message,
    ProjectContext,
    ScoredFact,
    SystemState,
    ToolMeta,
    format_time,
    utcnow,
)
from recollect.project import detect_project_context
from recollect.resolver import ConflictResolver
from recollect.search import MemorySearchService
from recollect.state import StateManager

logger = get_logger("orchestrator")

TURN_CONTEXT = "Turn-level extraction"


def startup_error_message(error: BaseException) -> str:
    """Short, user-facing reason for a failed start."""
    text = str(error)
    if isinstance(error, (VectorStoreConnectionError, CircuitOpenError)) or "connect" in text.lower():
        return "Vector store not accessible"
    if isinstance(error, DimensionMismatchError) or "dimension" in text.lower():
        return "Invalid embedder dimension"
    return f"Failed to initialize: {text}"


def processing_error_message(error: BaseException) -> str:
    """Short, user-facing reason for a failed background pass."""
    text = str(error)
    lowered = text.lower()
    if isinstance(error, (VectorStoreConnectionError, CircuitOpenError)) or "connect" in lowered:
        return "Memory service offline - check vector store connection"
    if "api key" in lowered or "unauthorized" in lowered:
        return "Memory service authentication failed - check API keys"
    if isinstance(error, asyncio.TimeoutError) or "timeout" in lowered or "timed out" in lowered:
        return "Memory service timeout - processing delayed"
    if isinstance(error, EmbeddingError):
        return f"Memory processing failed: embedding service error: {text}"
    if isinstance(error, LlmResponseError):
        return f"Memory processing failed: LLM service error: {text}"
    return f"Memory processing failed: {text}"


def format_tool_meta(meta: ToolMeta) -> str:
    lines = [f"TOOL: {meta.name}({json.dumps(meta.params or {}, default=str)})"]
    if meta.result_text:
        lines.append(f"TOOL_OUT: {meta.result_text}")
    return "\n".join(lines)


class MemoryOrchestrator:
    def __init__(
        self,
        workspace_path: str,
        store: VectorStore,
        embedder: Embedder,
        llm: Optional[LlmProvider] = None,
        config: Optional[MemoryConfig] = None,
        state: Optional[StateManager] = None,
        detector: Optional[EpisodeDetector] = None,
        hints: Optional[HintsProvider] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.workspace_path = workspace_path
        self.config = config or MemoryConfig()
        self.state = state or StateManager()
        self._store = store
        self._embedder = embedder
        self._llm = llm
        self._clock = clock

        hints_cfg = self.config.episodes.hints
        self._hints = hints if hints is not None else build_hints_provider(
            hints_cfg.source, workspace_path, store, hints_cfg.extra
        )
        self._detector = detector or EpisodeDetector(
            EpisodeContextGenerator(llm, self._hints), embedder, llm, self.config.episodes
        )
        self._temporal = TemporalScorer()
        self._search = MemorySearchService(
            embedder, store, workspace_path, self._temporal, self.config.search.blend_alpha, clock
        )
        self._episode_search = EpisodeSearchService(embedder, store, workspace_path, self._temporal, clock)
        self._extractor = FactExtractor(llm)
        self._resolver = ConflictResolver(store, workspace_path, embedder)
        self._retention = RetentionSweeper(store, workspace_path, self.config.retention, clock)

        self._buffer: list[Message] = []
        self._processing: Optional[asyncio.Task] = None
        self._ingest_lock = asyncio.Lock()
        self._init_task: Optional[asyncio.Task] = None
        self._initialized = False
        self._init_error: Optional[BaseException] = None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def retention(self) -> RetentionSweeper:
        return self._retention

    @property
    def buffered_messages(self) -> list[Message]:
        return list(self._buffer)

    @property
    def initialization_status(self) -> dict:
        return {
            "is_initialized": self._initialized,
            "is_initializing": self._init_task is not None and not self._init_task.done(),
            "error": self._init_error,
        }

    def get_status(self) -> MemoryStatus:
        return self.state.get_status()

    async def start(self):
        """Bring the collection up. Safe to call many times and concurrently."""
        if self._initialized:
            return
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._initialize())
        task = self._init_task
        try:
            await asyncio.shield(task)
        except BaseException:
            if self._init_task is task and task.done():
                # Let the next caller retry from scratch.
                self._init_task = None
            raise
        self._initialized = True

    async def ensure_initialized(self):
        if not self._initialized:
            await self.start()

    async def _initialize(self):
        self.state.set_state(SystemState.INDEXING, "Initializing conversation memory")
        timeout = self.config.orchestrator.collection_timeout
        try:
            dimension = await asyncio.to_thread(lambda: self._embedder.dimension)
            await asyncio.wait_for(
                self._store.ensure_collection(self._store.collection_name(), dimension),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            self._init_error = e
            self.state.set_state(SystemState.ERROR, "Vector store not accessible")
            logger.error(f"Collection setup for {self.workspace_path} timed out after {timeout:.0f}s")
            raise InitializationError(
                f"Collection setup timed out after {timeout:.0f}s, the vector store is likely unreachable"
            ) from e
        except Exception as e:
            self._init_error = e
            self.state.set_state(SystemState.ERROR, startup_error_message(e))
            logger.error(f"Conversation memory startup failed for {self.workspace_path}: {e}")
            raise InitializationError(f"Conversation memory startup failed: {e}") from e

        self._init_error = None
        self.state.set_state(SystemState.INDEXED, "Conversation memory ready")
        self._retention.start()

    async def stop(self):
        if self.state.state != SystemState.ERROR:
            self.state.set_state(SystemState.STANDBY, "")
        await self._retention.stop()
        await self._cancel_processing()
        self._initialized = False
        self._init_task = None

    async def _cancel_processing(self):
        task, self._processing = self._processing, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def clear_memory_data(self):
        """Drop every fact for this workspace, along with unprocessed messages.

        The in-flight background pass and the retention sweeper are stopped
        first so neither writes into (or recreates) the collection afterwards.
        """
        await self.ensure_initialized()
        await self._cancel_processing()
        await self._retention.stop()
        self._buffer.clear()
        self._initialized = False
        self._init_task = None
        await self._guarded("Clearing memory", self._drop_collection())
        self.state.set_state(SystemState.STANDBY, "Conversation memory cleared successfully.")

    async def _drop_collection(self):
        try:
            await self._store.delete_collection()
        except Exception as e:
            logger.warning(f"Deleting collection failed, clearing it instead: {e}")
            await self._store.clear_collection()

    # -------------------------------------------------------------------------
    # Message intake
    # -------------------------------------------------------------------------

    async def collect_message(self, message: Message):
        """Buffer a message and kick off a background pass if none is running."""
        await self.ensure_initialized()
        if not isinstance(message, Message) or not isinstance(message.content, str) or not message.content.strip():
            raise InvalidMessageError("Message must have non-empty content")
        if message.role not in ROLES:
            raise InvalidMessageError(f"Unknown message role {message.role!r}")

        self._buffer.append(message)
        if self._processing is None or self._processing.done():
            self._processing = asyncio.ensure_future(self._process_in_background())

    async def wait_for_processing(self):
        """Wait for the in-flight background pass, if any."""
        task = self._processing
        if task is not None:
            await asyncio.shield(task)

    async def _process_in_background(self):
        try:
            if len(self._buffer) < self.config.orchestrator.min_buffer_messages:
                return
            await self._process_buffer()
            if self.state.state == SystemState.ERROR:
                self.state.set_state(SystemState.INDEXED, "Conversation memory ready")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Background memory processing failed: {e}", exc_info=True)
            self.state.set_state(SystemState.ERROR, processing_error_message(e.__cause__ or e))

    async def _process_buffer(self):
        snapshot = list(self._buffer)
        project = await detect_project_context(self.workspace_path)
        episodes = await self._detector.detect(snapshot, self.workspace_path, project)
        self.state.set_progress(0, len(episodes))

        consumed = 0
        try:
            for done, episode in enumerate(episodes, start=1):
                try:
                    await self._process_episode(episode, project)
                except Exception as e:
                    raise ProcessingError(f"Episode {episode.episode_id} failed: {e}") from e
                consumed += episode.message_count
                self.state.set_progress(done, len(episodes))
        finally:
            # Only whole, processed episodes leave the buffer. Messages are
            # matched by identity: the buffer may have been cleared or grown.
            processed = {id(m) for m in snapshot[:consumed]}
            self._buffer[:] = [m for m in self._buffer if id(m) not in processed]
        logger.info(f"Processed {len(episodes)} episodes ({consumed} messages) for {self.workspace_path}")

    async def process_episode(
        self,
        episode: ConversationEpisode,
        project: Optional[ProjectContext] = None,
    ) -> list[MemoryAction]:
        return await self._guarded("Episode processing", self._process_episode(episode, project))

    async def _process_episode(
        self,
        episode: ConversationEpisode,
        project: Optional[ProjectContext] = None,
    ) -> list[MemoryAction]:
        project = project or await detect_project_context(self.workspace_path)
        facts = await self._extractor.extract_facts(episode.messages, project)
        for fact in facts:
            fact.reference_time = fact.reference_time or episode.reference_time
            fact.context_description = fact.context_description or episode.context_description
            fact.episode_id = episode.episode_id
            fact.episode_context = episode.context_description
            fact.project_context = fact.project_context or project
        return await self._ingest(facts)

    async def process_turn(
        self,
        messages: list[Message],
        llm_override: Optional[LlmProvider] = None,
        model_id: Optional[str] = None,
        tool_meta: Optional[ToolMeta] = None,
        full_history: Optional[list[Message]] = None,
    ) -> list[MemoryAction]:
        """Extract facts from the latest turn right away, without waiting for an episode."""
        await self.ensure_initialized()
        if not messages:
            return []

        project = await detect_project_context(self.workspace_path)
        episode = await self._episode_for_turn(full_history, project, llm_override) if full_history else None

        window = list(messages)[-self.config.orchestrator.turn_window:]
        if tool_meta is not None:
            window.append(Message("assistant", format_tool_meta(tool_meta)))

        if llm_override is not None:
            facts = await self._extractor.extract_facts_with_provider(window, project, llm_override)
        elif self._llm is not None:
            facts = await self._extractor.extract_facts(window, project)
        else:
            facts = []
        if not facts:
            return []

        now = self._clock()
        for fact in facts:
            fact.reference_time = fact.reference_time or now
            fact.context_description = (
                fact.context_description or (episode.context_description if episode else None) or TURN_CONTEXT
            )
            fact.source_model = model_id
            fact.episode_id = episode.episode_id if episode else None
            fact.episode_context = episode.context_description if episode else None
            fact.project_context = fact.project_context or project

        return await self._guarded("Turn processing", self._ingest(facts))

    async def _episode_for_turn(
        self,
        history: list[Message],
        project: ProjectContext,
        llm_override: Optional[LlmProvider],
    ) -> Optional[ConversationEpisode]:
        detector = self._detector
        if llm_override is not None:
            detector = EpisodeDetector(
                EpisodeContextGenerator(llm_override, self._hints),
                self._embedder,
                llm_override,
                self.config.episodes,
            )
        try:
            episodes = await detector.detect(history, self.workspace_path, project)
        except Exception as e:
            logger.debug(f"Episode detection for turn failed: {e}")
            return None
        return episodes[-1] if episodes else None

    # -------------------------------------------------------------------------
    # Ingestion
    # -------------------------------------------------------------------------

    async def ingest_facts(self, facts: list[CategorizedFactInput]) -> list[MemoryAction]:
        """Embed (batched) then resolve and apply each fact, one at a time."""
        return await self._guarded("Ingesting facts", self._ingest(facts))

    async def _guarded(self, what: str, work: Awaitable):
        """Await `work`; any failure moves the state to ERROR and surfaces as a RecollectError."""
        try:
            return await work
        except RecollectError as e:
            self.state.set_state(SystemState.ERROR, processing_error_message(e))
            raise
        except Exception as e:
            self.state.set_state(SystemState.ERROR, processing_error_message(e))
            raise ProcessingError(f"{what} failed: {e}") from e

    async def _ingest(self, facts: list[CategorizedFactInput]) -> list[MemoryAction]:
        if not facts:
            return []
        async with self._ingest_lock:
            pending = [f for f in facts if f.embedding is None]
            if pending:
                try:
                    vectors = await self._embedder.embed_batch([f.content for f in pending])
                except EmbeddingError:
                    raise
                except Exception as e:
                    raise EmbeddingError(f"Embedding {len(pending)} facts failed: {e}") from e
                if len(vectors) != len(pending):
                    raise EmbeddingError(f"Expected {len(pending)} embeddings, got {len(vectors)}")
                for fact, vector in zip(pending, vectors):
                    fact.embedding = list(vector)

            applied = []
            for fact in facts:
                for action in await self._resolver.resolve(fact):
                    await self._apply(action)
                    applied.append(action)
            return applied

    async def _apply(self, action: MemoryAction):
        fact = action.fact
        now = self._clock()

        if action.type == MemoryActionType.IGNORE:
            logger.debug(f"Ignoring duplicate fact: {fact.content[:60]}")
        elif action.type == MemoryActionType.ADD:
            await self._insert(fact)
        elif action.type == MemoryActionType.UPDATE:
            if action.target_ids:
                await self._store.update(action.target_ids[0], fact.embedding, {
                    "content": fact.content,
                    "confidence": float(fact.confidence),
                    "last_confirmed": format_time(now),
                })
        elif action.type == MemoryActionType.SUPERSEDE:
            new_id = await self._insert(fact)
            for target in action.target_ids:
                await self._store.update(target, None, {
                    "superseded_by": new_id,
                    "superseded_at": format_time(now),
                })
            logger.info(f"Fact {new_id} supersedes {len(action.target_ids)} older fact(s)")
        elif action.type == MemoryActionType.DELETE_EXISTING:
            for target in action.target_ids:
                await self._store.delete(target)
            await self._insert(fact, resolved=True, resolved_at=now)
            logger.info(f"Resolution removed {len(action.target_ids)} debugging fact(s)")

    async def _insert(self, fact: CategorizedFactInput, **lifecycle) -> str:
        now = self._clock()
        fact_id = str(uuid.uuid4())
        record = ConversationFact(
            id=fact_id,
            content=fact.content,
            category=fact.category,
            confidence=fact.confidence,
            reference_time=fact.reference_time or now,
            ingestion_time=now,
            workspace_id=self.workspace_path,
            embedding=fact.embedding,
            project_context=fact.project_context,
            conversation_context=fact.context_description,
            episode_id=fact.episode_id,
            episode_context=fact.episode_context,
            source_model=fact.source_model,
            extra=dict(fact.extra),
            **lifecycle,
        )
        await self._store.insert([fact.embedding], [fact_id], [record.to_payload()])
        return fact_id

    # -------------------------------------------------------------------------
    # Retrieval
    # -------------------------------------------------------------------------

    async def search(
        self,
        query: str,
        limit: Optional[int] = None,
        filters: Optional[dict] = None,
        after: Optional[datetime] = None,
        before: Optional[datetime] = None,
    ) -> list[ScoredFact]:
        await self.ensure_initialized()
        return await self._search.search(
            query, limit or self.config.search.default_limit, filters, after, before
        )

    async def search_episodes(self, query: str, limit: int = 5) -> list[EpisodeSearchResult]:
        await self.ensure_initialized()
        return await self._episode_search.search_episodes(query, limit)

    async def get_episode_details(self, episode_id: str, limit: int = 5) -> Optional[EpisodeDetails]:
        await self.ensure_initialized()
        return await self._episode_search.get_episode_details(episode_id, limit)
