"""
Memory Manager - wires everything together.

One manager per process. It owns the pieces that must be shared (the
collection coordinator, with its single connection and circuit breaker, and
the embedding model) and builds one orchestrator per workspace on demand.

Usage:
    manager = MemoryManager(load_config())
    memory = manager.get_orchestrator("/home/me/projects/shop")
    await memory.start()
    ...
    await manager.shutdown()
"""

from pathlib import Path
from typing import Optional

from recollect.config import MemoryConfig, load_config
from recollect.coordinator import CollectionCoordinator
from recollect.embedder import SentenceTransformerEmbedder
from recollect.errors import ConfigurationError
from recollect.interfaces import Embedder, LlmProvider
from recollect.llm import OpenAIJsonProvider
from recollect.log import get_logger
from recollect.orchestrator import MemoryOrchestrator
from recollect.storage import ChromaMemoryStore

logger = get_logger("manager")


class MemoryServiceFactory:
    """Builds the default providers and per-workspace stores from config."""

    def __init__(self, config: MemoryConfig, coordinator: Optional[CollectionCoordinator] = None):
        self.config = config
        self.coordinator = coordinator or CollectionCoordinator(config.coordinator)

    def create_embedder(self) -> Embedder:
        return SentenceTransformerEmbedder(self.config.embedding.model)

    def create_llm(self) -> Optional[LlmProvider]:
        """OpenAI provider when an API key is configured, else None (heuristic extraction)."""
        if not self.config.llm.api_key:
            logger.info("No LLM API key configured, fact extraction will use heuristics")
            return None
        return OpenAIJsonProvider(self.config.llm)

    def create_store(self, workspace_path: str, dimension: int) -> ChromaMemoryStore:
        return ChromaMemoryStore(
            self.coordinator,
            workspace_path,
            dimension,
            endpoint=self.config.vector_store.url,
            credential=self.config.vector_store.api_key,
        )


class MemoryManager:
    def __init__(
        self,
        config: Optional[MemoryConfig] = None,
        factory: Optional[MemoryServiceFactory] = None,
        embedder: Optional[Embedder] = None,
        llm: Optional[LlmProvider] = None,
    ):
        self.config = (config or load_config()).validate()
        self.factory = factory or MemoryServiceFactory(self.config)
        self._embedder = embedder
        self._llm = llm
        self._llm_resolved = llm is not None
        self._orchestrators: dict[str, MemoryOrchestrator] = {}

    @property
    def coordinator(self) -> CollectionCoordinator:
        return self.factory.coordinator

    @property
    def embedder(self) -> Embedder:
        if self._embedder is None:
            self._embedder = self.factory.create_embedder()
        return self._embedder

    @property
    def llm(self) -> Optional[LlmProvider]:
        if not self._llm_resolved:
            self._llm = self.factory.create_llm()
            self._llm_resolved = True
        return self._llm

    def get_orchestrator(self, workspace_path: str) -> MemoryOrchestrator:
        if not self.config.enabled:
            raise ConfigurationError("Conversation memory is disabled (enabled: false)")
        key = str(Path(workspace_path).expanduser().resolve())
        orchestrator = self._orchestrators.get(key)
        if orchestrator is None:
            store = self.factory.create_store(key, self.embedder.dimension)
            orchestrator = MemoryOrchestrator(key, store, self.embedder, self.llm, self.config)
            self._orchestrators[key] = orchestrator
            logger.info(f"Created memory orchestrator for {key}")
        return orchestrator

    def workspaces(self) -> list[str]:
        return list(self._orchestrators)

    async def shutdown(self):
        for key, orchestrator in list(self._orchestrators.items()):
            try:
                await orchestrator.stop()
            except Exception as e:
                logger.warning(f"Stopping memory for {key} failed: {e}")
        self._orchestrators.clear()
        await self.coordinator.close()
