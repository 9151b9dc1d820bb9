"""
Recollect - long-lived conversation memory for coding agents.

Cuts conversations into episodes, extracts durable facts, reconciles them
with what is already known, and keeps them fresh in a per-workspace
ChromaDB collection.
"""

__version__ = "0.1.0"

from recollect.config import MemoryConfig, load_config
from recollect.coordinator import CircuitBreaker, CollectionCoordinator
from recollect.manager import MemoryManager
from recollect.models import (
    CategorizedFactInput,
    ConversationEpisode,
    ConversationFact,
    FactCategory,
    MemoryAction,
    MemoryActionType,
    Message,
    ProjectContext,
    ToolMeta,
)
from recollect.orchestrator import MemoryOrchestrator

__all__ = [
    "CategorizedFactInput",
    "CircuitBreaker",
    "CollectionCoordinator",
    "ConversationEpisode",
    "ConversationFact",
    "FactCategory",
    "MemoryAction",
    "MemoryActionType",
    "MemoryConfig",
    "MemoryManager",
    "MemoryOrchestrator",
    "Message",
    "ProjectContext",
    "ToolMeta",
    "load_config",
]
