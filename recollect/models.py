"""
Data model - the shapes that flow between components.

Think of this like the vocabulary of the memory system:
- A Message is one line of the conversation
- An Episode is a coherent stretch of messages about one topic
- A Fact is a durable thing worth remembering ("we use PostgreSQL")
- A MemoryAction is what to do with a new fact given what we already know

Facts are typed structs with one escape hatch: `extra`, a side map for
forward-compatible data. Everything else is a real field.
"""

import hashlib
import json
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from recollect.errors import MalformedFactError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_time(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (or pass a datetime through) as an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        dt = datetime.fromtimestamp(value, tz=timezone.utc)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    else:
        raise ValueError(f"Not a timestamp: {value!r}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_time(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


# =============================================================================
# ENUMS
# =============================================================================

class FactCategory(str, Enum):
    """The four kinds of facts worth remembering, each with its own lifetime."""
    INFRASTRUCTURE = "infrastructure"  # stack choices, long-lived
    ARCHITECTURE = "architecture"      # design decisions, can be superseded
    DEBUGGING = "debugging"            # transient, retired by the sweeper
    PATTERN = "pattern"                # conventions and habits

    @classmethod
    def parse(cls, value: Any) -> Optional["FactCategory"]:
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                return None
        return None


class MemoryActionType(str, Enum):
    ADD = "ADD"
    UPDATE = "UPDATE"
    SUPERSEDE = "SUPERSEDE"
    DELETE_EXISTING = "DELETE_EXISTING"
    IGNORE = "IGNORE"


class SystemState(str, Enum):
    STANDBY = "standby"
    INDEXING = "indexing"
    INDEXED = "indexed"
    ERROR = "error"


class CollectionStatus(str, Enum):
    CREATING = "creating"
    READY = "ready"
    ERROR = "error"


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


ROLES = ("user", "assistant", "system")


# =============================================================================
# CONVERSATION
# =============================================================================

@dataclass(frozen=True)
class Message:
    role: str
    content: str
    timestamp: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "role": self.role,
            "content": self.content,
            "timestamp": format_time(self.timestamp),
        }


@dataclass
class ProjectContext:
    workspace_name: str
    language: str = "unknown"
    framework: Optional[str] = None
    package_manager: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ProjectContext":
        return cls(
            workspace_name=data.get("workspace_name", ""),
            language=data.get("language", "unknown"),
            framework=data.get("framework"),
            package_manager=data.get("package_manager"),
        )


@dataclass
class ToolMeta:
    """A tool invocation already reduced to plain values."""
    name: str
    params: Any = None
    result_text: Optional[str] = None


def make_episode_id(workspace_id: str, first: Message) -> str:
    """Stable id derived from where the episode starts, not how long it is."""
    stamp = format_time(first.timestamp) or ""
    raw = f"{workspace_id}{first.content[:120]}|{stamp}"
    return "ep_" + hashlib.sha256(raw.encode("utf-8")).hexdigest()[:10]


@dataclass
class ConversationEpisode:
    episode_id: str
    messages: list[Message]
    reference_time: datetime
    workspace_id: str
    context_description: str
    start_time: datetime
    end_time: datetime

    @property
    def message_count(self) -> int:
        return len(self.messages)

    @classmethod
    def from_messages(
        cls,
        messages: list[Message],
        workspace_id: str,
        context_description: str = "",
    ) -> "ConversationEpisode":
        now = utcnow()
        start = messages[0].timestamp or now
        end = messages[-1].timestamp or start
        return cls(
            episode_id=make_episode_id(workspace_id, messages[0]),
            messages=list(messages),
            reference_time=end,
            workspace_id=workspace_id,
            context_description=context_description,
            start_time=start,
            end_time=end,
        )


# =============================================================================
# FACTS
# =============================================================================

@dataclass
class CategorizedFactInput:
    """A candidate fact before it has been reconciled and stored."""
    content: str
    category: FactCategory
    confidence: float = 0.7
    embedding: Optional[list[float]] = None
    reference_time: Optional[datetime] = None
    context_description: Optional[str] = None
    episode_id: Optional[str] = None
    episode_context: Optional[str] = None
    source_model: Optional[str] = None
    project_context: Optional[ProjectContext] = None
    extra: dict = field(default_factory=dict)


_REQUIRED = ("content", "category", "reference_time", "workspace_id")


@dataclass
class ConversationFact:
    id: str
    content: str
    category: FactCategory
    confidence: float
    reference_time: datetime
    ingestion_time: datetime
    workspace_id: str
    embedding: Optional[list[float]] = None
    project_context: Optional[ProjectContext] = None
    conversation_context: Optional[str] = None
    episode_id: Optional[str] = None
    episode_context: Optional[str] = None
    source_model: Optional[str] = None
    last_confirmed: Optional[datetime] = None
    # Lifecycle
    superseded_by: Optional[str] = None
    superseded_at: Optional[datetime] = None
    resolved: Optional[bool] = None
    resolved_at: Optional[datetime] = None
    derived_from: Optional[str] = None
    derived_pattern_created: Optional[bool] = None
    extra: dict = field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        return self.superseded_by is None

    def to_payload(self) -> dict:
        """Flatten into scalar-only metadata. None values are left out."""
        payload = {
            "content": self.content,
            "category": self.category.value,
            "confidence": float(self.confidence),
            "reference_time": format_time(self.reference_time),
            "ingestion_time": format_time(self.ingestion_time),
            "workspace_id": self.workspace_id,
            "conversation_context": self.conversation_context,
            "episode_id": self.episode_id,
            "episode_context": self.episode_context,
            "source_model": self.source_model,
            "last_confirmed": format_time(self.last_confirmed),
            "superseded_by": self.superseded_by,
            "superseded_at": format_time(self.superseded_at),
            "resolved": self.resolved,
            "resolved_at": format_time(self.resolved_at),
            "derived_from": self.derived_from,
            "derived_pattern_created": self.derived_pattern_created,
        }
        if self.project_context is not None:
            payload["project_context"] = json.dumps(self.project_context.to_dict())
        if self.extra:
            payload["extra"] = json.dumps(self.extra, default=str)
        return {k: v for k, v in payload.items() if v is not None}

    @classmethod
    def from_payload(
        cls,
        fact_id: str,
        payload: dict,
        embedding: Optional[list[float]] = None,
    ) -> "ConversationFact":
        payload = payload or {}
        missing = [key for key in _REQUIRED if payload.get(key) in (None, "")]

        category = FactCategory.parse(payload.get("category"))
        if category is None and "category" not in missing:
            missing.append("category")

        try:
            reference_time = parse_time(payload.get("reference_time"))
        except ValueError:
            reference_time = None
            if "reference_time" not in missing:
                missing.append("reference_time")

        if missing:
            raise MalformedFactError(fact_id, missing)

        try:
            ingestion_time = parse_time(payload.get("ingestion_time")) or reference_time
        except ValueError:
            ingestion_time = reference_time

        project = payload.get("project_context")
        if isinstance(project, str):
            try:
                project = ProjectContext.from_dict(json.loads(project))
            except (ValueError, AttributeError):
                project = None
        elif isinstance(project, dict):
            project = ProjectContext.from_dict(project)

        extra = payload.get("extra") or {}
        if isinstance(extra, str):
            try:
                extra = json.loads(extra)
            except ValueError:
                extra = {"raw": extra}

        confidence = payload.get("confidence", 0.7)
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            confidence = 0.7

        return cls(
            id=fact_id,
            content=payload["content"],
            category=category,
            confidence=float(confidence),
            reference_time=reference_time,
            ingestion_time=ingestion_time,
            workspace_id=payload["workspace_id"],
            embedding=list(embedding) if embedding is not None else None,
            project_context=project,
            conversation_context=payload.get("conversation_context"),
            episode_id=payload.get("episode_id"),
            episode_context=payload.get("episode_context"),
            source_model=payload.get("source_model"),
            last_confirmed=_lenient_time(payload.get("last_confirmed")),
            superseded_by=payload.get("superseded_by"),
            superseded_at=_lenient_time(payload.get("superseded_at")),
            resolved=payload.get("resolved"),
            resolved_at=_lenient_time(payload.get("resolved_at")),
            derived_from=payload.get("derived_from"),
            derived_pattern_created=payload.get("derived_pattern_created"),
            extra=extra,
        )

    def to_dict(self) -> dict:
        data = self.to_payload()
        data["id"] = self.id
        if self.extra:
            data["extra"] = dict(self.extra)
        if self.project_context is not None:
            data["project_context"] = self.project_context.to_dict()
        return data


def _lenient_time(value: Any) -> Optional[datetime]:
    try:
        return parse_time(value)
    except ValueError:
        return None


@dataclass
class MemoryAction:
    type: MemoryActionType
    fact: CategorizedFactInput
    target_ids: list[str] = field(default_factory=list)
    reasoning: Optional[str] = None


# =============================================================================
# STORAGE & RESULTS
# =============================================================================

@dataclass
class VectorRecord:
    id: str
    vector: Optional[list[float]]
    payload: dict
    score: Optional[float] = None


@dataclass
class ScoredFact:
    """A search hit with the pieces of its score."""
    fact: ConversationFact
    similarity: float
    temporal: float
    score: float

    def to_dict(self) -> dict:
        data = self.fact.to_dict()
        data.update({
            "similarity": round(self.similarity, 4),
            "temporal": round(self.temporal, 4),
            "score": round(self.score, 4),
        })
        return data


@dataclass
class EpisodeSearchResult:
    episode_id: str
    episode_context: str
    relevance_score: float
    fact_count: int
    facts: list[ConversationFact]
    timeframe: str


@dataclass
class EpisodeDetails:
    episode_id: str
    episode_context: str
    timeframe: str
    facts: list[ConversationFact]


@dataclass
class MemoryStatus:
    system_state: SystemState
    system_message: Optional[str] = None
    processed_episodes: int = 0
    total_episodes: int = 0

    def to_dict(self) -> dict:
        return {
            "system_state": self.system_state.value,
            "system_message": self.system_message,
            "processed_episodes": self.processed_episodes,
            "total_episodes": self.total_episodes,
        }
