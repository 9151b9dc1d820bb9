"""
Configuration - every knob in one place.

Settings are layered, later layers win:
1. Built-in defaults (the dataclasses below)
2. Environment variables (a local .env file is loaded first)
3. ~/.recollect/config.yaml (or the file named by RECOLLECT_CONFIG)
4. A dict handed to load_config() by the host

Example config.yaml:

    vector_store:
      url: http://localhost:8000
    episodes:
      time_gap_min: 45
      segmentation:
        mode: llm_verified
"""

import copy
import os
from dataclasses import dataclass, field, asdict, fields, is_dataclass
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

from recollect.errors import ConfigurationError
from recollect.log import get_logger

logger = get_logger("config")

DEFAULT_CONFIG_PATH = Path.home() / ".recollect" / "config.yaml"
DEFAULT_STORE_PATH = str(Path.home() / ".recollect" / "chroma")

SEGMENTATION_MODES = ("semantic", "llm_verified")
DISTANCES = ("cosine", "dot")
HINT_SOURCES = ("none", "workspace", "memory", "auto")


@dataclass
class VectorStoreConfig:
    url: str = DEFAULT_STORE_PATH  # http(s) URL for a server, anything else is a local path
    api_key: Optional[str] = None


@dataclass
class EmbeddingConfig:
    model: str = "all-mpnet-base-v2"


@dataclass
class LlmConfig:
    model: str = "gpt-4o-mini"
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    timeout: float = 30.0


@dataclass
class SegmentationConfig:
    mode: str = "semantic"
    drift_k: float = 2.5
    min_window: int = 5
    distance: str = "cosine"
    boundary_refiner: Optional[bool] = None  # None means "on for llm_verified"


@dataclass
class HintsConfig:
    source: str = "auto"
    extra: list[str] = field(default_factory=list)


@dataclass
class EpisodeConfig:
    time_gap_min: float = 30.0
    max_messages: int = 25
    topic_patterns: list[str] = field(default_factory=list)
    segmentation: SegmentationConfig = field(default_factory=SegmentationConfig)
    hints: HintsConfig = field(default_factory=HintsConfig)


@dataclass
class RetentionConfig:
    interval_minutes: float = 60.0
    resolved_ttl_days: float = 7.0
    unresolved_ttl_days: float = 30.0
    page_size: int = 128


@dataclass
class CoordinatorConfig:
    health_check_interval: float = 30.0
    idle_timeout: float = 300.0
    settle_window: float = 30.0
    failure_threshold: int = 5
    cooldown: float = 60.0


@dataclass
class SearchConfig:
    blend_alpha: float = 0.65
    default_limit: int = 10


@dataclass
class OrchestratorConfig:
    min_buffer_messages: int = 4
    collection_timeout: float = 60.0
    turn_window: int = 5


@dataclass
class MemoryConfig:
    enabled: bool = True
    vector_store: VectorStoreConfig = field(default_factory=VectorStoreConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    llm: LlmConfig = field(default_factory=LlmConfig)
    episodes: EpisodeConfig = field(default_factory=EpisodeConfig)
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    coordinator: CoordinatorConfig = field(default_factory=CoordinatorConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[dict] = None) -> "MemoryConfig":
        merged = _deep_merge(asdict(cls()), data or {})
        return _build(cls, merged)

    def validate(self) -> "MemoryConfig":
        """Raise ConfigurationError on the first bad setting."""
        if not self.vector_store.url or not str(self.vector_store.url).strip():
            raise ConfigurationError("vector_store.url must not be empty")
        seg = self.episodes.segmentation
        if seg.mode not in SEGMENTATION_MODES:
            raise ConfigurationError(
                f"episodes.segmentation.mode must be one of {SEGMENTATION_MODES}, got {seg.mode!r}"
            )
        if seg.distance not in DISTANCES:
            raise ConfigurationError(
                f"episodes.segmentation.distance must be one of {DISTANCES}, got {seg.distance!r}"
            )
        if self.episodes.hints.source not in HINT_SOURCES:
            raise ConfigurationError(
                f"episodes.hints.source must be one of {HINT_SOURCES}, got {self.episodes.hints.source!r}"
            )
        if not 0.0 <= self.search.blend_alpha <= 1.0:
            raise ConfigurationError(f"search.blend_alpha must be in [0, 1], got {self.search.blend_alpha}")

        positives = {
            "episodes.time_gap_min": self.episodes.time_gap_min,
            "episodes.max_messages": self.episodes.max_messages,
            "episodes.segmentation.drift_k": seg.drift_k,
            "episodes.segmentation.min_window": seg.min_window,
            "retention.interval_minutes": self.retention.interval_minutes,
            "retention.resolved_ttl_days": self.retention.resolved_ttl_days,
            "retention.unresolved_ttl_days": self.retention.unresolved_ttl_days,
            "retention.page_size": self.retention.page_size,
            "coordinator.health_check_interval": self.coordinator.health_check_interval,
            "coordinator.failure_threshold": self.coordinator.failure_threshold,
            "coordinator.cooldown": self.coordinator.cooldown,
            "search.default_limit": self.search.default_limit,
            "orchestrator.min_buffer_messages": self.orchestrator.min_buffer_messages,
            "orchestrator.collection_timeout": self.orchestrator.collection_timeout,
            "orchestrator.turn_window": self.orchestrator.turn_window,
        }
        for name, value in positives.items():
            if value is None or value <= 0:
                raise ConfigurationError(f"{name} must be positive, got {value}")
        return self


def _deep_merge(base: dict, override: dict) -> dict:
    result = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def _build(cls, data: dict):
    kwargs = {}
    known = {f.name: f for f in fields(cls)}
    for key, value in data.items():
        if key not in known:
            logger.warning(f"Ignoring unknown config key: {cls.__name__}.{key}")
            continue
        default = known[key].default_factory() if callable(known[key].default_factory) else None
        if is_dataclass(default):
            if not isinstance(value, dict):
                raise TypeError(f"{cls.__name__}.{key} must be a mapping, got {type(value).__name__}")
            value = _build(type(default), value)
        kwargs[key] = value
    return cls(**kwargs)


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _from_env() -> dict:
    """Pick up the handful of settings hosts usually pass through the environment."""
    config: dict[str, Any] = {}
    env = os.environ
    if env.get("RECOLLECT_ENABLED"):
        config["enabled"] = _env_bool(env["RECOLLECT_ENABLED"])
    if env.get("RECOLLECT_VECTOR_URL"):
        config.setdefault("vector_store", {})["url"] = env["RECOLLECT_VECTOR_URL"]
    if env.get("RECOLLECT_VECTOR_API_KEY"):
        config.setdefault("vector_store", {})["api_key"] = env["RECOLLECT_VECTOR_API_KEY"]
    if env.get("RECOLLECT_EMBEDDING_MODEL"):
        config.setdefault("embedding", {})["model"] = env["RECOLLECT_EMBEDDING_MODEL"]
    if env.get("RECOLLECT_LLM_MODEL"):
        config.setdefault("llm", {})["model"] = env["RECOLLECT_LLM_MODEL"]
    if env.get("OPENAI_API_KEY"):
        config.setdefault("llm", {})["api_key"] = env["OPENAI_API_KEY"]
    if env.get("OPENAI_BASE_URL"):
        config.setdefault("llm", {})["base_url"] = env["OPENAI_BASE_URL"]
    return config


def _from_file(config_path: Optional[Path]) -> dict:
    path = config_path or Path(os.environ.get("RECOLLECT_CONFIG", DEFAULT_CONFIG_PATH))
    path = Path(path).expanduser()
    if not path.exists():
        return {}
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Could not parse {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path} must contain a mapping at the top level")
    logger.debug(f"Loaded config file {path}")
    return data


def load_config(
    provided: Optional[dict] = None,
    config_path: Optional[Path] = None,
) -> MemoryConfig:
    """Build and validate a MemoryConfig from defaults, env, file and overrides."""
    load_dotenv(override=False)

    merged: dict = {}
    merged = _deep_merge(merged, _from_env())
    merged = _deep_merge(merged, _from_file(config_path))
    if provided:
        merged = _deep_merge(merged, provided)

    try:
        config = MemoryConfig.from_dict(merged)
    except TypeError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e
    return config.validate()
