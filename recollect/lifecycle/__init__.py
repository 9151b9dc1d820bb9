"""Fact lifecycle: temporal scoring and retention."""

from recollect.lifecycle.temporal import TemporalScorer, blend
from recollect.lifecycle.retention import RetentionSweeper

__all__ = ["TemporalScorer", "RetentionSweeper", "blend"]
