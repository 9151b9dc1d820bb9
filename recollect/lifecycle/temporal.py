"""
Temporal scoring - how much a fact should still count.

Different kinds of facts age differently:

    infrastructure  "We deploy on Fly.io"        barely fades, gets a boost
    architecture    "Sessions live in Redis"      fades over ~3 months, drops hard when superseded
    debugging       "Login 500s on empty email"   matters for two weeks, almost nothing once fixed
    pattern         "Tests go next to the code"   fades slowly over ~6 months

Scores stay in [0, 1] and never go up as a fact gets older.
"""

from datetime import datetime
from typing import Optional

from recollect.models import ConversationFact, FactCategory, utcnow

DEFAULT_BASE = 0.7
SECONDS_PER_DAY = 86400.0


def age_days(reference: datetime, now: datetime) -> float:
    return max(0.0, (now - reference).total_seconds() / SECONDS_PER_DAY)


class TemporalScorer:
    """Category-aware recency/confidence score for a stored fact."""

    INFRASTRUCTURE_BOOST = 1.2
    INFRASTRUCTURE_HORIZON = 365.0
    INFRASTRUCTURE_FLOOR = 0.8
    ARCHITECTURE_HORIZON = 90.0
    ARCHITECTURE_FLOOR = 0.3
    SUPERSEDED_SCORE = 0.1
    RESOLVED_SCORE = 0.15
    DEBUGGING_STALE_DAYS = 14.0
    DEBUGGING_STALE_SCORE = 0.1
    PATTERN_WEIGHT = 0.8
    PATTERN_HORIZON = 180.0
    PATTERN_FLOOR = 0.5

    def score(self, fact: ConversationFact, now: Optional[datetime] = None) -> float:
        now = now or utcnow()
        base = fact.confidence if fact.confidence is not None else DEFAULT_BASE
        days = age_days(fact.reference_time, now)

        if fact.category == FactCategory.INFRASTRUCTURE:
            decay = max(self.INFRASTRUCTURE_FLOOR, 1.0 - days / self.INFRASTRUCTURE_HORIZON)
            value = base * self.INFRASTRUCTURE_BOOST * decay
        elif fact.category == FactCategory.ARCHITECTURE:
            if fact.superseded_by:
                value = self.SUPERSEDED_SCORE
            else:
                value = base * max(self.ARCHITECTURE_FLOOR, 1.0 - days / self.ARCHITECTURE_HORIZON)
        elif fact.category == FactCategory.DEBUGGING:
            if fact.resolved:
                value = self.RESOLVED_SCORE
            elif days > self.DEBUGGING_STALE_DAYS:
                value = min(base, self.DEBUGGING_STALE_SCORE)
            else:
                value = base
        else:
            value = base * self.PATTERN_WEIGHT * max(self.PATTERN_FLOOR, 1.0 - days / self.PATTERN_HORIZON)

        return min(1.0, max(0.0, value))


def blend(similarity: float, temporal: float, alpha: float) -> float:
    """alpha * similarity + (1 - alpha) * temporal"""
    return alpha * similarity + (1.0 - alpha) * temporal
