#!/usr/bin/env python3
"""
Temporal Scoring Tests

How much a stored fact should still count, by category:
1. Infrastructure gets a boost and barely fades
2. Architecture fades over ~90 days, collapses when superseded
3. Debugging is full strength for two weeks, near zero once resolved
4. Patterns fade slowly
5. Scores stay in [0, 1] and never rise with age
"""

from datetime import timedelta

import pytest

from conftest import NOW, make_fact
from recollect.lifecycle.temporal import TemporalScorer, blend
from recollect.models import FactCategory


@pytest.fixture
def scorer():
    return TemporalScorer()


def aged(days, category, **kwargs):
    return make_fact("fact", category, reference_time=NOW - timedelta(days=days), **kwargs)


class TestCategoryRules:
    """Each category's curve."""

    def test_infrastructure_boosted(self, scorer):
        fact = aged(0, FactCategory.INFRASTRUCTURE, confidence=0.7)
        assert scorer.score(fact, NOW) == pytest.approx(0.84)

    def test_infrastructure_capped_at_one(self, scorer):
        fact = aged(0, FactCategory.INFRASTRUCTURE, confidence=0.95)
        assert scorer.score(fact, NOW) == 1.0

    def test_infrastructure_floor_after_a_year(self, scorer):
        fact = aged(1000, FactCategory.INFRASTRUCTURE, confidence=0.5)
        assert scorer.score(fact, NOW) == pytest.approx(0.5 * 1.2 * 0.8)

    def test_architecture_decays_linearly(self, scorer):
        fact = aged(45, FactCategory.ARCHITECTURE, confidence=0.8)
        assert scorer.score(fact, NOW) == pytest.approx(0.4)

    def test_architecture_floor(self, scorer):
        fact = aged(400, FactCategory.ARCHITECTURE, confidence=0.8)
        assert scorer.score(fact, NOW) == pytest.approx(0.24)

    def test_superseded_architecture(self, scorer):
        fact = aged(1, FactCategory.ARCHITECTURE, confidence=0.9, superseded_by="newer")
        assert scorer.score(fact, NOW) == pytest.approx(0.1)

    def test_fresh_debugging_keeps_confidence(self, scorer):
        fact = aged(3, FactCategory.DEBUGGING, confidence=0.6)
        assert scorer.score(fact, NOW) == pytest.approx(0.6)

    def test_stale_debugging(self, scorer):
        fact = aged(15, FactCategory.DEBUGGING, confidence=0.6)
        assert scorer.score(fact, NOW) == pytest.approx(0.1)

    def test_resolved_debugging(self, scorer):
        fact = aged(1, FactCategory.DEBUGGING, confidence=0.9, resolved=True)
        assert scorer.score(fact, NOW) == pytest.approx(0.15)

    def test_pattern_weighted_and_decays(self, scorer):
        fresh = aged(0, FactCategory.PATTERN, confidence=1.0)
        half = aged(90, FactCategory.PATTERN, confidence=1.0)
        old = aged(900, FactCategory.PATTERN, confidence=1.0)
        assert scorer.score(fresh, NOW) == pytest.approx(0.8)
        assert scorer.score(half, NOW) == pytest.approx(0.4)
        assert scorer.score(old, NOW) == pytest.approx(0.4)

    def test_future_reference_time_counts_as_today(self, scorer):
        fact = aged(-5, FactCategory.ARCHITECTURE, confidence=0.8)
        assert scorer.score(fact, NOW) == pytest.approx(0.8)


class TestInvariants:
    """Bounds and monotonicity over a sweep of ages."""

    @pytest.mark.parametrize("category", list(FactCategory))
    def test_bounded_and_non_increasing(self, scorer, category):
        previous = None
        for days in range(0, 800, 7):
            value = scorer.score(aged(days, category, confidence=0.9), NOW)
            assert 0.0 <= value <= 1.0
            if previous is not None:
                assert value <= previous + 1e-12
            previous = value


class TestBlend:
    def test_alpha_weights(self):
        assert blend(1.0, 0.0, 0.65) == pytest.approx(0.65)
        assert blend(0.0, 1.0, 0.65) == pytest.approx(0.35)
        assert blend(0.5, 0.5, 0.3) == pytest.approx(0.5)
