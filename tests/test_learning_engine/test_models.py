#!/usr/bin/env python3
"""
Test learning engine data models

Verifies dataclass invariants and lenient decoding of persisted / external records.
"""

import math

import pytest

from learning_engine import config as cfg
from learning_engine.models import (
    DimensionScore,
    Evaluation,
    FastTierPattern,
    GrpoRound,
    LearnedPattern,
    RankingEntry,
    TeamRankingEntry,
    TransferLogEntry,
    as_float,
    as_int,
)


def _dimensions(weights=None):
    weights = weights or cfg.DIMENSION_WEIGHTS
    return {name: DimensionScore(score=3.0, weight=w) for name, w in weights.items()}


class TestCoercion:
    """Test numeric coercion helpers"""

    def test_as_float_accepts_numbers_and_strings(self):
        assert as_float(3) == 3.0
        assert as_float("0.5") == 0.5

    def test_as_float_rejects_junk(self):
        assert as_float("abc") == 0.0
        assert as_float(None, 1.0) == 1.0
        assert as_float(float("nan")) == 0.0
        assert as_float(float("inf")) == 0.0

    def test_as_int_truncates(self):
        assert as_int("4.7") == 4
        assert as_int(None, 2) == 2


class TestRankingEntry:
    """Test RankingEntry validation"""

    def test_valid_entry(self):
        entry = RankingEntry(candidate_id="c1", strategy="balanced", scores={}, composite=0.75, rank=1)
        assert entry.weight_key == "balanced"

    def test_composite_out_of_range_rejected(self):
        with pytest.raises(ValueError, match="composite must be in"):
            RankingEntry(candidate_id="c1", strategy="x", scores={}, composite=1.2, rank=1)

    def test_rank_must_be_one_based(self):
        with pytest.raises(ValueError, match="rank must be"):
            RankingEntry(candidate_id="c1", strategy="x", scores={}, composite=0.5, rank=0)

    def test_team_entry_weight_key(self):
        entry = TeamRankingEntry(
            candidate_id="t1", strategy="leader", scores={}, composite=0.5, rank=1,
            team_size=3, domain="frontend", agents=["architect"],
        )
        assert entry.pattern == "leader"
        assert entry.weight_key == "leader|3|frontend"

    def test_team_entry_serializes_pattern(self):
        entry = TeamRankingEntry(candidate_id="t1", strategy="swarm", scores={}, composite=0.5, rank=2, team_size=5)
        data = entry.to_dict()
        assert data["pattern"] == "swarm"
        assert "strategy" not in data


class TestEvaluation:
    """Test Evaluation invariants"""

    def test_default_weights_sum_to_one(self):
        assert math.fsum(cfg.DIMENSION_WEIGHTS.values()) == 1.0

    def test_weights_must_sum_to_one(self):
        bad = {"accuracy": 0.5, "completeness": 0.2, "efficiency": 0.1, "satisfaction": 0.1}
        with pytest.raises(ValueError, match="dimension weights must sum"):
            Evaluation(
                id="e1", task_id=None, task_type="x", timestamp="t",
                dimensions=_dimensions(bad), overall=3.0, grade="C", feedback="",
            )

    def test_overall_bounds(self):
        with pytest.raises(ValueError, match="overall must be in"):
            Evaluation(
                id="e1", task_id=None, task_type="x", timestamp="t",
                dimensions=_dimensions(), overall=5.5, grade="A", feedback="",
            )

    def test_dimension_score_bounds(self):
        with pytest.raises(ValueError, match="score must be in"):
            DimensionScore(score=0.0, weight=0.35)

    def test_from_dict_restores_dimensions(self):
        original = Evaluation(
            id="e1", task_id="t1", task_type="bugfix", timestamp="t",
            dimensions=_dimensions(), overall=3.0, grade="C", feedback="ok",
        )
        restored = Evaluation.from_dict(original.to_dict())
        assert restored.dimensions["accuracy"].weight == 0.35
        assert restored.task_type == "bugfix"

    def test_from_dict_rejects_missing_dimensions(self):
        with pytest.raises(ValueError):
            Evaluation.from_dict({"id": "broken", "overall": 3.0})

    def test_from_dict_rejects_non_mapping_dimensions(self):
        with pytest.raises(ValueError, match="dimensions must be a mapping"):
            Evaluation.from_dict({"id": "broken", "dimensions": [3, 4], "overall": 3.0})
        with pytest.raises(ValueError, match="dimension accuracy must be a mapping"):
            Evaluation.from_dict({"id": "broken", "dimensions": {"accuracy": 3}, "overall": 3.0})


class TestLearnedPattern:
    """Test decoding of externally produced patterns"""

    def test_camel_case_fields(self):
        pattern = LearnedPattern.from_dict({
            "key": "tool::Read",
            "confidence": 0.9,
            "consecutiveSuccesses": 4,
            "sampleSize": 12,
            "bestData": {"avgDuration": 30},
        })
        assert pattern.consecutive_successes == 4
        assert pattern.sample_size == 12
        assert pattern.best_data == {"avgDuration": 30}

    def test_type_and_category_from_key(self):
        pattern = LearnedPattern.from_dict({"key": "error::timeout"})
        assert pattern.type == "error"
        assert pattern.category == "timeout"

    def test_explicit_type_wins(self):
        pattern = LearnedPattern.from_dict({"key": "k", "type": "team", "category": "leader"})
        assert pattern.type == "team"
        assert pattern.category == "leader"

    def test_missing_numbers_default_to_zero(self):
        pattern = LearnedPattern.from_dict({"key": "k", "confidence": "n/a"})
        assert pattern.confidence == 0.0
        assert pattern.consecutive_successes == 0


class TestFastTierPattern:
    """Test fast-tier records"""

    def test_error_rate(self):
        pattern = FastTierPattern.from_dict({"key": "k", "confidence": 0.9, "usageCount": 10, "failureCount": 4})
        assert pattern.error_rate == pytest.approx(0.4)

    def test_error_rate_without_usage(self):
        pattern = FastTierPattern(key="k", type="tool", category="x", confidence=0.9)
        assert pattern.error_rate == 0.0

    def test_defaults(self):
        pattern = FastTierPattern.from_dict({"key": "k"})
        assert pattern.status == "active"
        assert pattern.source == "system2"
        assert pattern.promotion_count == 1


class TestRecords:
    """Test append-only history records"""

    def test_transfer_log_entry_is_compact(self):
        data = TransferLogEntry(action="hot-swap", timestamp="t", promoted=["a"], demoted=[]).to_dict()
        assert data == {"action": "hot-swap", "timestamp": "t", "promoted": ["a"], "demoted": []}

    def test_transfer_log_entry_reads_camel_case(self):
        entry = TransferLogEntry.from_dict({"action": "promote", "timestamp": "t", "patternKey": "k"})
        assert entry.pattern_key == "k"

    def test_grpo_round_accepts_legacy_fields(self):
        round_ = GrpoRound.from_dict({
            "id": "grpo-team-1", "type": "team", "timestamp": "t",
            "candidateCount": 3, "bestScore": 0.8, "spread": 0.2, "bestSize": 3,
        })
        assert round_.kind == "team"
        assert round_.candidate_count == 3
        assert round_.best_size == 3

    def test_grpo_round_omits_unset_fields(self):
        data = GrpoRound(id="r", kind="task", timestamp="t", candidate_count=2, best_score=0.9, spread=0.1,
                         best_strategy="balanced").to_dict()
        assert "best_pattern" not in data
        assert data["best_strategy"] == "balanced"
