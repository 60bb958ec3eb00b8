"""
Self Evaluator — Rule-Based Quality Scoring of Completed Tasks

Turns one completed task's raw result into a weighted, four-dimension quality
score on a 1-5 scale. Scoring is deterministic and needs no external judge, so
the result is usable directly as a reward signal.

Dimensions and weights (sum to exactly 1.0):
- accuracy      0.35  success and test outcome
- completeness  0.25  requirements coverage, else derived from success/tests
- efficiency    0.20  duration banded into five steps
- satisfaction  0.20  implicit user signals (feedback, revision requests)

Grades: A >= 4.5, B >= 3.5, C >= 2.5, D >= 1.5, else F.

Usage:
    from learning_engine.self_evaluator import SelfEvaluator
    from learning_engine.store import FileJsonStore

    evaluator = SelfEvaluator(FileJsonStore())
    evaluation = await evaluator.evaluate_result(
        {"id": "task-1", "type": "bugfix"},
        {"success": True, "tests_pass": True, "duration": 42000},
    )
    print(evaluation.overall, evaluation.grade)

    suggestions = await evaluator.get_improvement_suggestions(threshold=3.0)
"""

import logging
import math
import uuid
from typing import Any, Dict, List, Optional

from . import config as cfg
from .models import DimensionScore, Evaluation, as_float, utc_now
from .store import JsonStore, MemoryJsonStore

log = logging.getLogger("learning_engine.self_evaluator")

if math.fsum(cfg.DIMENSION_WEIGHTS.values()) != 1.0:
    raise ValueError(f"DIMENSION_WEIGHTS must sum to 1.0, got {cfg.DIMENSION_WEIGHTS}")

DIMENSION_ADVICE = {
    "accuracy": "Increase test coverage and add validation checks before completing tasks.",
    "completeness": "Review task requirements more carefully and create checklists before starting.",
    "efficiency": "Consider breaking large tasks into smaller sub-tasks for faster execution.",
    "satisfaction": "Seek explicit user feedback and align output format with expectations.",
}

# (upper bound in ms, score); anything slower scores 1
EFFICIENCY_BANDS = (
    (30_000, 5),
    (60_000, 4),
    (120_000, 3),
    (300_000, 2),
)

GRADE_BANDS = (
    (4.5, "A"),
    (3.5, "B"),
    (2.5, "C"),
    (1.5, "D"),
)

TREND_DELTA = 0.3
DIMENSION_TREND_DELTA = 0.2


# ═══════════════════════════════════════════════════════════════════════════
# Dimension scoring
# ═══════════════════════════════════════════════════════════════════════════


def _value(data: Any, *names: str) -> Any:
    """First non-None field among ``names`` (snake_case, then its camelCase alias)."""
    if not isinstance(data, dict):
        return None
    for name in names:
        if data.get(name) is not None:
            return data[name]
    return None


def _metrics(result: Dict[str, Any]) -> Dict[str, Any]:
    metrics = _value(result, "metrics")
    return metrics if isinstance(metrics, dict) else {}


def _tests_pass(result: Dict[str, Any]) -> Optional[bool]:
    return _value(result, "tests_pass", "testsPass")


def _score_accuracy(result: Dict[str, Any]) -> float:
    score = 4 if _value(result, "success") else 1
    tests_pass = _tests_pass(result)
    if tests_pass is True:
        score = min(5, score + 1)
    elif tests_pass is False:
        score = max(1, score - 1)
    return float(score)


def _score_completeness(result: Dict[str, Any]) -> float:
    covered = _value(_metrics(result), "requirements_covered", "requirementsCovered")
    if covered is not None:
        ratio = max(0.0, min(1.0, as_float(covered)))
        return round(1 + 4 * ratio, 1)

    score = 3.0
    if _value(result, "success"):
        score += 1
    tests_pass = _tests_pass(result)
    if tests_pass is True:
        score += 0.5
    elif tests_pass is False:
        score -= 0.5
    if _value(result, "files_modified", "filesModified"):
        score += 0.5
    return min(5.0, max(1.0, round(score, 1)))


def _score_efficiency(result: Dict[str, Any]) -> float:
    duration = _value(result, "duration", "duration_ms", "durationMs")
    if duration is None or isinstance(duration, bool):
        return 3.0
    try:
        duration = float(duration)
    except (TypeError, ValueError):
        return 3.0
    if math.isnan(duration):
        return 3.0
    for upper, score in EFFICIENCY_BANDS:
        if duration < upper:
            return float(score)
    return 1.0


def _score_satisfaction(result: Dict[str, Any]) -> float:
    metrics = _metrics(result)
    score = 4 if _value(result, "success") else 2
    if _value(metrics, "revision_requested", "revisionRequested"):
        score = max(1, score - 1)
    feedback = _value(metrics, "user_feedback", "userFeedback")
    if feedback == "positive":
        score = 5
    elif feedback == "negative":
        score = 1
    return float(score)


def _grade(overall: float) -> str:
    for floor, grade in GRADE_BANDS:
        if overall >= floor:
            return grade
    return "F"


def _fmt(score: float) -> str:
    return f"{score:g}"


def _feedback(dimensions: Dict[str, DimensionScore], overall: float) -> str:
    if overall >= cfg.GOOD_OVERALL:
        return "Strong performance overall."

    parts = []
    if overall >= cfg.ADEQUATE_OVERALL:
        parts.append("Adequate performance with room for improvement.")
    else:
        parts.append("Below expectations. Review approach and strategy.")

    name, weakest = min(dimensions.items(), key=lambda item: item[1].score)
    parts.append(f"Weakest area: {name} ({_fmt(weakest.score)}/5).")
    return " ".join(parts)


def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _trend(first: float, second: float, delta: float) -> str:
    if second > first + delta:
        return "improving"
    if second < first - delta:
        return "declining"
    return "stable"


# ═══════════════════════════════════════════════════════════════════════════
# Evaluator
# ═══════════════════════════════════════════════════════════════════════════


class SelfEvaluator:
    """
    Scores completed tasks and analyses the capped evaluation log.

    The log is an append-only JSON array (oldest entries dropped first once
    ``max_evaluations`` is exceeded).
    """

    def __init__(
        self,
        store: Optional[JsonStore] = None,
        path: str = cfg.EVALUATIONS_FILE,
        max_evaluations: int = cfg.MAX_EVALUATIONS,
    ):
        self.store = store if store is not None else MemoryJsonStore()
        self.path = path
        self.max_evaluations = max_evaluations

    async def evaluate_result(
        self,
        task: Optional[Dict[str, Any]],
        result: Optional[Dict[str, Any]],
        persist: bool = True,
    ) -> Evaluation:
        """
        Evaluate a task result across all dimensions.

        Args:
            task: {"id", "type", "description"}
            result: {"success", "tests_pass", "duration" (ms), "files_modified",
                     "metrics": {"requirements_covered", "user_feedback", "revision_requested"}}
                     camelCase spellings (testsPass, durationMs, requirementsCovered, ...) are accepted
            persist: Append to the evaluation log

        Returns:
            Evaluation with per-dimension breakdown, overall, grade and feedback
        """
        task = task or {}
        result = result or {}
        weights = cfg.DIMENSION_WEIGHTS

        dimensions = {
            "accuracy": DimensionScore(_score_accuracy(result), weights["accuracy"]),
            "completeness": DimensionScore(_score_completeness(result), weights["completeness"]),
            "efficiency": DimensionScore(_score_efficiency(result), weights["efficiency"]),
            "satisfaction": DimensionScore(_score_satisfaction(result), weights["satisfaction"]),
        }
        overall = math.fsum(d.score * d.weight for d in dimensions.values())
        overall = min(5.0, max(1.0, round(overall, 2)))

        evaluation = Evaluation(
            id=f"eval-{uuid.uuid4().hex[:12]}",
            task_id=task.get("id"),
            task_type=str(task.get("type") or "unknown"),
            timestamp=utc_now(),
            dimensions=dimensions,
            overall=overall,
            grade=_grade(overall),
            feedback=_feedback(dimensions, overall),
        )

        if persist:
            existing = await self._load_raw()
            existing.append(evaluation.to_dict())
            await self.store.write(self.path, existing[-self.max_evaluations:])
            log.debug(f"Recorded evaluation {evaluation.id} ({evaluation.grade}, {overall})")

        return evaluation

    async def load_evaluations(self) -> List[Evaluation]:
        """All persisted evaluations, oldest first; malformed entries are skipped."""
        evaluations = []
        for row in await self._load_raw():
            if not isinstance(row, dict):
                continue
            try:
                evaluations.append(Evaluation.from_dict(row))
            except ValueError as e:
                log.debug(f"Skipping malformed evaluation {row.get('id')}: {e}")
        return evaluations

    async def get_improvement_suggestions(
        self,
        threshold: float = cfg.SUGGESTION_THRESHOLD,
        lookback: int = cfg.SUGGESTION_LOOKBACK,
    ) -> Dict[str, Any]:
        """
        Analyse recent evaluations and produce actionable suggestions.

        Returns:
            {
              "weak_dimensions": [{"dimension", "avg_score", "trend"}],
              "weak_task_types": [{"task_type", "avg_score", "count"}],
              "dimension_averages": {dimension: avg},
              "task_type_averages": {task_type: avg},
              "suggestions": [str],
              "overall_trend": improving | declining | stable | insufficient_data,
            }
        """
        recent = (await self.load_evaluations())[-lookback:] if lookback > 0 else []

        if not recent:
            return {
                "weak_dimensions": [],
                "weak_task_types": [],
                "dimension_averages": {},
                "task_type_averages": {},
                "suggestions": ["No evaluations recorded yet. Complete tasks to build evaluation history."],
                "overall_trend": "insufficient_data",
            }

        dimension_scores: Dict[str, List[float]] = {}
        type_scores: Dict[str, List[float]] = {}
        for ev in recent:
            for name, dim in ev.dimensions.items():
                dimension_scores.setdefault(name, []).append(dim.score)
            type_scores.setdefault(ev.task_type or "unknown", []).append(ev.overall)

        dimension_averages = {name: round(_mean(s), 2) for name, s in dimension_scores.items()}
        task_type_averages = {name: round(_mean(s), 2) for name, s in type_scores.items()}

        half = len(recent) // 2
        weak_dimensions = []
        for name, scores in dimension_scores.items():
            avg = _mean(scores)
            if avg >= threshold:
                continue
            first = _mean([e.dimensions[name].score for e in recent[:half] if name in e.dimensions])
            second = _mean([e.dimensions[name].score for e in recent[half:] if name in e.dimensions])
            weak_dimensions.append({
                "dimension": name,
                "avg_score": round(avg, 2),
                "trend": _trend(first, second, DIMENSION_TREND_DELTA),
            })
        weak_dimensions.sort(key=lambda d: d["avg_score"])

        weak_task_types = [
            {"task_type": name, "avg_score": round(_mean(s), 2), "count": len(s)}
            for name, s in type_scores.items()
            if _mean(s) < threshold
        ]
        weak_task_types.sort(key=lambda t: t["avg_score"])

        overall_trend = "insufficient_data"
        if len(recent) >= 4:
            overall_trend = _trend(
                _mean([e.overall for e in recent[:half]]),
                _mean([e.overall for e in recent[half:]]),
                TREND_DELTA,
            )

        suggestions = [
            DIMENSION_ADVICE.get(d["dimension"], f"Improve {d['dimension']} scores.")
            for d in weak_dimensions
        ]
        for t in weak_task_types:
            suggestions.append(
                f'Task type "{t["task_type"]}" has low scores ({_fmt(t["avg_score"])}/5). '
                "Consider using specialized agents or different strategies."
            )
        if overall_trend == "declining":
            suggestions.append("Overall trend is declining. Review recent changes to approach and strategy.")
        if not suggestions:
            suggestions.append("All dimensions performing well. Continue current approach.")

        return {
            "weak_dimensions": weak_dimensions,
            "weak_task_types": weak_task_types,
            "dimension_averages": dimension_averages,
            "task_type_averages": task_type_averages,
            "suggestions": suggestions,
            "overall_trend": overall_trend,
        }

    async def get_team_performance(
        self,
        lookback: int = cfg.PERFORMANCE_LOOKBACK,
        top_n: int = 3,
    ) -> Dict[str, Any]:
        """Group recent evaluations by task type; surface top-N and bottom-N groups."""
        recent = (await self.load_evaluations())[-lookback:] if lookback > 0 else []

        grouped: Dict[str, List[float]] = {}
        for ev in recent:
            grouped.setdefault(ev.task_type or "unknown", []).append(ev.overall)

        entries = [
            {"task_type": name, "count": len(scores), "avg_score": round(_mean(scores), 2)}
            for name, scores in grouped.items()
        ]
        ranked = sorted(entries, key=lambda e: e["avg_score"], reverse=True)

        return {
            "by_task_type": {e["task_type"]: {"count": e["count"], "avg_score": e["avg_score"]} for e in entries},
            "top_performers": ranked[:top_n],
            "bottom_performers": list(reversed(ranked[-top_n:])) if top_n > 0 else [],
            "total_evaluations": len(recent),
        }

    async def get_learning_trends(self, window_size: int = cfg.TREND_WINDOW_SIZE) -> Dict[str, Any]:
        """
        Split the whole history into sequential, non-overlapping windows and
        compare the first window's mean with the last one's.

        Fewer than two windows yields ``insufficient_data``.
        """
        evaluations = await self.load_evaluations()
        size = max(1, int(window_size))

        windows = []
        for start in range(0, len(evaluations), size):
            chunk = evaluations[start:start + size]
            windows.append({
                "index": len(windows),
                "avg_score": round(_mean([e.overall for e in chunk]), 2),
                "count": len(chunk),
            })

        if len(windows) < 2:
            only = windows[0]["avg_score"] if windows else 0.0
            return {"windows": windows, "trend": "insufficient_data", "latest_avg": only, "earliest_avg": only}

        earliest = windows[0]["avg_score"]
        latest = windows[-1]["avg_score"]
        return {
            "windows": windows,
            "trend": _trend(earliest, latest, TREND_DELTA),
            "latest_avg": latest,
            "earliest_avg": earliest,
        }

    async def _load_raw(self) -> List[Any]:
        data = await self.store.read(self.path)
        return list(data) if isinstance(data, list) else []
