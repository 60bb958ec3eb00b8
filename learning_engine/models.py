"""
Learning Engine Data Models

Dataclasses for group evaluation, self evaluation and knowledge transfer.
Uses dataclasses (not Pydantic) to match existing codebase conventions.

Values produced by the engine itself (rankings, evaluations) validate their
invariants in ``__post_init__``. Values read back from storage or supplied by
external learners (patterns, rounds, log entries) are coerced leniently in
``from_dict`` instead, since a single malformed document must not take down a
long-running learning loop.
"""

import math
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any


def utc_now() -> str:
    """ISO-8601 UTC timestamp used for every persisted record."""
    return datetime.now(timezone.utc).isoformat()


def as_float(value: Any, default: float = 0.0) -> float:
    """Coerce to a finite float, falling back to ``default``."""
    if isinstance(value, bool):
        return float(value)
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number) or math.isinf(number):
        return default
    return number


def as_int(value: Any, default: int = 0) -> int:
    """Coerce to an int, falling back to ``default``."""
    number = as_float(value, float(default))
    return int(number)


def _pick(data: Dict[str, Any], *names: str, default: Any = None) -> Any:
    """Return the first present key among ``names`` (snake_case first, then aliases)."""
    for name in names:
        if name in data and data[name] is not None:
            return data[name]
    return default


def _compact(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


# ═══════════════════════════════════════════════════════════════════════════
# Group evaluation
# ═══════════════════════════════════════════════════════════════════════════


@dataclass
class Candidate:
    """
    One attempted strategy variant for a task.

    Ephemeral: generated per round, never persisted. ``result`` holds the raw
    execution metrics once the candidate has been attempted.
    """
    id: str
    task_id: Optional[str]
    task_type: str
    domain: str
    strategy: str
    description: str = ""
    params: Dict[str, Any] = field(default_factory=dict)
    index: int = 0
    result: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class TeamCandidate:
    """One team composition (pattern + size + agents) attempted for a task."""
    id: str
    task_id: Optional[str]
    domain: str
    pattern: str
    size: int
    agents: List[str] = field(default_factory=list)
    description: str = ""
    result: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RankingEntry:
    """A candidate's evaluated position within its group."""
    candidate_id: str
    strategy: str
    scores: Dict[str, float]
    composite: float
    rank: int

    def __post_init__(self):
        """Validate composite is in [0.0, 1.0] and rank is 1-based"""
        if not 0.0 <= self.composite <= 1.0:
            raise ValueError(f"composite must be in [0.0, 1.0], got {self.composite}")
        if self.rank < 1:
            raise ValueError(f"rank must be >= 1, got {self.rank}")

    @property
    def weight_key(self) -> str:
        return self.strategy

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class TeamRankingEntry(RankingEntry):
    """Ranking entry for a team composition; weighted under ``pattern|size|domain``."""
    team_size: int = 0
    domain: str = "general"
    agents: List[str] = field(default_factory=list)

    @property
    def pattern(self) -> str:
        return self.strategy

    @property
    def weight_key(self) -> str:
        return f"{self.strategy}|{self.team_size}|{self.domain}"

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["pattern"] = data.pop("strategy")
        return data


@dataclass
class GroupResult:
    """Outcome of evaluating one group: rankings plus best/worst and spread."""
    rankings: List[RankingEntry] = field(default_factory=list)
    best: Optional[RankingEntry] = None
    worst: Optional[RankingEntry] = None
    spread: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rankings": [r.to_dict() for r in self.rankings],
            "best": self.best.to_dict() if self.best else None,
            "worst": self.worst.to_dict() if self.worst else None,
            "spread": self.spread,
        }


@dataclass
class GrpoRound:
    """Append-only history entry for one group evaluation + weight update."""
    id: str
    kind: str  # task | team
    timestamp: str
    candidate_count: int
    best_score: float
    spread: float
    best_strategy: Optional[str] = None
    best_pattern: Optional[str] = None
    best_size: Optional[int] = None
    domain: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact(asdict(self))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GrpoRound":
        best_size = _pick(data, "best_size", "bestSize")
        return cls(
            id=str(data.get("id", "")),
            kind=str(_pick(data, "kind", "type", default="task")),
            timestamp=str(data.get("timestamp", "")),
            candidate_count=as_int(_pick(data, "candidate_count", "candidateCount")),
            best_score=as_float(_pick(data, "best_score", "bestScore")),
            spread=as_float(data.get("spread")),
            best_strategy=_pick(data, "best_strategy", "bestStrategy"),
            best_pattern=_pick(data, "best_pattern", "bestPattern"),
            best_size=as_int(best_size) if best_size is not None else None,
            domain=data.get("domain"),
        )


@dataclass
class Recommendation:
    """Highest-weighted label plus up to three alternatives."""
    recommendation: str
    weight: float
    alternatives: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ═══════════════════════════════════════════════════════════════════════════
# Self evaluation
# ═══════════════════════════════════════════════════════════════════════════


@dataclass
class DimensionScore:
    """One scored evaluation dimension (score on a 1-5 scale)."""
    score: float
    weight: float

    def __post_init__(self):
        if not 1.0 <= self.score <= 5.0:
            raise ValueError(f"score must be in [1.0, 5.0], got {self.score}")
        if not 0.0 <= self.weight <= 1.0:
            raise ValueError(f"weight must be in [0.0, 1.0], got {self.weight}")


@dataclass
class Evaluation:
    """
    Self evaluator's scoring of one completed task.

    Fields:
    - dimensions: accuracy / completeness / efficiency / satisfaction
    - overall: weighted sum of dimension scores, in [1.0, 5.0]
    - grade: letter grade A-F bucketed from overall
    - feedback: human-readable summary naming the weakest area when below par
    """
    id: str
    task_id: Optional[str]
    task_type: str
    timestamp: str
    dimensions: Dict[str, DimensionScore]
    overall: float
    grade: str
    feedback: str

    def __post_init__(self):
        """Validate weights sum to exactly 1.0 and overall is on the 1-5 scale"""
        total = math.fsum(d.weight for d in self.dimensions.values())
        if total != 1.0:
            raise ValueError(f"dimension weights must sum to 1.0, got {total}")
        if not 1.0 <= self.overall <= 5.0:
            raise ValueError(f"overall must be in [1.0, 5.0], got {self.overall}")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Evaluation":
        """Rebuild a persisted evaluation (raises ValueError on invalid data)."""
        raw = data.get("dimensions")
        if not isinstance(raw, dict):
            raise ValueError(f"dimensions must be a mapping, got {type(raw).__name__}")
        dimensions = {}
        for name, d in raw.items():
            if not isinstance(d, dict):
                raise ValueError(f"dimension {name} must be a mapping, got {type(d).__name__}")
            dimensions[name] = DimensionScore(score=as_float(d.get("score")), weight=as_float(d.get("weight")))
        return cls(
            id=str(data.get("id", "")),
            task_id=_pick(data, "task_id", "taskId"),
            task_type=str(_pick(data, "task_type", "taskType", default="unknown")),
            timestamp=str(data.get("timestamp", "")),
            dimensions=dimensions,
            overall=as_float(data.get("overall")),
            grade=str(data.get("grade", "")),
            feedback=str(data.get("feedback", "")),
        )


# ═══════════════════════════════════════════════════════════════════════════
# Knowledge transfer
# ═══════════════════════════════════════════════════════════════════════════


@dataclass
class LearnedPattern:
    """
    A pattern accumulated from repeated outcomes by an external learner.

    Read from ``patterns/<category>-patterns.json``. Accepts the camelCase
    field names external producers write (``consecutiveSuccesses``,
    ``sampleSize``, ``bestData``).
    """
    key: str
    type: str = "general"
    category: str = "unknown"
    confidence: float = 0.0
    consecutive_successes: int = 0
    consecutive_failures: int = 0
    insight: Optional[str] = None
    best_data: Optional[Dict[str, Any]] = None
    sample_size: int = 0
    update_count: int = 0
    previous_confidence: Optional[float] = None
    first_seen: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact(asdict(self))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LearnedPattern":
        key = str(data.get("key") or "")
        parts = key.split("::")
        previous = _pick(data, "previous_confidence", "previousConfidence")
        return cls(
            key=key,
            type=str(data.get("type") or parts[0] or "general"),
            category=str(data.get("category") or (parts[1] if len(parts) > 1 else "unknown")),
            confidence=as_float(data.get("confidence")),
            consecutive_successes=as_int(_pick(data, "consecutive_successes", "consecutiveSuccesses")),
            consecutive_failures=as_int(_pick(data, "consecutive_failures", "consecutiveFailures")),
            insight=data.get("insight"),
            best_data=_pick(data, "best_data", "bestData"),
            sample_size=as_int(_pick(data, "sample_size", "sampleSize")),
            update_count=as_int(_pick(data, "update_count", "updateCount")),
            previous_confidence=as_float(previous) if previous is not None else None,
            first_seen=_pick(data, "first_seen", "firstSeen"),
        )


@dataclass
class FastTierPattern:
    """
    A pattern currently active in the fast (System 1) tier.

    Unique by key while active. Demotion deletes the record outright.
    """
    key: str
    type: str
    category: str
    confidence: float
    insight: Optional[str] = None
    best_data: Optional[Dict[str, Any]] = None
    promoted_at: str = ""
    promotion_count: int = 1
    last_success_streak: int = 0
    usage_count: int = 0
    failure_count: int = 0
    consecutive_failures: int = 0
    last_success_at: Optional[str] = None
    source: str = "system2"
    status: str = "active"

    @property
    def error_rate(self) -> float:
        return self.failure_count / self.usage_count if self.usage_count > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FastTierPattern":
        return cls(
            key=str(data.get("key", "")),
            type=str(data.get("type") or "general"),
            category=str(data.get("category") or "unknown"),
            confidence=as_float(data.get("confidence")),
            insight=data.get("insight"),
            best_data=_pick(data, "best_data", "bestData"),
            promoted_at=str(_pick(data, "promoted_at", "promotedAt", default="")),
            promotion_count=as_int(_pick(data, "promotion_count", "promotionCount"), 1),
            last_success_streak=as_int(_pick(data, "last_success_streak", "lastSuccessStreak")),
            usage_count=as_int(_pick(data, "usage_count", "usageCount")),
            failure_count=as_int(_pick(data, "failure_count", "failureCount")),
            consecutive_failures=as_int(_pick(data, "consecutive_failures", "consecutiveFailures")),
            last_success_at=_pick(data, "last_success_at", "lastSuccessAt"),
            source=str(data.get("source") or "system2"),
            status=str(data.get("status") or "active"),
        )


@dataclass
class TransferLogEntry:
    """
    Immutable record of a promotion, demotion or hot-swap event.

    action: promote | demote | hot-swap
    """
    action: str
    timestamp: str
    pattern_key: Optional[str] = None
    reason: Optional[str] = None
    source: Optional[str] = None
    confidence: Optional[float] = None
    promoted: Optional[List[str]] = None
    demoted: Optional[List[str]] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = _compact(asdict(self))
        if not data.get("details"):
            data.pop("details", None)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransferLogEntry":
        confidence = data.get("confidence")
        return cls(
            action=str(data.get("action", "")),
            timestamp=str(data.get("timestamp", "")),
            pattern_key=_pick(data, "pattern_key", "patternKey"),
            reason=data.get("reason"),
            source=data.get("source"),
            confidence=as_float(confidence) if confidence is not None else None,
            promoted=data.get("promoted"),
            demoted=data.get("demoted"),
            details=dict(data.get("details") or {}),
        )


@dataclass
class PromotionResult:
    promoted: bool
    reason: str
    pattern: Optional[FastTierPattern] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "promoted": self.promoted,
            "reason": self.reason,
            "pattern": self.pattern.to_dict() if self.pattern else None,
        }


@dataclass
class DemotionResult:
    demoted: bool
    reason: str
    pattern: Optional[Dict[str, Any]] = None
    not_found: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class UsageResult:
    updated: bool
    auto_demoted: bool
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class HotSwapResult:
    promoted: List[str]
    demoted: List[str]
    unchanged: int
    timestamp: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PromotionScan:
    """Read-only partition of every learned pattern by promotion eligibility."""
    candidates: List[LearnedPattern] = field(default_factory=list)
    already_promoted: List[str] = field(default_factory=list)
    below_threshold: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "candidates": [c.to_dict() for c in self.candidates],
            "already_promoted": list(self.already_promoted),
            "below_threshold": list(self.below_threshold),
        }
