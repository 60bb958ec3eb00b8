"""
Learning Engine — Self-Learning Optimization Core

Ranks competing strategies against each other without an external judge,
scores completed tasks deterministically, and moves proven decision patterns
between a slow deliberate tier and a fast pattern-matched tier.

Core Components:
- self_evaluator: four-dimension 1-5 quality scoring of completed tasks
- group_evaluator: group-relative ranking and bounded weight updates (GRPO)
- knowledge_transfer: System 2 -> System 1 promotion, demotion, hot swap
- patterns: learned-pattern documents read by knowledge transfer
- store: JSON document stores (file, memory, SQLite)
- locking: named exclusive locks with stale reclamation

Usage:
    from learning_engine import LearningEngine

    async with LearningEngine() as engine:
        rec = await engine.group_evaluator.get_recommendation("team", domain="backend")
        swap = await engine.knowledge_transfer.hot_swap()
"""

__version__ = "0.1.0"

from .models import (
    Candidate,
    TeamCandidate,
    RankingEntry,
    TeamRankingEntry,
    GroupResult,
    GrpoRound,
    Recommendation,
    DimensionScore,
    Evaluation,
    LearnedPattern,
    FastTierPattern,
    TransferLogEntry,
    PromotionResult,
    DemotionResult,
    UsageResult,
    HotSwapResult,
    PromotionScan,
)
from .rules import CLI_RULES, TEAM_RULES, metric
from .store import JsonStore, FileJsonStore, MemoryJsonStore, SqliteJsonStore
from .locking import NamedLock, FileNamedLock, InProcessLock, LockTimeout
from .self_evaluator import SelfEvaluator
from .group_evaluator import GroupEvaluator
from .patterns import PatternStore
from .knowledge_transfer import KnowledgeTransfer
from .engine import LearningEngine

__all__ = [
    # Models
    "Candidate",
    "TeamCandidate",
    "RankingEntry",
    "TeamRankingEntry",
    "GroupResult",
    "GrpoRound",
    "Recommendation",
    "DimensionScore",
    "Evaluation",
    "LearnedPattern",
    "FastTierPattern",
    "TransferLogEntry",
    "PromotionResult",
    "DemotionResult",
    "UsageResult",
    "HotSwapResult",
    "PromotionScan",
    # Rules
    "CLI_RULES",
    "TEAM_RULES",
    "metric",
    # Persistence
    "JsonStore",
    "FileJsonStore",
    "MemoryJsonStore",
    "SqliteJsonStore",
    "NamedLock",
    "FileNamedLock",
    "InProcessLock",
    "LockTimeout",
    # Components
    "SelfEvaluator",
    "GroupEvaluator",
    "PatternStore",
    "KnowledgeTransfer",
    "LearningEngine",
]
