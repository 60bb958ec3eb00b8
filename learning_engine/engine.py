"""
Learning Engine — one store, one lock, three components

Wires the self evaluator, group evaluator, pattern store and knowledge
transfer onto a single injected ``JsonStore`` so every component reads and
writes the same persisted state.

Usage:
    async with LearningEngine() as engine:
        candidates = engine.group_evaluator.generate_candidates(task)
        # ... run each candidate, set candidate.result ...
        cycle = await engine.run_learning_cycle(task, candidates)
        report = await engine.close_session()
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from . import config as cfg
from .group_evaluator import GroupEvaluator
from .knowledge_transfer import KnowledgeTransfer
from .locking import NamedLock
from .models import Candidate
from .patterns import PatternStore
from .rules import RuleSet, metric
from .self_evaluator import SelfEvaluator
from .store import FileJsonStore, JsonStore

log = logging.getLogger("learning_engine.engine")


class LearningEngine:
    """
    Composition root for the learning subsystem.

    Attributes:
        store: shared JSON document store
        self_evaluator: SelfEvaluator
        group_evaluator: GroupEvaluator
        patterns: PatternStore
        knowledge_transfer: KnowledgeTransfer
    """

    def __init__(
        self,
        store: Optional[JsonStore] = None,
        lock: Optional[NamedLock] = None,
        home: Optional[Path] = None,
    ):
        self.store = store if store is not None else FileJsonStore(home or cfg.ENGINE_HOME)
        self.self_evaluator = SelfEvaluator(self.store)
        self.group_evaluator = GroupEvaluator(self.store)
        self.patterns = PatternStore(self.store)
        self.knowledge_transfer = KnowledgeTransfer(self.store, lock=lock, pattern_store=self.patterns)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        await self.store.close()

    async def run_learning_cycle(
        self,
        task: Optional[Dict[str, Any]],
        candidates: Sequence[Any],
        rules: Optional[RuleSet] = None,
        learning_rate: float = cfg.DEFAULT_LEARNING_RATE,
    ) -> Dict[str, Any]:
        """
        Rank attempted candidates, update strategy weights, and self-evaluate the winner.

        The winner's CLI result maps onto the self evaluator's inputs as
        ``success = exit_code == 0`` and ``tests_pass = errors == 0``.
        """
        group = self.group_evaluator.evaluate_group(candidates, rules)
        weights = await self.group_evaluator.update_weights(group, learning_rate=learning_rate)

        evaluation = None
        if group.best is not None:
            result = self._result_of(candidates, group.best.candidate_id)
            evaluation = await self.self_evaluator.evaluate_result(task, {
                "success": metric(result, "exit_code", "exitCode") == 0,
                "tests_pass": metric(result, "errors", "error_count", "errorCount") == 0,
                "duration": next(
                    (result[k] for k in ("duration_ms", "durationMs", "duration") if result.get(k) is not None),
                    None,
                ),
                "files_modified": result.get("files_modified") or result.get("filesModified"),
                "metrics": result.get("metrics") or {},
            })

        log.info(f"Learning cycle: {len(group.rankings)} candidates, "
                 f"best={group.best.strategy if group.best else None}")
        return {
            "group": group.to_dict(),
            "weights": weights,
            "evaluation": evaluation.to_dict() if evaluation else None,
        }

    async def close_session(self) -> Dict[str, Any]:
        """
        End-of-session housekeeping: improvement suggestions, then a hot swap.

        Each step runs independently; a failing step is logged and reported
        under ``errors`` so the host session always closes.
        """
        report: Dict[str, Any] = {"suggestions": None, "hot_swap": None, "errors": []}

        try:
            report["suggestions"] = await self.self_evaluator.get_improvement_suggestions()
        except Exception as e:
            log.error(f"Improvement analysis failed: {e}")
            report["errors"].append(f"suggestions: {e}")

        try:
            self.knowledge_transfer.clear_cache()
            report["hot_swap"] = (await self.knowledge_transfer.hot_swap()).to_dict()
        except Exception as e:
            log.error(f"Hot swap failed: {e}")
            report["errors"].append(f"hot_swap: {e}")

        return report

    @staticmethod
    def _result_of(candidates: Sequence[Any], candidate_id: str) -> Dict[str, Any]:
        for c in candidates:
            if isinstance(c, Candidate):
                cid, result = c.id, c.result
            elif isinstance(c, dict):
                cid, result = c.get("id"), c.get("result")
            else:
                continue
            if str(cid) == candidate_id:
                return result if isinstance(result, dict) else {}
        return {}
