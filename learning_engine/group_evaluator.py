"""
Group Evaluator — Group-Relative Strategy Ranking (GRPO)

Several candidates attempt the same task; each candidate's raw execution result
is scored by a fixed rule set, candidates are ranked against each other, and a
persisted weight table is nudged toward the strategies that ranked well. No
external judge is involved: every score comes from inspectable rules.

Weight update per ranking entry (N candidates):
    advantage  = 1 - 2 * (rank - 1) / (N - 1)     (0 when N == 1)
    new_weight = clamp(old + lr * advantage * composite, 0.01, 5.0)

The same machinery ranks team compositions (pattern + size + agents), with
weights keyed ``pattern|size|domain``.

Persisted document (``grpo-history.json``):
    {"rounds": [GrpoRound], "weights": {label: w}, "teamWeights": {"pattern|size|domain": w}}

Usage:
    evaluator = GroupEvaluator(store)
    candidates = evaluator.generate_candidates({"id": "t1", "domain": "backend"})
    # ... attempt each candidate, attach candidate.result ...
    group = evaluator.evaluate_group(candidates)
    weights = await evaluator.update_weights(group)
    rec = await evaluator.get_recommendation("task")
"""

import logging
import uuid
from typing import Any, Dict, List, Optional, Sequence, Union

from . import config as cfg
from .models import (
    Candidate,
    GroupResult,
    GrpoRound,
    RankingEntry,
    Recommendation,
    TeamCandidate,
    TeamRankingEntry,
    as_float,
    as_int,
    utc_now,
)
from .rules import RuleSet, clamp01, default_cli_rules, default_team_rules
from .store import JsonStore, MemoryJsonStore

log = logging.getLogger("learning_engine.group_evaluator")


# ═══════════════════════════════════════════════════════════════════════════
# Strategy and team catalogues
# ═══════════════════════════════════════════════════════════════════════════

GENERIC_STRATEGIES = [
    {"name": "balanced", "description": "Balanced approach with moderate depth",
     "params": {"depth": "moderate", "parallel": False}},
    {"name": "thorough", "description": "Deep analysis with comprehensive coverage",
     "params": {"depth": "deep", "parallel": False}},
    {"name": "rapid", "description": "Quick execution with minimal overhead",
     "params": {"depth": "shallow", "parallel": False}},
    {"name": "parallel", "description": "Parallel execution with multiple sub-agents",
     "params": {"depth": "moderate", "parallel": True}},
    {"name": "iterative", "description": "Iterative refinement with progressive enhancement",
     "params": {"depth": "moderate", "parallel": False, "iterations": 3}},
]

DOMAIN_STRATEGIES = {
    "frontend": [
        {"name": "component-first", "description": "Component-driven development with design system",
         "params": {"depth": "moderate", "focus": "components"}},
        {"name": "accessibility-first", "description": "Accessibility-driven with WCAG compliance",
         "params": {"depth": "deep", "focus": "a11y"}},
    ],
    "backend": [
        {"name": "api-first", "description": "API contract-first development",
         "params": {"depth": "moderate", "focus": "api"}},
        {"name": "tdd", "description": "Test-driven development with full coverage",
         "params": {"depth": "deep", "focus": "testing"}},
    ],
    "security": [
        {"name": "threat-model", "description": "Threat modeling with STRIDE framework",
         "params": {"depth": "deep", "focus": "threats"}},
        {"name": "audit-scan", "description": "Automated vulnerability scanning",
         "params": {"depth": "moderate", "focus": "vulnerabilities"}},
    ],
}

# pattern -> (team size, description); order is the default comparison order
TEAM_PATTERNS = {
    "solo": (0, "Direct execution, no team"),
    "leader": (3, "Leader assigns tasks, collects results"),
    "council": (3, "Teammates discuss via messaging, leader decides"),
    "swarm": (5, "Independent parallel tasks, self-claim from shared list"),
    "pipeline": (4, "Sequential tasks with dependency chains"),
}

DOMAIN_AGENTS = {
    "frontend": ["frontend-developer", "code-reviewer", "e2e-runner", "architect", "tdd-guide"],
    "backend": ["backend-developer", "code-reviewer", "database-reviewer", "security-reviewer", "tdd-guide"],
    "security": ["security-reviewer", "code-reviewer", "backend-developer", "architect", "devops-engineer"],
    "infrastructure": ["devops-engineer", "architect", "security-reviewer", "backend-developer", "build-error-resolver"],
    "documentation": ["doc-updater", "code-reviewer", "architect", "planner", "tdd-guide"],
    "general": ["architect", "code-reviewer", "planner", "tdd-guide", "backend-developer"],
}


def strategies_for_domain(domain: str) -> List[Dict[str, Any]]:
    """Candidate order: ``balanced``, the domain's own labels, then the other generics."""
    balanced, *others = GENERIC_STRATEGIES
    return [balanced, *DOMAIN_STRATEGIES.get(domain, []), *others]


def agents_for_domain(domain: str, count: int) -> List[str]:
    pool = DOMAIN_AGENTS.get(domain, DOMAIN_AGENTS["general"])
    return pool[:max(0, count)]


# ═══════════════════════════════════════════════════════════════════════════
# Scoring helpers
# ═══════════════════════════════════════════════════════════════════════════


def _field(candidate: Any, name: str, default: Any = None) -> Any:
    if isinstance(candidate, dict):
        value = candidate.get(name)
    else:
        value = getattr(candidate, name, None)
    return default if value is None else value


def _score(result: Dict[str, Any], rules: RuleSet) -> Dict[str, float]:
    """Apply every rule; a rule that raises or returns junk scores 0."""
    scores = {}
    for name, rule in rules.items():
        try:
            value = clamp01(rule(result)) if callable(rule) else 0.0
        except Exception as e:
            log.debug(f"Rule {name} failed, scoring 0: {e}")
            value = 0.0
        scores[name] = value
    return scores


def _composite(scores: Dict[str, float]) -> float:
    if not scores:
        return 0.0
    return round(clamp01(sum(scores.values()) / len(scores)), 3)


def _rank(scored: List[Dict[str, Any]], entry_cls, extra=None) -> GroupResult:
    # sorted() is stable: equal composites keep input order, so ranks never repeat
    ordered = sorted(scored, key=lambda s: s["composite"], reverse=True)
    rankings = [entry_cls(rank=i + 1, **s) for i, s in enumerate(ordered)]
    if not rankings:
        return GroupResult()
    best, worst = rankings[0], rankings[-1]
    return GroupResult(
        rankings=rankings,
        best=best,
        worst=worst,
        spread=round(best.composite - worst.composite, 3),
    )


def advantage(rank: int, n: int) -> float:
    """Rank-relative advantage in [-1, +1]; rank 1 is +1, rank N is -1, a lone candidate 0."""
    if n <= 1:
        return 0.0
    return 1.0 - 2.0 * (rank - 1) / (n - 1)


def updated_weight(current: float, adv: float, composite: float, learning_rate: float) -> float:
    new = current + learning_rate * adv * composite
    return round(max(cfg.MIN_WEIGHT, min(cfg.MAX_WEIGHT, new)), 3)


GroupLike = Union[GroupResult, Dict[str, Any]]


def _ranking_entries(group: GroupLike, team: bool) -> List[RankingEntry]:
    """Accept a GroupResult or its plain-dict form (e.g. read back from JSON)."""
    rankings = group.rankings if isinstance(group, GroupResult) else (group or {}).get("rankings")
    entries = []
    for i, r in enumerate(rankings or []):
        if isinstance(r, RankingEntry):
            entries.append(r)
            continue
        composite = clamp01(r.get("composite"))
        rank = max(1, as_int(r.get("rank"), i + 1))
        if team:
            entries.append(TeamRankingEntry(
                candidate_id=str(r.get("candidate_id") or r.get("candidateId") or ""),
                strategy=str(r.get("pattern") or r.get("strategy") or "unknown"),
                scores=dict(r.get("scores") or {}),
                composite=composite,
                rank=rank,
                team_size=as_int(r.get("team_size", r.get("teamSize"))),
                domain=str(r.get("domain") or "general"),
                agents=list(r.get("agents") or []),
            ))
        else:
            entries.append(RankingEntry(
                candidate_id=str(r.get("candidate_id") or r.get("candidateId") or ""),
                strategy=str(r.get("strategy") or "unknown"),
                scores=dict(r.get("scores") or {}),
                composite=composite,
                rank=rank,
            ))
    return entries


# ═══════════════════════════════════════════════════════════════════════════
# Group evaluator
# ═══════════════════════════════════════════════════════════════════════════


class GroupEvaluator:
    """Ranks same-task candidates and maintains the strategy / team weight tables."""

    def __init__(
        self,
        store: Optional[JsonStore] = None,
        path: str = cfg.GRPO_HISTORY_FILE,
        max_rounds: int = cfg.MAX_ROUNDS,
    ):
        self.store = store if store is not None else MemoryJsonStore()
        self.path = path
        self.max_rounds = max_rounds

    # ── Task strategies ───────────────────────────────────

    def generate_candidates(
        self, task: Optional[Dict[str, Any]], count: int = cfg.DEFAULT_CANDIDATE_COUNT
    ) -> List[Candidate]:
        """
        Produce ``count`` strategy candidates for a task.

        ``balanced`` is always first; domain-specific labels follow, then the
        remaining generic labels, cycling when ``count`` exceeds the catalogue.
        """
        task = task or {}
        domain = task.get("domain") or "general"
        strategies = strategies_for_domain(domain)

        candidates = []
        for i in range(max(0, count)):
            strategy = strategies[i % len(strategies)]
            candidates.append(Candidate(
                id=f"cand-{uuid.uuid4().hex[:12]}",
                task_id=task.get("id"),
                task_type=task.get("type") or "unknown",
                domain=domain,
                strategy=strategy["name"],
                description=strategy["description"],
                params=dict(strategy["params"]),
                index=i,
            ))
        return candidates

    def evaluate_group(
        self, candidates: Sequence[Union[Candidate, Dict[str, Any]]], rules: Optional[RuleSet] = None
    ) -> GroupResult:
        """Score each candidate's result with ``rules`` (CLI rules by default) and rank the group."""
        active = rules if rules is not None else default_cli_rules()
        scored = []
        for c in candidates or []:
            scores = _score(_field(c, "result", {}), active)
            scored.append({
                "candidate_id": str(_field(c, "id", "")),
                "strategy": str(_field(c, "strategy", "unknown")),
                "scores": {k: round(v, 3) for k, v in scores.items()},
                "composite": _composite(scores),
            })
        return _rank(scored, RankingEntry)

    async def update_weights(
        self,
        group: GroupLike,
        learning_rate: float = cfg.DEFAULT_LEARNING_RATE,
        persist: bool = True,
    ) -> Dict[str, float]:
        """
        Apply rank-relative advantage to the strategy weight table.

        Returns the full updated ``{strategy: weight}`` map, or ``{}`` for an
        empty group (nothing is written in that case).
        """
        entries = _ranking_entries(group, team=False)
        if not entries:
            return {}

        history = await self._load_history()
        weights = self._apply(history["weights"], entries, learning_rate)

        if persist:
            best = entries[0]
            round_ = GrpoRound(
                id=f"grpo-{uuid.uuid4().hex[:12]}",
                kind="task",
                timestamp=utc_now(),
                candidate_count=len(entries),
                best_score=best.composite,
                spread=self._spread(group, entries),
                best_strategy=best.strategy,
            )
            history["rounds"].append(round_.to_dict())
            history["weights"] = weights
            await self._save_history(history)
            log.info(f"Updated {len(entries)} strategy weights (best: {best.strategy} {best.composite})")

        return weights

    # ── Team compositions ─────────────────────────────────

    def generate_team_candidates(
        self, task: Optional[Dict[str, Any]], patterns: Optional[Sequence[str]] = None
    ) -> List[TeamCandidate]:
        """One candidate per known team pattern (all five by default); unknown names are skipped."""
        task = task or {}
        domain = task.get("domain") or "general"
        wanted = list(patterns) if patterns is not None else list(TEAM_PATTERNS)

        candidates = []
        for name in wanted:
            if name not in TEAM_PATTERNS:
                log.debug(f"Skipping unknown team pattern {name}")
                continue
            size, description = TEAM_PATTERNS[name]
            candidates.append(TeamCandidate(
                id=f"team-cand-{name}-{uuid.uuid4().hex[:8]}",
                task_id=task.get("id"),
                domain=domain,
                pattern=name,
                size=size,
                agents=agents_for_domain(domain, size),
                description=description,
            ))
        return candidates

    def evaluate_team_group(
        self, candidates: Sequence[Union[TeamCandidate, Dict[str, Any]]], rules: Optional[RuleSet] = None
    ) -> GroupResult:
        active = rules if rules is not None else default_team_rules()
        scored = []
        for c in candidates or []:
            scores = _score(_field(c, "result", {}), active)
            scored.append({
                "candidate_id": str(_field(c, "id", "")),
                "strategy": str(_field(c, "pattern", "unknown")),
                "team_size": as_int(_field(c, "size", 0)),
                "domain": str(_field(c, "domain", "general")),
                "agents": list(_field(c, "agents", [])),
                "scores": {k: round(v, 3) for k, v in scores.items()},
                "composite": _composite(scores),
            })
        return _rank(scored, TeamRankingEntry)

    async def update_team_weights(
        self,
        group: GroupLike,
        learning_rate: float = cfg.DEFAULT_LEARNING_RATE,
        persist: bool = True,
    ) -> Dict[str, float]:
        """Same update as ``update_weights`` over ``pattern|size|domain`` keys."""
        entries = _ranking_entries(group, team=True)
        if not entries:
            return {}

        history = await self._load_history()
        team_weights = self._apply(history["team_weights"], entries, learning_rate)

        if persist:
            best = entries[0]
            round_ = GrpoRound(
                id=f"grpo-team-{uuid.uuid4().hex[:12]}",
                kind="team",
                timestamp=utc_now(),
                candidate_count=len(entries),
                best_score=best.composite,
                spread=self._spread(group, entries),
                best_pattern=best.strategy,
                best_size=getattr(best, "team_size", None),
                domain=getattr(best, "domain", None),
            )
            history["rounds"].append(round_.to_dict())
            history["team_weights"] = team_weights
            await self._save_history(history)
            log.info(f"Updated {len(entries)} team weights (best: {best.weight_key} {best.composite})")

        return team_weights

    # ── Queries ───────────────────────────────────────────

    async def get_recommendation(self, kind: str = "task", domain: Optional[str] = None) -> Recommendation:
        """
        Highest-weighted label plus up to three alternatives.

        kind="team" returns ``pattern|size``; a domain other than ``general``
        restricts the table to keys ending in ``|domain``. With no history the
        neutral defaults are ``balanced`` / ``leader|3`` at weight 1.0.
        """
        history = await self._load_history()

        if kind == "team":
            domain = domain or "general"
            entries = []
            for key, weight in history["team_weights"].items():
                if domain != "general" and not key.endswith(f"|{domain}"):
                    continue
                pattern, _, rest = key.partition("|")
                size = rest.split("|", 1)[0]
                entries.append({"key": key, "pattern": pattern, "size": as_int(size), "weight": weight})
            entries.sort(key=lambda e: e["weight"], reverse=True)

            if not entries:
                return Recommendation(cfg.DEFAULT_TEAM_RECOMMENDATION, cfg.DEFAULT_WEIGHT)
            top = entries[0]
            return Recommendation(
                recommendation=f"{top['pattern']}|{top['size']}",
                weight=top["weight"],
                alternatives=entries[1:1 + cfg.MAX_ALTERNATIVES],
            )

        ranked = sorted(history["weights"].items(), key=lambda kv: kv[1], reverse=True)
        if not ranked:
            return Recommendation(cfg.DEFAULT_TASK_RECOMMENDATION, cfg.DEFAULT_WEIGHT)
        return Recommendation(
            recommendation=ranked[0][0],
            weight=ranked[0][1],
            alternatives=[{"strategy": s, "weight": w} for s, w in ranked[1:1 + cfg.MAX_ALTERNATIVES]],
        )

    async def get_grpo_stats(self, lookback: int = 50) -> Dict[str, Any]:
        """Round counts by kind within the last ``lookback`` rounds, plus weight snapshots."""
        history = await self._load_history()
        rounds = history["rounds"]
        recent = rounds[-lookback:] if lookback > 0 else []
        kinds = [GrpoRound.from_dict(r).kind for r in recent]

        return {
            "total_rounds": len(rounds),
            "task_rounds": kinds.count("task"),
            "team_rounds": kinds.count("team"),
            "weights": dict(history["weights"]),
            "team_weights": dict(history["team_weights"]),
            "recent_rounds": recent,
        }

    # ── Persistence ───────────────────────────────────────

    @staticmethod
    def _apply(table: Dict[str, float], entries: List[RankingEntry], learning_rate: float) -> Dict[str, float]:
        weights = dict(table)
        n = len(entries)
        for entry in entries:
            key = entry.weight_key
            current = weights.get(key, cfg.DEFAULT_WEIGHT)
            weights[key] = updated_weight(current, advantage(entry.rank, n), entry.composite, learning_rate)
        return weights

    @staticmethod
    def _spread(group: GroupLike, entries: List[RankingEntry]) -> float:
        if isinstance(group, GroupResult):
            return group.spread
        composites = [e.composite for e in entries]
        return round(max(composites) - min(composites), 3)

    async def _load_history(self) -> Dict[str, Any]:
        data = await self.store.read(self.path)
        if not isinstance(data, dict):
            data = {}
        rounds = data.get("rounds")
        weights = data.get("weights")
        team_weights = data.get("teamWeights", data.get("team_weights"))
        return {
            "rounds": [r for r in rounds if isinstance(r, dict)] if isinstance(rounds, list) else [],
            "weights": self._clean_table(weights),
            "team_weights": self._clean_table(team_weights),
        }

    @staticmethod
    def _clean_table(table: Any) -> Dict[str, float]:
        if not isinstance(table, dict):
            return {}
        return {
            str(k): max(cfg.MIN_WEIGHT, min(cfg.MAX_WEIGHT, as_float(v, cfg.DEFAULT_WEIGHT)))
            for k, v in table.items()
        }

    async def _save_history(self, history: Dict[str, Any]) -> None:
        await self.store.write(self.path, {
            "rounds": history["rounds"][-self.max_rounds:],
            "weights": history["weights"],
            "teamWeights": history["team_weights"],
        })
