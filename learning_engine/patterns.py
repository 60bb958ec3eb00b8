"""
Pattern Store — learned patterns grouped by category

External learners accumulate patterns from repeated group outcomes and write
them to ``patterns/<category>-patterns.json`` as ``{"patterns": [...], "updatedAt"}``.
Knowledge transfer reads these to decide promotions.

``update_patterns`` is the producer side: it merges incoming patterns by key,
counting a rise in confidence as another consecutive success and a fall as
another consecutive failure (an unchanged confidence resets the failure run).
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from . import config as cfg
from .models import LearnedPattern, as_float, as_int, utc_now
from .store import JsonStore

log = logging.getLogger("learning_engine.patterns")

PatternLike = Union[LearnedPattern, Dict[str, Any]]


class PatternStore:
    """Reads and merges ``<category>-patterns.json`` documents."""

    def __init__(
        self,
        store: JsonStore,
        categories: Sequence[str] = cfg.PATTERN_CATEGORIES,
        directory: str = cfg.PATTERNS_DIR,
    ):
        self.store = store
        self.categories = tuple(categories)
        self.directory = directory

    def path_for(self, category: str) -> str:
        return f"{self.directory}/{category}-patterns.json"

    async def load_raw(self, category: str) -> List[Dict[str, Any]]:
        data = await self.store.read(self.path_for(category))
        patterns = data.get("patterns") if isinstance(data, dict) else None
        if not isinstance(patterns, list):
            return []
        return [p for p in patterns if isinstance(p, dict)]

    async def load(self, category: str) -> List[LearnedPattern]:
        """Patterns of one category; entries without a key are dropped."""
        patterns = []
        for raw in await self.load_raw(category):
            pattern = LearnedPattern.from_dict(raw)
            if pattern.key:
                patterns.append(pattern)
            else:
                log.debug(f"Ignoring keyless pattern in {self.path_for(category)}")
        return patterns

    async def load_all(self) -> List[LearnedPattern]:
        """Every pattern across all scanned categories, in category order."""
        patterns = []
        for category in self.categories:
            patterns.extend(await self.load(category))
        return patterns

    async def update_patterns(self, patterns: Iterable[PatternLike]) -> Dict[str, int]:
        """
        Merge patterns into their category documents by key.

        Returns ``{category: pattern_count_after_merge}`` for each category written.
        """
        by_type: Dict[str, List[Dict[str, Any]]] = {}
        for p in patterns:
            data = p.to_dict() if isinstance(p, LearnedPattern) else dict(p)
            if not data.get("key"):
                continue
            category = data.get("type") or str(data["key"]).split("::")[0] or "general"
            by_type.setdefault(category, []).append(data)

        counts = {}
        for category, incoming in by_type.items():
            merged = {p.get("key"): p for p in await self.load_raw(category)}
            for new in incoming:
                merged[new["key"]] = self._merge(merged.get(new["key"]), new)

            await self.store.write(self.path_for(category), {
                "patterns": list(merged.values()),
                "updatedAt": utc_now(),
            })
            counts[category] = len(merged)
            log.debug(f"Merged {len(incoming)} patterns into {category} ({len(merged)} total)")

        return counts

    @staticmethod
    def _merge(existing: Optional[Dict[str, Any]], new: Dict[str, Any]) -> Dict[str, Any]:
        merged = dict(new)
        if existing is None:
            merged["consecutive_successes"] = 0
            merged["consecutive_failures"] = 0
            merged["update_count"] = 0
            merged.setdefault("first_seen", utc_now())
            return merged

        prev = LearnedPattern.from_dict(existing)
        old_conf = prev.confidence
        new_conf = as_float(new.get("confidence"))

        merged["previous_confidence"] = old_conf
        merged["consecutive_successes"] = prev.consecutive_successes + (1 if new_conf > old_conf else 0)
        merged["consecutive_failures"] = prev.consecutive_failures + 1 if new_conf < old_conf else 0
        merged["first_seen"] = prev.first_seen or existing.get("extractedAt") or utc_now()
        merged["update_count"] = as_int(prev.update_count) + 1
        # Drop camelCase spellings of the counters just recomputed
        for alias in ("consecutiveSuccesses", "consecutiveFailures", "previousConfidence",
                      "firstSeen", "updateCount"):
            merged.pop(alias, None)
        return merged
