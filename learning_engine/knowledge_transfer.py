"""
Knowledge Transfer — Hot-Swap Between the Deliberate and Fast Tiers

Patterns start in the slow, deliberate tier (System 2: anything unpromoted).
Once a pattern has proven itself it is promoted into the fast, pattern-matched
tier (System 1); when it starts failing it is demoted back, which simply
deletes it from the active set.

State machine (per unique key):
- promote   consecutive_successes >= 3 AND confidence > 0.8
- demote    explicit call, or automatically on usage feedback when
            consecutive_failures >= 2 OR (usage_count >= 5 AND error rate > 20%)
- hot_swap  one locked batch: demote every failing active pattern, promote
            every eligible learned pattern, one write per store

Rejections and not-found outcomes are result objects with human-readable
reasons, never exceptions, so speculative calls need no error handling.

Persisted documents:
- ``system1-patterns.json``  {"patterns": [FastTierPattern], "updatedAt"}
- ``transfer-log.json``      [TransferLogEntry], capped, oldest dropped first

Usage:
    kt = KnowledgeTransfer(FileJsonStore())
    result = await kt.promote_to_system1({"key": "tool::Read", "confidence": 0.9,
                                          "consecutive_successes": 4})
    usage = await kt.record_system1_usage("tool::Read", success=False)
    swap = await kt.hot_swap()
"""

import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional, Union

from . import config as cfg
from .locking import FileNamedLock, InProcessLock, NamedLock
from .models import (
    DemotionResult,
    FastTierPattern,
    HotSwapResult,
    LearnedPattern,
    PromotionResult,
    PromotionScan,
    TransferLogEntry,
    UsageResult,
    utc_now,
)
from .patterns import PatternStore
from .store import FileJsonStore, JsonStore, MemoryJsonStore, SqliteJsonStore

log = logging.getLogger("learning_engine.knowledge_transfer")


def _as_learned(pattern: Union[LearnedPattern, Dict[str, Any], None]) -> Optional[LearnedPattern]:
    if pattern is None:
        return None
    if isinstance(pattern, LearnedPattern):
        return pattern
    if isinstance(pattern, dict):
        return LearnedPattern.from_dict(pattern)
    return None


def _pct(value: float) -> str:
    return f"{round(value * 100, 1):g}%"


def rejection_reason(pattern: Optional[LearnedPattern]) -> Optional[str]:
    """Why ``pattern`` cannot be promoted, or None when it is eligible."""
    if pattern is None or not pattern.key:
        return "Pattern missing key"
    if pattern.consecutive_successes < cfg.PROMOTION_MIN_SUCCESSES:
        return f"Insufficient successes: {pattern.consecutive_successes}/{cfg.PROMOTION_MIN_SUCCESSES}"
    if pattern.confidence <= cfg.PROMOTION_MIN_CONFIDENCE:
        return f"Confidence too low: {round(pattern.confidence, 3)}/{cfg.PROMOTION_MIN_CONFIDENCE}"
    return None


def demotion_reason(pattern: FastTierPattern) -> Optional[str]:
    """Why an active pattern should be demoted, or None. Consecutive failures win ties."""
    if pattern.consecutive_failures >= cfg.DEMOTION_CONSECUTIVE_FAILURES:
        return f"{pattern.consecutive_failures} consecutive failures"
    if pattern.usage_count >= cfg.DEMOTION_MIN_USAGE and pattern.error_rate > cfg.DEMOTION_ERROR_RATE:
        return f"Error rate {_pct(pattern.error_rate)} exceeds {_pct(cfg.DEMOTION_ERROR_RATE)} threshold"
    return None


class KnowledgeTransfer:
    """
    Owns the fast-tier active set and the transfer log.

    The active set is memoized per instance; call ``clear_cache()`` between
    independent sessions when another process may share the store.
    ``hot_swap()`` always reloads under the lock.
    """

    def __init__(
        self,
        store: Optional[JsonStore] = None,
        lock: Optional[NamedLock] = None,
        pattern_store: Optional[PatternStore] = None,
        system1_path: str = cfg.SYSTEM1_FILE,
        transfer_log_path: str = cfg.TRANSFER_LOG_FILE,
        max_transfer_log: int = cfg.MAX_TRANSFER_LOG,
    ):
        self.store = store if store is not None else MemoryJsonStore()
        self.pattern_store = pattern_store or PatternStore(self.store)
        self.system1_path = system1_path
        self.transfer_log_path = transfer_log_path
        self.max_transfer_log = max_transfer_log

        if lock is not None:
            self.lock = lock
        elif isinstance(self.store, FileJsonStore):
            self.lock = FileNamedLock(self.store.root / cfg.HOTSWAP_LOCK_FILE)
        elif isinstance(self.store, SqliteJsonStore):
            self.lock = FileNamedLock(self.store.db_path.parent / cfg.HOTSWAP_LOCK_FILE)
        else:
            self.lock = InProcessLock("hotswap")

        self._cache: Optional[Dict[str, FastTierPattern]] = None

    # ── Promotion / demotion ──────────────────────────────

    async def promote_to_system1(self, pattern: Union[LearnedPattern, Dict[str, Any], None]) -> PromotionResult:
        """
        Promote a learned pattern into the fast tier.

        Re-promoting an active key bumps ``promotion_count`` and keeps the
        usage/failure counters it had accumulated.
        """
        learned = _as_learned(pattern)
        reason = rejection_reason(learned)
        if reason:
            log.debug(f"Promotion rejected for {getattr(learned, 'key', None)}: {reason}")
            return PromotionResult(promoted=False, reason=reason)

        cache = await self._staged()
        promoted = self._fast_tier(learned, cache.get(learned.key))
        cache[learned.key] = promoted

        await self._persist(cache)
        await self._append_log([self._promote_entry(promoted, learned)])
        log.info(f"Promoted {learned.key} to System 1 (confidence {learned.confidence}, "
                 f"promotion #{promoted.promotion_count})")

        return PromotionResult(promoted=True, reason="Meets all promotion criteria", pattern=replace(promoted))

    async def demote_from_system1(
        self,
        pattern: Union[str, Dict[str, Any], FastTierPattern, None],
        reason: Optional[str] = None,
    ) -> DemotionResult:
        """Remove a key from the fast tier. Accepts a key, or a record carrying ``key``/``reason``."""
        if isinstance(pattern, str):
            key = pattern
        elif isinstance(pattern, dict):
            key = pattern.get("key")
            reason = reason or pattern.get("reason")
        else:
            key = getattr(pattern, "key", None)

        if not key:
            return DemotionResult(demoted=False, reason="Pattern missing key")

        return await self._demote(await self._staged(), key, reason)

    async def _demote(self, cache: Dict[str, FastTierPattern], key: str, reason: Optional[str]) -> DemotionResult:
        existing = cache.pop(key, None)
        if existing is None:
            return DemotionResult(demoted=False, reason="Pattern not found in System 1", not_found=True)

        timestamp = utc_now()
        await self._persist(cache)
        await self._append_log([self._demote_entry(existing, reason or "Manual demotion", timestamp)])
        log.info(f"Demoted {key} from System 1: {reason or 'manual'}")

        snapshot = existing.to_dict()
        snapshot.update(status="demoted", demoted_at=timestamp)
        return DemotionResult(demoted=True, reason=reason or "Demoted from System 1", pattern=snapshot)

    async def record_system1_usage(self, key: str, success: bool) -> UsageResult:
        """Record one use of an active pattern; auto-demotes when it crosses a failure threshold."""
        cache = await self._staged()
        current = cache.get(key)
        if current is None:
            return UsageResult(updated=False, auto_demoted=False, reason="Pattern not in System 1")

        if success:
            updated = replace(
                current,
                usage_count=current.usage_count + 1,
                consecutive_failures=0,
                last_success_at=utc_now(),
            )
        else:
            updated = replace(
                current,
                usage_count=current.usage_count + 1,
                failure_count=current.failure_count + 1,
                consecutive_failures=current.consecutive_failures + 1,
            )

        reason = demotion_reason(updated)
        cache[key] = updated
        if reason:
            log.info(f"Auto-demoting {key}: {reason}")
            await self._demote(cache, key, reason)
            return UsageResult(updated=True, auto_demoted=True, reason=reason)

        await self._persist(cache)
        return UsageResult(updated=True, auto_demoted=False)

    # ── Scanning and hot swap ─────────────────────────────

    async def get_promotion_candidates(self) -> PromotionScan:
        """
        Partition every learned pattern by promotion eligibility (read-only).

        ``below_threshold`` entries carry the gap to each threshold;
        ``candidates`` are sorted by confidence, highest first.
        """
        cache = await self._load_cache()
        scan = PromotionScan(already_promoted=list(cache))
        seen = set()

        for pattern in await self.pattern_store.load_all():
            if pattern.key in cache or pattern.key in seen:
                continue
            seen.add(pattern.key)

            if rejection_reason(pattern) is None:
                scan.candidates.append(pattern)
            else:
                scan.below_threshold.append({
                    "key": pattern.key,
                    "confidence": pattern.confidence,
                    "consecutive_successes": pattern.consecutive_successes,
                    "needs_successes": max(0, cfg.PROMOTION_MIN_SUCCESSES - pattern.consecutive_successes),
                    "needs_confidence": max(0.0, round(cfg.PROMOTION_MIN_CONFIDENCE - pattern.confidence, 3)),
                })

        scan.candidates.sort(key=lambda p: p.confidence, reverse=True)
        return scan

    async def hot_swap(self) -> HotSwapResult:
        """
        Reconcile the fast tier against current evidence as one atomic batch.

        Under the named lock: reload the active set, demote every failing
        pattern, promote every eligible learned pattern, then write the active
        set and the transfer log once each. Nothing is written when there is
        nothing to change. Raises LockTimeout if the lock cannot be obtained.
        """
        async with self.lock:
            self.clear_cache()
            cache = await self._staged()
            active_before = len(cache)
            timestamp = utc_now()
            entries: List[TransferLogEntry] = []

            demoted = []
            for key, pattern in list(cache.items()):
                reason = demotion_reason(pattern)
                if reason is None:
                    continue
                del cache[key]
                demoted.append(key)
                entry = self._demote_entry(pattern, reason, timestamp)
                entry.source = "hot-swap"
                entries.append(entry)

            promoted = []
            scan = await self.get_promotion_candidates()
            for candidate in scan.candidates:
                # A key demoted in this batch stays out until the next swap
                if candidate.key in demoted:
                    continue
                record = self._fast_tier(candidate, None, promoted_at=timestamp)
                cache[candidate.key] = record
                promoted.append(candidate.key)
                entry = self._promote_entry(record, candidate, timestamp)
                entry.source = "hot-swap"
                entries.append(entry)

            if promoted or demoted:
                entries.append(TransferLogEntry(
                    action="hot-swap",
                    timestamp=timestamp,
                    promoted=list(promoted),
                    demoted=list(demoted),
                ))
                await self._persist(cache)
                await self._append_log(entries)
                log.info(f"Hot swap: promoted {len(promoted)}, demoted {len(demoted)}")
            else:
                log.debug("Hot swap: no changes")

            return HotSwapResult(
                promoted=promoted,
                demoted=demoted,
                unchanged=active_before - len(demoted),
                timestamp=timestamp,
            )

    # ── Queries ───────────────────────────────────────────

    async def get_system1_patterns(self) -> List[FastTierPattern]:
        cache = await self._load_cache()
        return [replace(p) for p in cache.values() if p.status == "active"]

    async def get_system1_pattern(self, key: str) -> Optional[FastTierPattern]:
        pattern = (await self._load_cache()).get(key)
        return replace(pattern) if pattern is not None else None

    async def get_transfer_history(
        self, limit: int = cfg.TRANSFER_HISTORY_LIMIT, action: Optional[str] = None
    ) -> List[TransferLogEntry]:
        """Most recent entries first, optionally restricted to one action."""
        entries = [TransferLogEntry.from_dict(e) for e in await self._load_log()]
        if action:
            entries = [e for e in entries if e.action == action]
        entries.reverse()
        return entries[:max(0, limit)]

    async def get_transfer_stats(self) -> Dict[str, Any]:
        patterns = await self.get_system1_patterns()
        actions = [e.get("action") for e in await self._load_log()]
        count = len(patterns)

        return {
            "system1_count": count,
            "total_promotions": actions.count("promote"),
            "total_demotions": actions.count("demote"),
            "avg_confidence": round(sum(p.confidence for p in patterns) / count, 3) if count else 0.0,
            "avg_usage_count": round(sum(p.usage_count for p in patterns) / count, 3) if count else 0.0,
            "hot_swap_count": actions.count("hot-swap"),
        }

    def clear_cache(self) -> None:
        """Forget the memoized active set; the next read reloads from the store."""
        self._cache = None

    # ── Internals ─────────────────────────────────────────

    @staticmethod
    def _fast_tier(
        pattern: LearnedPattern,
        existing: Optional[FastTierPattern],
        promoted_at: Optional[str] = None,
    ) -> FastTierPattern:
        return FastTierPattern(
            key=pattern.key,
            type=pattern.type,
            category=pattern.category,
            confidence=pattern.confidence,
            insight=pattern.insight,
            best_data=pattern.best_data,
            promoted_at=promoted_at or utc_now(),
            promotion_count=(existing.promotion_count if existing else 0) + 1,
            last_success_streak=pattern.consecutive_successes,
            usage_count=existing.usage_count if existing else 0,
            failure_count=existing.failure_count if existing else 0,
            consecutive_failures=0,
            last_success_at=existing.last_success_at if existing else None,
        )

    @staticmethod
    def _promote_entry(record: FastTierPattern, learned: LearnedPattern, timestamp: Optional[str] = None):
        return TransferLogEntry(
            action="promote",
            timestamp=timestamp or utc_now(),
            pattern_key=record.key,
            confidence=record.confidence,
            details={"consecutive_successes": learned.consecutive_successes},
        )

    @staticmethod
    def _demote_entry(record: FastTierPattern, reason: str, timestamp: str) -> TransferLogEntry:
        return TransferLogEntry(
            action="demote",
            timestamp=timestamp,
            pattern_key=record.key,
            reason=reason,
            details={
                "previous_confidence": record.confidence,
                "failure_count": record.failure_count,
                "usage_count": record.usage_count,
            },
        )

    async def _load_cache(self) -> Dict[str, FastTierPattern]:
        if self._cache is None:
            data = await self.store.read(self.system1_path)
            rows = data.get("patterns") if isinstance(data, dict) else None
            cache = {}
            for row in rows if isinstance(rows, list) else []:
                if isinstance(row, dict) and row.get("key"):
                    pattern = FastTierPattern.from_dict(row)
                    cache[pattern.key] = pattern
            self._cache = cache
            log.debug(f"Loaded {len(cache)} System 1 patterns")
        return self._cache

    async def _staged(self) -> Dict[str, FastTierPattern]:
        """Working copy of the active set; becomes current only once _persist succeeds."""
        return dict(await self._load_cache())

    async def _persist(self, cache: Dict[str, FastTierPattern]) -> None:
        """Write the active set, then adopt it as the memoized copy."""
        await self.store.write(self.system1_path, {
            "patterns": [p.to_dict() for p in cache.values()],
            "updatedAt": utc_now(),
        })
        self._cache = cache

    async def _load_log(self) -> List[Dict[str, Any]]:
        data = await self.store.read(self.transfer_log_path)
        return [e for e in data if isinstance(e, dict)] if isinstance(data, list) else []

    async def _append_log(self, entries: List[TransferLogEntry]) -> None:
        existing = await self._load_log()
        existing.extend(e.to_dict() for e in entries)
        await self.store.write(self.transfer_log_path, existing[-self.max_transfer_log:])
