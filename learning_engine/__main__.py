"""
Learning Engine — CLI Entry Point

Inspect and maintain the learning state shared by orchestration sessions.

Usage:
    python3 -m learning_engine stats
    python3 -m learning_engine recommend task
    python3 -m learning_engine recommend team --domain frontend
    python3 -m learning_engine evaluations
    python3 -m learning_engine candidates
    python3 -m learning_engine hot-swap
    python3 -m learning_engine transfers --action promote --limit 20
    python3 -m learning_engine system1

Global flags: --home DIR (storage root), --sqlite FILE (single-file store).
Every command accepts --json for machine-readable output.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from .engine import LearningEngine
from .locking import LockTimeout
from .logging_config import setup_logging
from .store import FileJsonStore, SqliteJsonStore


def _banner(title: str):
    print("\n" + "=" * 60)
    print(f"  {title}")
    print("=" * 60)


def _dump(data):
    print(json.dumps(data, indent=2, default=str))


async def cmd_stats(engine: LearningEngine, args) -> int:
    """GRPO round counts and weight tables"""
    stats = await engine.group_evaluator.get_grpo_stats(lookback=args.lookback)
    if args.json:
        _dump(stats)
        return 0

    _banner("GRPO STATISTICS")
    print(f"\n  Total rounds:  {stats['total_rounds']}")
    print(f"  Recent task:   {stats['task_rounds']}")
    print(f"  Recent team:   {stats['team_rounds']}")

    print("\n  Strategy weights:")
    for label, weight in sorted(stats["weights"].items(), key=lambda kv: -kv[1]):
        print(f"    {label:24s} {weight:.3f}")
    if not stats["weights"]:
        print("    (none yet)")

    print("\n  Team weights:")
    for key, weight in sorted(stats["team_weights"].items(), key=lambda kv: -kv[1]):
        print(f"    {key:32s} {weight:.3f}")
    if not stats["team_weights"]:
        print("    (none yet)")
    print("\n" + "=" * 60)
    return 0


async def cmd_recommend(engine: LearningEngine, args) -> int:
    """Best strategy or team composition"""
    rec = await engine.group_evaluator.get_recommendation(args.kind, domain=args.domain)
    if args.json:
        _dump(rec.to_dict())
        return 0

    _banner(f"RECOMMENDATION ({args.kind.upper()})")
    print(f"\n  {rec.recommendation}  (weight {rec.weight:.3f})")
    if rec.alternatives:
        print("\n  Alternatives:")
        for alt in rec.alternatives:
            label = alt.get("strategy") or alt.get("key")
            print(f"    - {label} ({alt['weight']:.3f})")
    print("\n" + "=" * 60)
    return 0


async def cmd_evaluations(engine: LearningEngine, args) -> int:
    """Improvement suggestions, per-type performance and trend"""
    suggestions = await engine.self_evaluator.get_improvement_suggestions()
    performance = await engine.self_evaluator.get_team_performance()
    trends = await engine.self_evaluator.get_learning_trends()
    if args.json:
        _dump({"suggestions": suggestions, "performance": performance, "trends": trends})
        return 0

    _banner("SELF-EVALUATION")
    print(f"\n  Evaluations:   {performance['total_evaluations']}")
    print(f"  Overall trend: {suggestions['overall_trend']}")
    print(f"  Window trend:  {trends['trend']}")

    if performance["top_performers"]:
        print("\n  Top task types:")
        for t in performance["top_performers"]:
            print(f"    {t['task_type']:20s} {t['avg_score']:.2f}  ({t['count']})")

    print("\n  Suggestions:")
    for s in suggestions["suggestions"]:
        print(f"    • {s}")
    print("\n" + "=" * 60)
    return 0


async def cmd_candidates(engine: LearningEngine, args) -> int:
    """Patterns eligible for System 1 promotion"""
    scan = await engine.knowledge_transfer.get_promotion_candidates()
    if args.json:
        _dump(scan.to_dict())
        return 0

    _banner("PROMOTION CANDIDATES")
    print(f"\n  Eligible:         {len(scan.candidates)}")
    print(f"  Already promoted: {len(scan.already_promoted)}")
    print(f"  Below threshold:  {len(scan.below_threshold)}")
    for c in scan.candidates:
        print(f"    ✓ {c.key}  confidence={c.confidence:.3f}  streak={c.consecutive_successes}")
    print("\n" + "=" * 60)
    return 0


async def cmd_hot_swap(engine: LearningEngine, args) -> int:
    """Run one promotion/demotion batch"""
    try:
        result = await engine.knowledge_transfer.hot_swap()
    except LockTimeout as e:
        print(f"Hot swap skipped: {e}", file=sys.stderr)
        return 2

    if args.json:
        _dump(result.to_dict())
        return 0

    _banner("HOT SWAP")
    print(f"\n  Promoted:  {', '.join(result.promoted) or '-'}")
    print(f"  Demoted:   {', '.join(result.demoted) or '-'}")
    print(f"  Unchanged: {result.unchanged}")
    print("\n" + "=" * 60)
    return 0


async def cmd_transfers(engine: LearningEngine, args) -> int:
    """Transfer log, most recent first"""
    history = await engine.knowledge_transfer.get_transfer_history(limit=args.limit, action=args.action)
    stats = await engine.knowledge_transfer.get_transfer_stats()
    if args.json:
        _dump({"history": [e.to_dict() for e in history], "stats": stats})
        return 0

    _banner("TRANSFER LOG")
    print(f"\n  System 1: {stats['system1_count']}  promotions: {stats['total_promotions']}  "
          f"demotions: {stats['total_demotions']}  hot swaps: {stats['hot_swap_count']}\n")
    for e in history:
        subject = e.pattern_key or f"+{len(e.promoted or [])}/-{len(e.demoted or [])}"
        suffix = f"  ({e.reason})" if e.reason else ""
        print(f"  {e.timestamp[:19]}  {e.action:9s} {subject}{suffix}")
    print("\n" + "=" * 60)
    return 0


async def cmd_system1(engine: LearningEngine, args) -> int:
    """Active fast-tier patterns"""
    patterns = await engine.knowledge_transfer.get_system1_patterns()
    if args.json:
        _dump([p.to_dict() for p in patterns])
        return 0

    _banner("SYSTEM 1 PATTERNS")
    if not patterns:
        print("\n  No active patterns.")
    for p in patterns:
        print(f"\n  {p.key}")
        print(f"    confidence={p.confidence:.3f}  uses={p.usage_count}  "
              f"failures={p.failure_count}  promoted x{p.promotion_count}")
        if p.insight:
            print(f"    {p.insight}")
    print("\n" + "=" * 60)
    return 0


COMMANDS = {
    "stats": cmd_stats,
    "recommend": cmd_recommend,
    "evaluations": cmd_evaluations,
    "candidates": cmd_candidates,
    "hot-swap": cmd_hot_swap,
    "transfers": cmd_transfers,
    "system1": cmd_system1,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="learning_engine",
        description="Learning Engine CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python3 -m learning_engine stats --lookback 20
  python3 -m learning_engine recommend team --domain backend
  python3 -m learning_engine hot-swap --json
        """,
    )
    parser.add_argument("--home", type=Path, help="Storage root (default: $LEARNING_ENGINE_HOME)")
    parser.add_argument("--sqlite", type=Path, help="Use a single SQLite file instead of JSON files")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    output = argparse.ArgumentParser(add_help=False)
    output.add_argument("--json", "-j", action="store_true", help="Output JSON")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    stats_p = subparsers.add_parser("stats", parents=[output], help="Show GRPO statistics")
    stats_p.add_argument("--lookback", "-n", type=int, default=50, help="Recent rounds to count")

    rec_p = subparsers.add_parser("recommend", parents=[output], help="Recommend a strategy or team")
    rec_p.add_argument("kind", choices=["task", "team"], help="Recommendation kind")
    rec_p.add_argument("--domain", "-d", help="Domain filter for team recommendations")

    subparsers.add_parser("evaluations", parents=[output], help="Self-evaluation suggestions and trends")
    subparsers.add_parser("candidates", parents=[output], help="Show promotion candidates")
    subparsers.add_parser("hot-swap", parents=[output], help="Promote/demote patterns in one batch")

    tr_p = subparsers.add_parser("transfers", parents=[output], help="Show transfer history")
    tr_p.add_argument("--action", "-a", choices=["promote", "demote", "hot-swap"], help="Filter by action")
    tr_p.add_argument("--limit", "-l", type=int, default=50, help="Max entries")

    subparsers.add_parser("system1", parents=[output], help="List active System 1 patterns")
    return parser


async def run(args) -> int:
    store = SqliteJsonStore(args.sqlite) if args.sqlite else FileJsonStore(args.home)
    async with LearningEngine(store=store) as engine:
        return await COMMANDS[args.command](engine, args)


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command not in COMMANDS:
        parser.print_help()
        return 1

    setup_logging(level=logging.DEBUG if args.verbose else logging.INFO)
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
