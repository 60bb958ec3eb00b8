"""
Learning Engine — Configuration

Central config for the group evaluator, self evaluator and knowledge transfer.
Reads from environment with sensible defaults. Components receive these as
constructor defaults only; nothing here is mutated at runtime.
"""

import os
from pathlib import Path


# ── Storage ───────────────────────────────────────────────
ENGINE_HOME = Path(
    os.environ.get("LEARNING_ENGINE_HOME", str(Path.home() / ".agent-core" / "learning"))
).expanduser()

GRPO_HISTORY_FILE = "grpo-history.json"
EVALUATIONS_FILE = "evaluations.json"
SYSTEM1_FILE = "system1-patterns.json"
TRANSFER_LOG_FILE = "transfer-log.json"
PATTERNS_DIR = "patterns"
SQLITE_FILE = "learning.db"
HOTSWAP_LOCK_FILE = ".hotswap.lock"

# ── Retention (oldest dropped first) ──────────────────────
MAX_ROUNDS = int(os.environ.get("LEARNING_MAX_ROUNDS", "300"))
MAX_EVALUATIONS = int(os.environ.get("LEARNING_MAX_EVALUATIONS", "500"))
MAX_TRANSFER_LOG = int(os.environ.get("LEARNING_MAX_TRANSFER_LOG", "200"))

# ── Group evaluator ───────────────────────────────────────
DEFAULT_CANDIDATE_COUNT = 5
DEFAULT_LEARNING_RATE = 0.1
DEFAULT_WEIGHT = 1.0
MIN_WEIGHT = 0.01
MAX_WEIGHT = 5.0
MAX_ALTERNATIVES = 3
DEFAULT_TASK_RECOMMENDATION = "balanced"
DEFAULT_TEAM_RECOMMENDATION = "leader|3"

# ── Self evaluator ────────────────────────────────────────
# Weights must sum to exactly 1.0 (checked at import in self_evaluator).
DIMENSION_WEIGHTS = {
    "accuracy": 0.35,
    "completeness": 0.25,
    "efficiency": 0.20,
    "satisfaction": 0.20,
}
GOOD_OVERALL = 4.0
ADEQUATE_OVERALL = 3.0
SUGGESTION_THRESHOLD = 3.0
SUGGESTION_LOOKBACK = 50
PERFORMANCE_LOOKBACK = 100
TREND_WINDOW_SIZE = 5

# ── Knowledge transfer ────────────────────────────────────
PROMOTION_MIN_SUCCESSES = 3         # consecutive_successes >= 3
PROMOTION_MIN_CONFIDENCE = 0.8      # confidence strictly greater than this
DEMOTION_CONSECUTIVE_FAILURES = 2
DEMOTION_MIN_USAGE = 5
DEMOTION_ERROR_RATE = 0.2           # error rate strictly greater than this
PATTERN_CATEGORIES = ("tool", "error", "success", "team", "general")
TRANSFER_HISTORY_LIMIT = 50

# ── Locking ───────────────────────────────────────────────
LOCK_MAX_WAIT_S = float(os.environ.get("LEARNING_LOCK_MAX_WAIT_S", "5.0"))
LOCK_STALE_S = float(os.environ.get("LEARNING_LOCK_STALE_S", "30.0"))
LOCK_RETRY_S = 0.05
LOCK_RETRY_MAX_S = 0.5

# ── Logging ───────────────────────────────────────────────
LOG_DIR = Path(
    os.environ.get("LEARNING_LOG_DIR", str(Path.home() / ".agent-core" / "logs"))
).expanduser()
LOG_FILE = "learning-engine.log"
LOG_MAX_BYTES = int(os.environ.get("LEARNING_LOG_MAX_BYTES", "10000000"))
LOG_BACKUPS = int(os.environ.get("LEARNING_LOG_BACKUPS", "5"))
