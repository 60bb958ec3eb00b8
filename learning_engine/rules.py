"""
Scoring Rule Sets

A rule set is a plain mapping of rule name -> pure function
``(execution_result: dict) -> float in [0, 1]``. Rule sets are data: callers
extend or replace them by building a new dict, e.g.

    rules = {**CLI_RULES, "coverage": lambda r: metric(r, "coverage")}

Execution results are arbitrary bags of metrics. Absent or non-numeric fields
read as 0 so a partial result still scores.
"""

from typing import Any, Callable, Dict

from .models import as_float

Rule = Callable[[Dict[str, Any]], float]
RuleSet = Dict[str, Rule]


def metric(result: Dict[str, Any], *names: str) -> float:
    """First present numeric field among ``names``; 0.0 when none is usable."""
    if not isinstance(result, dict):
        return 0.0
    for name in names:
        if name in result and result[name] is not None:
            return as_float(result[name])
    return 0.0


def clamp01(value: Any) -> float:
    """Clamp to [0, 1]; anything non-numeric or NaN scores 0."""
    number = as_float(value, 0.0)
    return max(0.0, min(1.0, number))


# ── CLI task rules ────────────────────────────────────────
# speed halves at 1s, brevity halves at 50 chars


def _success(r):
    return 1.0 if metric(r, "exit_code", "exitCode") == 0 else 0.0


def _error_free(r):
    return 1.0 if metric(r, "errors", "error_count", "errorCount") == 0 else 0.0


def _speed(r):
    return 1.0 / (1.0 + max(0.0, metric(r, "duration_ms", "durationMs", "duration")) / 1000.0)


def _brevity(r):
    return 1.0 / (1.0 + max(0.0, metric(r, "command_length", "commandLength")) / 50.0)


def _side_effects(r):
    return 1.0 if metric(r, "side_effects", "sideEffects") == 0 else 0.5


_CLI_RULES: RuleSet = {
    "success": _success,
    "error_free": _error_free,
    "speed": _speed,
    "brevity": _brevity,
    "side_effects": _side_effects,
}


# ── Team composition rules ────────────────────────────────
# efficiency halves at 60s, resource_use halves at 5 agents


def _ratio(r, numerator: str, numerator_alias: str) -> float:
    total = metric(r, "task_count", "taskCount")
    if total <= 0:
        return 0.0
    return metric(r, numerator, numerator_alias) / total


def _success_rate(r):
    return _ratio(r, "success_count", "successCount")


def _efficiency(r):
    return 1.0 / (1.0 + max(0.0, metric(r, "duration_ms", "durationMs", "duration")) / 60000.0)


def _resource_use(r):
    return 1.0 / (1.0 + max(0.0, metric(r, "team_size", "teamSize")) / 5.0)


def _completeness(r):
    return _ratio(r, "completed_count", "completedCount")


_TEAM_RULES: RuleSet = {
    "success_rate": _success_rate,
    "efficiency": _efficiency,
    "resource_use": _resource_use,
    "completeness": _completeness,
}


# Exported copies so consumers can extend without mutating the defaults
CLI_RULES: RuleSet = dict(_CLI_RULES)
TEAM_RULES: RuleSet = dict(_TEAM_RULES)


def default_cli_rules() -> RuleSet:
    return dict(_CLI_RULES)


def default_team_rules() -> RuleSet:
    return dict(_TEAM_RULES)
