"""
Tests for learning_engine.engine and the CLI

Covers:
- Shared store across components
- Learning cycle: rank, update weights, self-evaluate the winner
- Session close: suggestions + hot swap, failures reported not raised
- CLI commands against file and SQLite stores
"""

import json
import logging

import pytest

from learning_engine import __main__ as cli
from learning_engine import config as cfg
from learning_engine.engine import LearningEngine
from learning_engine.locking import InProcessLock
from learning_engine.store import MemoryJsonStore


@pytest.fixture
def engine(store):
    return LearningEngine(store=store)


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    """Point CLI logging at a temp dir and detach its handlers afterwards"""
    monkeypatch.setattr(cfg, "LOG_DIR", tmp_path / "logs")
    yield tmp_path / "home"
    logger = logging.getLogger("learning_engine")
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


class TestLearningEngine:
    """Test component wiring"""

    def test_components_share_store(self, engine, store):
        assert engine.self_evaluator.store is store
        assert engine.group_evaluator.store is store
        assert engine.knowledge_transfer.store is store
        assert engine.knowledge_transfer.pattern_store is engine.patterns

    @pytest.mark.asyncio
    async def test_context_manager_closes_store(self, tmp_path):
        async with LearningEngine(home=tmp_path) as engine:
            assert engine.store.root == tmp_path


class TestLearningCycle:
    """Test run_learning_cycle"""

    @pytest.mark.asyncio
    async def test_cycle(self, engine, store):
        task = {"id": "t1", "type": "feature", "domain": "backend"}
        candidates = engine.group_evaluator.generate_candidates(task, count=2)
        candidates[0].result = {"exit_code": 0, "errors": 0, "duration": 500, "files_modified": ["api.py"]}
        candidates[1].result = {"exit_code": 1, "errors": 2, "duration": 800}

        cycle = await engine.run_learning_cycle(task, candidates)

        assert cycle["group"]["best"]["strategy"] == "balanced"
        assert cycle["weights"]["balanced"] > 1.0 > cycle["weights"]["api-first"]
        assert cycle["evaluation"]["grade"] == "A"
        assert cycle["evaluation"]["task_type"] == "feature"
        assert len(await store.read("evaluations.json")) == 1
        assert len((await store.read("grpo-history.json"))["rounds"]) == 1

    @pytest.mark.asyncio
    async def test_missing_duration_is_neutral(self, engine):
        cycle = await engine.run_learning_cycle({"id": "t1"}, [{"id": "c1", "strategy": "rapid", "result": {}}])
        assert cycle["evaluation"]["dimensions"]["efficiency"]["score"] == 3.0

    @pytest.mark.asyncio
    async def test_failed_winner(self, engine):
        cycle = await engine.run_learning_cycle({"id": "t1"}, [
            {"id": "c1", "strategy": "rapid", "result": {"exitCode": 2, "errorCount": 1, "durationMs": 400000}},
        ])
        assert cycle["evaluation"]["dimensions"]["accuracy"]["score"] == 1.0
        assert cycle["evaluation"]["dimensions"]["efficiency"]["score"] == 1.0

    @pytest.mark.asyncio
    async def test_empty_cycle(self, engine, store):
        cycle = await engine.run_learning_cycle({"id": "t1"}, [])
        assert cycle == {"group": {"rankings": [], "best": None, "worst": None, "spread": 0.0},
                         "weights": {}, "evaluation": None}
        assert store.write_count == 0


class TestCloseSession:
    """Test end-of-session housekeeping"""

    @pytest.mark.asyncio
    async def test_hot_swap_runs(self):
        store = MemoryJsonStore({"system1-patterns.json": {"patterns": [
            {"key": "tool::Bash", "confidence": 0.9, "consecutive_failures": 2},
        ]}})
        report = await LearningEngine(store=store).close_session()

        assert report["errors"] == []
        assert report["hot_swap"]["demoted"] == ["tool::Bash"]
        assert report["suggestions"]["overall_trend"] == "insufficient_data"

    @pytest.mark.asyncio
    async def test_failures_are_reported(self, store):
        lock = InProcessLock("hotswap", max_wait=0.05)
        engine = LearningEngine(store=store, lock=lock)
        await lock.acquire()
        try:
            report = await engine.close_session()
        finally:
            await lock.release()

        assert report["hot_swap"] is None
        assert report["suggestions"] is not None
        assert len(report["errors"]) == 1
        assert report["errors"][0].startswith("hot_swap:")


class TestCli:
    """Test the command line entry point"""

    def test_no_command(self, cli_env, capsys):
        assert cli.main([]) == 1

    def test_stats_json(self, cli_env, capsys):
        assert cli.main(["--home", str(cli_env), "stats", "--json"]) == 0
        stats = json.loads(capsys.readouterr().out)
        assert stats["total_rounds"] == 0

    def test_recommend_team(self, cli_env, capsys):
        assert cli.main(["--home", str(cli_env), "recommend", "team", "--domain", "backend", "--json"]) == 0
        rec = json.loads(capsys.readouterr().out)
        assert rec == {"recommendation": "leader|3", "weight": 1.0, "alternatives": []}

    def test_hot_swap_json(self, cli_env, capsys):
        assert cli.main(["--home", str(cli_env), "hot-swap", "--json"]) == 0
        result = json.loads(capsys.readouterr().out)
        assert result["promoted"] == [] and result["demoted"] == []

    def test_text_output(self, cli_env, capsys):
        assert cli.main(["--home", str(cli_env), "evaluations"]) == 0
        assert "SELF-EVALUATION" in capsys.readouterr().out

    def test_transfers_json(self, cli_env, capsys):
        assert cli.main(["--home", str(cli_env), "transfers", "--action", "promote", "--json"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["history"] == []
        assert data["stats"]["system1_count"] == 0

    def test_sqlite_store(self, cli_env, tmp_path, capsys):
        db_path = tmp_path / "learning.db"
        assert cli.main(["--sqlite", str(db_path), "system1", "--json"]) == 0
        assert json.loads(capsys.readouterr().out) == []
        assert db_path.exists()
