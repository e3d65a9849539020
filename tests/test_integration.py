"""Integration tests for Keyword Mapping.

Covers database setup, module imports, the application object, the
maintenance scheduler, configuration loading, CLI smoke tests and syntax
validation of every Python file in the project.
"""

import ast
import importlib
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

# ---------------------------------------------------------------------------
# Project root (conftest.py already puts it on sys.path)
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parent.parent


@pytest.fixture()
def kw_app():
    """An initialised application on an in-memory database."""
    from keyword_mapping.app import KeywordMappingApp
    app = KeywordMappingApp(
        env_path=str(PROJECT_ROOT / "tests" / "missing.env"),
        config={
            "app": {"name": "Keyword Mapping"},
            "database": {"url": "sqlite:///:memory:"},
            "clustering": {"min_keywords": 5},
        },
    )
    app.initialize()
    return app


# ===========================================================================
# 1. Database setup
# ===========================================================================
class TestDatabaseSetup:
    """Verify that the database can be initialised with in-memory SQLite."""

    def test_init_db_creates_tables(self, test_db):
        """init_db with in-memory SQLite should create the research table."""
        from keyword_mapping.database import get_engine
        from sqlalchemy import inspect

        table_names = inspect(get_engine()).get_table_names()
        assert "keyword_research" in table_names, (
            "Missing table: keyword_research. Found: " + str(table_names)
        )

    def test_get_session_context_manager(self, test_db):
        """get_session should yield a usable Session object."""
        from keyword_mapping.database import get_session
        from sqlalchemy import text as sa_text

        with get_session() as session:
            row = session.execute(sa_text("SELECT 1")).fetchone()
            assert row is not None
            assert row[0] == 1

    def test_file_database_uses_wal(self, tmp_path):
        """A file URL creates its parent directory and enables WAL."""
        from keyword_mapping.database import get_engine, init_db
        from sqlalchemy import text as sa_text

        db_file = tmp_path / "nested" / "kw.db"
        init_db(database_url="sqlite:///" + str(db_file))

        assert db_file.parent.is_dir()
        with get_engine().connect() as conn:
            mode = conn.execute(sa_text("PRAGMA journal_mode")).scalar()
        assert mode.lower() == "wal"

    def test_reset_db(self, test_db, make_research, repository):
        """reset_db should drop and recreate all tables, removing rows."""
        from keyword_mapping.database import reset_db

        research_id = make_research()
        reset_db()
        assert repository.get(research_id) is None


# ===========================================================================
# 2. Module imports
# ===========================================================================
class TestModuleImports:
    """Every public module should import and expose its main names."""

    @pytest.mark.parametrize("module_path,names", [
        ("keyword_mapping.models", ["KeywordResearch", "KeywordVolumeItem", "ClusteringStatus"]),
        ("keyword_mapping.modules.keyword_research", ["KeywordResearchPipeline", "SuggestionAggregator"]),
        ("keyword_mapping.modules.clustering", ["ClusteringOrchestrator", "PersonaGenerator"]),
        ("keyword_mapping.integrations.llm_client", ["LLMClient"]),
        ("keyword_mapping.integrations.autosuggest", ["GoogleAutosuggestClient"]),
        ("keyword_mapping.integrations.keyword_volume", ["GoogleAdsVolumeClient"]),
        ("keyword_mapping.repository", ["ResearchRepository"]),
        ("keyword_mapping.cache", ["TaggedCache"]),
        ("keyword_mapping.scheduler", ["MaintenanceScheduler"]),
        ("keyword_mapping.app", ["KeywordMappingApp"]),
    ])
    def test_module_importable(self, module_path, names):
        module = importlib.import_module(module_path)
        for name in names:
            assert hasattr(module, name), module_path + " is missing " + name


# ===========================================================================
# 3. Application object
# ===========================================================================
class TestKeywordMappingApp:

    def test_requires_initialize(self):
        from keyword_mapping.app import KeywordMappingApp
        app = KeywordMappingApp(config={})
        with pytest.raises(RuntimeError):
            app.fetch_clustering_status("x")

    def test_get_status(self, kw_app, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        status = kw_app.get_status()

        assert status["database"]["status"] == "ok"
        assert status["llm"]["status"] == "warning"
        assert "none configured" in status["llm"]["details"]
        assert "gpt-4o-mini" in status["llm"]["details"]
        assert set(status) == {"database", "llm", "google_ads", "config"}

    def test_fetch_clustering_status(self, kw_app):
        record = kw_app.get_repository().create(query="matcha", region="TW", language="zh-TW")
        assert kw_app.fetch_clustering_status(record.id).value == "pending"
        assert kw_app.fetch_clustering_status("missing") is None

    @pytest.mark.asyncio
    async def test_config_defaults_passed_to_pipeline(self, kw_app, monkeypatch):
        kw_app.config["keyword_research"] = {"filter_zero_volume": True, "use_symbols": True}
        pipeline = MagicMock()
        pipeline.process_and_save_query = AsyncMock(return_value={"success": True})
        monkeypatch.setattr(kw_app, "_get_pipeline", lambda: pipeline)

        await kw_app.process_and_save_query("matcha", "TW", "zh-TW", use_alphabet=False)

        kwargs = pipeline.process_and_save_query.await_args.kwargs
        assert kwargs == {"filter_zero_volume": True, "use_alphabet": False, "use_symbols": True}

    @pytest.mark.asyncio
    async def test_run_clustering_insufficient_keywords(self, kw_app):
        record = kw_app.get_repository().create(query="matcha", region="TW", language="zh-TW")
        result = await kw_app.run_clustering(record.id)
        assert result["success"] is True
        assert result["status"] == "completed"


# ===========================================================================
# 4. Maintenance scheduler
# ===========================================================================
class TestMaintenanceScheduler:

    def test_schedule_stale_sweep(self):
        from keyword_mapping.scheduler import STALE_SWEEP_JOB_ID, MaintenanceScheduler

        sched = MaintenanceScheduler()
        sched.schedule_stale_sweep(MagicMock(), stale_after_minutes=10, interval_minutes=2)

        jobs = sched.list_jobs()
        assert [job["id"] for job in jobs] == [STALE_SWEEP_JOB_ID]
        assert sched.remove_job(STALE_SWEEP_JOB_ID) is True
        assert sched.remove_job(STALE_SWEEP_JOB_ID) is False

    def test_rejects_non_positive_interval(self):
        from keyword_mapping.scheduler import MaintenanceScheduler

        with pytest.raises(ValueError):
            MaintenanceScheduler().add_interval_job("job", lambda: None, minutes=0)

    def test_start_stop(self):
        from keyword_mapping.scheduler import MaintenanceScheduler

        sched = MaintenanceScheduler()
        sched.start()
        assert sched.is_running
        sched.stop(wait=False)
        assert not sched.is_running


# ===========================================================================
# 5. Settings YAML
# ===========================================================================
class TestSettingsYaml:
    """Configuration file should be loadable."""

    def _load(self):
        import yaml
        settings_path = PROJECT_ROOT / "config" / "settings.yaml"
        with open(settings_path, encoding="utf-8") as fh:
            return yaml.safe_load(fh)

    def test_settings_file_exists(self):
        settings_path = PROJECT_ROOT / "config" / "settings.yaml"
        assert settings_path.exists(), "config/settings.yaml not found"

    def test_settings_has_required_sections(self):
        config = self._load()
        assert isinstance(config, dict)
        for section in (
            "app", "database", "llm", "cache", "keyword_research",
            "autosuggest", "google_ads", "clustering", "scheduler",
        ):
            assert section in config, "Missing config section: " + section

    def test_settings_values(self):
        config = self._load()
        assert config["app"]["name"] == "Keyword Mapping"
        assert config["clustering"]["min_keywords"] == 5
        assert config["keyword_research"]["max_volume_check_keywords"] == 60


# ===========================================================================
# 6. CLI commands (smoke test via CliRunner)
# ===========================================================================
class TestCLICommands:
    """CLI help should work for all registered commands."""

    def _get_runner_and_app(self):
        from typer.testing import CliRunner
        from keyword_mapping.cli import app
        return CliRunner(), app

    def test_main_help(self):
        runner, cli_app = self._get_runner_and_app()
        result = runner.invoke(cli_app, ["--help"])
        assert result.exit_code == 0
        assert "Keyword mapping" in result.output

    @pytest.mark.parametrize("command", [
        "research",
        "cluster",
        "persona",
        "status",
        "show",
        "list",
        "delete",
        "setup",
        "health",
        "sweep",
    ])
    def test_command_help(self, command):
        runner, cli_app = self._get_runner_and_app()
        result = runner.invoke(cli_app, [command, "--help"])
        assert result.exit_code == 0, (
            "Command '" + command + "' --help failed with exit code "
            + str(result.exit_code) + ": " + result.output
        )


class TestCLIAgainstDatabase:
    """Commands that read or write records, run on an in-memory app."""

    @pytest.fixture(autouse=True)
    def _patch_app(self, kw_app, monkeypatch):
        import keyword_mapping.cli as cli
        monkeypatch.setattr(cli, "_get_app", lambda: kw_app)
        self.kw_app = kw_app

    def _invoke(self, *args):
        from typer.testing import CliRunner
        from keyword_mapping.cli import app
        return CliRunner().invoke(app, list(args))

    def test_list_empty(self):
        result = self._invoke("list")
        assert result.exit_code == 0
        assert "No research records yet" in result.output

    def test_show_and_status(self):
        from keyword_mapping.models.keyword import KeywordVolumeItem
        repo = self.kw_app.get_repository()
        record = repo.create(query="matcha", region="TW", language="zh-TW")
        repo.update_keywords(record.id, [KeywordVolumeItem("matcha latte", 1500)])

        shown = self._invoke("show", record.id)
        assert shown.exit_code == 0
        assert "matcha latte" in shown.output
        assert "1.5K" in shown.output

        status = self._invoke("status", record.id)
        assert status.exit_code == 0
        assert "pending" in status.output

    def test_unknown_record(self):
        assert self._invoke("show", "missing").exit_code == 1
        assert self._invoke("status", "missing").exit_code == 1
        assert self._invoke("delete", "missing", "--yes").exit_code == 1

    def test_delete(self):
        record = self.kw_app.get_repository().create(query="matcha")
        result = self._invoke("delete", record.id, "--yes")
        assert result.exit_code == 0
        assert self.kw_app.get_repository().get(record.id) is None

    def test_research_reports_failure(self, monkeypatch):
        monkeypatch.setattr(
            self.kw_app,
            "process_and_save_query",
            AsyncMock(return_value={"success": False, "research_id": None, "error": "Query must not be empty."}),
        )
        result = self._invoke("research", " ")
        assert result.exit_code == 1
        assert "Query must not be empty." in result.output

    def test_sweep_marks_stuck_runs_failed(self):
        repo = self.kw_app.get_repository()
        record = repo.create(query="matcha")
        repo.claim_clustering(record.id)

        result = self._invoke("sweep", "--older-than=-1")

        assert result.exit_code == 0
        assert "1 stale run(s)" in result.output
        assert repo.get(record.id).status.value == "failed"

    def test_sweep_leaves_recent_runs(self):
        repo = self.kw_app.get_repository()
        record = repo.create(query="matcha")
        repo.claim_clustering(record.id)

        result = self._invoke("sweep")

        assert result.exit_code == 0
        assert "0 stale run(s)" in result.output
        assert repo.get(record.id).status.value == "processing"

    def test_sweep_watch_stops_on_interrupt(self, monkeypatch):
        import keyword_mapping.cli as cli

        def _interrupt(seconds):
            assert self.kw_app.maintenance_running
            raise KeyboardInterrupt

        monkeypatch.setattr(cli.time, "sleep", _interrupt)
        result = self._invoke("sweep", "--watch")

        assert result.exit_code == 0
        assert "Maintenance stopped" in result.output
        assert not self.kw_app.maintenance_running

    def test_persona_requires_cluster_or_all(self):
        result = self._invoke("persona", "abc")
        assert result.exit_code == 2


# ===========================================================================
# 7. All Python files syntax validation
# ===========================================================================
class TestAllPythonFilesSyntax:
    """Every .py file in keyword_mapping/ and tests/ should pass ast.parse."""

    def _collect_python_files(self):
        files = []
        for directory in ("keyword_mapping", "tests"):
            base = PROJECT_ROOT / directory
            if base.exists():
                for py_file in base.rglob("*.py"):
                    if "__pycache__" in py_file.parts:
                        continue
                    files.append(py_file)
        return sorted(files)

    def test_all_python_files_parse(self):
        py_files = self._collect_python_files()
        assert len(py_files) > 0, "No Python files found"
        errors = []
        for py_file in py_files:
            try:
                ast.parse(py_file.read_text(encoding="utf-8"))
            except SyntaxError as exc:
                rel = py_file.relative_to(PROJECT_ROOT)
                errors.append(str(rel) + ": " + str(exc))
        if errors:
            pytest.fail("Python syntax errors found:\n" + "\n".join(errors[:20]))
