"""Application object: loads configuration and wires the research and clustering components."""

import logging
import os
from datetime import timedelta
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

from keyword_mapping.models.keyword import ClusteringStatus

logger = logging.getLogger(__name__)


class KeywordMappingApp:
    """Entry point used by the CLI and by embedding code.

    Usage::

        app = KeywordMappingApp()
        app.initialize()
        result = await app.process_and_save_query("matcha recipe", "TW", "zh-TW")
        await app.request_clustering(result["research_id"])
    """

    def __init__(
        self,
        config_path: str = "config/settings.yaml",
        env_path: str = ".env",
        config: Optional[dict[str, Any]] = None,
    ):
        self._config_path = config_path
        self._env_path = env_path
        self.config: dict[str, Any] = config or {}
        self._config_given = config is not None
        self._initialized = False

        self._llm_client = None
        self._repository = None
        self._pipeline = None
        self._orchestrator = None
        self._persona_generator = None
        self._scheduler = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        """Load ``.env`` and YAML config, then create the database tables."""
        if self._initialized:
            return

        env_file = Path(self._env_path)
        if env_file.exists():
            load_dotenv(env_file)
            logger.info("Loaded environment from %s", self._env_path)

        if not self._config_given:
            self.config = self._load_config()

        data_dir = self._section("app").get("data_dir", "")
        if data_dir:
            Path(data_dir).mkdir(parents=True, exist_ok=True)

        from keyword_mapping.database import init_db
        db_cfg = self._section("database")
        init_db(database_url=db_cfg.get("url"), echo=db_cfg.get("echo", False))

        self._initialized = True
        logger.info("KeywordMappingApp initialised.")

    def _load_config(self) -> dict[str, Any]:
        config_file = Path(self._config_path)
        if not config_file.exists():
            logger.warning("Config file not found: %s; using defaults.", self._config_path)
            return {}
        with open(config_file, "r", encoding="utf-8") as fh:
            config = yaml.safe_load(fh) or {}
        logger.info("Configuration loaded from %s", self._config_path)
        return config

    def _section(self, name: str) -> dict[str, Any]:
        return self.config.get(name) or {}

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise RuntimeError("Call initialize() before using the application.")

    # ------------------------------------------------------------------
    # Component accessors (lazy)
    # ------------------------------------------------------------------

    def _get_llm_client(self):
        if self._llm_client is None:
            from keyword_mapping.integrations.llm_client import LLMClient
            llm_cfg = self._section("llm")
            primary = llm_cfg.get("primary", {})
            fallback = llm_cfg.get("fallback", {})
            cache_cfg = llm_cfg.get("cache", {})
            budget_cfg = llm_cfg.get("budget", {})
            rl_cfg = self._section("rate_limits")

            self._llm_client = LLMClient(
                openai_model=primary.get("model", "gpt-4o-mini"),
                gemini_model=fallback.get("model", "gemini-2.0-flash"),
                max_tokens=primary.get("max_tokens", 4096),
                temperature=primary.get("temperature", 0.7),
                timeout=primary.get("timeout", 60),
                openai_rpm=rl_cfg.get("openai", {}).get("requests_per_minute", 60),
                gemini_rpm=rl_cfg.get("gemini", {}).get("requests_per_minute", 15),
                cache_enabled=cache_cfg.get("enabled", True),
                cache_ttl_hours=cache_cfg.get("ttl_hours", 24),
                cache_max_size=cache_cfg.get("max_size", 2000),
                max_monthly_budget=budget_cfg.get("max_monthly_usd", 50.0),
                budget_warning_pct=budget_cfg.get("warning_threshold_pct", 80.0),
            )
        return self._llm_client

    def get_repository(self):
        if self._repository is None:
            from keyword_mapping.cache import TaggedCache
            from keyword_mapping.repository import ResearchRepository
            cache_cfg = self._section("cache")
            self._repository = ResearchRepository(
                cache=TaggedCache(
                    max_size=cache_cfg.get("max_size", 1000),
                    ttl_seconds=cache_cfg.get("ttl_seconds", 300),
                )
            )
        return self._repository

    def _get_pipeline(self):
        if self._pipeline is None:
            from keyword_mapping.integrations.autosuggest import GoogleAutosuggestClient
            from keyword_mapping.integrations.keyword_volume import GoogleAdsVolumeClient
            from keyword_mapping.modules.keyword_research import (
                AISuggestionSource,
                KeywordResearchPipeline,
                SuggestionAggregator,
                VolumeEnricher,
            )
            kr_cfg = self._section("keyword_research")
            auto_cfg = self._section("autosuggest")
            ads_cfg = self._section("google_ads")

            aggregator = SuggestionAggregator(
                AISuggestionSource(self._get_llm_client(), model=kr_cfg.get("ai_model")),
                GoogleAutosuggestClient(
                    relevance_threshold=auto_cfg.get("relevance_threshold", 600),
                    request_timeout=auto_cfg.get("timeout", 10),
                    max_concurrency=auto_cfg.get("max_concurrency", 5),
                    requests_per_minute=auto_cfg.get("requests_per_minute", 120),
                    request_delay=auto_cfg.get("request_delay_seconds", 0.05),
                ),
                ai_suggestion_count=kr_cfg.get("ai_suggestion_count", 10),
            )
            enricher = VolumeEnricher(
                GoogleAdsVolumeClient(
                    api_version=ads_cfg.get("api_version", "v19"),
                    batch_size=ads_cfg.get("batch_size", 20),
                    max_retries=ads_cfg.get("max_retries", 3),
                    batch_delay=ads_cfg.get("batch_delay_seconds", 0.25),
                    request_timeout=ads_cfg.get("timeout", 30),
                )
            )
            self._pipeline = KeywordResearchPipeline(
                aggregator,
                enricher,
                self.get_repository(),
                max_volume_check=kr_cfg.get("max_volume_check_keywords", 60),
            )
        return self._pipeline

    def get_orchestrator(self):
        if self._orchestrator is None:
            from keyword_mapping.modules.clustering import (
                ClusteringOrchestrator,
                SemanticClusterer,
            )
            cl_cfg = self._section("clustering")
            min_keywords = cl_cfg.get("min_keywords", 5)
            clusterer = SemanticClusterer(
                self._get_llm_client(),
                min_keywords=min_keywords,
                max_keywords=cl_cfg.get("max_keywords", 80),
                default_model=cl_cfg.get("model", "gpt-4o-mini"),
            )
            self._orchestrator = ClusteringOrchestrator(
                self.get_repository(),
                clusterer,
                min_keywords=min_keywords,
                run_timeout=cl_cfg.get("run_timeout_seconds"),
            )
        return self._orchestrator

    def _get_persona_generator(self):
        if self._persona_generator is None:
            from keyword_mapping.modules.clustering import PersonaGenerator
            self._persona_generator = PersonaGenerator(
                self._get_llm_client(),
                self.get_repository(),
                model=self._section("clustering").get("persona_model"),
            )
        return self._persona_generator

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def process_and_save_query(
        self,
        query: str,
        region: str,
        language: str,
        filter_zero_volume: Optional[bool] = None,
        use_alphabet: Optional[bool] = None,
        use_symbols: Optional[bool] = None,
    ) -> dict[str, Any]:
        """Research a seed query and persist the result. Unset options come from config."""
        self._ensure_initialized()
        kr_cfg = self._section("keyword_research")
        return await self._get_pipeline().process_and_save_query(
            query,
            region,
            language,
            filter_zero_volume=(
                kr_cfg.get("filter_zero_volume", False)
                if filter_zero_volume is None else filter_zero_volume
            ),
            use_alphabet=kr_cfg.get("use_alphabet", True) if use_alphabet is None else use_alphabet,
            use_symbols=kr_cfg.get("use_symbols", False) if use_symbols is None else use_symbols,
        )

    async def request_clustering(self, research_id: str) -> dict[str, Any]:
        self._ensure_initialized()
        return await self.get_orchestrator().request_clustering(research_id)

    async def run_clustering(self, research_id: str) -> dict[str, Any]:
        """Request clustering and wait for the run to finish."""
        self._ensure_initialized()
        return await self.get_orchestrator().run_clustering(research_id)

    async def save_persona(
        self,
        research_id: str,
        cluster_name: str,
        keywords: Optional[list[str]] = None,
    ) -> dict[str, Any]:
        self._ensure_initialized()
        return await self._get_persona_generator().save_persona(
            research_id, cluster_name, keywords
        )

    async def generate_all_personas(self, research_id: str) -> dict[str, Any]:
        self._ensure_initialized()
        return await self._get_persona_generator().generate_all(research_id)

    def fetch_clustering_status(self, research_id: str) -> Optional[ClusteringStatus]:
        self._ensure_initialized()
        return self.get_orchestrator().fetch_clustering_status(research_id)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def _stale_after_minutes(self, override: Optional[float] = None) -> float:
        if override is not None:
            return override
        return self._section("clustering").get("stale_after_minutes", 30)

    def sweep_stale_runs(self, stale_after_minutes: Optional[float] = None) -> list[str]:
        """Fail clustering runs stuck in ``processing``; returns the swept ids."""
        self._ensure_initialized()
        return self.get_orchestrator().sweep_stale(
            timedelta(minutes=self._stale_after_minutes(stale_after_minutes))
        )

    def start_maintenance(self, stale_after_minutes: Optional[float] = None) -> None:
        """Start the stale-run sweep in a background scheduler."""
        self._ensure_initialized()
        if self._scheduler is None:
            from keyword_mapping.scheduler import MaintenanceScheduler
            sched_cfg = self._section("scheduler")
            self._scheduler = MaintenanceScheduler(timezone=sched_cfg.get("timezone", "UTC"))
            self._scheduler.schedule_stale_sweep(
                self.get_orchestrator(),
                stale_after_minutes=self._stale_after_minutes(stale_after_minutes),
                interval_minutes=sched_cfg.get("stale_sweep_interval_minutes", 5),
            )
        self._scheduler.start()

    def stop_maintenance(self) -> None:
        if self._scheduler is not None:
            self._scheduler.stop(wait=False)

    @property
    def maintenance_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.is_running

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_status(self) -> dict[str, dict[str, Any]]:
        """Health of the database, providers and configuration."""
        self._ensure_initialized()
        status: dict[str, dict[str, Any]] = {}

        try:
            from sqlalchemy import func
            from keyword_mapping.database import get_session
            from keyword_mapping.models.research import KeywordResearch
            with get_session() as session:
                count = session.query(func.count(KeywordResearch.id)).scalar()
            status["database"] = {"status": "ok", "details": f"{count} research records"}
        except Exception as exc:
            status["database"] = {"status": "error", "details": str(exc)}

        llm = self._get_llm_client()
        usage = llm.get_usage_summary()
        status["llm"] = {
            "status": "ok" if llm.is_configured else "warning",
            "details": (
                f"providers: {', '.join(llm.providers) or 'none configured'}; "
                f"model {llm.default_model}; {usage['total_requests']} requests, "
                f"${usage['monthly_cost_usd']:.2f} of ${usage['max_monthly_budget']:.2f} this month"
            ),
        }

        ads_ready = all(
            os.getenv(name)
            for name in (
                "GOOGLE_ADS_DEVELOPER_TOKEN", "GOOGLE_ADS_CLIENT_ID",
                "GOOGLE_ADS_CLIENT_SECRET", "GOOGLE_ADS_REFRESH_TOKEN",
                "GOOGLE_ADS_CUSTOMER_ID",
            )
        )
        status["google_ads"] = {
            "status": "ok" if ads_ready else "warning",
            "details": "credentials set" if ads_ready else "missing credentials (volumes disabled)",
        }

        status["config"] = {
            "status": "ok" if self.config else "warning",
            "details": f"{len(self.config)} sections loaded" if self.config else "no config",
        }
        return status
