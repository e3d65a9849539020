"""Clustering orchestration -- single-flight state machine around the semantic clusterer.

A request atomically claims the record (``pending``/``failed``/absent ->
``processing``) and hands the clustering work to a background task. The
task's supervisor writes exactly one terminal status: ``completed`` when
the clusters were stored, ``failed`` (with the error message) otherwise.
Records with fewer unique keywords than the clusterer accepts are resolved
to ``completed`` with empty clusters inside the request itself.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Optional

from keyword_mapping.models.keyword import ClusteringStatus, KeywordVolumeItem
from keyword_mapping.modules.clustering.clusterer import (
    MIN_CLUSTERING_KEYWORDS,
    build_clusters_with_volume,
)
from keyword_mapping.modules.keyword_research.merger import dedupe_keywords

if TYPE_CHECKING:
    from keyword_mapping.modules.clustering.clusterer import SemanticClusterer
    from keyword_mapping.repository import ResearchRepository

logger = logging.getLogger(__name__)

NOT_FOUND_MESSAGE = "Research item not found."


class ClusteringOrchestrator:
    """Accept, run and supervise clustering requests.

    Usage::

        orchestrator = ClusteringOrchestrator(repository, SemanticClusterer(llm))
        result = await orchestrator.request_clustering(research_id)
        # later: orchestrator.fetch_clustering_status(research_id)
    """

    def __init__(
        self,
        repository: "ResearchRepository",
        clusterer: "SemanticClusterer",
        min_keywords: int = MIN_CLUSTERING_KEYWORDS,
        run_timeout: Optional[float] = None,
        model: Optional[str] = None,
    ):
        self._repo = repository
        self._clusterer = clusterer
        self._min_keywords = min_keywords
        self._run_timeout = run_timeout
        self._model = model
        self._runs: dict[str, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def request_clustering(self, research_id: str) -> dict[str, Any]:
        """Start clustering for a record and return without waiting for it.

        Returns:
            ``{"success": True, "error": None}`` when the run was accepted
            (or resolved immediately for too few keywords), otherwise
            ``{"success": False, "error": message}``. A rejected request
            writes nothing.
        """
        if not research_id:
            return {"success": False, "error": "Research id is required."}

        try:
            claim = self._repo.claim_clustering(research_id)
        except Exception as exc:
            logger.error("Could not claim research %s for clustering: %s", research_id, exc)
            return {"success": False, "error": f"Failed to start clustering: {exc}"}

        if not claim.found:
            return {"success": False, "error": NOT_FOUND_MESSAGE}
        if not claim.claimed:
            status = claim.previous_status.value if claim.previous_status else "unknown"
            logger.info("Clustering request for %s rejected (status=%s)", research_id, status)
            return {
                "success": False,
                "error": f"Clustering already started or completed (status: {status}).",
            }

        try:
            keywords = self._load_unique_keywords(research_id)
        except Exception as exc:
            message = f"Failed to load keywords: {exc}"
            logger.error("Research %s: %s", research_id, message)
            self._mark_failed(research_id, message)
            return {"success": False, "error": message}

        if len(keywords) < self._min_keywords:
            return self._resolve_insufficient(research_id, len(keywords))

        task = asyncio.create_task(
            self._supervise(research_id, keywords),
            name=f"clustering-{research_id}",
        )
        self._runs[research_id] = task
        task.add_done_callback(lambda done: self._forget_run(research_id, done))
        logger.info("Clustering started for %s (%d keywords)", research_id, len(keywords))
        return {"success": True, "error": None}

    def fetch_clustering_status(self, research_id: str) -> Optional[ClusteringStatus]:
        """Current persisted status; ``None`` for an unknown record."""
        record = self._repo.get(research_id)
        if record is None:
            return None
        return record.status

    def get_run(self, research_id: str) -> Optional[asyncio.Task]:
        """Task handle of the run in flight for this record, if any."""
        return self._runs.get(research_id)

    async def wait_for_run(self, research_id: str) -> Optional[ClusteringStatus]:
        """Await the run in flight (if any) and return the persisted status."""
        task = self._runs.get(research_id)
        if task is not None:
            await asyncio.shield(task)
        return self.fetch_clustering_status(research_id)

    async def run_clustering(self, research_id: str) -> dict[str, Any]:
        """Request clustering and wait for its terminal status."""
        result = await self.request_clustering(research_id)
        if not result["success"]:
            return {**result, "status": self._status_value(research_id)}

        status = await self.wait_for_run(research_id)
        record = self._repo.get(research_id)
        error = record.clustering_error if record is not None else None
        return {
            "success": status is ClusteringStatus.COMPLETED,
            "status": status.value if status else None,
            "error": error,
        }

    def sweep_stale(self, stale_after: timedelta) -> list[str]:
        """Fail records left in ``processing`` longer than *stale_after*.

        Covers runs lost to a crashed or restarted process. Records with a
        live run in this process are left alone.
        """
        cutoff = datetime.now(timezone.utc) - stale_after
        swept: list[str] = []
        for research_id in self._repo.find_stale_processing(cutoff):
            task = self._runs.get(research_id)
            if task is not None and not task.done():
                continue
            minutes = int(stale_after.total_seconds() // 60)
            if self._repo.update_status(
                research_id,
                ClusteringStatus.FAILED,
                error=f"Clustering did not finish within {minutes} minutes.",
            ):
                swept.append(research_id)
        if swept:
            logger.warning("Marked %d stale clustering runs as failed", len(swept))
        return swept

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load_unique_keywords(self, research_id: str) -> list[KeywordVolumeItem]:
        record = self._repo.get(research_id)
        if record is None:
            raise LookupError(NOT_FOUND_MESSAGE)
        return dedupe_keywords(record.keyword_items())

    def _resolve_insufficient(self, research_id: str, count: int) -> dict[str, Any]:
        logger.info(
            "Research %s has %d unique keywords (< %d); completing with no clusters",
            research_id, count, self._min_keywords,
        )
        if self._repo.update_clusters(research_id, {}, []) and self._repo.update_status(
            research_id, ClusteringStatus.COMPLETED
        ):
            return {"success": True, "error": None}
        message = "Failed to store empty clustering result."
        self._mark_failed(research_id, message)
        return {"success": False, "error": message}

    async def _cluster_and_store(
        self, research_id: str, keywords: list[KeywordVolumeItem]
    ) -> None:
        result = await self._clusterer.cluster([k.text for k in keywords], model=self._model)
        clusters = result["clusters"]
        with_volume = build_clusters_with_volume(clusters, keywords)
        if not self._repo.update_clusters(research_id, clusters, with_volume):
            raise RuntimeError("Failed to save clusters to the research record.")

    async def _supervise(
        self, research_id: str, keywords: list[KeywordVolumeItem]
    ) -> ClusteringStatus:
        try:
            if self._run_timeout:
                await asyncio.wait_for(
                    self._cluster_and_store(research_id, keywords), self._run_timeout
                )
            else:
                await self._cluster_and_store(research_id, keywords)
        except asyncio.CancelledError:
            logger.warning("Clustering for research %s was cancelled", research_id)
            self._mark_failed(research_id, "Clustering was cancelled.")
            raise
        except asyncio.TimeoutError:
            message = f"Clustering timed out after {self._run_timeout:g}s."
            logger.error("Research %s: %s", research_id, message)
            self._mark_failed(research_id, message)
            return ClusteringStatus.FAILED
        except Exception as exc:
            logger.error("Clustering failed for research %s: %s", research_id, exc)
            self._mark_failed(research_id, str(exc) or exc.__class__.__name__)
            return ClusteringStatus.FAILED

        if self._repo.update_status(research_id, ClusteringStatus.COMPLETED):
            logger.info("Clustering completed for research %s", research_id)
            return ClusteringStatus.COMPLETED
        self._mark_failed(research_id, "Failed to record completed status.")
        return ClusteringStatus.FAILED

    def _forget_run(self, research_id: str, task: asyncio.Task) -> None:
        # A newer run for the same record may already own the slot.
        if self._runs.get(research_id) is task:
            del self._runs[research_id]

    def _mark_failed(self, research_id: str, message: str) -> None:
        """Best-effort ``failed`` write; a second failure is only logged."""
        try:
            if not self._repo.update_status(research_id, ClusteringStatus.FAILED, error=message):
                logger.error("Could not mark research %s as failed", research_id)
        except Exception as exc:
            logger.error("Could not mark research %s as failed: %s", research_id, exc)

    def _status_value(self, research_id: str) -> Optional[str]:
        status = self.fetch_clustering_status(research_id)
        return status.value if status else None
