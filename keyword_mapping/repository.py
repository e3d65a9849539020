"""Persistence gateway for keyword research records.

All reads and writes of :class:`KeywordResearch` go through
:class:`ResearchRepository`. Mutations stamp ``updated_at`` and revalidate
the read cache; the clustering status only moves through
:meth:`ResearchRepository.claim_clustering` and
:meth:`ResearchRepository.update_status`.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional

from sqlalchemy import or_, update
from sqlalchemy.exc import SQLAlchemyError

from keyword_mapping.cache import (
    KEYWORD_RESEARCH_TAG,
    TaggedCache,
    research_tag,
    revalidate_research,
)
from keyword_mapping.database import get_session
from keyword_mapping.models.keyword import (
    CLAIMABLE_STATUSES,
    ClusterItem,
    ClusteringStatus,
    KeywordVolumeItem,
    UserPersona,
)
from keyword_mapping.models.research import DEFAULT_RESEARCH_NAME, KeywordResearch
from keyword_mapping.modules.keyword_research.merger import dedupe_keywords
from keyword_mapping.utils.helpers import unique_preserving_order

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ClusteringClaim:
    """Outcome of an attempt to move a record into ``processing``."""

    found: bool
    claimed: bool
    previous_status: Optional[ClusteringStatus] = None


class ResearchRepository:
    """Create, read and update research records.

    Usage::

        repo = ResearchRepository()
        record = repo.create(query="matcha", region="TW", language="zh_TW")
        repo.update_keywords(record.id, items)
        claim = repo.claim_clustering(record.id)
    """

    def __init__(self, cache: Optional[TaggedCache] = None):
        self._cache = cache if cache is not None else TaggedCache()

    @property
    def cache(self) -> TaggedCache:
        return self._cache

    # ------------------------------------------------------------------
    # Create / delete
    # ------------------------------------------------------------------

    def create(
        self,
        query: str,
        region: str = "",
        language: str = "",
        search_engine: str = "google",
        device: str = "desktop",
        is_favorite: bool = False,
        tags: Optional[Iterable[str]] = None,
        name: str = DEFAULT_RESEARCH_NAME,
        description: str = "",
    ) -> KeywordResearch:
        """Insert a new record with empty results and status ``pending``.

        Raises:
            SQLAlchemyError: The record could not be written.
        """
        record = KeywordResearch(
            query=query,
            region=region or "",
            language=language or "",
            search_engine=search_engine or "google",
            device=device or "desktop",
            is_favorite=bool(is_favorite),
            tags=unique_preserving_order(t for t in (tags or []) if t),
            name=name or DEFAULT_RESEARCH_NAME,
            description=description or "",
            keywords=[],
            clusters={},
            clusters_with_volume=None,
            personas=[],
            clustering_status=ClusteringStatus.PENDING.value,
        )
        with get_session() as session:
            session.add(record)
            session.flush()
            logger.info("Created research %s for query %r", record.id, query)
        revalidate_research(self._cache)
        return record

    def delete(self, research_id: str) -> bool:
        try:
            with get_session() as session:
                record = session.get(KeywordResearch, research_id)
                if record is None:
                    return False
                session.delete(record)
        except SQLAlchemyError as exc:
            logger.error("Failed to delete research %s: %s", research_id, exc)
            return False
        revalidate_research(self._cache, research_id)
        logger.info("Deleted research %s", research_id)
        return True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, research_id: str) -> Optional[KeywordResearch]:
        """Uncached read; use for decisions that must see the latest state."""
        if not research_id:
            return None
        with get_session() as session:
            return session.get(KeywordResearch, research_id)

    def get_detail(self, research_id: str) -> Optional[dict[str, Any]]:
        """Cached detail view (``None`` when the record does not exist)."""
        if not research_id:
            return None

        def _load() -> Optional[dict[str, Any]]:
            record = self.get(research_id)
            return record.to_dict() if record else None

        return self._cache.get_or_load(
            f"research:detail:{research_id}",
            _load,
            tags=[KEYWORD_RESEARCH_TAG, research_tag(research_id)],
        )

    def list_summaries(self, limit: int = 50) -> list[dict[str, Any]]:
        """Cached list view, most recently updated first."""

        def _load() -> list[dict[str, Any]]:
            with get_session() as session:
                rows = (
                    session.query(KeywordResearch)
                    .order_by(KeywordResearch.updated_at.desc())
                    .limit(limit)
                    .all()
                )
                return [row.to_summary() for row in rows]

        return self._cache.get_or_load(
            f"research:list:{limit}", _load, tags=[KEYWORD_RESEARCH_TAG]
        )

    def find_stale_processing(self, older_than: datetime) -> list[str]:
        """Ids of records stuck in ``processing`` since before *older_than*."""
        with get_session() as session:
            rows = (
                session.query(KeywordResearch.id)
                .filter(
                    KeywordResearch.clustering_status == ClusteringStatus.PROCESSING.value,
                    KeywordResearch.updated_at < older_than,
                )
                .all()
            )
            return [row[0] for row in rows]

    # ------------------------------------------------------------------
    # Field updates
    # ------------------------------------------------------------------

    def _mutate(
        self, research_id: str, action: str, apply: Callable[[KeywordResearch], None]
    ) -> bool:
        try:
            with get_session() as session:
                record = session.get(KeywordResearch, research_id)
                if record is None:
                    logger.warning("Cannot %s: research %s not found", action, research_id)
                    return False
                apply(record)
                record.updated_at = _utcnow()
        except SQLAlchemyError as exc:
            logger.error("Failed to %s for research %s: %s", action, research_id, exc)
            return False
        revalidate_research(self._cache, research_id)
        return True

    def update_keywords(self, research_id: str, keywords: Iterable[KeywordVolumeItem]) -> bool:
        """Overwrite the keyword list; duplicates by normalized text collapse."""
        items = dedupe_keywords(keywords)

        def _apply(record: KeywordResearch) -> None:
            record.keywords = [item.to_dict() for item in items]

        ok = self._mutate(research_id, "update keywords", _apply)
        if ok:
            logger.info("Saved %d keywords for research %s", len(items), research_id)
        return ok

    def update_clusters(
        self,
        research_id: str,
        clusters: dict[str, list[str]],
        clusters_with_volume: Optional[Iterable[ClusterItem]] = None,
    ) -> bool:
        cluster_doc = {str(name): list(members) for name, members in clusters.items()}
        volume_doc = (
            [item.to_dict() for item in clusters_with_volume]
            if clusters_with_volume is not None
            else None
        )

        def _apply(record: KeywordResearch) -> None:
            record.clusters = cluster_doc
            record.clusters_with_volume = volume_doc

        return self._mutate(research_id, "update clusters", _apply)

    def update_personas(self, research_id: str, personas: Iterable[UserPersona]) -> bool:
        persona_doc = [p.to_dict() for p in personas]

        def _apply(record: KeywordResearch) -> None:
            record.personas = persona_doc

        return self._mutate(research_id, "update personas", _apply)

    def update_status(
        self,
        research_id: str,
        status: ClusteringStatus,
        error: Optional[str] = None,
    ) -> bool:
        """Set the clustering status; ``error`` is stored only for ``failed``."""

        def _apply(record: KeywordResearch) -> None:
            record.clustering_status = status.value
            record.clustering_error = error if status is ClusteringStatus.FAILED else None

        ok = self._mutate(research_id, "update clustering status", _apply)
        if ok:
            logger.info("Research %s clustering status -> %s", research_id, status.value)
        return ok

    # ------------------------------------------------------------------
    # Clustering claim
    # ------------------------------------------------------------------

    def claim_clustering(self, research_id: str) -> ClusteringClaim:
        """Atomically move a record from pending/failed/absent to ``processing``.

        The status check and the write are one conditional UPDATE, so of
        several concurrent callers at most one gets ``claimed=True``.
        """
        claimable = [s.value for s in CLAIMABLE_STATUSES]
        stmt = (
            update(KeywordResearch)
            .where(KeywordResearch.id == research_id)
            .where(
                or_(
                    KeywordResearch.clustering_status.is_(None),
                    KeywordResearch.clustering_status.in_(claimable),
                )
            )
            .values(
                clustering_status=ClusteringStatus.PROCESSING.value,
                clustering_error=None,
                updated_at=_utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        with get_session() as session:
            result = session.execute(stmt)
            if result.rowcount == 1:
                claimed = ClusteringClaim(found=True, claimed=True)
            else:
                record = session.get(KeywordResearch, research_id)
                claimed = ClusteringClaim(
                    found=record is not None,
                    claimed=False,
                    previous_status=record.status if record is not None else None,
                )

        if claimed.claimed:
            revalidate_research(self._cache, research_id)
            logger.info("Claimed research %s for clustering", research_id)
        return claimed
