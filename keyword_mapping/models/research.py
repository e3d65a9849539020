"""Keyword research aggregate: one seed query with its keywords, clusters and personas."""

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import Boolean, DateTime, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from keyword_mapping.database import Base
from keyword_mapping.models.keyword import (
    ClusterItem,
    ClusteringStatus,
    KeywordVolumeItem,
    UserPersona,
)

DEFAULT_RESEARCH_NAME = "Untitled Research"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


class KeywordResearch(Base):
    """A persisted research record.

    ``keywords``, ``clusters``, ``clusters_with_volume`` and ``personas``
    are JSON documents; use the ``*_items`` accessors to work with the
    typed values.
    """

    __tablename__ = "keyword_research"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    query: Mapped[str] = mapped_column(String(500), nullable=False, index=True)
    region: Mapped[str] = mapped_column(String(10), default="", nullable=False)
    language: Mapped[str] = mapped_column(String(10), default="", nullable=False)
    search_engine: Mapped[str] = mapped_column(String(50), default="google", nullable=False)
    device: Mapped[str] = mapped_column(String(20), default="desktop", nullable=False)
    is_favorite: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    tags: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    name: Mapped[str] = mapped_column(String(255), default=DEFAULT_RESEARCH_NAME, nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)

    keywords: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    clusters: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    clusters_with_volume: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    personas: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    clustering_status: Mapped[Optional[str]] = mapped_column(
        String(20), default=ClusteringStatus.PENDING.value, nullable=True, index=True
    )
    clustering_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, index=True
    )

    # ------------------------------------------------------------------
    # Typed accessors
    # ------------------------------------------------------------------

    @property
    def status(self) -> ClusteringStatus:
        return ClusteringStatus.parse(self.clustering_status)

    def keyword_items(self) -> list[KeywordVolumeItem]:
        return [KeywordVolumeItem.from_dict(k) for k in self.keywords or [] if isinstance(k, dict)]

    def cluster_map(self) -> dict[str, list[str]]:
        return {str(name): list(members) for name, members in (self.clusters or {}).items()}

    def cluster_items(self) -> list[ClusterItem]:
        return [ClusterItem.from_dict(c) for c in self.clusters_with_volume or []]

    def persona_items(self) -> list[UserPersona]:
        return [UserPersona.from_dict(p) for p in self.personas or [] if isinstance(p, dict)]

    @property
    def total_volume(self) -> int:
        return sum(item.search_volume for item in self.keyword_items())

    def to_dict(self) -> dict[str, Any]:
        """Full detail view."""
        return {
            "id": self.id,
            "query": self.query,
            "region": self.region,
            "language": self.language,
            "search_engine": self.search_engine,
            "device": self.device,
            "is_favorite": self.is_favorite,
            "tags": list(self.tags or []),
            "name": self.name,
            "description": self.description,
            "keywords": list(self.keywords or []),
            "clusters": self.cluster_map(),
            "clusters_with_volume": list(self.clusters_with_volume or []),
            "personas": list(self.personas or []),
            "clustering_status": self.status.value,
            "clustering_error": self.clustering_error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def to_summary(self) -> dict[str, Any]:
        """List view: metadata plus keyword count and total volume."""
        return {
            "id": self.id,
            "query": self.query,
            "name": self.name,
            "region": self.region,
            "language": self.language,
            "is_favorite": self.is_favorite,
            "keyword_count": len(self.keywords or []),
            "cluster_count": len(self.clusters or {}),
            "total_volume": self.total_volume,
            "clustering_status": self.status.value,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return (
            f"<KeywordResearch id={self.id} query={self.query!r} "
            f"status={self.clustering_status!r}>"
        )
