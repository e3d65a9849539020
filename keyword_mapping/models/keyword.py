"""Value types stored inside a keyword research record."""

import enum
from dataclasses import dataclass, field
from typing import Any, Optional

from keyword_mapping.utils.helpers import safe_int
from keyword_mapping.utils.text_processing import normalize_keyword


class ClusteringStatus(str, enum.Enum):
    """Lifecycle of the clustering step for one research record."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ClusteringStatus":
        """Map a stored value to a status; a missing value reads as pending."""
        if value is None or value == "":
            return cls.PENDING
        return cls(value)


# Statuses from which a clustering request may claim the record.
CLAIMABLE_STATUSES = (ClusteringStatus.PENDING, ClusteringStatus.FAILED)


def _optional_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass
class KeywordVolumeItem:
    """A keyword with its monthly search volume and optional ad metrics."""

    text: str
    search_volume: int = 0
    competition: Optional[str] = None
    competition_index: Optional[float] = None
    cpc: Optional[float] = None

    def __post_init__(self) -> None:
        self.search_volume = safe_int(self.search_volume)

    @property
    def key(self) -> str:
        return normalize_keyword(self.text)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "KeywordVolumeItem":
        """Build from a stored dict (camelCase) or a client result (snake_case)."""
        volume = data.get("searchVolume", data.get("search_volume"))
        index = data.get("competitionIndex", data.get("competition_index"))
        competition = data.get("competition")
        return cls(
            text=str(data.get("text") or "").strip(),
            search_volume=safe_int(volume),
            competition=str(competition) if competition is not None else None,
            competition_index=_optional_float(index),
            cpc=_optional_float(data.get("cpc")),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"text": self.text, "searchVolume": self.search_volume}
        if self.competition is not None:
            data["competition"] = self.competition
        if self.competition_index is not None:
            data["competitionIndex"] = self.competition_index
        if self.cpc is not None:
            data["cpc"] = self.cpc
        return data


@dataclass
class ClusterItem:
    """A cluster enriched with the volume of each member keyword."""

    cluster_name: str
    keywords: list[KeywordVolumeItem] = field(default_factory=list)

    @property
    def total_volume(self) -> int:
        return sum(item.search_volume for item in self.keywords)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ClusterItem":
        return cls(
            cluster_name=str(data.get("clusterName") or data.get("cluster_name") or ""),
            keywords=[KeywordVolumeItem.from_dict(k) for k in data.get("keywords") or []],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "clusterName": self.cluster_name,
            "keywords": [k.to_dict() for k in self.keywords],
            "totalVolume": self.total_volume,
        }


@dataclass
class UserPersona:
    """Audience description attached to a cluster (``name`` is the cluster name)."""

    name: str
    description: str = ""
    keywords: list[str] = field(default_factory=list)
    characteristics: list[str] = field(default_factory=list)
    interests: list[str] = field(default_factory=list)
    pain_points: list[str] = field(default_factory=list)
    goals: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UserPersona":
        def _strings(value: Any) -> list[str]:
            return [str(v) for v in value] if isinstance(value, list) else []

        return cls(
            name=str(data.get("name") or ""),
            description=str(data.get("description") or ""),
            keywords=_strings(data.get("keywords")),
            characteristics=_strings(data.get("characteristics")),
            interests=_strings(data.get("interests")),
            pain_points=_strings(data.get("painPoints", data.get("pain_points"))),
            goals=_strings(data.get("goals")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "keywords": list(self.keywords),
            "characteristics": list(self.characteristics),
            "interests": list(self.interests),
            "painPoints": list(self.pain_points),
            "goals": list(self.goals),
        }
