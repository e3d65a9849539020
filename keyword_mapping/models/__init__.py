"""ORM models and value types; importing this package registers every table."""

from keyword_mapping.models.keyword import (
    CLAIMABLE_STATUSES,
    ClusterItem,
    ClusteringStatus,
    KeywordVolumeItem,
    UserPersona,
)
from keyword_mapping.models.research import (
    DEFAULT_RESEARCH_NAME,
    KeywordResearch,
)

__all__ = [
    "CLAIMABLE_STATUSES",
    "ClusterItem",
    "ClusteringStatus",
    "KeywordVolumeItem",
    "UserPersona",
    "DEFAULT_RESEARCH_NAME",
    "KeywordResearch",
]
