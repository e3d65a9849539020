"""Keyword Research module -- suggestion aggregation, volume enrichment and merging."""

from keyword_mapping.modules.keyword_research.aggregator import (
    AISuggestionSource,
    AggregatedSuggestions,
    SuggestionAggregator,
)
from keyword_mapping.modules.keyword_research.enricher import VolumeEnricher
from keyword_mapping.modules.keyword_research.merger import (
    dedupe_keywords,
    merge_volume_results,
    sort_by_volume,
)
from keyword_mapping.modules.keyword_research.pipeline import KeywordResearchPipeline
from keyword_mapping.modules.keyword_research.prioritizer import (
    MAX_VOLUME_CHECK_KEYWORDS,
    prioritize_for_volume_check,
)

__all__ = [
    "AISuggestionSource",
    "AggregatedSuggestions",
    "SuggestionAggregator",
    "VolumeEnricher",
    "dedupe_keywords",
    "merge_volume_results",
    "sort_by_volume",
    "KeywordResearchPipeline",
    "MAX_VOLUME_CHECK_KEYWORDS",
    "prioritize_for_volume_check",
]
