"""Keyword research pipeline -- query in, persisted volume-annotated research record out."""

import logging
from typing import TYPE_CHECKING, Any

from keyword_mapping.modules.keyword_research.merger import merge_volume_results
from keyword_mapping.modules.keyword_research.prioritizer import (
    MAX_VOLUME_CHECK_KEYWORDS,
    prioritize_for_volume_check,
)
from keyword_mapping.utils.text_processing import clean_keyword, looks_like_url

if TYPE_CHECKING:
    from keyword_mapping.modules.keyword_research.aggregator import SuggestionAggregator
    from keyword_mapping.modules.keyword_research.enricher import VolumeEnricher
    from keyword_mapping.repository import ResearchRepository

logger = logging.getLogger(__name__)

NO_KEYWORDS_MESSAGE = "No keywords found to process."


class KeywordResearchPipeline:
    """Aggregate -> prioritize -> enrich -> merge -> persist.

    Usage::

        pipeline = KeywordResearchPipeline(aggregator, enricher, repository)
        result = await pipeline.process_and_save_query("matcha recipe", "TW", "zh-TW")
        # {"success": True, "research_id": "...", "error": None}
    """

    def __init__(
        self,
        aggregator: "SuggestionAggregator",
        enricher: "VolumeEnricher",
        repository: "ResearchRepository",
        max_volume_check: int = MAX_VOLUME_CHECK_KEYWORDS,
    ):
        self._aggregator = aggregator
        self._enricher = enricher
        self._repo = repository
        self._max_volume_check = max_volume_check

    async def process_and_save_query(
        self,
        query: str,
        region: str,
        language: str,
        filter_zero_volume: bool = False,
        use_alphabet: bool = True,
        use_symbols: bool = False,
    ) -> dict[str, Any]:
        """Run the whole research flow for one seed query.

        Returns:
            ``{"success": bool, "research_id": str | None, "error": str | None}``.
            An empty candidate pool still creates a (keyword-less) record and
            reports success together with an explanatory ``error``.
        """
        query = clean_keyword(query)
        if not query:
            return {"success": False, "research_id": None, "error": "Query must not be empty."}

        try:
            collected = await self._aggregator.collect(
                query, region, language,
                use_alphabet=use_alphabet, use_symbols=use_symbols,
            )

            if not collected.candidates:
                logger.warning("No candidates for %r; saving an empty research record", query)
                record = self._repo.create(query=query, region=region, language=language)
                return {"success": True, "research_id": record.id, "error": NO_KEYWORDS_MESSAGE}

            to_check = prioritize_for_volume_check(
                collected.candidates,
                collected.ai_suggestions,
                collected.autosuggestions,
                limit=self._max_volume_check,
            )
            source_url = query if looks_like_url(query) else None
            volume_results = await self._enricher.enrich(
                to_check, region, language, source_url=source_url
            )
            keywords = merge_volume_results(
                volume_results, collected.candidates, filter_zero_volume
            )
            logger.info(
                "Query %r: %d candidates, %d checked, %d with volume data, %d kept",
                query, len(collected.candidates), len(to_check),
                len(volume_results), len(keywords),
            )

            try:
                record = self._repo.create(query=query, region=region, language=language)
            except Exception as exc:
                logger.error("Failed to create research record for %r: %s", query, exc)
                return {
                    "success": False,
                    "research_id": None,
                    "error": f"Failed to create research record: {exc}",
                }

            if not self._repo.update_keywords(record.id, keywords):
                return {
                    "success": False,
                    "research_id": record.id,
                    "error": "Failed to save keywords to the research record.",
                }

            return {"success": True, "research_id": record.id, "error": None}

        except Exception as exc:
            logger.error("Keyword research failed for %r: %s", query, exc)
            return {"success": False, "research_id": None, "error": str(exc)}
