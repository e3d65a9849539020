"""Suggestion aggregation -- fan out to the LLM and autosuggest sources, build the candidate pool."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from keyword_mapping.utils.text_processing import clean_keyword, looks_like_url, normalize_keyword

logger = logging.getLogger(__name__)


@dataclass
class AggregatedSuggestions:
    """Per-source suggestions plus the merged candidate pool."""

    query: str
    ai_suggestions: list[str] = field(default_factory=list)
    autosuggestions: list[str] = field(default_factory=list)
    candidates: list[str] = field(default_factory=list)


def build_candidate_pool(query: str, *sources: list[str]) -> list[str]:
    """Seed first, then each source in order; first spelling of a key wins.

    Entries are trimmed, empties dropped and duplicates (by normalized
    key) removed.
    """
    pool: list[str] = []
    seen: set[str] = set()
    for raw in [query, *(s for source in sources for s in source)]:
        text = clean_keyword(raw)
        key = normalize_keyword(text)
        if not key or key in seen:
            continue
        seen.add(key)
        pool.append(text)
    return pool


class AISuggestionSource:
    """Ask the LLM for keywords related to a seed query.

    Always returns a list; any failure (no provider, bad JSON, wrong
    shape) yields ``[]``.
    """

    def __init__(self, llm_client=None, model: Optional[str] = None):
        if llm_client is None:
            from keyword_mapping.integrations.llm_client import LLMClient
            llm_client = LLMClient()
        self._llm = llm_client
        self._model = model

    async def suggest(
        self, query: str, region: str, language: str, count: int = 10
    ) -> list[str]:
        if not query or not query.strip():
            return []

        prompt = (
            "You are an expert keyword researcher focused on the "
            + (region or "global") + " market, writing in "
            + (language or "the query's language") + ".\n"
            "Core query: \"" + query.strip() + "\"\n\n"
            "Suggest about " + str(count) + " closely related keywords. Mix:\n"
            "1. The core topic or brand term itself, if the query contains one.\n"
            "2. Broader category or topic terms.\n"
            "3. Synonyms, related products, services, questions and long-tail "
            "combinations.\n"
            "Prefer terms likely to have real search volume that widen the "
            "coverage of the original query.\n\n"
            "Return ONLY a JSON array of strings, e.g. [\"keyword 1\", \"keyword 2\"]. "
            "No explanations."
        )
        try:
            data = await self._llm.generate_json(prompt, model=self._model)
        except Exception as exc:
            logger.warning("AI keyword suggestions failed for %r: %s", query, exc)
            return []

        if not isinstance(data, list) or not all(isinstance(item, str) for item in data):
            logger.warning("AI keyword suggestions were not a JSON array of strings")
            return []
        return [clean_keyword(item) for item in data if clean_keyword(item)]


class SuggestionAggregator:
    """Collect suggestions from every source concurrently.

    Usage::

        aggregator = SuggestionAggregator(AISuggestionSource(llm), GoogleAutosuggestClient())
        collected = await aggregator.collect("matcha", "TW", "zh-TW")
        collected.candidates
    """

    def __init__(self, ai_source, autosuggest_source, ai_suggestion_count: int = 10):
        self._ai = ai_source
        self._autosuggest = autosuggest_source
        self._ai_count = ai_suggestion_count

    async def collect(
        self,
        query: str,
        region: str,
        language: str,
        use_alphabet: bool = True,
        use_symbols: bool = False,
    ) -> AggregatedSuggestions:
        """Never raises for a failing source; its contribution is just empty."""
        query = clean_keyword(query)
        if looks_like_url(query):
            auto_call = self._autosuggest.suggest_for_url(query, region, language)
        else:
            auto_call = self._autosuggest.suggest(
                query, region, language,
                use_alphabet=use_alphabet, use_symbols=use_symbols,
            )

        ai_result, auto_result = await asyncio.gather(
            self._ai.suggest(query, region, language, self._ai_count),
            auto_call,
            return_exceptions=True,
        )
        ai_suggestions = self._as_list("ai", ai_result)
        autosuggestions = self._as_list("autosuggest", auto_result)

        # A URL seed is not itself a keyword.
        seed = "" if looks_like_url(query) else query
        candidates = build_candidate_pool(seed, ai_suggestions, autosuggestions)
        logger.info(
            "Collected %d candidates for %r (ai=%d, autosuggest=%d)",
            len(candidates), query, len(ai_suggestions), len(autosuggestions),
        )
        return AggregatedSuggestions(
            query=query,
            ai_suggestions=ai_suggestions,
            autosuggestions=autosuggestions,
            candidates=candidates,
        )

    @staticmethod
    def _as_list(source: str, result: Any) -> list[str]:
        """Normalize a source result (list, ``{"suggestions": ...}`` or exception)."""
        if isinstance(result, BaseException):
            logger.warning("Suggestion source %s failed: %s", source, result)
            return []
        if isinstance(result, dict):
            if result.get("error"):
                logger.warning("Suggestion source %s returned error: %s", source, result["error"])
            result = result.get("suggestions") or []
        if not isinstance(result, list):
            logger.warning("Suggestion source %s returned %s", source, type(result).__name__)
            return []
        return [clean_keyword(s) for s in result if isinstance(s, str) and clean_keyword(s)]
