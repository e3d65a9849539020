"""Pick which candidates get a volume lookup when the lookup is capped."""

import logging
from typing import Iterable

from keyword_mapping.utils.text_processing import clean_keyword, normalize_keyword

logger = logging.getLogger(__name__)

MAX_VOLUME_CHECK_KEYWORDS = 60


def prioritize_for_volume_check(
    candidates: Iterable[str],
    ai_suggestions: Iterable[str],
    autosuggestions: Iterable[str],
    limit: int = MAX_VOLUME_CHECK_KEYWORDS,
) -> list[str]:
    """Select at most *limit* keywords, highest-value sources first.

    Tier order: LLM suggestions, then autosuggest results, then whatever
    is left of the candidate pool. Within a tier the source order is kept.
    Empty entries and keys already selected are skipped.
    """
    if limit <= 0:
        return []

    selected: list[str] = []
    seen: set[str] = set()
    for tier in (ai_suggestions, autosuggestions, candidates):
        for raw in tier:
            if len(selected) >= limit:
                break
            text = clean_keyword(raw)
            key = normalize_keyword(text)
            if not key or key in seen:
                continue
            seen.add(key)
            selected.append(text)
        if len(selected) >= limit:
            break

    logger.debug("Prioritized %d keywords for volume check (limit=%d)", len(selected), limit)
    return selected
