"""Reconcile volume-lookup results with the candidate pool under the zero-volume policy."""

import logging
from typing import Iterable

from keyword_mapping.models.keyword import KeywordVolumeItem
from keyword_mapping.utils.text_processing import normalize_keyword

logger = logging.getLogger(__name__)


def _keep_higher(merged: dict[str, KeywordVolumeItem], item: KeywordVolumeItem) -> None:
    key = item.key
    existing = merged.get(key)
    if existing is None or item.search_volume > existing.search_volume:
        merged[key] = item


def dedupe_keywords(items: Iterable[KeywordVolumeItem]) -> list[KeywordVolumeItem]:
    """Collapse entries sharing a normalized key.

    The higher-volume entry wins; on a tie the earlier one is kept. Order
    follows the first appearance of each key. Entries with empty text
    are dropped.
    """
    merged: dict[str, KeywordVolumeItem] = {}
    for item in items:
        if not item.key:
            continue
        _keep_higher(merged, item)
    return list(merged.values())


def merge_volume_results(
    volume_results: Iterable[KeywordVolumeItem],
    candidates: Iterable[str],
    filter_zero_volume: bool,
) -> list[KeywordVolumeItem]:
    """Build the final keyword list for a research record.

    Args:
        volume_results: Items returned by the volume lookup (any order,
                        possibly with duplicates or variant spellings).
        candidates: The full candidate pool, volume-checked or not.
        filter_zero_volume: Drop zero-volume results and do not back-fill
                            unchecked candidates.

    Returns:
        Keywords with unique normalized keys, in first-seen order. With
        the filter off, every candidate missing from the volume results
        is appended with ``search_volume=0``.
    """
    merged: dict[str, KeywordVolumeItem] = {}
    for item in volume_results:
        if not item.text or not item.key:
            continue
        if filter_zero_volume and item.search_volume <= 0:
            continue
        _keep_higher(merged, item)

    if not filter_zero_volume:
        for candidate in candidates:
            key = normalize_keyword(candidate)
            if not key or key in merged:
                continue
            merged[key] = KeywordVolumeItem(text=candidate.strip(), search_volume=0)

    logger.debug(
        "Merged %d keywords (filter_zero_volume=%s)", len(merged), filter_zero_volume
    )
    return list(merged.values())


def sort_by_volume(items: Iterable[KeywordVolumeItem]) -> list[KeywordVolumeItem]:
    """Highest volume first; stable for equal volumes."""
    return sorted(items, key=lambda item: item.search_volume, reverse=True)
