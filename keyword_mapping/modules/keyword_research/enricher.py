"""Best-effort search-volume enrichment for the prioritized keywords."""

import logging
from typing import Optional

from keyword_mapping.models.keyword import KeywordVolumeItem

logger = logging.getLogger(__name__)


class VolumeEnricher:
    """Wrap a volume client so that a failed lookup means "no data", never an error."""

    def __init__(self, volume_client):
        self._client = volume_client

    async def enrich(
        self,
        keywords: list[str],
        region: str,
        language: str,
        source_url: Optional[str] = None,
    ) -> list[KeywordVolumeItem]:
        if not keywords:
            return []
        try:
            response = await self._client.lookup(keywords, region, language, source_url=source_url)
        except Exception as exc:
            logger.warning("Volume lookup raised for %d keywords: %s", len(keywords), exc)
            return []

        if not isinstance(response, dict):
            logger.warning("Volume lookup returned %s", type(response).__name__)
            return []
        if response.get("error"):
            logger.warning("Volume lookup error: %s", response["error"])
            return []

        items = [
            KeywordVolumeItem.from_dict(row)
            for row in response.get("results") or []
            if isinstance(row, dict)
        ]
        items = [item for item in items if item.text]
        logger.info("Volume data for %d of %d requested keywords", len(items), len(keywords))
        return items
