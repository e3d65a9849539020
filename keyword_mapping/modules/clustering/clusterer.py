"""Semantic keyword clustering via the LLM, plus per-cluster volume aggregation."""

import logging
from typing import Any, Iterable, Optional

from keyword_mapping.models.keyword import ClusterItem, KeywordVolumeItem
from keyword_mapping.utils.text_processing import normalize_keyword

logger = logging.getLogger(__name__)

MIN_CLUSTERING_KEYWORDS = 5
MAX_CLUSTERING_KEYWORDS = 80
ALLOWED_MODELS = ("gpt-4o", "gpt-4o-mini")
DEFAULT_MODEL = "gpt-4o-mini"

CLUSTERING_SYSTEM_PROMPT = (
    "You are an expert keyword clustering assistant. "
    "Respond ONLY with a valid JSON object."
)


def validate_clusters(data: Any) -> dict[str, list[str]]:
    """Check the ``{"clusters": {name: [keyword, ...]}}`` shape.

    Raises:
        ValueError: The payload does not have that shape.
    """
    if not isinstance(data, dict) or not isinstance(data.get("clusters"), dict):
        raise ValueError("Clustering response must be an object with a 'clusters' object.")
    clusters: dict[str, list[str]] = {}
    for name, members in data["clusters"].items():
        if not isinstance(name, str) or not name.strip():
            raise ValueError("Cluster names must be non-empty strings.")
        if not isinstance(members, list) or not all(isinstance(m, str) for m in members):
            raise ValueError(f"Cluster {name!r} must map to a list of strings.")
        clusters[name.strip()] = [m.strip() for m in members if m.strip()]
    return clusters


def build_clusters_with_volume(
    clusters: dict[str, list[str]], keywords: Iterable[KeywordVolumeItem]
) -> list[ClusterItem]:
    """Attach volumes to clustered keywords.

    Each member is looked up by normalized text in *keywords*; members the
    record does not know get volume 0. Clusters are returned in the
    order the model produced them.
    """
    by_key: dict[str, KeywordVolumeItem] = {}
    for item in keywords:
        by_key.setdefault(item.key, item)

    items: list[ClusterItem] = []
    for name, members in clusters.items():
        cluster_keywords = []
        for member in members:
            known = by_key.get(normalize_keyword(member))
            cluster_keywords.append(
                KeywordVolumeItem(
                    text=member,
                    search_volume=known.search_volume if known else 0,
                    competition=known.competition if known else None,
                    competition_index=known.competition_index if known else None,
                    cpc=known.cpc if known else None,
                )
            )
        items.append(ClusterItem(cluster_name=name, keywords=cluster_keywords))
    return items


class SemanticClusterer:
    """Group keywords into listicle-sized topics.

    Usage::

        clusterer = SemanticClusterer(llm_client)
        result = await clusterer.cluster(["matcha latte", "matcha cake", ...])
        result["clusters"]  # {"Matcha drinks": ["matcha latte", ...], ...}
    """

    def __init__(
        self,
        llm_client=None,
        min_keywords: int = MIN_CLUSTERING_KEYWORDS,
        max_keywords: int = MAX_CLUSTERING_KEYWORDS,
        default_model: str = DEFAULT_MODEL,
    ):
        if llm_client is None:
            from keyword_mapping.integrations.llm_client import LLMClient
            llm_client = LLMClient()
        self._llm = llm_client
        self.min_keywords = min_keywords
        self._max_keywords = max_keywords
        self._default_model = default_model

    async def cluster(
        self, keywords: list[str], model: Optional[str] = None
    ) -> dict[str, dict[str, list[str]]]:
        """Return ``{"clusters": {name: [keyword, ...]}}``.

        Raises:
            ValueError: Too few keywords, an unsupported model, or a
                        malformed model response.
        """
        keywords = [k.strip() for k in keywords if k and k.strip()]
        if len(keywords) < self.min_keywords:
            raise ValueError(
                f"At least {self.min_keywords} keywords are required for clustering "
                f"(got {len(keywords)})."
            )
        model = model or self._default_model
        if model not in ALLOWED_MODELS:
            raise ValueError(f"Unsupported clustering model: {model!r}")

        limited = keywords[: self._max_keywords]
        if len(limited) < len(keywords):
            logger.info("Clustering input capped: %d -> %d", len(keywords), len(limited))

        prompt = (
            "Group the following keywords into semantic topics.\n\n"
            "Two keywords belong together when they could be covered as items "
            "of the same listicle-style article; this is about content, not SEO "
            "metrics. Avoid overly generic cluster names such as \"Basics\".\n\n"
            "Keywords:\n"
            + ", ".join(limited) + "\n\n"
            "Return a JSON object in exactly this format:\n"
            "{\n"
            "  \"clusters\": {\n"
            "    \"Topic name 1\": [\"keyword 1\", \"keyword 2\"],\n"
            "    \"Topic name 2\": [\"keyword 3\", \"keyword 4\"]\n"
            "  }\n"
            "}\n\n"
            "Rules:\n"
            "1. Topic names are short and specific.\n"
            "2. Every cluster holds at least 2 keywords.\n"
            "3. Use the keywords exactly as given.\n"
            "4. Return only the JSON object, no commentary."
        )
        logger.info("Clustering %d keywords with %s", len(limited), model)
        data = await self._llm.generate_json(
            prompt,
            system_prompt=CLUSTERING_SYSTEM_PROMPT,
            model=model,
            use_cache=False,
        )
        clusters = validate_clusters(data)
        logger.info("Clustering produced %d clusters", len(clusters))
        return {"clusters": clusters}
