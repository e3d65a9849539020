"""Google search-autosuggest client with alphabet / symbol expansion."""

import asyncio
import logging
import string
from typing import Any
from urllib.parse import urlparse

import aiohttp

from keyword_mapping.utils.helpers import unique_preserving_order
from keyword_mapping.utils.rate_limiter import RateLimiter
from keyword_mapping.utils.text_processing import clean_keyword

logger = logging.getLogger(__name__)

AUTOSUGGEST_URL = "https://suggestqueries.google.com/complete/search"
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)
ALPHABET = tuple(string.ascii_lowercase)
SYMBOLS = ("?", "@")
RELEVANCE_KEY = "google:suggestrelevance"
GENERIC_DOMAIN_PARTS = {"www", "com", "org", "net", "edu", "gov", "io", "co"}
MAX_URL_SEEDS = 5


def parse_autosuggest_response(data: Any, relevance_threshold: int = 600) -> list[str]:
    """Extract suggestions from a ``client=chrome`` autosuggest payload.

    The payload is ``[query, suggestions, descriptions, _, metadata]``.
    When ``metadata`` carries a relevance list of matching length, only
    suggestions scoring at least *relevance_threshold* are kept; without
    usable relevance data every suggestion is returned.
    """
    if not isinstance(data, list) or len(data) < 2 or not isinstance(data[1], list):
        return []
    suggestions = [s for s in data[1] if isinstance(s, str)]
    if len(suggestions) != len(data[1]):
        return suggestions

    meta = data[4] if len(data) > 4 and isinstance(data[4], dict) else None
    scores = meta.get(RELEVANCE_KEY) if meta else None
    if not isinstance(scores, list):
        return suggestions
    if len(scores) != len(suggestions):
        logger.debug("Autosuggest relevance length mismatch; keeping all suggestions")
        return suggestions
    return [
        s for s, score in zip(suggestions, scores)
        if isinstance(score, (int, float)) and score >= relevance_threshold
    ]


def url_seed_terms(url: str, limit: int = MAX_URL_SEEDS) -> list[str]:
    """Derive search seeds from a URL's domain labels and path segments.

    Examples:
        >>> url_seed_terms("https://www.matcha-shop.com/green-tea/latte")
        ['matcha-shop', 'green tea', 'latte']
    """
    parsed = urlparse(url)
    host = (parsed.hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    domain_parts = [p for p in host.split(".") if p and p not in GENERIC_DOMAIN_PARTS]
    path_parts = [
        p.replace("-", " ").replace("_", " ")
        for p in parsed.path.split("/")
        if len(p) > 2
    ]
    return unique_preserving_order(domain_parts + path_parts)[:limit]


class GoogleAutosuggestClient:
    """Fetch autocomplete suggestions for a seed query.

    Usage::

        client = GoogleAutosuggestClient()
        result = await client.suggest("matcha", region="TW", language="zh-TW")
        result["suggestions"]
    """

    def __init__(
        self,
        relevance_threshold: int = 600,
        request_timeout: int = 10,
        max_concurrency: int = 5,
        requests_per_minute: int = 120,
        request_delay: float = 0.05,
        user_agent: str = DEFAULT_USER_AGENT,
    ):
        self._relevance_threshold = relevance_threshold
        self._timeout = aiohttp.ClientTimeout(total=request_timeout)
        self._semaphore = asyncio.Semaphore(max(1, max_concurrency))
        self._limiter = RateLimiter(requests_per_minute, min_interval=request_delay,
                                    name="autosuggest")
        self._headers = {"User-Agent": user_agent}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def suggest(
        self,
        query: str,
        region: str = "TW",
        language: str = "zh-TW",
        use_alphabet: bool = True,
        use_symbols: bool = False,
    ) -> dict[str, Any]:
        """Return ``{"suggestions": [...]}`` or an empty list plus ``error``.

        The bare query is always fetched; ``use_alphabet`` adds
        ``"<query> a"`` .. ``"<query> z"`` and ``use_symbols`` adds the
        symbol suffixes.
        """
        seed = clean_keyword(query)
        if not seed:
            return {"suggestions": [], "error": "Query must not be empty."}

        prefixes = [seed]
        if use_alphabet:
            prefixes.extend(f"{seed} {letter}" for letter in ALPHABET)
        if use_symbols:
            prefixes.extend(f"{seed} {symbol}" for symbol in SYMBOLS)

        try:
            suggestions = await self._fetch_many(prefixes, region, language)
        except Exception as exc:
            logger.warning("Autosuggest failed for %r: %s", seed, exc)
            return {"suggestions": [], "error": str(exc)}

        logger.info("Autosuggest returned %d suggestions for %r", len(suggestions), seed)
        return {"suggestions": suggestions}

    async def suggest_for_url(
        self, url: str, region: str = "TW", language: str = "zh-TW"
    ) -> dict[str, Any]:
        """Autosuggest each seed term derived from *url*."""
        if not url:
            return {"suggestions": [], "error": "URL must not be empty."}
        seeds = url_seed_terms(url)
        if not seeds:
            return {"suggestions": [], "error": "Could not extract keywords from URL."}
        try:
            suggestions = await self._fetch_many(seeds, region, language)
        except Exception as exc:
            logger.warning("URL autosuggest failed for %s: %s", url, exc)
            return {"suggestions": [], "error": str(exc)}
        return {"suggestions": suggestions}

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    async def _fetch_many(self, prefixes: list[str], region: str, language: str) -> list[str]:
        async with aiohttp.ClientSession(timeout=self._timeout, headers=self._headers) as session:
            results = await asyncio.gather(
                *(self._fetch(session, p, region, language) for p in prefixes),
                return_exceptions=True,
            )
        merged: list[str] = []
        for prefix, result in zip(prefixes, results):
            if isinstance(result, BaseException):
                logger.debug("Autosuggest prefix %r failed: %s", prefix, result)
                continue
            merged.extend(clean_keyword(s) for s in result)
        return unique_preserving_order(s for s in merged if s)

    async def _fetch(
        self, session: aiohttp.ClientSession, prefix: str, region: str, language: str
    ) -> list[str]:
        params = {"client": "chrome", "q": prefix, "gl": region, "hl": language}
        async with self._semaphore:
            await self._limiter.acquire()
            async with session.get(AUTOSUGGEST_URL, params=params) as resp:
                resp.raise_for_status()
                data = await resp.json(content_type=None)
        return parse_autosuggest_response(data, self._relevance_threshold)
