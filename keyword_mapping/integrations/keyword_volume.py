"""Google Ads keyword-planner client for monthly search volume lookups."""

import asyncio
import logging
import os
import re
import time
from typing import Any, Optional

import aiohttp

from keyword_mapping.utils.helpers import chunked, unique_preserving_order
from keyword_mapping.utils.rate_limiter import RateLimiter
from keyword_mapping.utils.text_processing import clean_keyword, spaced_variation

logger = logging.getLogger(__name__)

TOKEN_URL = "https://oauth2.googleapis.com/token"
ADS_API_URL = "https://googleads.googleapis.com/{version}/customers/{customer_id}:generateKeywordIdeas"

# Google Ads geo target constants.
LOCATION_CODES: dict[str, int] = {
    "TW": 2158, "HK": 2344, "US": 2840, "JP": 2392, "UK": 2826, "GB": 2826,
    "CN": 2156, "AU": 2036, "CA": 2124, "SG": 2702, "MY": 2458, "DE": 2276,
    "FR": 2250, "KR": 2410, "IN": 2356,
}

# Google Ads language constants.
LANGUAGE_CODES: dict[str, int] = {
    "zh_TW": 1018, "zh_HK": 1018, "zh_CN": 1017, "en": 1000, "ja": 1005,
    "ko": 1012, "ms": 1102, "fr": 1002, "de": 1001, "es": 1003,
}
DEFAULT_LANGUAGE = "en"

# KeywordPlanCompetitionLevel, numeric and REST (string) forms.
COMPETITION_LEVELS: dict[Any, str] = {
    0: "UNSPECIFIED", 1: "UNKNOWN", 2: "LOW", 3: "MEDIUM", 4: "HIGH",
}

_RETRY_IN_RE = re.compile(r"Retry in (\d+) seconds?", re.IGNORECASE)


class VolumeLookupError(RuntimeError):
    """A batch request failed permanently."""


class RateLimitedError(VolumeLookupError):
    """HTTP 429 from the Ads API; ``retry_after`` is in seconds."""

    def __init__(self, message: str, retry_after: float):
        super().__init__(message)
        self.retry_after = retry_after


def resolve_location_id(region: str) -> Optional[int]:
    return LOCATION_CODES.get((region or "").strip().upper())


def resolve_language_id(language: str) -> int:
    """Map ``zh-TW`` / ``zh_TW`` / ``en`` style codes; unknown codes fall back to English."""
    code = (language or "").strip().replace("-", "_")
    if code in LANGUAGE_CODES:
        return LANGUAGE_CODES[code]
    base = code.split("_")[0].lower()
    return LANGUAGE_CODES.get(base, LANGUAGE_CODES[DEFAULT_LANGUAGE])


def competition_label(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value.upper()
    return COMPETITION_LEVELS.get(value, str(value))


def parse_keyword_idea(idea: dict[str, Any]) -> Optional[dict[str, Any]]:
    """Convert one ``KeywordIdea`` result into a volume result dict.

    ``avgMonthlySearches`` arrives as a string in the REST API; missing or
    unparseable volumes become 0. ``lowTopOfPageBidMicros`` is converted to
    currency units rounded to two decimals.
    """
    text = clean_keyword(idea.get("text") or "")
    if not text:
        return None
    metrics = idea.get("keywordIdeaMetrics") or {}

    try:
        volume = int(metrics.get("avgMonthlySearches") or 0)
    except (TypeError, ValueError):
        volume = 0

    cpc = None
    raw_bid = metrics.get("lowTopOfPageBidMicros")
    if raw_bid is not None:
        try:
            cpc = round(float(raw_bid) / 1_000_000, 2)
        except (TypeError, ValueError):
            cpc = None

    competition_index = None
    raw_index = metrics.get("competitionIndex")
    if raw_index is not None:
        try:
            competition_index = round(float(raw_index), 2)
        except (TypeError, ValueError):
            competition_index = None

    return {
        "text": text,
        "search_volume": max(volume, 0),
        "competition": competition_label(metrics.get("competition")),
        "competition_index": competition_index,
        "cpc": cpc,
    }


def expand_query_keywords(keywords: list[str]) -> list[str]:
    """Cleaned, de-duplicated keywords plus spaced forms of short CJK keywords."""
    base = unique_preserving_order(k for k in (clean_keyword(k) for k in keywords) if k)
    variations = [v for v in (spaced_variation(k) for k in base) if v]
    return unique_preserving_order(base + variations)


class GoogleAdsVolumeClient:
    """Look up search volume for a batch of keywords.

    Credentials are read from ``GOOGLE_ADS_*`` environment variables when
    not passed explicitly.

    Usage::

        client = GoogleAdsVolumeClient()
        result = await client.lookup(["matcha", "matcha latte"], "TW", "zh-TW")
        result["results"]
    """

    def __init__(
        self,
        developer_token: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        refresh_token: Optional[str] = None,
        login_customer_id: Optional[str] = None,
        customer_id: Optional[str] = None,
        api_version: str = "v19",
        batch_size: int = 20,
        max_retries: int = 3,
        batch_delay: float = 0.25,
        default_retry_delay: float = 5.0,
        request_timeout: int = 30,
        requests_per_minute: int = 60,
    ):
        self._developer_token = developer_token or os.getenv("GOOGLE_ADS_DEVELOPER_TOKEN", "")
        self._client_id = client_id or os.getenv("GOOGLE_ADS_CLIENT_ID", "")
        self._client_secret = client_secret or os.getenv("GOOGLE_ADS_CLIENT_SECRET", "")
        self._refresh_token = refresh_token or os.getenv("GOOGLE_ADS_REFRESH_TOKEN", "")
        self._login_customer_id = login_customer_id or os.getenv("GOOGLE_ADS_LOGIN_CUSTOMER_ID", "")
        self._customer_id = (customer_id or os.getenv("GOOGLE_ADS_CUSTOMER_ID", "")).replace("-", "")

        self._api_version = api_version
        self._batch_size = max(1, batch_size)
        self._max_retries = max(1, max_retries)
        self._default_retry_delay = default_retry_delay
        self._timeout = aiohttp.ClientTimeout(total=request_timeout)
        self._limiter = RateLimiter(requests_per_minute, min_interval=batch_delay,
                                    name="google-ads")

        self._access_token: Optional[str] = None
        self._token_expires_at = 0.0

    @property
    def is_configured(self) -> bool:
        return all([
            self._developer_token, self._client_id, self._client_secret,
            self._refresh_token, self._customer_id,
        ])

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def lookup(
        self,
        keywords: list[str],
        region: str,
        language: str,
        source_url: Optional[str] = None,
    ) -> dict[str, Any]:
        """Return ``{"results": [...]}`` or ``{"results": [], "error": ...}``.

        Failed batches are skipped; the call only errors when nothing can
        be requested at all (bad region, missing credentials, auth).
        """
        location_id = resolve_location_id(region)
        if location_id is None:
            return {"results": [], "error": f"Unsupported region code: {region!r}"}
        if not self.is_configured:
            return {"results": [], "error": "Missing Google Ads API credentials."}
        language_id = resolve_language_id(language)

        query_keywords = expand_query_keywords(keywords)
        if not query_keywords:
            return {"results": []}
        if source_url:
            logger.debug("Volume lookup for %s", source_url)

        results: list[dict[str, Any]] = []
        seen: set[str] = set()
        batches = chunked(query_keywords, self._batch_size)
        try:
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                for index, batch in enumerate(batches, start=1):
                    try:
                        ideas = await self._fetch_with_retry(
                            session, batch, location_id, language_id
                        )
                    except VolumeLookupError as exc:
                        logger.warning("Batch %d/%d skipped: %s", index, len(batches), exc)
                        continue
                    for idea in ideas:
                        parsed = parse_keyword_idea(idea)
                        if parsed is None or parsed["text"] in seen:
                            continue
                        seen.add(parsed["text"])
                        results.append(parsed)
        except Exception as exc:
            logger.error("Volume lookup failed: %s", exc)
            return {"results": [], "error": str(exc)}

        logger.info(
            "Volume lookup: %d keywords in %d batches -> %d results",
            len(query_keywords), len(batches), len(results),
        )
        return {"results": results}

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    async def _get_access_token(self, session: aiohttp.ClientSession) -> str:
        if self._access_token and time.time() < self._token_expires_at - 60:
            return self._access_token
        data = {
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "refresh_token": self._refresh_token,
            "grant_type": "refresh_token",
        }
        async with session.post(TOKEN_URL, data=data) as resp:
            if resp.status != 200:
                raise RuntimeError(f"Failed to get access token: HTTP {resp.status}")
            payload = await resp.json(content_type=None)
        self._access_token = payload["access_token"]
        self._token_expires_at = time.time() + float(payload.get("expires_in", 3600))
        return self._access_token

    async def _fetch_with_retry(
        self,
        session: aiohttp.ClientSession,
        batch: list[str],
        location_id: int,
        language_id: int,
    ) -> list[dict[str, Any]]:
        last_error: Optional[Exception] = None
        for attempt in range(1, self._max_retries + 1):
            try:
                return await self._fetch_ideas(session, batch, location_id, language_id)
            except RateLimitedError as exc:
                last_error = exc
                if attempt < self._max_retries:
                    logger.info(
                        "Rate limited (attempt %d/%d); retrying in %.1fs",
                        attempt, self._max_retries, exc.retry_after,
                    )
                    await asyncio.sleep(exc.retry_after)
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                raise VolumeLookupError(f"Request failed: {exc}") from exc
        raise VolumeLookupError(f"Giving up after {self._max_retries} attempts: {last_error}")

    async def _fetch_ideas(
        self,
        session: aiohttp.ClientSession,
        batch: list[str],
        location_id: int,
        language_id: int,
    ) -> list[dict[str, Any]]:
        token = await self._get_access_token(session)
        url = ADS_API_URL.format(version=self._api_version, customer_id=self._customer_id)
        headers = {
            "Authorization": f"Bearer {token}",
            "developer-token": self._developer_token,
        }
        if self._login_customer_id:
            headers["login-customer-id"] = self._login_customer_id.replace("-", "")
        body = {
            "language": f"languageConstants/{language_id}",
            "geoTargetConstants": [f"geoTargetConstants/{location_id}"],
            "includeAdultKeywords": False,
            "keywordPlanNetwork": "GOOGLE_SEARCH",
            "keywordSeed": {"keywords": batch},
        }

        await self._limiter.acquire()
        async with session.post(url, json=body, headers=headers) as resp:
            if resp.status == 429:
                text = await resp.text()
                match = _RETRY_IN_RE.search(text)
                delay = float(match.group(1)) + 0.5 if match else self._default_retry_delay
                raise RateLimitedError("HTTP 429 from Google Ads API", max(delay, 1.0))
            if resp.status != 200:
                text = await resp.text()
                raise VolumeLookupError(f"HTTP {resp.status}: {text[:300]}")
            payload = await resp.json(content_type=None)
        return payload.get("results") or []
