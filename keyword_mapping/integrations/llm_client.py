"""Async LLM client: OpenAI chat completions first, Google Gemini as fallback."""

import asyncio
import hashlib
import json
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, Optional

import openai
import google.generativeai as genai

from keyword_mapping.utils.rate_limiter import RateLimiter
from keyword_mapping.utils.text_processing import strip_code_fences

logger = logging.getLogger(__name__)


@dataclass
class UsageStats:
    """Token usage and estimated spend."""
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_requests: int = 0
    total_cost_usd: float = 0.0
    monthly_cost_usd: float = 0.0
    month_start: float = field(default_factory=time.time)

    def add_usage(self, input_tokens: int, output_tokens: int,
                  cost_per_1k_input: float = 0.00015,
                  cost_per_1k_output: float = 0.0006) -> float:
        """Record one call and return its cost."""
        cost = (input_tokens / 1000) * cost_per_1k_input + \
               (output_tokens / 1000) * cost_per_1k_output
        self.total_input_tokens += input_tokens
        self.total_output_tokens += output_tokens
        self.total_requests += 1
        self.total_cost_usd += cost
        self.monthly_cost_usd += cost
        return cost


class ResponseCache:
    """In-memory cache of completions keyed by model, prompt and settings."""

    def __init__(self, max_size: int = 2000, ttl_hours: int = 24):
        self._cache: dict[str, tuple[float, str]] = {}
        self._max_size = max_size
        self._ttl_seconds = ttl_hours * 3600

    @staticmethod
    def _make_key(prompt: str, model: str, **kwargs) -> str:
        raw = f"{model}:{prompt}:{json.dumps(kwargs, sort_keys=True)}"
        return hashlib.sha256(raw.encode()).hexdigest()

    def get(self, prompt: str, model: str, **kwargs) -> Optional[str]:
        key = self._make_key(prompt, model, **kwargs)
        entry = self._cache.get(key)
        if entry is None:
            return None
        ts, value = entry
        if time.time() - ts < self._ttl_seconds:
            return value
        del self._cache[key]
        return None

    def set(self, prompt: str, model: str, value: str, **kwargs) -> None:
        if len(self._cache) >= self._max_size:
            oldest_key = min(self._cache, key=lambda k: self._cache[k][0])
            del self._cache[oldest_key]
        self._cache[self._make_key(prompt, model, **kwargs)] = (time.time(), value)


class LLMClient:
    """Unified async LLM client used for suggestions, clustering and personas.

    Usage::

        client = LLMClient()
        text = await client.generate_text("Describe this audience")
        data = await client.generate_json("Return a JSON array of keywords")
    """

    def __init__(
        self,
        openai_api_key: Optional[str] = None,
        gemini_api_key: Optional[str] = None,
        openai_model: str = "gpt-4o-mini",
        gemini_model: str = "gemini-2.0-flash",
        max_tokens: int = 4096,
        temperature: float = 0.7,
        timeout: int = 60,
        openai_rpm: int = 60,
        gemini_rpm: int = 15,
        cache_enabled: bool = True,
        cache_ttl_hours: int = 24,
        cache_max_size: int = 2000,
        max_monthly_budget: float = 50.0,
        budget_warning_pct: float = 80.0,
    ):
        self._openai_key = openai_api_key or os.getenv("OPENAI_API_KEY", "")
        self._gemini_key = gemini_api_key or os.getenv("GEMINI_API_KEY", "")

        self._openai_model = openai_model
        self._gemini_model = gemini_model
        self._max_tokens = max_tokens
        self._temperature = temperature

        self._openai_client: Optional[openai.AsyncOpenAI] = None
        if self._openai_key:
            self._openai_client = openai.AsyncOpenAI(
                api_key=self._openai_key, timeout=timeout
            )
        if self._gemini_key:
            genai.configure(api_key=self._gemini_key)

        self._openai_limiter = RateLimiter(openai_rpm, name="openai")
        self._gemini_limiter = RateLimiter(gemini_rpm, name="gemini")

        self._cache_enabled = cache_enabled
        self._cache = ResponseCache(max_size=cache_max_size, ttl_hours=cache_ttl_hours)

        self.usage = UsageStats()
        self._max_monthly_budget = max_monthly_budget
        self._budget_warning_pct = budget_warning_pct

    @property
    def is_configured(self) -> bool:
        """True when at least one provider has credentials."""
        return bool(self._openai_client or self._gemini_key)

    @property
    def providers(self) -> list[str]:
        names = []
        if self._openai_client:
            names.append("OpenAI")
        if self._gemini_key:
            names.append("Gemini")
        return names

    @property
    def default_model(self) -> str:
        return self._openai_model

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def generate_text(
        self,
        prompt: str,
        system_prompt: str = "You are a helpful SEO assistant.",
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        use_cache: bool = True,
        model: Optional[str] = None,
    ) -> str:
        """Return the completion text.

        ``model`` overrides the OpenAI model for this call only; the Gemini
        fallback always uses its configured model.

        Raises:
            RuntimeError: No provider is configured or the budget is spent.
        """
        max_tokens = max_tokens or self._max_tokens
        temperature = temperature if temperature is not None else self._temperature
        openai_model = model or self._openai_model

        if use_cache and self._cache_enabled:
            cached = self._cache.get(prompt, openai_model,
                                     system=system_prompt, temp=temperature)
            if cached is not None:
                logger.debug("LLM cache hit (prompt len=%d)", len(prompt))
                return cached

        if self._openai_client:
            try:
                result = await self._call_openai(
                    prompt, system_prompt, max_tokens, temperature, openai_model
                )
                if use_cache and self._cache_enabled:
                    self._cache.set(prompt, openai_model, result,
                                    system=system_prompt, temp=temperature)
                return result
            except Exception as exc:
                if not self._gemini_key:
                    raise
                logger.warning("OpenAI call failed: %s; falling back to Gemini", exc)

        if self._gemini_key:
            try:
                result = await self._call_gemini(
                    prompt, system_prompt, max_tokens, temperature
                )
                if use_cache and self._cache_enabled:
                    self._cache.set(prompt, openai_model, result,
                                    system=system_prompt, temp=temperature)
                return result
            except Exception as exc:
                logger.error("Gemini call failed: %s", exc)
                raise

        raise RuntimeError("No LLM provider configured. Set OPENAI_API_KEY or GEMINI_API_KEY.")

    async def generate_json(
        self,
        prompt: str,
        system_prompt: str = "You are a helpful assistant. Respond ONLY with valid JSON.",
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        model: Optional[str] = None,
        use_cache: bool = True,
    ) -> Any:
        """Generate a completion and parse it as JSON.

        Markdown code fences around the payload are removed first. Only
        responses that parse are written to the cache.

        Raises:
            ValueError: The response is not valid JSON.
        """
        temperature = temperature if temperature is not None else 0.3
        openai_model = model or self._openai_model
        caching = use_cache and self._cache_enabled

        if caching:
            cached = self._cache.get(prompt, openai_model,
                                     system=system_prompt, temp=temperature, fmt="json")
            if cached is not None:
                logger.debug("LLM cache hit (prompt len=%d)", len(prompt))
                return json.loads(strip_code_fences(cached))

        raw = await self.generate_text(
            prompt=prompt,
            system_prompt=system_prompt,
            max_tokens=max_tokens,
            temperature=temperature,
            use_cache=False,
            model=model,
        )
        try:
            data = json.loads(strip_code_fences(raw))
        except json.JSONDecodeError as exc:
            logger.error("Failed to parse JSON from LLM response: %s", exc)
            logger.debug("Raw response: %s", raw[:500])
            raise ValueError(f"LLM returned invalid JSON: {exc}") from exc

        if caching:
            self._cache.set(prompt, openai_model, raw,
                            system=system_prompt, temp=temperature, fmt="json")
        return data

    # ------------------------------------------------------------------
    # Providers
    # ------------------------------------------------------------------

    async def _call_openai(
        self, prompt: str, system_prompt: str,
        max_tokens: int, temperature: float, model: str,
    ) -> str:
        self._check_budget()
        await self._openai_limiter.acquire()

        response = await self._openai_client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            max_tokens=max_tokens,
            temperature=temperature,
        )
        content = response.choices[0].message.content or ""
        usage = response.usage
        if usage:
            cost = self.usage.add_usage(usage.prompt_tokens, usage.completion_tokens)
            logger.info(
                "OpenAI %s: %d in / %d out tokens, $%.6f",
                model, usage.prompt_tokens, usage.completion_tokens, cost,
            )
        return content.strip()

    async def _call_gemini(
        self, prompt: str, system_prompt: str,
        max_tokens: int, temperature: float,
    ) -> str:
        await self._gemini_limiter.acquire()

        model = genai.GenerativeModel(
            model_name=self._gemini_model,
            system_instruction=system_prompt,
            generation_config=genai.types.GenerationConfig(
                max_output_tokens=max_tokens,
                temperature=temperature,
            ),
        )
        # The Gemini SDK is synchronous; keep the event loop free.
        loop = asyncio.get_running_loop()
        response = await loop.run_in_executor(None, model.generate_content, prompt)
        text = response.text or ""
        logger.info("Gemini call completed (len=%d)", len(text))
        return text.strip()

    def _check_budget(self) -> None:
        """Raise once the monthly budget is spent; warn past the threshold."""
        if self.usage.monthly_cost_usd >= self._max_monthly_budget:
            raise RuntimeError(
                f"Monthly LLM budget exceeded: ${self.usage.monthly_cost_usd:.2f} "
                f">= ${self._max_monthly_budget:.2f}"
            )
        warning_threshold = self._max_monthly_budget * (self._budget_warning_pct / 100)
        if self.usage.monthly_cost_usd >= warning_threshold:
            logger.warning(
                "LLM budget warning: $%.2f / $%.2f",
                self.usage.monthly_cost_usd, self._max_monthly_budget,
            )

    def get_usage_summary(self) -> dict[str, Any]:
        return {
            "total_requests": self.usage.total_requests,
            "total_input_tokens": self.usage.total_input_tokens,
            "total_output_tokens": self.usage.total_output_tokens,
            "total_cost_usd": round(self.usage.total_cost_usd, 6),
            "monthly_cost_usd": round(self.usage.monthly_cost_usd, 6),
            "max_monthly_budget": self._max_monthly_budget,
        }
