"""Text processing utilities for keyword normalization and LLM output cleanup."""

import re
from urllib.parse import urlparse

_WHITESPACE_RE = re.compile(r"\s+")
_CJK_RE = re.compile(
    r"^[\u3040-\u30ff\u3400-\u4dbf\u4e00-\u9fff\uac00-\ud7af\uf900-\ufaff]+$"
)


def normalize_keyword(text: str) -> str:
    """Return the identity key for a keyword.

    Lowercases the text and removes every whitespace character, so
    ``"Matcha Latte"`` and ``"matchalatte"`` share one key. Applying the
    function twice gives the same result as applying it once.

    Examples:
        >>> normalize_keyword("  Matcha  Latte ")
        'matchalatte'
        >>> normalize_keyword("抹茶 拿鐵")
        '抹茶拿鐵'
    """
    if not text:
        return ""
    return _WHITESPACE_RE.sub("", text.lower())


def clean_keyword(text: str) -> str:
    """Trim a raw suggestion; collapse inner runs of whitespace."""
    if not text:
        return ""
    return _WHITESPACE_RE.sub(" ", str(text)).strip()


def looks_like_url(query: str) -> bool:
    """True when *query* is an http(s) URL with a host."""
    try:
        parsed = urlparse(query.strip())
    except (AttributeError, ValueError):
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence (```json ... ```) if present."""
    cleaned = (text or "").strip()
    if cleaned.startswith("```"):
        lines = cleaned.split("\n")
        lines = lines[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        cleaned = "\n".join(lines).strip()
    return cleaned


def is_cjk_only(text: str) -> bool:
    """True when *text* consists solely of CJK / kana / hangul characters."""
    return bool(text) and bool(_CJK_RE.match(text))


def spaced_variation(text: str, min_length: int = 2, max_length: int = 10) -> str | None:
    """Return the character-spaced form of a short CJK keyword.

    Keyword planners often index CJK phrases with spaces between
    characters (``"抹茶"`` -> ``"抹 茶"``). Returns ``None`` when the
    keyword is not CJK-only, already contains spaces, or is out of range.
    """
    if not text or " " in text:
        return None
    if not (min_length <= len(text) <= max_length):
        return None
    if not is_cjk_only(text):
        return None
    return " ".join(text)
