"""General-purpose helper utilities for keyword lists."""

from typing import Any, Iterable, Optional


def format_number(value: Optional[int | float]) -> str:
    """Format a number with K/M suffixes for compact display.

    Examples:
        >>> format_number(1500)
        '1.5K'
        >>> format_number(2_300_000)
        '2.3M'
        >>> format_number(None)
        '-'
    """
    if value is None:
        return "-"
    if abs(value) >= 1_000_000:
        return f"{value / 1_000_000:.1f}M"
    if abs(value) >= 1_000:
        return f"{value / 1_000:.1f}K"
    if isinstance(value, float):
        return f"{value:.2f}"
    return str(value)


def safe_int(value: Any, default: int = 0) -> int:
    """Coerce *value* to a non-negative int, falling back to *default*."""
    if value is None or isinstance(value, bool):
        return default
    try:
        number = int(float(value))
    except (TypeError, ValueError):
        return default
    return number if number >= 0 else default


def unique_preserving_order(items: Iterable[str]) -> list[str]:
    """Drop exact duplicates while keeping first-seen order."""
    seen: set[str] = set()
    result: list[str] = []
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        result.append(item)
    return result


def chunked(items: list[Any], size: int) -> list[list[Any]]:
    """Split *items* into consecutive chunks of at most *size* elements."""
    if size <= 0:
        raise ValueError("size must be positive")
    return [items[i:i + size] for i in range(0, len(items), size)]
