"""Size guardrails for content returned by get_search_content."""

DEFAULT_GET_CONTENT_MAX_CHARS = 30_000
MAX_GET_CONTENT_CHARS = 100_000


def effective_limit(max_chars: int | float | None = None) -> int:
    """Clamp a requested limit to [1, MAX_GET_CONTENT_CHARS]; None means the default."""
    if max_chars is None:
        return DEFAULT_GET_CONTENT_MAX_CHARS
    return int(min(max(1, max_chars), MAX_GET_CONTENT_CHARS))


def truncate_content(content: str, max_chars: int | float | None = None) -> str:
    """
    Truncate content to a character limit with an informative trailer.

    Args:
        content: Full text
        max_chars: Caller-requested maximum (clamped to 1..100,000)

    Returns:
        The content unchanged if it fits, otherwise the prefix plus a trailer
        stating the limit applied and the original length
    """
    limit = effective_limit(max_chars)

    if len(content) <= limit:
        return content

    return (
        f"{content[:limit]}\n\n[Content truncated at {limit} chars. "
        f"Total: {len(content)} chars. Use a higher maxChars to retrieve more.]"
    )
