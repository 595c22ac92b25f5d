"""SEO meta-description updates for newly linked articles."""

from __future__ import annotations

from typing import Any, Iterable, List

from .config import EngineConfig, load_config
from .text import collapse_whitespace

_TERMINAL = (".", "!", "?")


def _title_of(post: Any) -> str:
    if isinstance(post, str):
        return post
    if isinstance(post, dict):
        return str(post.get("title") or "")
    return str(getattr(post, "title", "") or "")


def fit_words(text: str, limit: int) -> str:
    """Trim ``text`` to at most ``limit`` characters without splitting a word."""

    text = collapse_whitespace(text)
    if len(text) <= limit:
        return text
    if limit <= 0:
        return ""
    head = text[: limit + 1]
    if head[-1].isspace():
        return head.rstrip()
    boundary = head.rfind(" ")
    if boundary <= 0:
        return ""
    return text[:boundary].rstrip(" ,;:-")


def _join(base: str, clause: str) -> str:
    if not base:
        return clause
    base = base.rstrip(" ,;:-")
    separator = " " if base.endswith(_TERMINAL) else ". "
    return f"{base}{separator}{clause}"


def update_meta_description(
    current: str | None,
    linked_posts: Iterable[Any],
    title: str,
    *,
    limit: int | None = None,
    config: EngineConfig | None = None,
) -> str:
    """Return a description that mentions the linked posts within ``limit`` characters.

    A description that already names every linked title is returned as is.
    Otherwise a "See also: X, Y." clause listing the missing titles is
    appended, dropping trailing titles until the result fits. When even a
    single title does not fit, the (word-trimmed) base description is
    returned. An empty description starts from the article title.
    """

    engine_config = config or load_config(None)
    budget = engine_config.meta_description_limit if limit is None else int(limit)

    titles: List[str] = []
    for post in linked_posts:
        candidate = collapse_whitespace(_title_of(post))
        if candidate and candidate.lower() not in (item.lower() for item in titles):
            titles.append(candidate)

    existing = current or ""
    haystack = existing.lower()
    missing = [item for item in titles if item.lower() not in haystack]
    if not missing:
        return existing

    base = fit_words(existing.strip() or title or "", budget)
    prefix = engine_config.get("see_also_prefix", "See also:")
    for count in range(len(missing), 0, -1):
        names = ", ".join(item.rstrip(".") for item in missing[:count])
        candidate = _join(base, f"{prefix} {names}.")
        if len(candidate) <= budget:
            return candidate
    return base
