"""Shared text utilities for the link graph engine."""

from __future__ import annotations

import logging
import re
from typing import Iterable, List

from bs4 import BeautifulSoup
from bs4.builder import ParserRejectedMarkup

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"[\w']+")
_WHITESPACE_RE = re.compile(r"\s+")

STOPWORDS = frozenset(
    {
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
        "with", "by", "from", "as", "into", "about", "than", "then", "so", "if",
        "is", "are", "was", "were", "been", "be", "have", "has", "had", "do",
        "does", "did", "will", "would", "should", "could", "may", "might", "must",
        "can", "this", "that", "these", "those", "i", "you", "he", "she", "it",
        "we", "they", "your", "our", "its", "their", "not", "all", "any", "more",
        "most", "new", "get", "use", "how", "what", "which", "who", "also", "just",
        "very", "one", "out", "up", "there", "here", "when", "where", "why",
        # Filler that appears on nearly every APK listing.
        "game", "games", "app", "apps", "download", "android", "ios", "mobile",
        "free", "vip", "latest", "version", "apk", "mod", "premium", "unlocked",
    }
)


def tokenize(text: str) -> List[str]:
    """Return lower-cased word tokens from the provided text."""

    return [token.lower().strip("'") for token in _TOKEN_RE.findall(text or "")]


def significant_terms(
    text: str,
    *,
    min_length: int = 3,
    extra_stopwords: Iterable[str] = (),
) -> set[str]:
    """Return the de-duplicated, stop-word free terms of ``text``."""

    stopwords = STOPWORDS | {word.lower() for word in extra_stopwords}
    return {
        token
        for token in tokenize(text)
        if len(token) >= min_length and token not in stopwords and not token.isdigit()
    }


def html_to_text(html: str) -> str:
    """Strip markup and collapse whitespace; malformed input yields ``''``."""

    if not html:
        return ""
    try:
        soup = BeautifulSoup(html, "lxml")
    except ParserRejectedMarkup:
        logger.warning("Could not parse HTML fragment for text extraction")
        return ""
    for node in soup(["script", "style"]):
        node.decompose()
    return collapse_whitespace(soup.get_text(" "))


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text or "").strip()
