"""Read the internal link graph stored in an article body."""

from __future__ import annotations

import logging
from typing import List, Optional
from urllib.parse import unquote, urlparse

from bs4 import BeautifulSoup
from bs4.builder import ParserRejectedMarkup

from .config import EngineConfig, load_config
from .text import collapse_whitespace
from .types import Edge

logger = logging.getLogger(__name__)

_FOREIGN_SCHEMES = {"mailto", "tel", "javascript", "data", "sms", "ftp"}


def slug_from_href(href: Optional[str], config: EngineConfig) -> Optional[str]:
    """Return the article slug an href points at, or ``None`` if it is not an article link.

    Relative paths under one of the configured article prefixes count as
    internal, as do absolute URLs on one of ``site_hosts``. Anything else
    (other domains, ``/pages/`` or ``/category/`` routes, ``mailto:``,
    ``tel:`` and bare ``#fragment`` links) is ignored.
    """

    value = (href or "").strip()
    if not value or value.startswith("#"):
        return None

    parsed = urlparse(value)
    scheme = parsed.scheme.lower()
    if scheme in _FOREIGN_SCHEMES or (scheme and scheme not in {"http", "https"}):
        return None
    if parsed.netloc:
        host = (parsed.hostname or "").lower()
        if host not in config.site_hosts:
            return None

    path = parsed.path
    for prefix in config.post_prefixes:
        if not path.startswith(prefix):
            continue
        segment = path[len(prefix):].split("/", 1)[0]
        slug = unquote(segment).strip()
        return slug or None
    return None


def is_internal_href(href: Optional[str], config: EngineConfig | None = None) -> bool:
    return slug_from_href(href, config or load_config(None)) is not None


def scan(content_html: str, config: EngineConfig | None = None) -> List[Edge]:
    """Return every internal article anchor in ``content_html`` in document order.

    Duplicates are kept; callers that need one edge per target deduplicate
    by slug. Unparsable fragments produce an empty list.
    """

    if not content_html:
        return []

    engine_config = config or load_config(None)
    try:
        soup = BeautifulSoup(content_html, "lxml")
    except ParserRejectedMarkup:
        logger.warning("Skipping link scan of unparsable fragment")
        return []

    edges: List[Edge] = []
    for anchor in soup.find_all("a"):
        slug = slug_from_href(anchor.get("href"), engine_config)
        if slug is None:
            continue
        edges.append(Edge(slug=slug, anchor_text=collapse_whitespace(anchor.get_text())))
    return edges


def linked_slugs(content_html: str, config: EngineConfig | None = None) -> set[str]:
    """Return the distinct slugs already linked from ``content_html``."""

    return {edge.slug for edge in scan(content_html, config)}
