"""Materialize link graph edges as anchors inside an article body."""

from __future__ import annotations

import html
import logging
import re
from typing import Dict, List, Optional, Sequence, Tuple
from urllib.parse import urlparse

from .config import EngineConfig, load_config
from .markup import Fragment, MarkupError, Text, apply_edits, parse_fragment
from .scanner import linked_slugs
from .types import InsertedLink, InsertionResult, LinkTarget

logger = logging.getLogger(__name__)

_ENTITY_RE = re.compile(r"&(?:#[0-9]+|#[xX][0-9a-fA-F]+|[A-Za-z][A-Za-z0-9]*);?")
_APOSTROPHES = "'’"

_Match = Tuple[Text, int, int, int]


def _phrase_pattern(phrase: str) -> Optional[re.Pattern[str]]:
    """Compile a case-insensitive whole-word matcher for ``phrase`` over rendered text.

    Any whitespace run in the phrase matches any whitespace run in the
    text, non-breaking spaces included; straight and curly apostrophes
    are interchangeable.
    """

    words = html.unescape(phrase).split()
    if not words:
        return None
    parts = [
        "".join(f"[{_APOSTROPHES}]" if char in _APOSTROPHES else re.escape(char) for char in word)
        for word in words
    ]
    joined = r"\s+".join(parts)
    return re.compile(rf"(?<!\w){joined}(?!\w)", flags=re.IGNORECASE)


def _decode(raw: str) -> Tuple[str, List[Optional[int]]]:
    """Return the rendered text of ``raw`` and the source offset of each character.

    Characters after the first one of a multi-character entity expansion
    map to ``None``, so no match can start or end inside a reference. The
    offset list carries one extra entry for the end of ``raw``.
    """

    chars: List[str] = []
    offsets: List[Optional[int]] = []

    def literal(start: int, end: int) -> None:
        chars.extend(raw[start:end])
        offsets.extend(range(start, end))

    cursor = 0
    for entity in _ENTITY_RE.finditer(raw):
        literal(cursor, entity.start())
        reference = entity.group()
        value = html.unescape(reference)
        if value == reference:
            literal(entity.start(), entity.end())
        else:
            chars.extend(value)
            offsets.append(entity.start())
            offsets.extend([None] * (len(value) - 1))
        cursor = entity.end()
    literal(cursor, len(raw))
    offsets.append(len(raw))
    return "".join(chars), offsets


def _first_match(
    fragment: Fragment,
    free: Dict[int, List[Tuple[int, int]]],
    pattern: re.Pattern[str],
) -> Optional[_Match]:
    """Return the first usable match in document order as ``(text, range_index, start, end)``.

    Matching runs on the decoded text of each node so entities count as
    the characters they render; the returned offsets point into the source.
    """

    source = fragment.source
    for text in fragment.iter_texts():
        ranges = free.get(id(text))
        if not ranges:
            continue
        decoded, offsets = _decode(source[text.start:text.end])
        for match in pattern.finditer(decoded):
            start, end = offsets[match.start()], offsets[match.end()]
            if start is None or end is None:
                continue
            start += text.start
            end += text.start
            for index, (range_start, range_end) in enumerate(ranges):
                if range_start <= start and end <= range_end:
                    return text, index, start, end
    return None


def add_internal_links(
    content_html: str,
    targets: Sequence[LinkTarget],
    *,
    source_slug: str | None = None,
    max_links: int | None = None,
    config: EngineConfig | None = None,
) -> InsertionResult:
    """Wrap the first matching phrase for each target in an internal anchor.

    Targets are tried in the order given. Only text outside protected
    elements (existing anchors, scripts, styles, code blocks) is searched,
    and a target is skipped without error when its phrase does not occur,
    when its slug is already linked anywhere in the content, or when it is
    the source article itself. At most ``max_links`` anchors are added per
    call. When nothing is inserted the input string is returned unchanged;
    otherwise only the matched spans differ from the input.

    Phrases are matched against the rendered text, so ``&eacute;`` in the
    source matches "é" in a title, and word boundaries are judged on the
    decoded characters.
    """

    engine_config = config or load_config(None)
    limit = engine_config.max_links_per_run if max_links is None else int(max_links)
    if not content_html or not targets or limit <= 0:
        return InsertionResult(updated_content=content_html, links_added=0)

    try:
        fragment = parse_fragment(content_html, engine_config.protected_tags)
    except MarkupError as exc:
        logger.warning("Leaving unparsable content untouched: %s", exc)
        return InsertionResult(updated_content=content_html, links_added=0)

    # Existing edges are exactly what the scanner reports.
    linked = linked_slugs(content_html, engine_config)

    free: Dict[int, List[Tuple[int, int]]] = {
        id(text): [(text.start, text.end)] for text in fragment.iter_texts()
    }
    edits: List[Tuple[int, int, str]] = []
    inserted: List[InsertedLink] = []

    for target in targets:
        if len(inserted) >= limit:
            break
        slug = (target.slug or "").strip()
        if not slug or slug == source_slug or slug in linked:
            continue
        pattern = _phrase_pattern(target.search_phrase or "")
        if pattern is None:
            continue
        found = _first_match(fragment, free, pattern)
        if found is None:
            logger.debug("No anchor text for %s found in content", slug)
            continue

        text, index, start, end = found
        matched = content_html[start:end]
        edits.append((start, end, _anchor_markup(engine_config.post_href(slug), matched, engine_config.auto_link_attribute)))
        range_start, range_end = free[id(text)][index]
        free[id(text)][index:index + 1] = [
            span for span in ((range_start, start), (end, range_end)) if span[0] < span[1]
        ]
        linked.add(slug)
        inserted.append(InsertedLink(slug=slug, title=target.title, text=matched, start=start, end=end))

    if not inserted:
        return InsertionResult(updated_content=content_html, links_added=0)

    return InsertionResult(
        updated_content=apply_edits(content_html, edits),
        links_added=len(inserted),
        inserted=inserted,
    )


def _is_external(href: Optional[str], config: EngineConfig) -> bool:
    value = (href or "").strip()
    if not value:
        return False
    parsed = urlparse(value)
    if parsed.scheme and parsed.scheme.lower() not in {"http", "https"}:
        return False
    if not parsed.netloc:
        return False
    return (parsed.hostname or "").lower() not in config.site_hosts


def strip_external_links(content_html: str, config: EngineConfig | None = None) -> str:
    """Unwrap anchors pointing at other sites, keeping their inner markup.

    Relative links, links on one of the configured ``site_hosts`` and
    ``mailto:``/``tel:`` links are kept. Everything outside the removed
    ``<a>`` and ``</a>`` tags is preserved byte for byte.
    """

    if not content_html:
        return content_html

    engine_config = config or load_config(None)
    try:
        fragment = parse_fragment(content_html)
    except MarkupError as exc:
        logger.warning("Leaving unparsable content untouched: %s", exc)
        return content_html

    edits: List[Tuple[int, int, str]] = []
    stripped = 0
    for anchor in fragment.find_all("a"):
        if not _is_external(anchor.get("href"), engine_config):
            continue
        stripped += 1
        edits.append((anchor.start, anchor.open_end, ""))
        if anchor.close_start is not None and anchor.close_end is not None and anchor.close_end > anchor.close_start:
            edits.append((anchor.close_start, anchor.close_end, ""))

    if stripped:
        logger.debug("Stripped %d external link(s)", stripped)
    return apply_edits(content_html, edits)
