"""Coordinator for the link graph pipeline.

Every entry point here is a pure computation over in-memory articles.
Persisting the results is left to the caller, either directly or via
the ``on_result`` hook of :func:`auto_link_batch`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Mapping, Sequence, Tuple

from .config import EngineConfig, load_config
from .context import CorpusContext, build_corpus_context
from .describe import update_meta_description
from .inserter import add_internal_links, strip_external_links
from .scanner import linked_slugs, scan
from .scorer import find_related_posts
from .types import (
    Article,
    BatchItem,
    BatchResult,
    Edge,
    LinkState,
    LinkTarget,
    PipelineResult,
    ProcessedContent,
)

logger = logging.getLogger(__name__)

ResultHook = Callable[[PipelineResult], None]


Stages = Tuple[LinkState, ...]


@dataclass(frozen=True)
class ResolvedEdge:
    """An edge joined against the live article it points at."""

    edge: Edge
    article: Article


def _unchanged(article: Article, stages: Stages) -> PipelineResult:
    stages = stages + (LinkState.UNCHANGED,)
    return PipelineResult(
        article_id=article.id,
        title=article.title,
        updated_content=article.content,
        updated_description=article.meta_description,
        links_added=0,
        state=stages[-1],
        stages=stages,
    )


def _link(
    article: Article,
    targets: Sequence[LinkTarget],
    *,
    max_links: int | None,
    config: EngineConfig,
    stages: Stages,
) -> PipelineResult:
    existing = linked_slugs(article.content, config)

    planned: List[LinkTarget] = []
    seen: set[str] = set()
    for target in targets:
        slug = (target.slug or "").strip()
        if not slug or slug == article.slug or slug in existing or slug in seen:
            continue
        seen.add(slug)
        planned.append(target)

    if not planned:
        return _unchanged(article, stages)

    insertion = add_internal_links(
        article.content,
        planned,
        source_slug=article.slug,
        max_links=max_links,
        config=config,
    )
    if insertion.links_added == 0:
        return _unchanged(article, stages)
    stages = stages + (LinkState.LINKED,)

    by_slug = {target.slug.strip(): target for target in planned}
    linked = [by_slug[item.slug] for item in insertion.inserted]
    description = update_meta_description(
        article.meta_description,
        linked,
        article.title,
        config=config,
    )
    if description != (article.meta_description or ""):
        stages = stages + (LinkState.DESCRIBED,)
    return PipelineResult(
        article_id=article.id,
        title=article.title,
        updated_content=insertion.updated_content,
        updated_description=description,
        links_added=insertion.links_added,
        linked=linked,
        state=stages[-1],
        stages=stages,
    )


def link_targets(
    article: Article,
    targets: Sequence[LinkTarget],
    *,
    max_links: int | None = None,
    config: EngineConfig | None = None,
) -> PipelineResult:
    """Link ``article`` to the explicitly chosen ``targets``."""

    return _link(
        article,
        targets,
        max_links=max_links,
        config=config or load_config(None),
        stages=(LinkState.SCANNED,),
    )


def auto_link_article(
    article: Article,
    pool: Sequence[Article],
    *,
    max_links: int | None = None,
    config: EngineConfig | None = None,
    context: CorpusContext | None = None,
) -> PipelineResult:
    """Find the articles most related to ``article`` and link them."""

    engine_config = config or load_config(None)
    limit = engine_config.max_links_per_run if max_links is None else int(max_links)
    related = find_related_posts(
        article.content,
        article.title,
        article.id,
        pool,
        limit,
        target_slug=article.slug,
        config=engine_config,
        context=context,
    )
    stages = (LinkState.SCANNED, LinkState.SCORED)
    if not related:
        return _unchanged(article, stages)
    return _link(
        article,
        [item.as_target() for item in related],
        max_links=limit,
        config=engine_config,
        stages=stages,
    )


def auto_link_batch(
    articles: Sequence[Article],
    pool: Sequence[Article],
    *,
    max_links: int | None = None,
    config: EngineConfig | None = None,
    on_result: ResultHook | None = None,
) -> BatchResult:
    """Auto-link each article in turn, isolating failures per article.

    ``on_result`` is called for every article that gained links, before
    the next one is processed. Errors raised while scoring or linking an
    article are recorded on its :class:`BatchItem`; errors raised by
    ``on_result`` propagate to the caller.
    """

    engine_config = config or load_config(None)
    context = build_corpus_context(pool, engine_config)
    items: List[BatchItem] = []

    for article in articles:
        try:
            result = auto_link_article(
                article,
                pool,
                max_links=max_links,
                config=engine_config,
                context=context,
            )
        except Exception as exc:
            logger.exception("Auto-linking failed for article %s", article.id)
            items.append(BatchItem(article_id=article.id, title=article.title, error=str(exc) or type(exc).__name__))
            continue

        if result.changed and on_result is not None:
            on_result(result)
        items.append(
            BatchItem(
                article_id=article.id,
                title=article.title,
                links_added=result.links_added,
                linked=list(result.linked),
            )
        )

    batch = BatchResult(items=items)
    logger.info("%s, %d link(s) added, %d failed", batch.summary(), batch.links_added, batch.failed)
    return batch


def process_rewritten_content(
    html: str,
    pool: Sequence[Article],
    *,
    article_id: str | None = None,
    title: str | None = None,
    slug: str | None = None,
    max_links: int | None = None,
    config: EngineConfig | None = None,
) -> ProcessedContent:
    """Drop third-party links from freshly generated HTML, then auto-link it."""

    engine_config = config or load_config(None)
    cleaned = strip_external_links(html, engine_config)
    if not title or not pool:
        return ProcessedContent(processed_content=cleaned, links_added=0)

    draft = Article(id=article_id or "", slug=slug or "", title=title, content=cleaned, published=False)
    result = auto_link_article(draft, pool, max_links=max_links, config=engine_config)
    return ProcessedContent(
        processed_content=result.updated_content,
        links_added=result.links_added,
        linked=list(result.linked),
    )


def resolve_edges(
    content_html: str,
    articles_by_slug: Mapping[str, Article],
    config: EngineConfig | None = None,
) -> List[ResolvedEdge]:
    """Join scanned edges with live articles, dropping dangling or unpublished targets."""

    resolved: List[ResolvedEdge] = []
    for edge in scan(content_html, config):
        article = articles_by_slug.get(edge.slug)
        if article is None or not article.published:
            continue
        resolved.append(ResolvedEdge(edge=edge, article=article))
    return resolved
