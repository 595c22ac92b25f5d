"""Lexical relevance scoring between articles."""

from __future__ import annotations

import logging
from typing import List, Sequence, Tuple

from .config import EngineConfig, load_config
from .context import CorpusContext, article_terms, build_corpus_context
from .scanner import linked_slugs
from .types import Article, RelatedArticle

logger = logging.getLogger(__name__)


def _rank_key(item: Tuple[RelatedArticle, Article]) -> tuple:
    related, article = item
    created = article.created_at.timestamp() if article.created_at else float("-inf")
    return (-related.score, -related.title_overlap, -created, related.slug)


def find_related_posts(
    target_content: str,
    target_title: str,
    target_id: str,
    pool: Sequence[Article],
    max_results: int = 3,
    *,
    target_slug: str | None = None,
    config: EngineConfig | None = None,
    context: CorpusContext | None = None,
) -> List[RelatedArticle]:
    """Return up to ``max_results`` published articles most related to the target.

    Parameters
    ----------
    target_content, target_title, target_id:
        The article being linked from. Its HTML is scanned so articles it
        already links to are not proposed again.
    pool:
        Candidate articles. Unpublished entries, the target itself and
        repeated slugs are skipped.
    max_results:
        Upper bound on the number of results.
    target_slug:
        Optional slug of the target, excluded in addition to ``target_id``.
    context:
        Precomputed term sets for ``pool``; built on the fly when omitted.

    Returns
    -------
    list of RelatedArticle
        Ordered by score, then title overlap, then newest ``created_at``,
        then slug. Empty when nothing shares a significant term.
    """

    if max_results <= 0:
        return []

    engine_config = config or load_config(None)
    corpus = context or build_corpus_context(pool, engine_config)
    title_weight = float(engine_config.get("title_weight", 2.0))
    body_weight = float(engine_config.get("body_weight", 1.0))
    min_score = float(engine_config.get("min_score", 1.0))

    query_title, query_body = article_terms(target_title, target_content, engine_config)
    query = query_title | query_body
    if not query:
        return []

    existing = linked_slugs(target_content, engine_config)
    seen: set[str] = set()
    scored: List[Tuple[RelatedArticle, Article]] = []

    for candidate in pool:
        if not candidate.published or not candidate.slug:
            continue
        if candidate.id == target_id or (target_slug and candidate.slug == target_slug):
            continue
        if candidate.slug in existing or candidate.slug in seen:
            continue
        seen.add(candidate.slug)

        candidate_title, candidate_body = corpus.terms_for(candidate, engine_config)
        title_overlap = len(query & candidate_title)
        body_overlap = len((query & candidate_body) - candidate_title)
        score = title_weight * title_overlap + body_weight * body_overlap
        if score <= 0 or score < min_score:
            continue

        scored.append(
            (
                RelatedArticle(
                    id=candidate.id,
                    slug=candidate.slug,
                    title=candidate.title,
                    score=score,
                    title_overlap=title_overlap,
                ),
                candidate,
            )
        )

    scored.sort(key=_rank_key)
    results = [related for related, _ in scored[:max_results]]
    logger.debug("Scored %d candidate(s) for %s, keeping %d", len(scored), target_id, len(results))
    return results
