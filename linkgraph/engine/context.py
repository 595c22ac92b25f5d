"""Corpus-level term statistics shared across a batch run."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Sequence, Tuple

from .config import EngineConfig
from .text import html_to_text, significant_terms
from .types import Article

TermSets = Tuple[frozenset, frozenset]


@dataclass(frozen=True)
class CorpusContext:
    """Precomputed significant terms for every article in the pool, keyed by id."""

    title_terms: Dict[str, frozenset]
    body_terms: Dict[str, frozenset]

    def terms_for(self, article: Article, config: EngineConfig) -> TermSets:
        if article.id in self.title_terms:
            return self.title_terms[article.id], self.body_terms[article.id]
        return article_terms(article.title, article.content, config)


def article_terms(title: str, content: str, config: EngineConfig) -> TermSets:
    """Return ``(title_terms, body_terms)`` for an article."""

    min_length = int(config.get("min_token_length", 3))
    extra = config.get("extra_stopwords", []) or []
    body_text = html_to_text(content)
    excerpt_chars = config.get("excerpt_chars")
    if excerpt_chars:
        body_text = body_text[: int(excerpt_chars)]
    title_terms = significant_terms(title or "", min_length=min_length, extra_stopwords=extra)
    body_terms = significant_terms(body_text, min_length=min_length, extra_stopwords=extra)
    return frozenset(title_terms), frozenset(body_terms)


def build_corpus_context(pool: Sequence[Article], config: EngineConfig) -> CorpusContext:
    """Tokenize the candidate pool once so a batch run does not repeat the work."""

    title_terms: Dict[str, frozenset] = {}
    body_terms: Dict[str, frozenset] = {}

    for article in pool:
        title_terms[article.id], body_terms[article.id] = article_terms(article.title, article.content, config)

    return CorpusContext(title_terms=title_terms, body_terms=body_terms)
