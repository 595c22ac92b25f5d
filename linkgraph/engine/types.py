"""Typed data structures used by the link graph engine."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple


@dataclass(frozen=True)
class Article:
    """Normalized article representation consumed by the engine."""

    id: str
    slug: str
    title: str
    content: str
    meta_description: Optional[str] = None
    published: bool = True
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class Edge:
    """An internal link recovered from an article body."""

    slug: str
    anchor_text: str


@dataclass(frozen=True)
class LinkTarget:
    """An article that should receive a link from the source article."""

    slug: str
    title: str
    anchor_text: Optional[str] = None
    id: Optional[str] = None

    @property
    def search_phrase(self) -> str:
        return self.anchor_text or self.title


@dataclass(frozen=True)
class RelatedArticle:
    """Ranked candidate returned by the relevance scorer."""

    id: str
    slug: str
    title: str
    score: float
    title_overlap: int = 0

    def as_target(self) -> LinkTarget:
        return LinkTarget(slug=self.slug, title=self.title, id=self.id)


@dataclass(frozen=True)
class InsertedLink:
    """Details about an anchor that was inserted into the content."""

    slug: str
    title: str
    text: str
    start: int
    end: int


@dataclass(frozen=True)
class InsertionResult:
    updated_content: str
    links_added: int
    inserted: List[InsertedLink] = field(default_factory=list)


class LinkState(str, enum.Enum):
    """Stages an article moves through during a single pipeline run."""

    SCANNED = "scanned"
    SCORED = "scored"
    LINKED = "linked"
    DESCRIBED = "described"
    UNCHANGED = "unchanged"


@dataclass(frozen=True)
class PipelineResult:
    """Outcome of linking a single article, ready to be persisted."""

    article_id: str
    title: str
    updated_content: str
    updated_description: Optional[str]
    links_added: int
    linked: List[LinkTarget] = field(default_factory=list)
    state: LinkState = LinkState.UNCHANGED
    stages: Tuple[LinkState, ...] = ()

    @property
    def changed(self) -> bool:
        return self.links_added > 0


@dataclass(frozen=True)
class BatchItem:
    """Per-article entry in a batch report; ``error`` is set on failure."""

    article_id: str
    title: str
    links_added: int = 0
    linked: List[LinkTarget] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def as_dict(self) -> dict:
        payload = {
            "articleId": self.article_id,
            "title": self.title,
            "linksAdded": self.links_added,
            "linkedArticles": [{"slug": item.slug, "title": item.title} for item in self.linked],
        }
        if self.error is not None:
            payload["error"] = self.error
        return payload


@dataclass(frozen=True)
class BatchResult:
    items: List[BatchItem] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.items)

    @property
    def modified(self) -> int:
        return sum(1 for item in self.items if not item.failed and item.links_added > 0)

    @property
    def failed(self) -> int:
        return sum(1 for item in self.items if item.failed)

    @property
    def links_added(self) -> int:
        return sum(item.links_added for item in self.items)

    def summary(self) -> str:
        return f"Auto-linked {self.modified} of {self.processed} article(s)"


@dataclass(frozen=True)
class ProcessedContent:
    processed_content: str
    links_added: int
    linked: List[LinkTarget] = field(default_factory=list)
