"""Internal link graph engine: scan, score, insert and describe."""

from .config import EngineConfig, load_config
from .describe import update_meta_description
from .inserter import add_internal_links, strip_external_links
from .pipeline import (
    auto_link_article,
    auto_link_batch,
    link_targets,
    process_rewritten_content,
    resolve_edges,
)
from .scanner import linked_slugs, scan
from .scorer import find_related_posts
from .types import Article, Edge, LinkState, LinkTarget, PipelineResult

__all__ = [
    "Article",
    "Edge",
    "EngineConfig",
    "LinkState",
    "LinkTarget",
    "PipelineResult",
    "add_internal_links",
    "auto_link_article",
    "auto_link_batch",
    "find_related_posts",
    "link_targets",
    "linked_slugs",
    "load_config",
    "process_rewritten_content",
    "resolve_edges",
    "scan",
    "strip_external_links",
    "update_meta_description",
]
