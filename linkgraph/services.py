"""Service functions connecting stored posts to the link graph engine.

The engine in :mod:`linkgraph.engine` only transforms strings. These
functions load posts from the database, convert them to engine articles,
run the pipelines and write the results back. They are shared by the
JSON views, the Django admin actions and the ``autolink_posts``
management command.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Dict, Iterable, List, Mapping, Sequence

from django.conf import settings
from django.db.models import F
from django.utils import timezone

from .engine import (
    Article,
    EngineConfig,
    LinkTarget,
    PipelineResult,
    auto_link_batch,
    link_targets,
    linked_slugs,
    load_config,
    process_rewritten_content,
    resolve_edges,
)
from .engine.types import ProcessedContent
from .models import AutoLinkRun, Post

logger = logging.getLogger(__name__)


class LinkGraphError(Exception):
    """Base class for failures surfaced to callers of the service layer."""


class NoPublishedPostsError(LinkGraphError):
    """Raised when an auto-link run has no published posts in scope."""


class StaleArticleError(LinkGraphError):
    """Raised when a post changed between loading it and saving new links."""


@lru_cache(maxsize=1)
def get_engine_config() -> EngineConfig:
    """Return the process-wide engine configuration.

    The YAML file named by ``LINKGRAPH_CONFIG_PATH`` is merged over the
    engine defaults, then the ``LINKGRAPH`` settings dict over that. The
    result is cached until :func:`reset_engine_config` is called, which
    happens automatically when either setting changes.
    """

    return load_config(
        getattr(settings, 'LINKGRAPH_CONFIG_PATH', None),
        getattr(settings, 'LINKGRAPH', None) or {},
    )


def reset_engine_config(*, setting: str | None = None, **kwargs: Any) -> None:
    if setting is None or setting in {'LINKGRAPH', 'LINKGRAPH_CONFIG_PATH'}:
        get_engine_config.cache_clear()


def post_to_article(post: Post) -> Article:
    return Article(
        id=str(post.pk),
        slug=post.slug,
        title=post.title,
        content=post.content or '',
        meta_description=post.meta_description,
        published=post.published,
        created_at=post.created_at,
    )


def published_pool() -> List[Article]:
    """Return every published post as an engine article."""

    return [post_to_article(post) for post in Post.objects.filter(published=True)]


def save_link_result(post: Post, result: PipelineResult) -> Post:
    """Persist the content and description produced by a pipeline run.

    By default this is a plain read-modify-write: a concurrent edit saved
    after ``post`` was loaded is overwritten. With ``optimistic_locking``
    enabled in the engine configuration, the write only succeeds when the
    stored ``revision`` still matches the one on ``post``.

    Raises
    ------
    StaleArticleError
        If optimistic locking is enabled and the post changed meanwhile.
    """

    if not result.changed:
        return post

    config = get_engine_config()
    now = timezone.now()
    if config.get('optimistic_locking'):
        updated = Post.objects.filter(pk=post.pk, revision=post.revision).update(
            content=result.updated_content,
            meta_description=result.updated_description,
            revision=F('revision') + 1,
            updated_at=now,
        )
        if not updated:
            raise StaleArticleError(f'Post {post.pk} was modified by another writer; re-run linking.')
        post.content = result.updated_content
        post.meta_description = result.updated_description
        post.revision += 1
        post.updated_at = now
        return post

    post.content = result.updated_content
    post.meta_description = result.updated_description
    post.revision += 1
    post.save(update_fields=['content', 'meta_description', 'revision', 'updated_at'])
    return post


def add_links_to_post(
    post: Post,
    targets: Sequence[Post],
    anchor_texts: Mapping[str, str] | None = None,
) -> PipelineResult:
    """Link ``post`` to the hand-picked ``targets`` and save the result.

    Parameters
    ----------
    post:
        The post whose content receives the new anchors.
    targets:
        Posts to link to, in the order the editor chose them.
    anchor_texts:
        Optional mapping of target id (as a string) to custom anchor text.
        Targets without an entry are matched by title.

    Returns
    -------
    PipelineResult
        The engine result; ``links_added`` is zero when nothing matched.
    """

    texts = {str(key): value for key, value in (anchor_texts or {}).items()}
    link_list = [
        LinkTarget(
            slug=target.slug,
            title=target.title,
            anchor_text=(texts.get(str(target.pk)) or '').strip() or None,
            id=str(target.pk),
        )
        for target in targets
    ]
    result = link_targets(post_to_article(post), link_list, config=get_engine_config())
    save_link_result(post, result)
    logger.info('Added %d internal link(s) to post %s', result.links_added, post.pk)
    return result


def _run_scope(post_ids: Iterable[int | str] | None, count: int) -> str:
    if post_ids is None:
        return AutoLinkRun.SCOPE_ALL
    return AutoLinkRun.SCOPE_SINGLE if count == 1 else AutoLinkRun.SCOPE_SELECTED


def auto_link_posts(
    post_ids: Iterable[int | str] | None = None,
    max_links: int | None = None,
    user: Any = None,
) -> AutoLinkRun:
    """Auto-link the given published posts, or all of them, and record the run.

    Each post is processed and saved independently. A post that fails to
    link is reported in the run results without stopping the others; a
    failure while saving propagates.

    Raises
    ------
    NoPublishedPostsError
        If no published post matches the requested scope.
    """

    config = get_engine_config()
    limit = int(max_links or config.max_links_per_run)

    scope = Post.objects.filter(published=True)
    if post_ids is not None:
        scope = scope.filter(pk__in=list(post_ids))
    posts = list(scope)
    if not posts:
        raise NoPublishedPostsError('No published posts found to process')

    posts_by_id: Dict[str, Post] = {str(post.pk): post for post in posts}

    def persist(result: PipelineResult) -> None:
        save_link_result(posts_by_id[result.article_id], result)

    batch = auto_link_batch(
        [post_to_article(post) for post in posts],
        published_pool(),
        max_links=limit,
        config=config,
        on_result=persist,
    )

    return AutoLinkRun.objects.create(
        user=user if getattr(user, 'is_authenticated', False) else None,
        scope=_run_scope(post_ids, len(posts)),
        max_links_per_post=limit,
        processed=batch.processed,
        modified=batch.modified,
        failed=batch.failed,
        links_added=batch.links_added,
        results=[item.as_dict() for item in batch.items],
    )


def _post_summary(post: Post) -> Dict[str, Any]:
    return {'id': post.pk, 'title': post.title, 'slug': post.slug, 'published': post.published}


def outbound_links(post: Post) -> List[Dict[str, Any]]:
    """Return the post's internal links resolved against live, published posts."""

    config = get_engine_config()
    targets = {
        target.slug: target
        for target in Post.objects.filter(slug__in=linked_slugs(post.content, config))
    }
    lookup = {slug: post_to_article(target) for slug, target in targets.items()}
    return [
        {
            'slug': item.edge.slug,
            'anchorText': item.edge.anchor_text,
            'post': _post_summary(targets[item.edge.slug]),
        }
        for item in resolve_edges(post.content, lookup, config)
    ]


def posts_with_links() -> List[Dict[str, Any]]:
    """Return every published post with its resolved outbound links.

    Linked posts are fetched in a single query for the whole corpus.
    """

    config = get_engine_config()
    posts = list(Post.objects.filter(published=True).order_by('-created_at'))
    wanted: set[str] = set()
    for post in posts:
        wanted |= linked_slugs(post.content, config)

    targets = {target.slug: target for target in Post.objects.filter(slug__in=wanted)}
    lookup = {slug: post_to_article(target) for slug, target in targets.items()}

    payload: List[Dict[str, Any]] = []
    for post in posts:
        payload.append(
            {
                **_post_summary(post),
                'links': [
                    {
                        'slug': item.edge.slug,
                        'anchorText': item.edge.anchor_text,
                        'post': _post_summary(targets[item.edge.slug]),
                    }
                    for item in resolve_edges(post.content, lookup, config)
                ],
            }
        )
    return payload


def prepare_rewritten_content(
    html: str,
    title: str | None,
    post_id: int | str | None = None,
    max_links: int | None = None,
) -> ProcessedContent:
    """Strip third-party links from regenerated prose and auto-link it before first save."""

    slug = None
    if post_id is not None:
        slug = Post.objects.filter(pk=post_id).values_list('slug', flat=True).first()
    return process_rewritten_content(
        html,
        published_pool(),
        article_id=str(post_id) if post_id is not None else None,
        title=title,
        slug=slug,
        max_links=max_links,
        config=get_engine_config(),
    )

