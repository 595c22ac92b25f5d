"""JSON views for the linkgraph app.

These endpoints back the internal-links screens of the admin dashboard:
linking hand-picked posts into an article, auto-linking one or all
published posts, inspecting the outbound links of posts and cleaning
freshly rewritten content before it is saved. All of them are limited
to staff users.
"""

from __future__ import annotations

import json
import logging
from functools import wraps
from typing import Any, Callable, Dict

from django.db import DatabaseError
from django.http import HttpRequest, HttpResponse, JsonResponse
from django.views.decorators.http import require_GET, require_POST

from .forms import AutoLinkForm, InternalLinksForm, ProcessContentForm
from .models import Post
from .services import (
    NoPublishedPostsError,
    StaleArticleError,
    add_links_to_post,
    auto_link_posts,
    outbound_links,
    posts_with_links,
    prepare_rewritten_content,
)

logger = logging.getLogger(__name__)

View = Callable[..., HttpResponse]


def _error(message: str, status: int, **extra: Any) -> JsonResponse:
    return JsonResponse({'error': message, **extra}, status=status)


def staff_required(view: View) -> View:
    """Reject anonymous and non-staff users with a JSON 401."""

    @wraps(view)
    def wrapper(request: HttpRequest, *args: Any, **kwargs: Any) -> HttpResponse:
        user = getattr(request, 'user', None)
        if user is None or not user.is_authenticated or not user.is_staff:
            return _error('Unauthorized', 401)
        return view(request, *args, **kwargs)

    return wrapper


def persistence_errors(view: View) -> View:
    """Report failed writes as JSON instead of an HTML error page."""

    @wraps(view)
    def wrapper(request: HttpRequest, *args: Any, **kwargs: Any) -> HttpResponse:
        try:
            return view(request, *args, **kwargs)
        except StaleArticleError as exc:
            return _error(str(exc), 409)
        except DatabaseError as exc:
            logger.exception('Saving internal links failed')
            return _error(str(exc) or 'Failed to save internal links', 500)

    return wrapper


def _json_body(request: HttpRequest) -> Dict[str, Any]:
    if not request.body:
        return {}
    payload = json.loads(request.body)
    if not isinstance(payload, dict):
        raise ValueError('Request body must be a JSON object.')
    return payload


def _form_errors(form) -> JsonResponse:
    fields = {name: [item['message'] for item in errors] for name, errors in form.errors.get_json_data().items()}
    messages = [message for errors in fields.values() for message in errors]
    return _error(messages[0] if messages else 'Invalid request', 400, fields=fields)


@require_POST
@staff_required
@persistence_errors
def add_internal_links(request: HttpRequest, post_id: int) -> HttpResponse:
    """Link the posts named in ``linkIds`` into the given post."""

    post = Post.objects.filter(pk=post_id).first()
    if post is None:
        return _error('Post not found', 404)

    try:
        payload = _json_body(request)
    except ValueError:
        return _error('Invalid JSON body', 400)

    form = InternalLinksForm({'link_ids': payload.get('linkIds'), 'anchor_texts': payload.get('anchorTexts')})
    if not form.is_valid():
        return _form_errors(form)

    result = add_links_to_post(post, form.cleaned_data['link_ids'], form.cleaned_data['anchor_texts'])
    return JsonResponse(
        {
            'success': True,
            'post': {'id': post.pk, 'title': post.title, 'slug': post.slug},
            'linksAdded': result.links_added,
            'linkedPosts': [{'id': item.id, 'slug': item.slug, 'title': item.title} for item in result.linked],
            'metaDescription': post.meta_description,
            'message': f'Successfully added {result.links_added} internal link(s) to the post',
        }
    )


@require_POST
@staff_required
@persistence_errors
def auto_link(request: HttpRequest) -> HttpResponse:
    """Auto-link a single published post (``postId``) or all of them."""

    try:
        payload = _json_body(request)
    except ValueError:
        return _error('Invalid JSON body', 400)

    form = AutoLinkForm({'post': payload.get('postId'), 'max_links_per_post': payload.get('maxLinksPerPost')})
    if not form.is_valid():
        return _form_errors(form)

    post = form.cleaned_data['post']
    try:
        run = auto_link_posts(
            post_ids=[post.pk] if post is not None else None,
            max_links=form.cleaned_data['max_links_per_post'],
            user=request.user,
        )
    except NoPublishedPostsError as exc:
        return _error(str(exc), 400)

    return JsonResponse(
        {
            'success': True,
            'message': f'Auto-linked {run.modified} of {run.processed} post(s)',
            'runId': run.pk,
            'processed': run.processed,
            'modified': run.modified,
            'failed': run.failed,
            'linksAdded': run.links_added,
            'results': run.results,
        }
    )


@require_GET
@staff_required
def post_links(request: HttpRequest, post_id: int) -> HttpResponse:
    """List the live internal links found in a post's content."""

    post = Post.objects.filter(pk=post_id).first()
    if post is None:
        return _error('Post not found', 404)
    return JsonResponse({'postId': post.pk, 'postTitle': post.title, 'links': outbound_links(post)})


@require_GET
@staff_required
def with_links(request: HttpRequest) -> HttpResponse:
    """List every published post together with its live internal links."""

    return JsonResponse({'posts': posts_with_links()})


@require_POST
@staff_required
def process_content(request: HttpRequest) -> HttpResponse:
    """Strip external links from rewritten HTML and auto-link it."""

    try:
        payload = _json_body(request)
    except ValueError:
        return _error('Invalid JSON body', 400)

    form = ProcessContentForm(
        {
            'content': payload.get('content'),
            'title': payload.get('title'),
            'post': payload.get('postId'),
            'max_links': payload.get('maxLinks'),
        }
    )
    if not form.is_valid():
        return _form_errors(form)

    post = form.cleaned_data['post']
    processed = prepare_rewritten_content(
        form.cleaned_data['content'],
        form.cleaned_data['title'] or (post.title if post is not None else None),
        post_id=post.pk if post is not None else None,
        max_links=form.cleaned_data['max_links'],
    )
    return JsonResponse(
        {
            'processedContent': processed.processed_content,
            'linksAdded': processed.links_added,
            'linkedPosts': [{'id': item.id, 'slug': item.slug, 'title': item.title} for item in processed.linked],
        }
    )
