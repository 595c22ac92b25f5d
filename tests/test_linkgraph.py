from __future__ import annotations

import json
from io import StringIO
from types import SimpleNamespace
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.core.management import CommandError, call_command
from django.db import DatabaseError
from django.http import HttpResponse
from django.test import Client, RequestFactory, TestCase, override_settings
from django.urls import reverse

from linkgraph.forms import InternalLinksForm
from linkgraph.middleware import SlidingWindowRateThrottle
from linkgraph.models import AutoLinkRun, Post
from linkgraph.services import (
    NoPublishedPostsError,
    StaleArticleError,
    auto_link_posts,
    get_engine_config,
    outbound_links,
    save_link_result,
)
from linkgraph.engine.types import LinkState, PipelineResult


def make_post(slug: str, title: str, content: str = '', **extra) -> Post:
    extra.setdefault('published', True)
    return Post.objects.create(slug=slug, title=title, content=content, **extra)


class LinkGraphTestCase(TestCase):
    def setUp(self) -> None:
        cache.clear()
        self.client = Client()
        self.staff = get_user_model().objects.create_user(
            username='editor',
            email='editor@example.com',
            password='password123',
            is_staff=True,
        )
        self.vpn = make_post('fast-vpn', 'Fast VPN', '<p>Use Fast VPN with Secure Browser daily.</p>')
        self.browser = make_post(
            'secure-browser',
            'Secure Browser',
            '<p>Private secure browser with fast vpn support.</p>',
        )
        self.notes = make_post('cloud-notes', 'Cloud Notes', '<p>Sync notes across devices.</p>')

    def post_json(self, url: str, payload) -> HttpResponse:
        body = payload if isinstance(payload, str) else json.dumps(payload)
        return self.client.post(url, data=body, content_type='application/json')


class EngineConfigTests(TestCase):
    def test_settings_override_engine_defaults(self) -> None:
        self.assertEqual(get_engine_config().post_prefix, '/post/')
        with override_settings(LINKGRAPH={'post_prefix': '/apps/', 'max_links_per_run': 5}):
            config = get_engine_config()
            self.assertEqual(config.post_prefix, '/apps/')
            self.assertEqual(config.max_links_per_run, 5)
            self.assertEqual(config.meta_description_limit, 160)
        self.assertEqual(get_engine_config().post_prefix, '/post/')


class InternalLinksFormTests(LinkGraphTestCase):
    def test_link_ids_keep_submitted_order(self) -> None:
        form = InternalLinksForm({'link_ids': [self.notes.pk, self.browser.pk], 'anchor_texts': None})
        self.assertTrue(form.is_valid(), form.errors)
        self.assertEqual(form.cleaned_data['link_ids'], [self.notes, self.browser])
        self.assertEqual(form.cleaned_data['anchor_texts'], {})

    def test_unpublished_posts_are_rejected(self) -> None:
        draft = make_post('draft', 'Draft', published=False)
        form = InternalLinksForm({'link_ids': [draft.pk]})
        self.assertFalse(form.is_valid())
        self.assertIn('link_ids', form.errors)

    def test_anchor_texts_must_be_strings(self) -> None:
        form = InternalLinksForm({'link_ids': [self.browser.pk], 'anchor_texts': {str(self.browser.pk): 5}})
        self.assertFalse(form.is_valid())
        self.assertIn('anchor_texts', form.errors)


class AddInternalLinksViewTests(LinkGraphTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.client.force_login(self.staff)
        self.article = make_post('vpn-daily', 'VPN Daily', '<p>Use Fast VPN daily.</p>')
        self.url = reverse('linkgraph:internal_links', args=[self.article.pk])

    def test_requires_staff(self) -> None:
        self.client.logout()
        response = self.post_json(self.url, {'linkIds': [self.browser.pk]})
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json(), {'error': 'Unauthorized'})

        regular = get_user_model().objects.create_user(username='reader', password='password123')
        self.client.force_login(regular)
        self.assertEqual(self.post_json(self.url, {'linkIds': [self.browser.pk]}).status_code, 401)

    def test_custom_anchor_text_links_post(self) -> None:
        response = self.post_json(
            self.url,
            {'linkIds': [self.browser.pk], 'anchorTexts': {str(self.browser.pk): 'Fast VPN'}},
        )

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertTrue(payload['success'])
        self.assertEqual(payload['linksAdded'], 1)
        self.assertEqual(payload['linkedPosts'], [{'id': str(self.browser.pk), 'slug': 'secure-browser', 'title': 'Secure Browser'}])

        self.article.refresh_from_db()
        self.assertEqual(
            self.article.content,
            '<p>Use <a href="/post/secure-browser" data-auto-link>Fast VPN</a> daily.</p>',
        )
        self.assertEqual(self.article.meta_description, 'VPN Daily. See also: Secure Browser.')
        self.assertEqual(payload['metaDescription'], self.article.meta_description)
        self.assertEqual(self.article.revision, 1)

    def test_unmatched_targets_leave_post_untouched(self) -> None:
        response = self.post_json(self.url, {'linkIds': [self.notes.pk]})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['linksAdded'], 0)
        self.article.refresh_from_db()
        self.assertEqual(self.article.content, '<p>Use Fast VPN daily.</p>')
        self.assertEqual(self.article.revision, 0)

    def test_link_ids_are_required(self) -> None:
        response = self.post_json(self.url, {'linkIds': []})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'linkIds must be a non-empty array.')

    def test_invalid_json_is_rejected(self) -> None:
        response = self.post_json(self.url, '{not json')
        self.assertEqual(response.status_code, 400)

    def test_unknown_post_returns_404(self) -> None:
        response = self.post_json(reverse('linkgraph:internal_links', args=[9999]), {'linkIds': [self.browser.pk]})
        self.assertEqual(response.status_code, 404)

    def test_stale_post_maps_to_conflict(self) -> None:
        with patch('linkgraph.views.add_links_to_post', side_effect=StaleArticleError('Post changed')):
            response = self.post_json(self.url, {'linkIds': [self.browser.pk]})
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()['error'], 'Post changed')

    def test_database_errors_are_reported_as_json(self) -> None:
        with patch('linkgraph.views.add_links_to_post', side_effect=DatabaseError('database is locked')):
            with self.assertLogs('linkgraph.views', level='ERROR'):
                response = self.post_json(self.url, {'linkIds': [self.browser.pk]})
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()['error'], 'database is locked')

    def test_get_is_not_allowed(self) -> None:
        self.assertEqual(self.client.get(self.url).status_code, 405)


class AutoLinkViewTests(LinkGraphTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.client.force_login(self.staff)
        self.url = reverse('linkgraph:auto_link')

    def test_auto_link_all_posts_records_run(self) -> None:
        response = self.post_json(self.url, {})

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload['processed'], 3)
        self.assertEqual(payload['modified'], 2)
        self.assertEqual(payload['failed'], 0)
        self.assertEqual(payload['message'], 'Auto-linked 2 of 3 post(s)')

        run = AutoLinkRun.objects.get(pk=payload['runId'])
        self.assertEqual(run.scope, AutoLinkRun.SCOPE_ALL)
        self.assertEqual(run.user, self.staff)
        self.assertEqual(run.links_added, 2)

        self.vpn.refresh_from_db()
        self.assertIn('<a href="/post/secure-browser" data-auto-link>Secure Browser</a>', self.vpn.content)
        self.notes.refresh_from_db()
        self.assertEqual(self.notes.content, '<p>Sync notes across devices.</p>')

    def test_second_run_adds_nothing(self) -> None:
        self.post_json(self.url, {})
        payload = self.post_json(self.url, {}).json()
        self.assertEqual(payload['modified'], 0)
        self.assertEqual(payload['linksAdded'], 0)

    def test_single_post_scope(self) -> None:
        payload = self.post_json(self.url, {'postId': self.browser.pk, 'maxLinksPerPost': 1}).json()

        self.assertEqual(payload['processed'], 1)
        run = AutoLinkRun.objects.get(pk=payload['runId'])
        self.assertEqual(run.scope, AutoLinkRun.SCOPE_SINGLE)
        self.assertEqual(run.max_links_per_post, 1)
        self.vpn.refresh_from_db()
        self.assertEqual(self.vpn.content, '<p>Use Fast VPN with Secure Browser daily.</p>')

    def test_no_published_posts(self) -> None:
        Post.objects.update(published=False)
        response = self.post_json(self.url, {})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'No published posts found to process')

    def test_invalid_budget_is_rejected(self) -> None:
        response = self.post_json(self.url, {'maxLinksPerPost': 0})
        self.assertEqual(response.status_code, 400)


class LinkListingViewTests(LinkGraphTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.client.force_login(self.staff)
        self.vpn.content = (
            '<p><a href="/post/secure-browser">Browser</a> '
            '<a href="/posts/removed-post">Gone</a> '
            '<a href="https://other.example/post/cloud-notes">Elsewhere</a></p>'
        )
        self.vpn.save()

    def test_post_links_resolves_live_targets(self) -> None:
        response = self.client.get(reverse('linkgraph:post_links', args=[self.vpn.pk]))

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload['postId'], self.vpn.pk)
        self.assertEqual([link['slug'] for link in payload['links']], ['secure-browser'])
        self.assertEqual(payload['links'][0]['anchorText'], 'Browser')
        self.assertEqual(payload['links'][0]['post']['id'], self.browser.pk)

    def test_unpublished_targets_are_hidden(self) -> None:
        self.browser.published = False
        self.browser.save()
        self.assertEqual(outbound_links(self.vpn), [])

    def test_posts_with_links(self) -> None:
        response = self.client.get(reverse('linkgraph:posts_with_links'))

        self.assertEqual(response.status_code, 200)
        posts = {item['slug']: item for item in response.json()['posts']}
        self.assertEqual(set(posts), {'fast-vpn', 'secure-browser', 'cloud-notes'})
        self.assertEqual([link['slug'] for link in posts['fast-vpn']['links']], ['secure-browser'])
        self.assertEqual(posts['cloud-notes']['links'], [])


class ProcessContentViewTests(LinkGraphTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.client.force_login(self.staff)
        self.url = reverse('linkgraph:process_content')

    def test_strips_external_links_and_auto_links(self) -> None:
        response = self.post_json(
            self.url,
            {
                'content': '<p>Pair it with Secure Browser from <a href="https://elsewhere.example/sb">their site</a>.</p>',
                'title': 'Fast VPN Setup',
            },
        )

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload['linksAdded'], 1)
        self.assertEqual(
            payload['processedContent'],
            '<p>Pair it with <a href="/post/secure-browser" data-auto-link>Secure Browser</a> from their site.</p>',
        )

    def test_existing_post_never_links_to_itself(self) -> None:
        payload = self.post_json(
            self.url,
            {'content': '<p>Secure Browser, rebuilt.</p>', 'postId': self.browser.pk},
        ).json()

        self.assertEqual(payload['linksAdded'], 0)
        self.assertEqual(payload['processedContent'], '<p>Secure Browser, rebuilt.</p>')

    def test_content_is_required(self) -> None:
        self.assertEqual(self.post_json(self.url, {'title': 'x'}).status_code, 400)


class SaveLinkResultTests(LinkGraphTestCase):
    def result_for(self, post: Post) -> PipelineResult:
        return PipelineResult(
            article_id=str(post.pk),
            title=post.title,
            updated_content=post.content + '<p>more</p>',
            updated_description='Updated.',
            links_added=1,
            state=LinkState.DESCRIBED,
        )

    def test_last_write_wins_by_default(self) -> None:
        stale = Post.objects.get(pk=self.notes.pk)
        Post.objects.filter(pk=self.notes.pk).update(content='<p>edited elsewhere</p>', revision=5)

        save_link_result(stale, self.result_for(stale))

        self.notes.refresh_from_db()
        self.assertEqual(self.notes.content, '<p>Sync notes across devices.</p><p>more</p>')

    @override_settings(LINKGRAPH={'optimistic_locking': True})
    def test_optimistic_locking_rejects_stale_post(self) -> None:
        stale = Post.objects.get(pk=self.notes.pk)
        Post.objects.filter(pk=self.notes.pk).update(content='<p>edited elsewhere</p>', revision=5)

        with self.assertRaises(StaleArticleError):
            save_link_result(stale, self.result_for(stale))

        self.notes.refresh_from_db()
        self.assertEqual(self.notes.content, '<p>edited elsewhere</p>')

    @override_settings(LINKGRAPH={'optimistic_locking': True})
    def test_optimistic_locking_bumps_revision(self) -> None:
        post = Post.objects.get(pk=self.notes.pk)

        save_link_result(post, self.result_for(post))

        self.notes.refresh_from_db()
        self.assertEqual(self.notes.revision, 1)
        self.assertEqual(self.notes.meta_description, 'Updated.')
        self.assertEqual(post.revision, 1)


class AutoLinkServiceTests(LinkGraphTestCase):
    def test_failures_are_recorded_per_post(self) -> None:
        from linkgraph.engine import pipeline

        original = pipeline.auto_link_article

        def flaky(article, pool, **kwargs):
            if article.slug == 'secure-browser':
                raise ValueError('bad markup')
            return original(article, pool, **kwargs)

        with patch.object(pipeline, 'auto_link_article', side_effect=flaky):
            run = auto_link_posts()

        self.assertEqual(run.processed, 3)
        self.assertEqual(run.failed, 1)
        self.assertEqual(run.modified, 1)
        failed = [item for item in run.results if 'error' in item]
        self.assertEqual(failed[0]['title'], 'Secure Browser')
        self.browser.refresh_from_db()
        self.assertEqual(self.browser.revision, 0)

    def test_empty_scope_raises(self) -> None:
        with self.assertRaises(NoPublishedPostsError):
            auto_link_posts(post_ids=[9999])


class PostAdminTests(LinkGraphTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.admin = get_user_model().objects.create_superuser(
            username='admin',
            email='admin@example.com',
            password='password123',
        )
        self.client.force_login(self.admin)

    def test_auto_link_selected_action(self) -> None:
        response = self.client.post(
            reverse('admin:linkgraph_post_changelist'),
            data={'action': 'auto_link_selected', '_selected_action': [self.vpn.pk, self.notes.pk]},
        )

        self.assertEqual(response.status_code, 302)
        run = AutoLinkRun.objects.get()
        self.assertEqual(run.scope, AutoLinkRun.SCOPE_SELECTED)
        self.assertEqual(run.processed, 2)
        self.assertEqual(run.user, self.admin)
        self.vpn.refresh_from_db()
        self.assertIn('data-auto-link', self.vpn.content)


class AutolinkPostsCommandTests(LinkGraphTestCase):
    def test_command_links_requested_posts(self) -> None:
        out = StringIO()
        call_command('autolink_posts', '--post', str(self.vpn.pk), '--max-links', '2', stdout=out)

        self.assertIn('Auto-linked 1 of 1 post(s)', out.getvalue())
        self.assertIn('Fast VPN: Secure Browser', out.getvalue())
        run = AutoLinkRun.objects.get()
        self.assertEqual(run.scope, AutoLinkRun.SCOPE_SINGLE)
        self.assertEqual(run.max_links_per_post, 2)
        self.assertIsNone(run.user)

    def test_command_without_published_posts_fails(self) -> None:
        Post.objects.update(published=False)
        with self.assertRaises(CommandError):
            call_command('autolink_posts', stdout=StringIO())


class RateLimitMiddlewareTests(TestCase):
    def setUp(self) -> None:
        cache.clear()
        self.factory = RequestFactory()

    @override_settings(THROTTLED_ROUTES=['sample:action'])
    def test_rate_limit_blocks_after_threshold(self) -> None:
        middleware = SlidingWindowRateThrottle(lambda request: HttpResponse('OK'), limit=2, window=60, key_prefix='test-rate')

        def check(view_name: str = 'sample:action', ip: str = '127.0.0.1'):
            request = self.factory.post('/sample-action/')
            request.resolver_match = SimpleNamespace(view_name=view_name)
            request.META['REMOTE_ADDR'] = ip
            return middleware.process_view(request, lambda r: HttpResponse('OK'), (), {})

        self.assertIsNone(check())
        self.assertIsNone(check())
        blocked = check()
        self.assertEqual(blocked.status_code, 429)
        self.assertEqual(json.loads(blocked.content)['route'], 'sample:action')
        self.assertIsNone(check(ip='10.0.0.2'))
        self.assertIsNone(check(view_name='sample:other'))

    @override_settings(THROTTLED_ROUTES=['linkgraph:auto_link'], THROTTLE_LIMIT=1)
    def test_auto_link_route_is_throttled_per_user(self) -> None:
        staff = get_user_model().objects.create_user(username='busy', password='password123', is_staff=True)
        make_post('solo', 'Solo Post')
        client = Client()
        client.force_login(staff)
        url = reverse('linkgraph:auto_link')

        self.assertEqual(client.post(url, data='{}', content_type='application/json').status_code, 200)
        self.assertEqual(client.post(url, data='{}', content_type='application/json').status_code, 429)
