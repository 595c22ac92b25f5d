"""Auto-link published posts from the command line.

Usage::

    python manage.py autolink_posts
    python manage.py autolink_posts --post 12 --post 15 --max-links 5
"""

from __future__ import annotations

from django.core.management.base import BaseCommand, CommandError

from linkgraph.services import NoPublishedPostsError, auto_link_posts


class Command(BaseCommand):
    help = 'Insert internal links between related published posts.'

    def add_arguments(self, parser):
        parser.add_argument(
            '--post',
            action='append',
            type=int,
            dest='post_ids',
            help='Only process the post with this id. May be given more than once.',
        )
        parser.add_argument(
            '--max-links',
            type=int,
            dest='max_links',
            help='Maximum number of links to add to each post.',
        )

    def handle(self, *args, **options):
        max_links = options.get('max_links')
        if max_links is not None and max_links < 1:
            raise CommandError('--max-links must be a positive integer.')

        try:
            run = auto_link_posts(post_ids=options.get('post_ids'), max_links=max_links)
        except NoPublishedPostsError as exc:
            raise CommandError(str(exc)) from exc

        for item in run.results:
            if 'error' in item:
                self.stderr.write(f"  ! {item['title']}: {item['error']}")
            elif item['linksAdded']:
                titles = ', '.join(linked['title'] for linked in item['linkedArticles'])
                self.stdout.write(f"  + {item['title']}: {titles}")

        self.stdout.write(
            self.style.SUCCESS(
                f'Auto-linked {run.modified} of {run.processed} post(s); '
                f'{run.links_added} link(s) added, {run.failed} failed.'
            )
        )
