"""Database models for the linkgraph app.

Posts are the APK listing articles whose bodies carry the internal link
graph. There is no separate edge table: outbound links live only inside
``Post.content``. ``AutoLinkRun`` keeps a history of batch linking runs.
"""

from __future__ import annotations

from django.conf import settings
from django.db import models


class Post(models.Model):
    """An article; its HTML body doubles as the store of its outbound links."""

    slug = models.SlugField(max_length=255, unique=True)
    title = models.CharField(max_length=300)
    content = models.TextField(blank=True)
    meta_description = models.CharField(max_length=500, blank=True, null=True)
    published = models.BooleanField(default=False, db_index=True)
    revision = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self) -> str:  # pragma: no cover - convenience display
        return self.title


class AutoLinkRun(models.Model):
    """Stores the summary of a single auto-link run."""

    SCOPE_SINGLE = 'single'
    SCOPE_SELECTED = 'selected'
    SCOPE_ALL = 'all'
    SCOPE_CHOICES = [
        (SCOPE_SINGLE, 'Single post'),
        (SCOPE_SELECTED, 'Selected posts'),
        (SCOPE_ALL, 'All published posts'),
    ]

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='auto_link_runs',
    )
    scope = models.CharField(max_length=10, choices=SCOPE_CHOICES, default=SCOPE_ALL)
    max_links_per_post = models.PositiveSmallIntegerField(default=3)
    processed = models.PositiveIntegerField(default=0)
    modified = models.PositiveIntegerField(default=0)
    failed = models.PositiveIntegerField(default=0)
    links_added = models.PositiveIntegerField(default=0)
    results = models.JSONField(default=list, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self) -> str:  # pragma: no cover - convenience display
        return f"{self.get_scope_display()} · {self.modified}/{self.processed} · {self.created_at:%Y-%m-%d %H:%M}"
