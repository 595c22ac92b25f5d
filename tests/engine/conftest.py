"""Shared fixtures for link graph engine tests."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from linkgraph.engine.config import load_config
from linkgraph.engine.types import Article


@pytest.fixture()
def engine_config():
    """Provide the default engine configuration."""

    return load_config(None)


def make_article(
    id: str,
    slug: str,
    title: str,
    content: str = "",
    *,
    meta_description: str | None = None,
    published: bool = True,
    created_at: datetime | None = datetime(2024, 1, 1, tzinfo=timezone.utc),
) -> Article:
    return Article(
        id=id,
        slug=slug,
        title=title,
        content=content,
        meta_description=meta_description,
        published=published,
        created_at=created_at,
    )
