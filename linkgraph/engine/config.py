"""Configuration helpers for the link graph engine."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping

import yaml


@dataclass(frozen=True)
class EngineConfig:
    """Typed wrapper around the engine configuration dictionary."""

    raw: Dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.raw.get(key, default)

    @property
    def post_prefix(self) -> str:
        return self.raw.get("post_prefix", "/post/")

    @property
    def post_prefixes(self) -> List[str]:
        prefixes = [self.post_prefix]
        for prefix in self.raw.get("post_prefixes", []):
            if prefix and prefix not in prefixes:
                prefixes.append(prefix)
        return prefixes

    @property
    def site_hosts(self) -> set[str]:
        return {host.lower() for host in self.raw.get("site_hosts", []) if host}

    @property
    def max_links_per_run(self) -> int:
        return int(self.raw.get("max_links_per_run", 3))

    @property
    def auto_link_attribute(self) -> str:
        return self.raw.get("auto_link_attribute", "data-auto-link")

    @property
    def protected_tags(self) -> frozenset[str]:
        return frozenset(tag.lower() for tag in self.raw.get("protected_tags", []))

    @property
    def meta_description_limit(self) -> int:
        return int(self.raw.get("meta_description_limit", 160))

    def post_href(self, slug: str) -> str:
        return f"{self.post_prefix}{slug}"


DEFAULTS: Dict[str, Any] = {
    "post_prefix": "/post/",
    # Legacy route still served by the frontend.
    "post_prefixes": ["/posts/"],
    "site_hosts": [],
    "max_links_per_run": 3,
    "auto_link_attribute": "data-auto-link",
    "protected_tags": [
        "a", "script", "style", "code", "pre", "textarea", "button", "h1",
        "option", "select", "title", "svg", "noscript", "template",
    ],
    "title_weight": 2.0,
    "body_weight": 1.0,
    "min_score": 1.0,
    "min_token_length": 3,
    "excerpt_chars": None,
    "extra_stopwords": [],
    "meta_description_limit": 160,
    "see_also_prefix": "See also:",
    "optimistic_locking": False,
}


def load_config(
    path: str | Path | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> EngineConfig:
    """Load configuration from YAML, merging with defaults and overrides."""

    data: Dict[str, Any] = copy.deepcopy(DEFAULTS)

    if path is not None and Path(path).exists():
        with Path(path).open("r", encoding="utf-8") as stream:
            user = yaml.safe_load(stream) or {}
        merge_into(data, user)

    if overrides:
        merge_into(data, dict(overrides))

    return EngineConfig(data)


def merge_into(base: Dict[str, Any], override: Dict[str, Any]) -> None:
    """Recursively merge override into base dict."""

    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            merge_into(base[key], value)
        else:
            base[key] = value
