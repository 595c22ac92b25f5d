from __future__ import annotations

import time
from typing import Any, Callable

from django.conf import settings
from django.core.cache import caches
from django.http import HttpRequest, HttpResponse, JsonResponse

DEFAULT_THROTTLE_LIMIT = 30  # requests
DEFAULT_THROTTLE_WINDOW = 60  # seconds
DEFAULT_THROTTLE_KEY_PREFIX = 'linkgraph:throttle'


class SlidingWindowRateThrottle:
    """Sliding-window rate limiter for expensive routes, backed by the cache.

    Requests are counted per route and per client: the user id for
    authenticated users, the client IP otherwise. Only routes listed in
    ``THROTTLED_ROUTES`` are counted.
    """

    def __init__(
        self,
        get_response: Callable[[HttpRequest], HttpResponse],
        *,
        limit: int | None = None,
        window: int | None = None,
        cache_alias: str = 'default',
        key_prefix: str | None = None,
    ) -> None:
        self.get_response = get_response
        self.limit = limit or getattr(settings, 'THROTTLE_LIMIT', DEFAULT_THROTTLE_LIMIT)
        self.window = window or getattr(settings, 'THROTTLE_WINDOW', DEFAULT_THROTTLE_WINDOW)
        self.cache = caches[cache_alias]
        self.key_prefix = key_prefix or getattr(settings, 'THROTTLE_KEY_PREFIX', DEFAULT_THROTTLE_KEY_PREFIX)

    def __call__(self, request: HttpRequest) -> HttpResponse:
        return self.get_response(request)

    def process_view(
        self,
        request: HttpRequest,
        view_func: Callable[..., HttpResponse],
        view_args: tuple,
        view_kwargs: dict[str, Any],
    ) -> HttpResponse | None:
        # resolver_match is only populated once URL resolution has run
        resolved = getattr(request, 'resolver_match', None)
        if resolved is None:
            return None

        route_name = resolved.view_name
        if route_name not in getattr(settings, 'THROTTLED_ROUTES', []):
            return None

        cache_key = self._build_cache_key(request, route_name)
        now = time.time()
        bucket = [timestamp for timestamp in self.cache.get(cache_key, []) if timestamp > now - self.window]

        if len(bucket) >= self.limit:
            return self._reject(route_name)

        bucket.append(now)
        self.cache.set(cache_key, bucket, timeout=self.window)
        return None

    def _build_cache_key(self, request: HttpRequest, route_name: str) -> str:
        user = getattr(request, 'user', None)
        if user is not None and user.is_authenticated:
            client = f'user:{user.pk}'
        else:
            client = f'ip:{self._get_client_ip(request)}'
        return f"{self.key_prefix}:{route_name}:{client}"

    def _get_client_ip(self, request: HttpRequest) -> str:
        header = getattr(settings, 'THROTTLE_IP_HEADER', 'HTTP_X_FORWARDED_FOR')
        if header in request.META:
            return request.META[header].split(',')[0].strip()
        return request.META.get('REMOTE_ADDR', '0.0.0.0')

    def _reject(self, route_name: str) -> HttpResponse:
        payload = {
            'error': 'Rate limit exceeded. Try again shortly.',
            'route': route_name,
        }
        return JsonResponse(payload, status=429)


def sliding_window_rate_throttle(get_response: Callable[[HttpRequest], HttpResponse]) -> SlidingWindowRateThrottle:
    return SlidingWindowRateThrottle(get_response)
