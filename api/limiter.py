"""
api/limiter.py -- IP-keyed fixed-window request throttle.

Built on the `limits` package (the engine underneath slowapi) and keyed with
slowapi's get_remote_address. Each IpRateLimiter owns its own MemoryStorage,
so create_app() can build one for general traffic and a stricter one for the
auth endpoints, and every test gets fresh counters. Nothing here is
module-global.

Window semantics: the first request from an address opens a window of
window_secs and counts 1. Further requests inside the window increment the
count; once the count is at max_requests, requests are rejected until the
window has elapsed, then the next request opens a new window. MemoryStorage
serialises the read-check-update for one key under its own lock and does no
I/O while holding it.

This throttles traffic, not identities. The per-account LoginGuard is separate
and both run on the same login request without touching each other's state.
"""

from __future__ import annotations

import time

from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage
from limits.strategies import FixedWindowRateLimiter
from slowapi.util import get_remote_address
from starlette.requests import Request


class IpRateLimiter:
    def __init__(self, max_requests: int, window_secs: int, namespace: str = "general") -> None:
        self.max_requests = max_requests
        self.window_secs = window_secs
        self.namespace = namespace
        self._storage = MemoryStorage()
        self._strategy = FixedWindowRateLimiter(self._storage)
        self._item = RateLimitItemPerSecond(max_requests, window_secs)

    def hit(self, key: str) -> bool:
        """Count one request for key. Returns False when the window is full."""
        return self._strategy.hit(self._item, self.namespace, key)

    def check(self, request: Request) -> bool:
        return self.hit(get_remote_address(request))

    def retry_after(self, request: Request) -> int:
        """Seconds until the current window for this client closes (at least 1)."""
        stats = self._strategy.get_window_stats(self._item, self.namespace, get_remote_address(request))
        return max(1, int(stats[0] - time.time()))
