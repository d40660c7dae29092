# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Fixed-window rate limiter keyed by client address.

Each client key gets a counter that lives for one window. The first request
(or the first one after the window expired) opens a new window with
``count=1``; later requests increment the counter and are allowed while the
incremented count stays within the limit. With the defaults the 6th request
inside 60 seconds is rejected.

A burst of up to twice the limit is possible across a window boundary
(``limit`` requests at the end of one window plus ``limit`` at the start of
the next). This is inherent to fixed windows and is kept as is.

The table of entries is bounded: it keeps at most ``max_entries`` keys in
least-recently-used order, and :meth:`RateLimiter.sweep` drops expired
entries. The limiter is only touched between awaits on the event loop, so it
needs no lock.

Example:
    Checking a request::

        limiter = RateLimiter(limit=5, window=60.0)
        if not limiter.check(client_key(request)):
            raise RateLimited()
"""

from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass

from starlette.requests import Request

from .logger import get_logger

logger = get_logger("rate_limit")

DEFAULT_LIMIT = 5
DEFAULT_WINDOW_SECONDS = 60.0
DEFAULT_MAX_ENTRIES = 10_000
UNKNOWN_CLIENT = "unknown"


@dataclass
class RateLimitEntry:
    """Request counter for one client key within one window."""

    count: int
    reset_at: float


class RateLimiter:
    """Per-client fixed-window rate limiter with bounded memory.

    Attributes:
        limit: Requests allowed per window.
        window: Window length in seconds.
        max_entries: Maximum number of client keys tracked at once.
    """

    def __init__(
        self,
        limit: int = DEFAULT_LIMIT,
        window: float = DEFAULT_WINDOW_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the limiter.

        Args:
            limit: Requests allowed per window.
            window: Window length in seconds.
            max_entries: Upper bound on tracked keys. When a new key would
                exceed it, the least recently used key is forgotten.
            clock: Monotonic time source in seconds, injectable for tests.
        """
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.limit = limit
        self.window = window
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, RateLimitEntry] = OrderedDict()

    def check(self, client_key: str) -> bool:
        """Count a request for ``client_key`` and report whether it is allowed.

        Args:
            client_key: Identifier of the caller, see :func:`client_key`.

        Returns:
            True if the request fits in the current window.
        """
        now = self._clock()
        entry = self._entries.get(client_key)

        if entry is None or now >= entry.reset_at:
            self._entries[client_key] = RateLimitEntry(count=1, reset_at=now + self.window)
            self._entries.move_to_end(client_key)
            self._evict_overflow()
            return True

        self._entries.move_to_end(client_key)
        entry.count += 1
        return entry.count <= self.limit

    def get(self, client_key: str) -> RateLimitEntry | None:
        """Return the stored entry for ``client_key`` without counting."""
        return self._entries.get(client_key)

    def sweep(self) -> int:
        """Drop every entry whose window has expired.

        Returns:
            Number of entries removed.
        """
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if now >= entry.reset_at]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Swept %d expired rate-limit entries", len(expired))
        return len(expired)

    def reset(self) -> None:
        """Forget all clients."""
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def _evict_overflow(self) -> None:
        while len(self._entries) > self.max_entries:
            key, _entry = self._entries.popitem(last=False)
            logger.debug("Evicted rate-limit entry for %s", key)


def client_key(request: Request) -> str:
    """Derive the rate-limit key of a request.

    Uses the first ``X-Forwarded-For`` entry when present, then the peer
    address, and finally ``"unknown"``. Every request without identifying
    information therefore shares one bucket.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN_CLIENT
