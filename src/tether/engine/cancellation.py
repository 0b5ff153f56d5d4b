"""Cooperative cancellation token for runs."""

from __future__ import annotations

import asyncio


class CancellationToken:
    """A flag the engine checks at the top of each poll iteration.

    Setting it before a run exists is remembered until the next run
    observes it. The underlying event also wakes backoff waits in
    :func:`~tether.core.retry.retry_with_backoff`.
    """

    __slots__ = ("_event",)

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def request(self) -> None:
        self._event.set()

    def clear(self) -> None:
        self._event.clear()

    @property
    def is_requested(self) -> bool:
        return self._event.is_set()

    @property
    def event(self) -> asyncio.Event:
        return self._event

    def __bool__(self) -> bool:
        return self._event.is_set()
