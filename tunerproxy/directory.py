"""
Channel directory — the current lineup, swapped wholesale on refresh.

Readers call :meth:`ChannelDirectory.snapshot` (or :meth:`get`) and keep the
mapping they got; a refresh builds a brand new mapping and only then replaces
the reference, so nobody ever observes a half-built lineup.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from types import MappingProxyType

from .errors import RefreshCallbackError
from .models import ChannelDescriptor

logger = logging.getLogger(__name__)

LineupFetcher = Callable[[], Awaitable[Iterable[ChannelDescriptor]]]


class ChannelDirectory:
    def __init__(self, channels: Iterable[ChannelDescriptor] = ()) -> None:
        self._snapshot: Mapping[str, ChannelDescriptor] = self._build(channels)

    @staticmethod
    def _build(channels: Iterable[ChannelDescriptor]) -> Mapping[str, ChannelDescriptor]:
        return MappingProxyType({c.id: c for c in channels})

    def snapshot(self) -> Mapping[str, ChannelDescriptor]:
        return self._snapshot

    def get(self, channel_id: str) -> ChannelDescriptor | None:
        return self._snapshot.get(channel_id)

    def __len__(self) -> int:
        return len(self._snapshot)

    def replace(self, channels: Iterable[ChannelDescriptor]) -> Mapping[str, ChannelDescriptor]:
        """Publish a complete new lineup."""
        new = self._build(channels)
        self._snapshot = new
        logger.info("Channel directory updated: %d channel(s)", len(new))
        return new

    async def refresh(self, fetch: LineupFetcher) -> Mapping[str, ChannelDescriptor]:
        """Fetch a full lineup and swap it in; the old one stays on any failure."""
        try:
            channels = list(await fetch())
        except Exception as exc:
            logger.warning("Lineup refresh failed, keeping %d channel(s): %s", len(self), exc)
            raise RefreshCallbackError(str(exc)) from exc
        return self.replace(channels)
