"""
Source resolvers — turn a channel descriptor into something FFmpeg can open.
Uses dependency injection pattern so new channel kinds only need a resolver.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from .device import DeviceClient
from .errors import SourceResolutionError
from .models import ChannelDescriptor, SourceKind

logger = logging.getLogger(__name__)


class SourceResolver(ABC):
    """Abstract base class for source resolvers."""

    @abstractmethod
    def can_handle(self, channel: ChannelDescriptor) -> bool:
        """Check if this resolver can process the given channel."""
        pass

    @abstractmethod
    async def resolve(self, channel: ChannelDescriptor) -> str:
        """Return a playable source URL for the channel."""
        pass

    def get_ffmpeg_input_args(self, url: str) -> list[str]:
        """FFmpeg flags placed before ``-i``."""
        input_flags = []
        if url.startswith("http"):
            input_flags += ["-reconnect", "1", "-reconnect_delay_max", "5"]
            if ".m3u8" in url or "playlist" in url:
                input_flags += ["-reconnect_streamed", "1"]
        return input_flags


class DirectUrlResolver(SourceResolver):
    """Internet channels: the locator already is the stream."""

    def can_handle(self, channel: ChannelDescriptor) -> bool:
        return channel.source_kind == SourceKind.DIRECT_URL

    async def resolve(self, channel: ChannelDescriptor) -> str:
        if not channel.source_locator:
            raise SourceResolutionError(f"Channel {channel.id} has no source URL")
        return channel.source_locator


class DeviceHostedResolver(SourceResolver):
    """Antenna channels: the Tablo must tune before a URL exists."""

    def __init__(self, device: DeviceClient) -> None:
        self._device = device

    def can_handle(self, channel: ChannelDescriptor) -> bool:
        return channel.source_kind == SourceKind.DEVICE_HOSTED

    async def resolve(self, channel: ChannelDescriptor) -> str:
        return await self._device.watch(channel.source_locator or channel.id)


class SourceResolverRegistry:
    """Registry for source resolvers with dependency injection."""

    def __init__(self, resolvers: list[SourceResolver]) -> None:
        self._resolvers = list(resolvers)

    @classmethod
    def for_device(cls, device: DeviceClient) -> SourceResolverRegistry:
        return cls([DeviceHostedResolver(device), DirectUrlResolver()])

    def get_resolver(self, channel: ChannelDescriptor) -> SourceResolver:
        for resolver in self._resolvers:
            if resolver.can_handle(channel):
                return resolver
        raise SourceResolutionError(f"No resolver for {channel.source_kind.value} channel {channel.id}")
