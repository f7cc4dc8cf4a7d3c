"""
Client for the upstream Tablo device's local HTTP API.

Only three calls matter to the gateway: how many tuners the device has, which
channels it carries, and "start watching channel X", which hands back a
playlist URL for the live stream. Request signing belongs to the credentials
layer and is plugged in through ``auth_headers``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

import httpx

from .errors import SourceResolutionError
from .models import ChannelDescriptor

logger = logging.getLogger(__name__)

AuthHeaders = Callable[[str, str], dict[str, str]]


class DeviceClient:
    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        auth_headers: AuthHeaders | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._auth_headers = auth_headers
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url, timeout=self._timeout, transport=self._transport
        )

    def _headers(self, method: str, path: str) -> dict[str, str]:
        return self._auth_headers(method, path) if self._auth_headers else {}

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        async with self._client() as client:
            response = await client.request(
                method, path, headers=self._headers(method, path), **kwargs
            )
        response.raise_for_status()
        return response

    async def tuner_count(self) -> int:
        """Number of tuners reported by ``/server/info``."""
        response = await self._request("GET", "/server/info")
        tuners = int(response.json()["model"]["tuners"])
        logger.info("Device at %s reports %d tuner(s)", self.base_url, tuners)
        return tuners

    async def channels(self) -> list[ChannelDescriptor]:
        """The device's current channel list as directory entries."""
        response = await self._request("GET", "/guide/channels")
        return [ChannelDescriptor.from_dict(rec) for rec in response.json()]

    async def watch(self, channel_id: str) -> str:
        """Ask the device to tune ``channel_id``; returns the playlist URL."""
        path = f"/guide/channels/{channel_id}/watch"
        try:
            response = await self._request(
                "POST",
                path,
                json={"bandwidth": None, "extra": {}},
            )
            playlist_url = response.json()["playlist_url"]
        except httpx.HTTPError as exc:
            raise SourceResolutionError(f"Device watch request failed: {exc}") from exc
        except (ValueError, KeyError, TypeError) as exc:
            raise SourceResolutionError(f"Malformed watch response for {channel_id}") from exc

        if not isinstance(playlist_url, str) or not playlist_url.startswith("http"):
            raise SourceResolutionError(f"Device returned no playlist for {channel_id}")

        logger.info("Resolved (device) %s → %s", channel_id, playlist_url[:120])
        return playlist_url
