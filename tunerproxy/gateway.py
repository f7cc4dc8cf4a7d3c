"""
Gateway — the long-lived objects behind the HTTP front door.

Built once at startup and stored on ``app.state``; request handlers reach the
directory, the tuner pool and the session manager only through it.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from . import database, guide
from .admission import AdmissionController
from .config import Settings
from .device import DeviceClient
from .directory import ChannelDirectory, LineupFetcher
from .errors import CapacityExceeded, ChannelNotFound, ConfigurationError
from .models import ChannelDescriptor
from .scheduler import PersistentScheduler
from .session_manager import SessionManager, StreamSession
from .sources import SourceResolverRegistry

logger = logging.getLogger(__name__)

MANUFACTURER = "Silicondust"
MODEL_NUMBER = "HDTC-2US"
FIRMWARE_NAME = "hdhomeruntc_atsc"
FIRMWARE_VERSION = "20150826"


class Gateway:
    def __init__(
        self,
        settings: Settings,
        capacity: int,
        device: DeviceClient,
        registry: SourceResolverRegistry | None = None,
        fetch_lineup: LineupFetcher | None = None,
        channels: Iterable[ChannelDescriptor] = (),
    ) -> None:
        self.settings = settings
        self.device = device
        self.directory = ChannelDirectory(channels)
        self.admission = AdmissionController(capacity)
        self.sessions = SessionManager(
            registry or SourceResolverRegistry.for_device(device),
            ffmpeg_path=settings.ffmpeg_path,
            ffmpeg_log_level=settings.ffmpeg_log_level,
            stop_timeout=settings.stop_timeout,
        )
        self._fetch_lineup = fetch_lineup or device.channels
        self.lineup_scheduler: PersistentScheduler | None = None
        self.guide_scheduler: PersistentScheduler | None = None

    @classmethod
    async def create(cls, settings: Settings, **kwargs) -> Gateway:
        """Build a gateway, asking the device for its tuner count if needed."""
        device = kwargs.pop("device", None) or DeviceClient(
            settings.device_url, timeout=settings.device_timeout
        )
        capacity = settings.tuner_count
        if capacity is None:
            try:
                capacity = await device.tuner_count()
            except Exception as exc:
                raise ConfigurationError(
                    f"No tuner count configured and device at {device.base_url} "
                    f"could not report one: {exc}"
                ) from exc
        return cls(settings, capacity, device, **kwargs)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def start(self) -> None:
        database.init_db(self.settings.db_path)
        cached = database.load_lineup(self.settings.db_path)
        if cached and not len(self.directory):
            self.directory.replace(cached)
            logger.info("Loaded %d cached channel(s)", len(cached))

        self.lineup_scheduler = PersistentScheduler(
            self.settings.schedule_lineup_file,
            "Update channel lineup",
            self.settings.lineup_interval_ms,
            self.refresh_lineup,
        )
        await self.lineup_scheduler.schedule_next_run()

        if self.settings.create_xml:
            self.guide_scheduler = PersistentScheduler(
                self.settings.schedule_guide_file,
                "Update guide data",
                self.settings.guide_interval_ms,
                self.refresh_guide,
            )
            await self.guide_scheduler.schedule_next_run()

    async def stop(self) -> None:
        for scheduler in (self.lineup_scheduler, self.guide_scheduler):
            if scheduler is not None:
                scheduler.shutdown()
        logger.info("Shutting down – stopping %d session(s)", len(self.sessions.sessions()))
        await self.sessions.stop_all()

    # ------------------------------------------------------------------
    # Scheduled tasks
    # ------------------------------------------------------------------
    async def refresh_lineup(self) -> None:
        snapshot = await self.directory.refresh(self._fetch_lineup)
        database.save_lineup(list(snapshot.values()), self.settings.db_path)

    async def refresh_guide(self) -> None:
        guide.write_guide(self.settings.guide_file, self.directory.snapshot().values())

    async def force_refresh(self) -> None:
        """Run the lineup (and guide) task now, outside the schedule."""
        if self.lineup_scheduler is not None:
            await self.lineup_scheduler.force_run_now()
        if self.guide_scheduler is not None:
            await self.guide_scheduler.force_run_now()

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------
    async def open_stream(self, channel_id: str) -> StreamSession:
        """Look up, admit and start a channel.

        Raises ``ChannelNotFound``, ``CapacityExceeded``,
        ``SourceResolutionError`` or ``ProcessSpawnError``.
        """
        channel = self.directory.get(channel_id)
        if channel is None:
            raise ChannelNotFound(f"Channel {channel_id} not found")

        lease = self.admission.lease()
        if lease is None:
            logger.warning(
                "No tuner free for channel %s (%d/%d in use)",
                channel_id,
                self.admission.in_use,
                self.admission.capacity,
            )
            raise CapacityExceeded("All tuners are in use")

        return await self.sessions.start_session(channel, lease)

    # ------------------------------------------------------------------
    # Device emulation payloads
    # ------------------------------------------------------------------
    def discover(self) -> dict:
        base_url = self.settings.server_url
        return {
            "FriendlyName": self.settings.name,
            "Manufacturer": MANUFACTURER,
            "ModelNumber": MODEL_NUMBER,
            "FirmwareName": FIRMWARE_NAME,
            "TunerCount": self.admission.capacity,
            "FirmwareVersion": FIRMWARE_VERSION,
            "DeviceID": self.settings.device_id,
            "DeviceAuth": self.settings.device_id,
            "BaseURL": base_url,
            "LineupURL": f"{base_url}/lineup.json",
        }

    def lineup(self) -> list[dict]:
        base_url = self.settings.server_url
        return [
            {
                "GuideNumber": channel.display_number,
                "GuideName": channel.display_name,
                "URL": f"{base_url}/channel/{channel.id}",
            }
            for channel in self.directory.snapshot().values()
        ]

    def status(self) -> dict:
        cache = database.lineup_info(self.settings.db_path)
        return {
            "tuners": {
                "capacity": self.admission.capacity,
                "in_use": self.admission.in_use,
                "available": self.admission.available,
            },
            "channels": len(self.directory),
            "lineup_cached_at": cache.updated_at,
            "sessions": [s.as_dict() for s in self.sessions.sessions()],
        }
