"""
Configuration — environment / ``.env`` driven settings for the gateway.

Every option can be set with a ``TUNERPROXY_`` prefixed environment variable,
e.g. ``TUNERPROXY_PORT=8282`` or ``TUNERPROXY_CREATE_XML=true``.
"""

from __future__ import annotations

import socket
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

DAY_MS = 24 * 60 * 60 * 1000
HOUR_MS = 60 * 60 * 1000


class Settings(BaseSettings):
    """Application settings."""

    # Service settings
    host: str = "0.0.0.0"
    port: int = 8181
    ip_address: str = ""  # auto-detected when empty
    log_level: str = "info"

    # Emulated device
    name: str = "Tablo 4th Gen Proxy"
    device_id: str = "12345678"

    # Upstream Tablo device
    device_url: str = "http://127.0.0.1:8887"
    device_timeout: float = 10.0
    tuner_count: int | None = None  # falls back to the device's own tuner count

    # Files
    out_dir: Path = Path.cwd()

    # Schedules
    lineup_update_interval_days: float = 30
    guide_update_interval_hours: float = 24
    create_xml: bool = False

    # FFmpeg settings
    ffmpeg_path: str = "ffmpeg"
    stop_timeout: float = 5.0

    model_config = SettingsConfigDict(
        env_prefix="TUNERPROXY_",
        env_file=".env",
        extra="ignore",
    )

    @property
    def lineup_interval_ms(self) -> int:
        return int(self.lineup_update_interval_days * DAY_MS)

    @property
    def guide_interval_ms(self) -> int:
        return int(self.guide_update_interval_hours * HOUR_MS)

    @property
    def server_url(self) -> str:
        return f"http://{self.ip_address or local_ipv4_address()}:{self.port}"

    @property
    def ffmpeg_log_level(self) -> str:
        return {
            "debug": "debug",
            "warn": "warning",
            "warning": "warning",
            "info": "info",
        }.get(self.log_level.lower(), "panic")

    @property
    def schedule_lineup_file(self) -> Path:
        return self.out_dir / "schedule_lineup.json"

    @property
    def schedule_guide_file(self) -> Path:
        return self.out_dir / "schedule_guide.json"

    @property
    def guide_file(self) -> Path:
        return self.out_dir / "guide.xml"

    @property
    def db_path(self) -> Path:
        return self.out_dir / "tunerproxy.db"


def local_ipv4_address() -> str:
    """Return the first non-loopback IPv4 address of this machine."""
    try:
        # No packets are sent; connecting a UDP socket just picks a route
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            s.connect(("8.8.8.8", 80))
            return s.getsockname()[0]
        finally:
            s.close()
    except OSError:
        return "127.0.0.1"


settings = Settings()
