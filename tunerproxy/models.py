"""
Typed records shared across the gateway.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum


class SourceKind(str, Enum):
    """Where a channel's live stream comes from."""

    DEVICE_HOSTED = "device"  # must be requested from the Tablo tuner first
    DIRECT_URL = "direct"  # static internet stream


@dataclass(frozen=True)
class ChannelDescriptor:
    id: str
    display_number: str
    display_name: str
    source_kind: SourceKind
    source_locator: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> ChannelDescriptor:
        """Build a descriptor from a lineup record.

        Accepts both the cache column names and the device's short keys
        (``number`` / ``name`` / ``kind`` / ``url``).
        """
        return cls(
            id=str(data["id"]),
            display_number=str(data.get("display_number", data.get("number", ""))),
            display_name=str(data.get("display_name", data.get("name", ""))),
            source_kind=SourceKind(data.get("source_kind", data.get("kind", "device"))),
            source_locator=str(data.get("source_locator", data.get("url", "")) or ""),
        )

    def to_dict(self) -> dict:
        d = asdict(self)
        d["source_kind"] = self.source_kind.value
        return d


@dataclass
class ScheduleState:
    """What a schedule file holds: the interval and the absolute next run."""

    interval_ms: int
    next_run_at: datetime


@dataclass(frozen=True)
class AdmissionResult:
    granted: bool
    current_use: int
