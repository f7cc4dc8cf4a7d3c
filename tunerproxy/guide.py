"""XMLTV guide file, rewritten on the guide schedule."""

from __future__ import annotations

import logging
import os
import xml.etree.ElementTree as ET
from collections.abc import Iterable
from pathlib import Path

from .models import ChannelDescriptor

logger = logging.getLogger(__name__)


def build_guide(channels: Iterable[ChannelDescriptor], generator: str = "tunerproxy") -> bytes:
    """An XMLTV document with one ``<channel>`` per directory entry."""
    tv = ET.Element("tv", {"generator-info-name": generator})
    for channel in channels:
        el = ET.SubElement(tv, "channel", {"id": channel.id})
        ET.SubElement(el, "display-name").text = channel.display_name
        ET.SubElement(el, "display-name").text = channel.display_number
    return ET.tostring(tv, encoding="utf-8", xml_declaration=True)


def write_guide(path: Path, channels: Iterable[ChannelDescriptor]) -> int:
    """Atomically replace the guide file; returns the channel count."""
    channels = list(channels)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path.write_bytes(build_guide(channels))
    os.replace(tmp_path, path)
    logger.info("Guide written to %s (%d channel(s))", path, len(channels))
    return len(channels)
