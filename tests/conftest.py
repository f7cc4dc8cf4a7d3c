"""Shared test fixtures."""

import sys

import pytest

from tunerproxy import database
from tunerproxy.config import Settings
from tunerproxy.models import ChannelDescriptor, SourceKind

# Stand-ins for FFmpeg: write TS-sized packets to stdout
ENDLESS_STREAM = (
    "import sys, time\n"
    "out = sys.stdout.buffer\n"
    "try:\n"
    "    while True:\n"
    "        out.write(b'G' * 188)\n"
    "        out.flush()\n"
    "        time.sleep(0.02)\n"
    "except (KeyboardInterrupt, BrokenPipeError):\n"
    "    pass\n"
)

FINITE_STREAM = "import sys\nsys.stdout.buffer.write(b'G' * 188 * 10)\n"


def fake_ffmpeg(script: str):
    """Replacement for ``SessionManager.build_ffmpeg_cmd``."""

    def build(input_args):
        return [sys.executable, "-c", script]

    return build


@pytest.fixture
def channels():
    return [
        ChannelDescriptor("S1", "2.1", "KTVU", SourceKind.DIRECT_URL, "http://example.com/a.m3u8"),
        ChannelDescriptor("S2", "4.1", "KRON", SourceKind.DIRECT_URL, "http://example.com/b.m3u8"),
        ChannelDescriptor("S3", "5.1", "KPIX", SourceKind.DIRECT_URL, "http://example.com/c.m3u8"),
    ]


@pytest.fixture
def settings(tmp_path):
    return Settings(
        tuner_count=2,
        out_dir=tmp_path,
        ip_address="10.0.0.5",
        port=8181,
        create_xml=True,
        stop_timeout=2.0,
    )


@pytest.fixture(autouse=True)
def temp_db(monkeypatch, tmp_path):
    """Point the lineup cache at a temporary database."""
    db_path = tmp_path / "test.db"
    monkeypatch.setattr(database, "DB_PATH", db_path)
    database.init_db()
    yield db_path
