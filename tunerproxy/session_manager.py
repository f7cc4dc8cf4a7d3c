"""
Session Manager — turns an admitted channel request into a live MPEG-TS
byte stream backed by one FFmpeg process.

Design notes
------------
* Each session owns exactly one FFmpeg child that remuxes (``-c copy``) the
  resolved source into a transport stream on its stdout.
* A session ends on the first of: client disconnect, FFmpeg exit, or an
  explicit stop.  ``StreamSession.close()`` is the single teardown path and a
  per-session flag makes every later call a no-op, so the tuner lease is
  returned exactly once.
* Teardown sends SIGINT (lets the muxer flush) and returns the tuner right
  away; a background reaper waits for the process and kills it only if it
  ignores the interrupt.
* FFmpeg's stderr is logged at debug level and never ends a session by itself.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import time
import uuid
from collections.abc import AsyncIterator

from .admission import TunerLease
from .errors import ProcessSpawnError
from .models import ChannelDescriptor
from .sources import SourceResolverRegistry

logger = logging.getLogger(__name__)

# 348 TS packets, just under 64 KiB
CHUNK_SIZE = 188 * 348


class StreamSession:
    """One running FFmpeg process streaming a channel to one client."""

    def __init__(
        self,
        channel: ChannelDescriptor,
        source_url: str,
        process: asyncio.subprocess.Process,
        lease: TunerLease,
        stop_timeout: float = 5.0,
        on_close=None,
    ) -> None:
        self.session_id = uuid.uuid4().hex[:12]
        self.channel = channel
        self.source_url = source_url
        self.process = process
        self.started_at = time.time()
        self.end_reason: str | None = None

        self._lease = lease
        self._stop_timeout = stop_timeout
        self._on_close = on_close
        self._closed = False
        self._stderr_task: asyncio.Task | None = None
        self._reaper: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Public helpers
    # ------------------------------------------------------------------
    @property
    def channel_id(self) -> str:
        return self.channel.id

    @property
    def closed(self) -> bool:
        return self._closed

    def as_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "channel_id": self.channel_id,
            "channel_name": self.channel.display_name,
            "source_url": self.source_url,
            "pid": self.process.pid,
            "started_at": self.started_at,
        }

    def start_stderr_logging(self) -> None:
        if self.process.stderr is not None:
            self._stderr_task = asyncio.create_task(self._log_stderr())

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        """Pass FFmpeg's stdout through untouched until either side stops."""
        reason = "client disconnected"
        try:
            while True:
                chunk = await self.process.stdout.read(CHUNK_SIZE)
                if not chunk:
                    reason = "process exited"
                    break
                yield chunk
        finally:
            self.close(reason, drain=reason == "client disconnected")

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------
    def close(self, reason: str = "stopped", drain: bool = False) -> bool:
        """End the session. Only the first call does anything.

        Returns ``True`` if this call performed the teardown.
        """
        if self._closed:
            return False
        self._closed = True
        self.end_reason = reason

        logger.info(
            "Session %s for channel %s ending (%s) after %.0fs",
            self.session_id,
            self.channel_id,
            reason,
            time.time() - self.started_at,
        )

        if self.process.returncode is None:
            try:
                self.process.send_signal(signal.SIGINT)
            except ProcessLookupError:
                pass

        self._lease.release()

        if self._on_close is not None:
            self._on_close(self)

        try:
            self._reaper = asyncio.get_running_loop().create_task(self._reap(drain))
        except RuntimeError:
            # No loop left (interpreter shutdown); the signal was already sent
            pass
        return True

    async def response_finished(self) -> None:
        """Runs after the HTTP response is done, even if the body never started."""
        self.close("client disconnected", drain=True)

    async def wait_closed(self) -> None:
        """Wait until the reaper has collected the process."""
        if self._reaper is not None:
            await self._reaper

    async def _reap(self, drain: bool) -> None:
        try:
            await asyncio.wait_for(self._wait_exit(drain), timeout=self._stop_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "FFmpeg (pid %d) for session %s ignored SIGINT, killing",
                self.process.pid,
                self.session_id,
            )
            with contextlib.suppress(ProcessLookupError):
                self.process.kill()
            try:
                await asyncio.wait_for(self._wait_exit(drain), timeout=self._stop_timeout)
            except asyncio.TimeoutError:
                logger.error("FFmpeg (pid %d) did not exit after kill", self.process.pid)
                return

        logger.debug(
            "FFmpeg (pid %d) for session %s exited with code %s",
            self.process.pid,
            self.session_id,
            self.process.returncode,
        )

    async def _wait_exit(self, drain: bool) -> None:
        # Nobody reads stdout after a disconnect; drain it so the pipe can close
        if drain and self.process.stdout is not None:
            while await self.process.stdout.read(CHUNK_SIZE):
                pass
        await self.process.wait()

    async def _log_stderr(self) -> None:
        prefix = f"[ffmpeg:{self.channel_id}]"
        while True:
            try:
                line = await self.process.stderr.readline()
            except ValueError:
                # Line longer than the stream limit; the buffer has been
                # discarded, so keep draining from the next line
                logger.debug("%s <over-long line skipped>", prefix)
                continue
            if not line:
                return
            logger.debug("%s %s", prefix, line.decode("utf-8", errors="replace").rstrip())


class SessionManager:
    """Resolves sources, spawns FFmpeg and tracks every live session."""

    def __init__(
        self,
        registry: SourceResolverRegistry,
        ffmpeg_path: str = "ffmpeg",
        ffmpeg_log_level: str = "panic",
        stop_timeout: float = 5.0,
    ) -> None:
        self._registry = registry
        self.ffmpeg_path = ffmpeg_path
        self.ffmpeg_log_level = ffmpeg_log_level
        self.stop_timeout = stop_timeout
        self._sessions: dict[str, StreamSession] = {}

    def build_ffmpeg_cmd(self, input_args: list[str]) -> list[str]:
        """
        FFmpeg command that copies the input into an MPEG-TS on stdout.
        input_args should be complete list like ["-reconnect", "1", "-i", "url"].
        """
        return [
            self.ffmpeg_path,
            "-hide_banner",
            "-loglevel",
            self.ffmpeg_log_level,
            *input_args,
            "-c",
            "copy",
            "-f",
            "mpegts",
            "pipe:1",
        ]

    async def start_session(self, channel: ChannelDescriptor, lease: TunerLease) -> StreamSession:
        """Resolve, spawn and register a session for an admitted request.

        On any failure the lease is returned before the error propagates.
        Raises ``SourceResolutionError`` or ``ProcessSpawnError``.
        """
        try:
            resolver = self._registry.get_resolver(channel)
            source_url = await resolver.resolve(channel)

            input_args = [*resolver.get_ffmpeg_input_args(source_url), "-i", source_url]
            cmd = self.build_ffmpeg_cmd(input_args)
            logger.info("Starting FFmpeg for channel %s (%s)", channel.id, channel.display_name)
            logger.debug("FFmpeg command: %s", " ".join(cmd))

            try:
                process = await asyncio.create_subprocess_exec(
                    *cmd,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except OSError as exc:
                raise ProcessSpawnError(f"Could not start {self.ffmpeg_path}: {exc}") from exc
        except BaseException:
            lease.release()
            raise

        session = StreamSession(
            channel,
            source_url,
            process,
            lease,
            stop_timeout=self.stop_timeout,
            on_close=self._forget,
        )
        session.start_stderr_logging()
        self._sessions[session.session_id] = session
        logger.info(
            "Session %s started for channel %s (pid %d)",
            session.session_id,
            channel.id,
            process.pid,
        )
        return session

    def _forget(self, session: StreamSession) -> None:
        self._sessions.pop(session.session_id, None)

    def sessions(self) -> list[StreamSession]:
        return list(self._sessions.values())

    async def stop_all(self) -> None:
        sessions = self.sessions()
        for session in sessions:
            session.close("server shutdown")
        for session in sessions:
            await session.wait_closed()
