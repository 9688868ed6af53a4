"""
Stream recorder module for TikTok Live Recorder.
Captures a live FLV stream to disk through a memory buffer, under duration,
liveness and cancellation limits.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Optional

import aiofiles

from .errors import TikTokRecorderError, TransportError
from .logger import get_user_logger
from .tiktok_api import StreamDescriptor, TikTokAPI

if TYPE_CHECKING:
    from .coordinator import CancellationSignal


BUFFER_SIZE = 512 * 1024  # 512 KiB

_STREAM_END = object()


class RecordingStatus(Enum):
    """Why a recording stopped."""
    COMPLETED = "completed"                # User went offline
    DURATION_REACHED = "duration_reached"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class RecordingResult:
    """Result of a recording session."""
    user: str
    room_id: str
    output_path: str
    status: RecordingStatus
    bytes_written: int
    started_at: datetime
    ended_at: datetime
    quality: str = ""
    error: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return self.bytes_written == 0

    @property
    def duration_seconds(self) -> float:
        return (self.ended_at - self.started_at).total_seconds()

    @property
    def duration_formatted(self) -> str:
        """Get human-readable duration."""
        hours = int(self.duration_seconds // 3600)
        minutes = int((self.duration_seconds % 3600) // 60)
        seconds = int(self.duration_seconds % 60)
        return f"{hours:02d}:{minutes:02d}:{seconds:02d}"

    @property
    def file_size_formatted(self) -> str:
        """Get human-readable file size."""
        size = float(self.bytes_written)
        for unit in ['B', 'KB', 'MB', 'GB']:
            if size < 1024:
                return f"{size:.2f} {unit}"
            size /= 1024
        return f"{size:.2f} TB"


class RecordingSession:
    """
    One capture attempt: append-mode output file, memory buffer and the
    wall-clock duration limit.
    """

    def __init__(
        self,
        path: Path,
        stop: 'CancellationSignal',
        duration: Optional[float] = None,
        buffer_size: int = BUFFER_SIZE
    ):
        self.path = path
        self.stop = stop
        self.duration = duration
        self.buffer_size = buffer_size

        self.buffer = bytearray()
        self.bytes_received = 0
        self.bytes_written = 0

        self._file = None
        self._started: Optional[float] = None

    async def open(self) -> None:
        self._file = await aiofiles.open(self.path, 'ab')
        self._started = asyncio.get_running_loop().time()

    def remaining(self) -> Optional[float]:
        """Seconds left before the duration limit, None without a limit."""
        if not self.duration:
            return None
        elapsed = asyncio.get_running_loop().time() - self._started
        return self.duration - elapsed

    def duration_reached(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    async def append(self, chunk: bytes) -> None:
        self.buffer.extend(chunk)
        self.bytes_received += len(chunk)
        if len(self.buffer) >= self.buffer_size:
            await self.flush()

    async def flush(self) -> None:
        if not self.buffer or self._file is None:
            return
        data = bytes(self.buffer)
        await self._file.write(data)
        # Kept in the buffer until the write succeeds
        del self.buffer[:len(data)]
        self.bytes_written += len(data)

    async def close(self) -> None:
        """Flush what is left in the buffer and close the file."""
        if self._file is None:
            return
        try:
            await self.flush()
        finally:
            await self._file.close()
            self._file = None


class StreamRecorder:
    """
    Records TikTok live streams.

    Features:
    - 512 KiB write buffer, always flushed on exit
    - Liveness re-check before every (re)connection
    - Dropped connections retried after a short cool-down
    - Duration limit and cancellation honoured even when the stream stalls
    """

    def __init__(
        self,
        api: TikTokAPI,
        output_dir: str = "./recordings",
        duration: Optional[float] = None,
        buffer_size: int = BUFFER_SIZE,
        error_cooldown: float = 2.0,
        read_tick: float = 1.0,
        queue_size: int = 64
    ):
        """
        Initialize stream recorder.

        Args:
            api: TikTok API client used for liveness checks and streaming.
            output_dir: Directory for recordings.
            duration: Maximum recording length in seconds (None = unlimited).
            buffer_size: Bytes buffered in memory before each write.
            error_cooldown: Seconds to wait after a stream error.
            read_tick: Maximum seconds between cancellation/duration checks.
            queue_size: Chunks buffered between the network reader and the writer.
        """
        self.api = api
        self.output_dir = Path(output_dir)
        self.duration = duration
        self.buffer_size = buffer_size
        self.error_cooldown = error_cooldown
        self.read_tick = read_tick
        self.queue_size = queue_size

    def generate_filename(self, user: str) -> str:
        """Raw capture name: TK_<user>_<UTC timestamp>_flv.mp4."""
        date_str = datetime.now(timezone.utc).strftime('%Y-%m-%d_%H-%M-%S')
        return f"TK_{user}_{date_str}_flv.mp4"

    async def record(
        self,
        user: str,
        room_id: str,
        descriptor: StreamDescriptor,
        stop: 'CancellationSignal'
    ) -> RecordingResult:
        """
        Record a live stream until the user goes offline, the duration
        limit is reached or stop is requested.

        Args:
            user: TikTok handle.
            room_id: Live room id.
            descriptor: Initially selected stream.
            stop: Cancellation signal.

        Returns:
            RecordingResult. An empty capture leaves no file behind.
        """
        logger = get_user_logger(user)

        self.output_dir.mkdir(parents=True, exist_ok=True)
        output_path = self.output_dir / self.generate_filename(user)

        if self.duration:
            logger.info(f"Started recording for {self.duration} seconds")
        else:
            logger.info("Started recording...")

        started_at = datetime.now()
        session = RecordingSession(output_path, stop, self.duration, self.buffer_size)
        await session.open()
        error = None
        try:
            status = await self._capture(session, room_id, descriptor, logger)
        except TikTokRecorderError as e:
            logger.error(f"Recording failed: {e}")
            status = RecordingStatus.FAILED
            error = str(e)
        finally:
            await session.close()

        result = RecordingResult(
            user=user,
            room_id=room_id,
            output_path=str(output_path),
            status=status,
            bytes_written=session.bytes_written,
            started_at=started_at,
            ended_at=datetime.now(),
            quality=descriptor.quality,
            error=error
        )

        if result.is_empty:
            logger.warning("Nothing was captured, removing empty file")
            output_path.unlink(missing_ok=True)
        else:
            logger.info(
                f"Recording finished: {output_path} "
                f"({result.file_size_formatted}, {result.duration_formatted}, {status.value})"
            )

        return result

    async def _capture(
        self,
        session: RecordingSession,
        room_id: str,
        descriptor: StreamDescriptor,
        logger
    ) -> RecordingStatus:
        first_pass = True

        while True:
            if session.stop.is_set():
                logger.info("🛑 Graceful stop requested, finishing recording...")
                return RecordingStatus.CANCELLED

            if session.duration_reached():
                return RecordingStatus.DURATION_REACHED

            if not await self.api.check_live(room_id):
                logger.info("User is no longer live. Stopping recording.")
                return RecordingStatus.COMPLETED

            if not first_pass:
                descriptor = await self._refresh_descriptor(room_id, descriptor, logger)
            first_pass = False

            received_before = session.bytes_received
            try:
                status = await self._consume(session, descriptor.url)
            except TransportError as e:
                if session.stop.is_set():
                    return RecordingStatus.CANCELLED
                logger.error(f"Stream error: {e}")
                await session.stop.wait(self.error_cooldown)
                continue

            if status is not None:
                return status

            # Stream closed by the server: re-check liveness and reconnect
            if session.bytes_received == received_before:
                await session.stop.wait(self.error_cooldown)

    async def _refresh_descriptor(
        self,
        room_id: str,
        descriptor: StreamDescriptor,
        logger
    ) -> StreamDescriptor:
        """Stream URLs expire, pick a fresh one before reconnecting."""
        try:
            fresh = await self.api.select_stream_url(room_id)
        except TransportError as e:
            logger.debug(f"Could not refresh stream URL: {e}")
            return descriptor
        return fresh or descriptor

    async def _pump(self, url: str, queue: asyncio.Queue) -> None:
        """Move chunks from the network into the queue."""
        try:
            async for chunk in self.api.download_live_stream(url):
                await queue.put(chunk)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await queue.put(e)
            return
        await queue.put(_STREAM_END)

    async def _consume(self, session: RecordingSession, url: str) -> Optional[RecordingStatus]:
        """
        Write one connection's chunks into the session.

        Returns:
            CANCELLED or DURATION_REACHED if a limit stopped the capture,
            None if the stream ended.
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        reader = asyncio.create_task(self._pump(url, queue))

        try:
            while True:
                if session.stop.is_set():
                    return RecordingStatus.CANCELLED

                remaining = session.remaining()
                if remaining is not None and remaining <= 0:
                    return RecordingStatus.DURATION_REACHED

                tick = self.read_tick if remaining is None else min(self.read_tick, remaining)
                try:
                    item = await asyncio.wait_for(queue.get(), timeout=tick)
                except asyncio.TimeoutError:
                    continue

                if item is _STREAM_END:
                    return None
                if isinstance(item, Exception):
                    raise item

                await session.append(item)
        finally:
            reader.cancel()
            await asyncio.gather(reader, return_exceptions=True)
