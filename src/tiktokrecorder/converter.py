"""
Video converter module for TikTok Live Recorder.
Remuxes raw FLV captures to MP4 using ffmpeg.
"""

import asyncio
import json
from pathlib import Path
from typing import Optional

from .logger import get_logger


RAW_MARKER = '_flv.mp4'


async def probe_video(file_path: str) -> dict:
    """
    Get video duration, width, height using ffprobe.

    Returns:
        Dict with 'duration' (int seconds), 'width' and 'height'.
        Falls back to zero duration and 1080p on errors.
    """
    try:
        process = await asyncio.create_subprocess_exec(
            'ffprobe', '-v', 'error',
            '-select_streams', 'v:0',
            '-show_entries', 'stream=width,height,duration',
            '-show_entries', 'format=duration',
            '-of', 'json',
            file_path,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE
        )
        stdout, _ = await process.communicate()
        data = json.loads(stdout.decode() or '{}')

        duration = 0.0
        if 'duration' in data.get('format', {}):
            duration = float(data['format']['duration'])
        elif data.get('streams') and 'duration' in data['streams'][0]:
            duration = float(data['streams'][0]['duration'])

        width, height = 1920, 1080
        if data.get('streams'):
            stream = data['streams'][0]
            width = stream.get('width', width)
            height = stream.get('height', height)

        return {'duration': int(duration), 'width': width, 'height': height}

    except (OSError, ValueError) as e:
        get_logger('converter').warning(f"Failed to get video metadata: {e}")
        return {'duration': 0, 'width': 1920, 'height': 1080}


class VideoConverter:
    """
    Converts raw captures to MP4.

    The stream is copied, not re-encoded, so conversion is fast and lossless.
    """

    def __init__(self, release_timeout: float = 10.0, poll_interval: float = 0.5):
        """
        Args:
            release_timeout: Seconds to wait for the capture file to be released.
            poll_interval: Seconds between release checks.
        """
        self.release_timeout = release_timeout
        self.poll_interval = poll_interval
        self._logger = get_logger('converter')

    @staticmethod
    def output_path_for(file_path: str) -> str:
        """TK_user_ts_flv.mp4 -> TK_user_ts.mp4"""
        path = Path(file_path)
        if path.name.endswith(RAW_MARKER):
            return str(path.with_name(path.name[:-len(RAW_MARKER)] + '.mp4'))
        return str(path.with_name(f"{path.stem}_converted.mp4"))

    async def _wait_for_file_release(self, file_path: str) -> bool:
        """Wait until the file can be opened for appending."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.release_timeout

        while loop.time() < deadline:
            try:
                with open(file_path, 'ab'):
                    return True
            except OSError:
                await asyncio.sleep(self.poll_interval)
        return False

    async def convert_flv_to_mp4(self, file_path: str) -> Optional[str]:
        """
        Remux a raw FLV capture to MP4 and remove the source.

        Args:
            file_path: Path to the raw capture.

        Returns:
            Path to the MP4 file, or None on failure (source is kept).
        """
        if not Path(file_path).exists():
            self._logger.error(f"File not found: {file_path}")
            return None

        self._logger.info(f"Converting {file_path} to MP4 format...")

        if not await self._wait_for_file_release(file_path):
            self._logger.error(f"File {file_path} is still locked after waiting. Skipping conversion.")
            return None

        output_path = self.output_path_for(file_path)
        cmd = [
            'ffmpeg', '-y',
            '-i', file_path,
            '-c', 'copy',
            output_path
        ]

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )
            _, stderr = await process.communicate()
        except OSError as e:
            self._logger.error(f"ffmpeg error: {e}")
            return None

        if process.returncode != 0:
            self._logger.error(f"ffmpeg error: {stderr.decode(errors='replace')[-2000:]}")
            Path(output_path).unlink(missing_ok=True)
            return None

        Path(file_path).unlink(missing_ok=True)
        self._logger.info(f"Finished converting {file_path}")
        return output_path
