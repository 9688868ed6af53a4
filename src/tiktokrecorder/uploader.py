"""
Telegram uploader module for TikTok Live Recorder.
Uploads finished recordings to a Telegram chat using Telethon.
"""

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from telethon import TelegramClient
from telethon.tl.types import DocumentAttributeVideo

from .converter import probe_video
from .logger import get_logger


GB = 1024 * 1024 * 1024

DEFAULT_CAPTION = (
    '🎥 <b>Video recorded via '
    '<a href="https://github.com/Yoganataa/tiktok-live-recorder">TikTok Live Recorder</a></b>'
)


@dataclass
class UploadResult:
    """Result of an upload operation."""
    file_path: str
    message_id: Optional[int]
    success: bool
    error: Optional[str] = None

    @classmethod
    def failed(cls, file_path: str, error: str) -> 'UploadResult':
        return cls(file_path=file_path, message_id=None, success=False, error=error)


class TelegramUploader:
    """
    Uploads video files to Telegram through a bot account.

    Features:
    - Premium account detection for 4GB uploads
    - Progress logging
    - Retry on failure with linear back-off
    """

    def __init__(
        self,
        api_id: int,
        api_hash: str,
        bot_token: str,
        chat_id: int,
        session_name: str = "tiktok_recorder",
        retry_delay: float = 30.0,
        client_factory: Optional[Callable[..., TelegramClient]] = None
    ):
        """
        Initialize Telegram uploader.

        Args:
            api_id: Telegram API ID.
            api_hash: Telegram API hash.
            bot_token: Bot token from @BotFather.
            chat_id: Destination chat.
            session_name: Telethon session file name.
            retry_delay: Base back-off in seconds (attempt n waits n * retry_delay).
            client_factory: Builds the TelegramClient (default: TelegramClient).
        """
        self.api_id = api_id
        self.api_hash = api_hash
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.session_name = session_name
        self.retry_delay = retry_delay
        self._client_factory = client_factory or TelegramClient

        self._client: Optional[TelegramClient] = None
        self._is_premium: bool = False
        self._logger = get_logger('uploader')

    async def connect(self) -> bool:
        """
        Connect to Telegram and check premium status.

        Returns:
            True if connected successfully.
        """
        try:
            self._client = self._client_factory(
                self.session_name,
                self.api_id,
                self.api_hash
            )
            await self._client.start(bot_token=self.bot_token)

            me = await self._client.get_me()
            self._is_premium = bool(getattr(me, 'premium', False))

            self._logger.info(
                f"Connected to Telegram as {getattr(me, 'first_name', '?')} "
                f"({'Premium' if self._is_premium else 'Regular'} account)"
            )
            return True

        except Exception as e:
            self._logger.error(f"Failed to connect: {e}")
            self._client = None
            return False

    async def disconnect(self):
        """Disconnect from Telegram."""
        if self._client:
            await self._client.disconnect()
            self._client = None

    @property
    def is_premium(self) -> bool:
        """Check if connected account has Premium status."""
        return self._is_premium

    @property
    def max_file_size(self) -> int:
        """Maximum file size in bytes based on account type."""
        return 4 * GB if self._is_premium else 2 * GB

    async def upload_file(
        self,
        file_path: str,
        caption: str = DEFAULT_CAPTION,
        max_retries: int = 3
    ) -> UploadResult:
        """
        Upload a single file to the chat.

        Connects on demand and disconnects when done. Never raises
        (except on task cancellation).

        Args:
            file_path: Path to file to upload.
            caption: HTML caption.
            max_retries: Maximum number of attempts.

        Returns:
            UploadResult with message ID or error.
        """
        path = Path(file_path)
        if not path.exists():
            return UploadResult.failed(file_path, f"File not found: {file_path}")

        connected_here = False
        if not self._client:
            if not await self.connect():
                return UploadResult.failed(file_path, "Not connected to Telegram")
            connected_here = True

        try:
            return await self._upload(path, caption, max_retries)
        finally:
            if connected_here:
                await self.disconnect()

    async def _upload(self, path: Path, caption: str, max_retries: int) -> UploadResult:
        file_size = path.stat().st_size
        self._logger.info(f"File to upload: {path.name} ({file_size / (1024 * 1024):.0f} MB)")

        if file_size > self.max_file_size:
            self._logger.warning("The file is too large to be uploaded with this type of account.")
            return UploadResult.failed(str(path), f"File exceeds {self.max_file_size // GB} GB limit")

        metadata = await probe_video(str(path))
        self._logger.debug(f"Video metadata: {metadata}")

        last_progress = [0]

        def progress(current, total):
            if not total:
                return
            percent = (current / total) * 100
            # Log every 10%
            if int(percent) // 10 > last_progress[0] // 10:
                last_progress[0] = int(percent)
                self._logger.debug(f"Upload progress: {percent:.1f}%")

        self._logger.info("Uploading video on Telegram... This may take a while depending on the file size.")

        for attempt in range(max_retries):
            try:
                message = await self._client.send_file(
                    self.chat_id,
                    str(path),
                    caption=caption,
                    parse_mode='html',
                    progress_callback=progress,
                    supports_streaming=True,
                    attributes=[DocumentAttributeVideo(
                        duration=metadata['duration'],
                        w=metadata['width'],
                        h=metadata['height'],
                        supports_streaming=True
                    )]
                )

                self._logger.info("File successfully uploaded to Telegram.")
                return UploadResult(
                    file_path=str(path),
                    message_id=getattr(message, 'id', None),
                    success=True
                )

            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._logger.warning(f"Upload attempt {attempt + 1} failed: {e}")

                if attempt < max_retries - 1:
                    wait_time = (attempt + 1) * self.retry_delay
                    self._logger.info(f"Retrying in {wait_time:.0f}s...")
                    await asyncio.sleep(wait_time)

        return UploadResult.failed(str(path), f"Failed after {max_retries} attempts")
