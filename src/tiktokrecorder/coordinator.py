"""
Recording coordinator for TikTok Live Recorder.

Drives one watch loop per recorder:
1. Check that TikTok LIVE is reachable from this network
2. Resolve the target (or the logged-in account for followers mode)
3. Record once (manual), poll one user (automatic) or fan out over followed accounts
4. Hand finished captures to conversion and upload
"""

import asyncio
from dataclasses import replace
from typing import Dict, List, Optional

from .config import Mode, TelegramConfig
from .converter import VideoConverter
from .errors import (
    AccessRestricted,
    AccessRestriction,
    LiveNotFound,
    TikTokError,
    TikTokRecorderError,
    UserLiveError,
)
from .logger import get_logger, get_user_logger
from .recorder import RecordingResult, StreamRecorder
from .tiktok_api import TikTokAPI, WatchTarget
from .uploader import TelegramUploader


class CancellationSignal:
    """
    Shared stop flag with an awaitable wake-up.

    set() may be called from any thread, any number of times. Waiters wake
    immediately.
    """

    def __init__(self):
        self._flag = False
        self._event = asyncio.Event()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def bind(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """Attach to the loop that owns the waiters."""
        self._loop = loop or asyncio.get_running_loop()

    def is_set(self) -> bool:
        return self._flag

    def set(self) -> None:
        self._flag = True

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        loop = self._loop
        if loop is None or loop is running or loop.is_closed():
            self._event.set()
        else:
            loop.call_soon_threadsafe(self._event.set)

    async def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until set or until the timeout expires.

        Returns:
            True if the signal is set.
        """
        if self._flag:
            return True
        if self._loop is None:
            self.bind()
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except asyncio.TimeoutError:
            pass
        return self._flag


class WatchRegistry:
    """Running recordings by handle. Only the coordinator loop mutates it."""

    def __init__(self):
        self._tasks: Dict[str, asyncio.Task] = {}
        self._logger = get_logger('registry')

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, user: str) -> bool:
        return user in self._tasks

    def is_active(self, user: str) -> bool:
        task = self._tasks.get(user)
        return task is not None and not task.done()

    def register(self, user: str, task: asyncio.Task) -> None:
        if self.is_active(user):
            raise ValueError(f"Recording already running for {user}")
        self._tasks[user] = task

    def evict_finished(self) -> List[str]:
        """Drop finished recordings so their handles can be recorded again."""
        evicted = []
        for user, task in list(self._tasks.items()):
            if not task.done():
                continue
            del self._tasks[user]
            evicted.append(user)
            if not task.cancelled() and task.exception() is not None:
                self._logger.warning(f"Recording task for {user} ended with: {task.exception()}")
        return evicted

    def tasks(self) -> List[asyncio.Task]:
        return list(self._tasks.values())


class TikTokRecorder:
    """
    Records TikTok lives for one target or for every followed account.

    Modes:
    - MANUAL: record once if the user is live, fail otherwise
    - AUTOMATIC: poll one user every `interval` minutes, record each live
    - FOLLOWERS: scan followed accounts, record every live one concurrently
    """

    ONE_MINUTE = 60
    CONNECTION_CLOSED_MINUTES = 2

    def __init__(
        self,
        url: Optional[str] = None,
        user: Optional[str] = None,
        room_id: Optional[str] = None,
        mode: Mode = Mode.MANUAL,
        interval: int = 5,
        duration: Optional[int] = None,
        cookies: Optional[Dict[str, str]] = None,
        proxy: Optional[str] = None,
        output_dir: str = "./recordings",
        upload_enabled: bool = False,
        telegram_config: Optional[TelegramConfig] = None,
        api: Optional[TikTokAPI] = None,
        stream_recorder: Optional[StreamRecorder] = None,
        converter: Optional[VideoConverter] = None,
        uploader: Optional[TelegramUploader] = None
    ):
        """
        Initialize recorder.

        Args:
            url: TikTok live URL.
            user: TikTok handle (without @).
            room_id: Live room id.
            mode: Recording mode.
            interval: Minutes between checks (automatic/followers).
            duration: Maximum recording length in seconds.
            cookies: Session cookies.
            proxy: HTTP proxy URL.
            output_dir: Directory for recordings.
            upload_enabled: Upload finished recordings to Telegram.
            telegram_config: Telegram credentials (used when no uploader is given).
            api, stream_recorder, converter, uploader: Pre-built collaborators.
        """
        self.target = WatchTarget(user=user, url=url, room_id=room_id)
        self.mode = mode
        self.interval = interval
        self.duration = duration

        self.api = api or TikTokAPI(proxy=proxy, cookies=cookies)
        self.stream_recorder = stream_recorder or StreamRecorder(
            self.api,
            output_dir=output_dir,
            duration=duration
        )
        self.converter = converter or VideoConverter()

        self.upload_enabled = upload_enabled
        self.uploader = uploader
        if upload_enabled and uploader is None and telegram_config:
            self.uploader = TelegramUploader(
                api_id=telegram_config.api_id,
                api_hash=telegram_config.api_hash,
                bot_token=telegram_config.bot_token,
                chat_id=telegram_config.chat_id,
                session_name=telegram_config.session_name
            )

        self.sec_uid: Optional[str] = None
        self.stop_signal = CancellationSignal()
        self.registry = WatchRegistry()
        self._logger = get_logger('coordinator')

    @property
    def label(self) -> str:
        return self.target.user or self.target.room_id or self.target.url or 'followers'

    def stop(self) -> None:
        """Request a graceful stop. Safe from any thread, any number of times."""
        if not self.stop_signal.is_set():
            self._logger.info(f"🛑 Stop requested for {self.label}")
        self.stop_signal.set()

    async def run(self) -> None:
        """
        Run the configured mode.

        Returns on completion (manual) or after stop() (automatic/followers).

        Raises:
            TikTokRecorderError: Fatal errors (region block, private account,
                manual mode target not live, ...).
        """
        self.stop_signal.bind()
        await self.api.connect()

        try:
            await self._check_region()

            if self.mode == Mode.FOLLOWERS:
                self.sec_uid = await self.api.get_sec_uid()
                if not self.sec_uid:
                    raise TikTokRecorderError(TikTokError.SEC_UID)
                self._logger.info("Followers mode activated")
            else:
                await self._resolve_target()

            if self.mode == Mode.MANUAL:
                await self._manual_mode()
            elif self.mode == Mode.AUTOMATIC:
                await self._automatic_mode()
            elif self.mode == Mode.FOLLOWERS:
                await self._followers_mode()
        finally:
            await self.api.close()

    async def _check_region(self) -> None:
        if not await self.api.check_region_blocked():
            return

        if self.mode == Mode.AUTOMATIC:
            raise AccessRestricted(
                AccessRestriction.REGION_BLOCKED,
                TikTokError.COUNTRY_BLACKLISTED_AUTO_MODE
            )
        if self.mode == Mode.FOLLOWERS:
            raise AccessRestricted(
                AccessRestriction.REGION_BLOCKED,
                TikTokError.COUNTRY_BLACKLISTED_FOLLOWERS_MODE
            )
        # Manual mode may still work with a room id or cookies
        self._logger.warning(str(TikTokError.COUNTRY_BLACKLISTED))

    async def _resolve_target(self) -> None:
        try:
            self.target = await self.api.resolve_target(self.target)
        except TikTokRecorderError as e:
            # Automatic mode re-resolves the room every iteration
            if self.mode != Mode.AUTOMATIC or not self.target.user:
                raise
            self._logger.warning(f"@{self.target.user}: {e}")
            return

        logger = get_user_logger(self.target.user)
        logger.info(f"USERNAME: {self.target.user}")
        if self.target.room_id:
            logger.info(f"ROOM_ID:  {self.target.room_id}")

    async def _wait_minutes(self, minutes: float) -> bool:
        """Cancellable wait. Returns True if stop was requested."""
        return await self.stop_signal.wait(minutes * self.ONE_MINUTE)

    async def _manual_mode(self) -> Optional[RecordingResult]:
        user, room_id = self.target.user, self.target.room_id
        if not room_id or not await self.api.check_live(room_id):
            raise UserLiveError(f"@{user}: {TikTokError.USER_NOT_CURRENTLY_LIVE}")

        return await self._start_recording(user, room_id)

    async def _automatic_mode(self) -> None:
        logger = get_user_logger(self.target.user)

        while not self.stop_signal.is_set():
            try:
                if self.target.user:
                    room_id = await self.api.get_room_id_from_user(self.target.user)
                    self.target = replace(self.target, room_id=room_id)
                await self._manual_mode()

            except (UserLiveError, LiveNotFound, AccessRestricted) as e:
                if isinstance(e, UserLiveError):
                    logger.info(str(e))
                elif isinstance(e, AccessRestricted):
                    logger.warning(f"Access restricted ({e.kind.value}): {e}")
                else:
                    logger.error(f"Live not found: {e}")
                logger.info(f"Waiting {self.interval} minutes before recheck")
                if await self._wait_minutes(self.interval):
                    logger.info("🛑 Automatic mode stopped during wait period")
                    break

            except TikTokRecorderError as e:
                logger.error(f"{TikTokError.CONNECTION_CLOSED_AUTOMATIC} ({e})")
                if await self._wait_minutes(self.CONNECTION_CLOSED_MINUTES):
                    logger.info("🛑 Automatic mode stopped during connection recovery")
                    break

        logger.info("🛑 Automatic mode stopped gracefully")

    async def _followers_mode(self) -> None:
        self._logger.info("Checking for live followers...")

        try:
            while not self.stop_signal.is_set():
                await self._scan_followers()

                if self.stop_signal.is_set():
                    break

                self._logger.info(f"Waiting {self.interval} minutes before next check")
                if await self._wait_minutes(self.interval):
                    self._logger.info("🛑 Followers mode stopped during wait period")
                    break
        finally:
            tasks = self.registry.tasks()
            if tasks:
                self._logger.info(f"Waiting for {len(tasks)} recording(s) to finish...")
                await asyncio.gather(*tasks, return_exceptions=True)
            self.registry.evict_finished()

        self._logger.info("🛑 Followers mode stopped gracefully")

    async def _scan_followers(self) -> None:
        """One pass over the followed accounts."""
        for user in self.registry.evict_finished():
            self._logger.debug(f"Recording for {user} finished, eligible again")

        try:
            followers = await self.api.list_follower_handles(self.sec_uid)
        except TikTokRecorderError as e:
            self._logger.error(f"Error in followers mode: {e}")
            return

        self._logger.info(f"Found {len(followers)} followers")

        for follower in followers:
            if self.stop_signal.is_set():
                return

            if self.registry.is_active(follower):
                self._logger.debug(f"{follower} is already being recorded")
                continue

            try:
                room_id = await self.api.get_room_id_from_user(follower)
                if room_id and await self.api.check_live(room_id):
                    get_user_logger(follower).info("Recording live follower")
                    task = asyncio.create_task(self._record_follower(follower, room_id))
                    self.registry.register(follower, task)
            except TikTokRecorderError as e:
                self._logger.error(f"Error checking follower {follower}: {e}")

    async def _record_follower(self, user: str, room_id: str) -> None:
        """Detached recording. Failures stay inside this task."""
        try:
            await self._start_recording(user, room_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            get_user_logger(user).error(f"Recording failed: {e}")

    async def _start_recording(self, user: str, room_id: str) -> RecordingResult:
        """Record one live, then post-process it."""
        logger = get_user_logger(user)

        descriptor = await self.api.select_stream_url(room_id)
        if not descriptor:
            raise LiveNotFound(TikTokError.RETRIEVE_LIVE_URL)

        result = await self.stream_recorder.record(user, room_id, descriptor, self.stop_signal)

        if result.is_empty:
            logger.info("Empty recording, skipping post-processing")
            return result

        await self._post_process(user, result.output_path)
        return result

    async def _post_process(self, user: str, file_path: str) -> None:
        """Convert and upload. Never raises except on cancellation."""
        logger = get_user_logger(user)

        final_path = file_path
        try:
            converted = await self.converter.convert_flv_to_mp4(file_path)
            if converted:
                final_path = converted
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Conversion failed: {e}")

        if not (self.upload_enabled and self.uploader):
            return

        try:
            upload = await self.uploader.upload_file(final_path)
            if not upload.success:
                logger.error(f"Upload failed: {upload.error}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error during Telegram upload: {e}")
