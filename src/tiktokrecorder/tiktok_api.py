"""
TikTok web API client for TikTok Live Recorder.
Resolves users/rooms, checks liveness, picks the best stream URL and lists
followed accounts.
"""

import json
import re
from dataclasses import dataclass, replace
from typing import AsyncIterator, Dict, List, Optional

from .errors import (
    AccessRestricted,
    AccessRestriction,
    EmptyFollowerSet,
    LiveNotFound,
    TargetResolutionError,
    TikTokError,
    TikTokRecorderError,
    TransportError,
)
from .http_client import HttpClient
from .logger import get_logger


STATUS_OK = 200
STATUS_MOVED = 301
STATUS_REDIRECT = 302

LIVE_RESTRICTED_STATUS = 4003110

# Legacy quality buckets, best first
LEGACY_QUALITY_LADDER = ('FULL_HD1', 'HD1', 'SD2', 'SD1')

FOLLOWERS_PAGE_SIZE = 30

LIVE_URL_RE = re.compile(r'https?://(?:www\.)?tiktok\.com/@([^/]+)/live')
TIKTOK_HOST_RE = re.compile(r'https?://(?:[\w-]+\.)*tiktok\.com/')
MOBILE_URL_RE = re.compile(r'com/@(.*?)/live')
SEC_UID_RE = re.compile(r'"secUid":"(.*?)",')


@dataclass(frozen=True)
class WatchTarget:
    """A recording subject. Resolution fills in the missing fields."""
    user: Optional[str] = None
    url: Optional[str] = None
    room_id: Optional[str] = None

    @property
    def resolved(self) -> bool:
        return bool(self.user and self.room_id)


@dataclass(frozen=True)
class StreamDescriptor:
    """Selected playable stream."""
    url: str
    level: int = -1        # Quality level, -1 for legacy buckets
    quality: str = ""      # SDK key or legacy bucket name


def pick_stream_url(room_info: dict) -> Optional[StreamDescriptor]:
    """
    Pick the best playable stream from a room info document.

    Preferred path: the SDK quality table (sdk_key -> level) joined with the
    per-key FLV URLs; highest level wins, first one on ties. Without a quality
    table, the legacy FLV buckets are tried best first, then RTMP.

    Args:
        room_info: Decoded /webcast/room/info/ response.

    Returns:
        StreamDescriptor, or None if no URL is available.
    """
    stream_url = (room_info.get('data') or {}).get('stream_url') or {}
    if not stream_url:
        return None

    pull_data = (stream_url.get('live_core_sdk_data') or {}).get('pull_data') or {}
    qualities = (pull_data.get('options') or {}).get('qualities') or []
    sdk_raw = pull_data.get('stream_data')

    if sdk_raw and qualities:
        try:
            sdk_data = json.loads(sdk_raw) if isinstance(sdk_raw, str) else sdk_raw
        except ValueError:
            sdk_data = {}

        levels: Dict[str, int] = {}
        for q in qualities:
            key = q.get('sdk_key')
            if key is not None and key not in levels and isinstance(q.get('level'), (int, float)):
                levels[key] = int(q['level'])

        best: Optional[StreamDescriptor] = None
        for key, entry in ((sdk_data or {}).get('data') or {}).items():
            if key not in levels:
                continue
            flv = ((entry or {}).get('main') or {}).get('flv')
            if flv and (best is None or levels[key] > best.level):
                best = StreamDescriptor(url=flv, level=levels[key], quality=key)
        return best

    get_logger('tiktok_api').warning(
        "No SDK quality table found. Falling back to legacy URLs. "
        "Consider contacting the developer to update the code."
    )
    flv_urls = stream_url.get('flv_pull_url') or {}
    for bucket in LEGACY_QUALITY_LADDER:
        if flv_urls.get(bucket):
            return StreamDescriptor(url=flv_urls[bucket], quality=bucket)
    if stream_url.get('rtmp_pull_url'):
        return StreamDescriptor(url=stream_url['rtmp_pull_url'], quality='rtmp')
    return None


class TikTokAPI:
    """
    TikTok web API client.

    Features:
    - Target resolution from URL, username or room id
    - Room liveness check (never raises)
    - Region block detection
    - Best quality stream selection with legacy fallback
    - Followed accounts listing with cursor pagination
    """

    BASE_URL = "https://www.tiktok.com"
    WEBCAST_URL = "https://webcast.tiktok.com"
    API_URL = "https://www.tiktok.com/api-live/user/room/"

    def __init__(
        self,
        proxy: Optional[str] = None,
        cookies: Optional[Dict[str, str]] = None,
        http: Optional[HttpClient] = None
    ):
        """
        Initialize TikTok API client.

        Args:
            proxy: HTTP proxy URL.
            cookies: Session cookies (sessionid_ss, tt-target-idc).
            http: Pre-built HTTP client (overrides proxy/cookies).
        """
        self.http = http or HttpClient(proxy=proxy, cookies=cookies)
        self._logger = get_logger('tiktok_api')

    async def connect(self) -> None:
        await self.http.connect()

    async def close(self) -> None:
        await self.http.close()

    async def is_authenticated(self) -> bool:
        """Check whether the session cookie is accepted."""
        try:
            response = await self.http.get(f"{self.BASE_URL}/foryou")
        except TikTokRecorderError:
            return False
        return 'login-title' not in response.text

    async def check_region_blocked(self) -> bool:
        """
        Check whether TikTok LIVE is blocked from this network.

        Returns:
            True if /live redirects (captcha or country block).
        """
        try:
            response = await self.http.get(f"{self.BASE_URL}/live", allow_redirects=False)
        except TransportError as e:
            self._logger.debug(f"Region check failed: {e}")
            return False
        return response.status == STATUS_REDIRECT

    async def check_live(self, room_id: Optional[str]) -> bool:
        """
        Check whether a room is currently live.

        Transport failures and an empty room id count as not live.
        """
        if not room_id:
            return False

        try:
            data = await self.http.get_json(
                f"{self.WEBCAST_URL}/webcast/room/check_alive/",
                params={
                    'aid': 1988,
                    'region': 'CH',
                    'room_ids': room_id,
                    'user_is_login': 'true'
                }
            )
        except TikTokRecorderError as e:
            self._logger.debug(f"Liveness check failed for room {room_id}: {e}")
            return False

        if not isinstance(data, dict):
            return False
        rooms = data.get('data') or []
        if not rooms or not isinstance(rooms, list):
            return False
        return bool((rooms[0] or {}).get('alive', False))

    async def get_sec_uid(self) -> Optional[str]:
        """Get the secondary user id of the logged-in account."""
        try:
            response = await self.http.get(f"{self.BASE_URL}/foryou")
        except TransportError:
            return None
        match = SEC_UID_RE.search(response.text)
        return match.group(1) if match else None

    async def _get_room_info(self, room_id: str) -> dict:
        return await self.http.get_json(
            f"{self.WEBCAST_URL}/webcast/room/info/",
            params={'aid': 1988, 'room_id': room_id}
        )

    async def get_user_from_room_id(self, room_id: str) -> str:
        """
        Resolve the owner handle of a room.

        Raises:
            AccessRestricted: Private account.
            TargetResolutionError: Unknown room.
        """
        data = await self._get_room_info(room_id)
        raw = json.dumps(data)

        if 'Follow the creator to watch their LIVE' in raw:
            raise AccessRestricted(AccessRestriction.ACCOUNT_PRIVATE_FOLLOW)
        if 'This account is private' in raw:
            raise AccessRestricted(AccessRestriction.ACCOUNT_PRIVATE)

        display_id = (((data.get('data') or {}).get('owner') or {}).get('display_id'))
        if not display_id:
            raise TargetResolutionError(TikTokError.USERNAME_ERROR)
        return display_id

    async def get_room_id_from_user(self, user: str) -> str:
        """
        Resolve the room id of a user.

        Raises:
            TargetResolutionError: No room id in the response.
        """
        response = await self.http.get(
            self.API_URL,
            params={'uniqueId': user, 'sourceType': 54, 'aid': 1988}
        )
        if response.status != STATUS_OK:
            raise TargetResolutionError(TikTokError.ROOM_ID_ERROR)

        data = response.json()
        room_id = (((data.get('data') or {}).get('user') or {}).get('roomId'))
        if not room_id:
            raise TargetResolutionError(TikTokError.ROOM_ID_ERROR)
        return str(room_id)

    async def get_room_and_user_from_url(self, live_url: str) -> tuple:
        """
        Resolve (user, room_id) from a live URL (desktop or mobile short link).

        Raises:
            AccessRestricted: Region blocked (302 on the URL).
            LiveNotFound: Not a TikTok live URL, or the URL could not be fetched.
        """
        if not TIKTOK_HOST_RE.match(live_url or ''):
            raise LiveNotFound(TikTokError.INVALID_TIKTOK_LIVE_URL)

        try:
            response = await self.http.get(live_url, allow_redirects=False)
        except TransportError as e:
            self._logger.debug(f"URL lookup failed for {live_url}: {e}")
            raise LiveNotFound(TikTokError.INVALID_TIKTOK_LIVE_URL) from e

        if response.status == STATUS_REDIRECT:
            raise AccessRestricted(AccessRestriction.REGION_BLOCKED)

        if response.status == STATUS_MOVED:
            # Mobile link, the canonical URL is in Location or the body
            location = response.headers.get('Location', '')
            match = MOBILE_URL_RE.search(location) or MOBILE_URL_RE.search(response.text)
        else:
            match = LIVE_URL_RE.match(live_url)

        if not match:
            raise LiveNotFound(TikTokError.INVALID_TIKTOK_LIVE_URL)

        user = match.group(1)
        return user, await self.get_room_id_from_user(user)

    async def resolve_target(self, target: WatchTarget) -> WatchTarget:
        """
        Fill in the missing fields of a target.

        Precedence: URL, then room from user, then user from room.
        """
        if target.url:
            user, room_id = await self.get_room_and_user_from_url(target.url)
            target = replace(target, user=user, room_id=room_id)

        if not target.room_id and target.user:
            target = replace(target, room_id=await self.get_room_id_from_user(target.user))

        if not target.user and target.room_id:
            target = replace(target, user=await self.get_user_from_room_id(target.room_id))

        if not target.user and not target.room_id:
            raise LiveNotFound(TikTokError.USERNAME_ERROR)

        return target

    async def select_stream_url(self, room_id: str) -> Optional[StreamDescriptor]:
        """
        Select the best stream for a room.

        Returns:
            StreamDescriptor, or None when no stream is available yet.

        Raises:
            AccessRestricted: Private account, or live restricted to logged-in users.
        """
        data = await self._get_room_info(room_id)

        if 'This account is private' in json.dumps(data):
            raise AccessRestricted(AccessRestriction.ACCOUNT_PRIVATE)

        descriptor = pick_stream_url(data)
        if descriptor:
            self._logger.debug(f"Selected stream quality {descriptor.quality} (level {descriptor.level})")
            return descriptor

        if data.get('status_code') == LIVE_RESTRICTED_STATUS:
            raise AccessRestricted(AccessRestriction.LIVE_RESTRICTED)
        return None

    async def list_follower_handles(self, sec_uid: str) -> List[str]:
        """
        List the handles followed by the account, across all pages.

        Stops when the platform reports no more pages or the cursor stops
        moving.

        Raises:
            TikTokRecorderError: Non-200 answer.
            EmptyFollowerSet: Nothing found.
        """
        followers: List[str] = []
        cursor = 0
        has_more = True

        while has_more:
            response = await self.http.get(
                f"{self.BASE_URL}/api/user/list/",
                params={
                    'aid': 1988,
                    'app_name': 'tiktok_web',
                    'channel': 'tiktok_web',
                    'device_platform': 'web_pc',
                    'count': FOLLOWERS_PAGE_SIZE,
                    'maxCursor': cursor,
                    'minCursor': cursor,
                    'scene': 21,
                    'secUid': sec_uid,
                    'user_is_login': 'true'
                }
            )
            if response.status != STATUS_OK:
                raise TikTokRecorderError(TikTokError.FOLLOWERS_RETRIEVE)

            data = response.json()
            for item in data.get('userList') or []:
                username = ((item or {}).get('user') or {}).get('uniqueId')
                if username:
                    followers.append(username)

            has_more = bool(data.get('hasMore'))
            new_cursor = data.get('minCursor') or 0
            if new_cursor == cursor:
                break
            cursor = new_cursor

        if not followers:
            raise EmptyFollowerSet()
        return followers

    async def download_live_stream(self, live_url: str) -> AsyncIterator[bytes]:
        """Yield raw stream chunks."""
        async for chunk in self.http.iter_chunks(live_url):
            yield chunk
