"""Shared pytest fixtures and in-memory fakes for the recorder test suite."""

import asyncio
import base64
import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from tiktokrecorder.errors import TransportError
from tiktokrecorder.http_client import HttpResponse
from tiktokrecorder.recorder import RecordingResult, RecordingStatus
from tiktokrecorder.tiktok_api import StreamDescriptor


# =============================================================================
# Challenge helpers
# =============================================================================

def make_challenge_html(prefix: bytes, nonce: int, name: str = "wci_cookie") -> str:
    """Build an anti-bot page whose solution is `nonce`."""
    digest = hashlib.sha256(prefix + str(nonce).encode()).digest()
    payload = {
        'v': {
            'a': base64.b64encode(prefix).decode(),
            'c': base64.b64encode(digest).decode(),
        },
        's': 'sig',
    }
    cs = base64.b64encode(json.dumps(payload).encode()).decode()
    return (
        '<html><body>'
        f'<p id="wci" class="{name}"></p>'
        f'<p id="cs" class="{cs}"></p>'
        '</body></html>'
    )


@pytest.fixture
def challenge_html():
    return make_challenge_html(b"prefix-123", 4242)


# =============================================================================
# Fake HTTP client (for TikTokAPI)
# =============================================================================

class FakeHttp:
    """
    Minimal stand-in for HttpClient.

    Responses are matched by URL substring, consumed in order when a list is
    registered for the same key.
    """

    def __init__(self):
        self.routes: Dict[str, List] = {}
        self.calls: List[tuple] = []
        self.streams: Dict[str, List] = {}
        self.connected = False

    def add(self, pattern: str, status: int = 200, body=None, headers=None):
        text = body if isinstance(body, str) else json.dumps(body or {})
        self.routes.setdefault(pattern, []).append(
            HttpResponse(status=status, text=text, url=pattern, headers=headers or {})
        )

    def add_error(self, pattern: str, error: Exception):
        self.routes.setdefault(pattern, []).append(error)

    async def connect(self):
        self.connected = True

    async def close(self):
        self.connected = False

    async def get(self, url, params=None, allow_redirects=True, solve_challenge=True):
        self.calls.append((url, dict(params or {})))
        for pattern, queue in self.routes.items():
            if pattern in url:
                item = queue.pop(0) if len(queue) > 1 else queue[0]
                if isinstance(item, Exception):
                    raise item
                return item
        raise TransportError(f"No route for {url}")

    async def get_json(self, url, params=None):
        response = await self.get(url, params=params)
        return response.json()

    async def iter_chunks(self, url, chunk_size=64 * 1024):
        for chunk in self.streams.get(url, []):
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk


@pytest.fixture
def fake_http():
    return FakeHttp()


# =============================================================================
# Fake API (for StreamRecorder and TikTokRecorder)
# =============================================================================

class FakeAPI:
    """
    Scriptable TikTokAPI replacement.

    Attributes:
        live: handle/room -> bool, or a list of bools consumed per check.
        streams: list of connections; each is a list of chunks or exceptions.
    """

    def __init__(self):
        self.region_blocked = False
        self.sec_uid: Optional[str] = "sec-uid"
        self.rooms: Dict[str, str] = {}
        self.live: Dict[str, object] = {}
        self.followers: List[str] = []
        self.followers_error: Optional[Exception] = None
        self.streams: List[List] = []
        self.chunk_delay = 0.0
        self.stall = False

        self.connected = False
        self.closed = False
        self.check_live_calls = 0
        self.room_lookups: List[str] = []
        self.select_calls = 0

    async def connect(self):
        self.connected = True

    async def close(self):
        self.closed = True

    async def check_region_blocked(self):
        return self.region_blocked

    async def get_sec_uid(self):
        return self.sec_uid

    async def resolve_target(self, target):
        from dataclasses import replace

        if target.user and not target.room_id:
            target = replace(target, room_id=await self.get_room_id_from_user(target.user))
        return target

    async def get_room_id_from_user(self, user):
        from tiktokrecorder.errors import TargetResolutionError, TikTokError

        self.room_lookups.append(user)
        if user not in self.rooms:
            raise TargetResolutionError(TikTokError.ROOM_ID_ERROR)
        return self.rooms[user]

    async def check_live(self, room_id):
        self.check_live_calls += 1
        value = self.live.get(room_id, False)
        if isinstance(value, list):
            return value.pop(0) if len(value) > 1 else value[0]
        return value

    async def list_follower_handles(self, sec_uid):
        if self.followers_error:
            raise self.followers_error
        return list(self.followers)

    async def select_stream_url(self, room_id):
        self.select_calls += 1
        return StreamDescriptor(url=f"https://pull.example/{room_id}.flv", level=4, quality="origin")

    async def download_live_stream(self, url):
        if self.stall:
            await asyncio.sleep(3600)
        connection = self.streams.pop(0) if self.streams else []
        for chunk in connection:
            if self.chunk_delay:
                await asyncio.sleep(self.chunk_delay)
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk


@pytest.fixture
def fake_api():
    return FakeAPI()


# =============================================================================
# Fake stream recorder, converter and uploader (for TikTokRecorder)
# =============================================================================

@dataclass
class FakeStreamRecorder:
    """Pretends to record; optionally blocks until stop or a release event."""
    output_dir: Path
    hold: bool = False
    payload: bytes = b"flvdata"
    records: List[str] = field(default_factory=list)
    running: Dict[str, int] = field(default_factory=dict)
    max_parallel_per_user: int = 0
    release: Optional[asyncio.Event] = None

    async def record(self, user, room_id, descriptor, stop):
        self.records.append(user)
        self.running[user] = self.running.get(user, 0) + 1
        self.max_parallel_per_user = max(self.max_parallel_per_user, self.running[user])
        started = datetime.now()
        try:
            if self.hold:
                while not stop.is_set() and not (self.release and self.release.is_set()):
                    await stop.wait(0.01)
            path = self.output_dir / f"TK_{user}_{len(self.records)}_flv.mp4"
            path.write_bytes(self.payload)
        finally:
            self.running[user] -= 1
        return RecordingResult(
            user=user,
            room_id=room_id,
            output_path=str(path),
            status=RecordingStatus.CANCELLED if stop.is_set() else RecordingStatus.COMPLETED,
            bytes_written=len(self.payload),
            started_at=started,
            ended_at=datetime.now()
        )


class FakeConverter:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.converted: List[str] = []

    async def convert_flv_to_mp4(self, file_path):
        self.converted.append(file_path)
        if self.fail:
            raise RuntimeError("ffmpeg exploded")
        return file_path.replace('_flv.mp4', '.mp4')


@pytest.fixture
def fake_stream_recorder(tmp_path):
    return FakeStreamRecorder(output_dir=tmp_path)


@pytest.fixture
def fake_converter():
    return FakeConverter()
