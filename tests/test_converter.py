"""Tests for the ffmpeg remux step and the ffprobe helper."""

import json
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from tiktokrecorder.converter import VideoConverter, probe_video


class FakeProcess:
    def __init__(self, returncode=0, stdout=b'', stderr=b''):
        self.returncode = returncode
        self._stdout = stdout
        self._stderr = stderr

    async def communicate(self):
        return self._stdout, self._stderr


@pytest.fixture
def raw_capture(tmp_path) -> Path:
    path = tmp_path / "TK_alice_2024-05-01_20-15-00_flv.mp4"
    path.write_bytes(b'FLV' + b'\x00' * 100)
    return path


def ffmpeg_writing_output(returncode=0):
    """create_subprocess_exec stand-in that writes the output file like ffmpeg would."""
    async def _exec(*cmd, **kwargs):
        if returncode == 0:
            Path(cmd[-1]).write_bytes(b'MP4')
        return FakeProcess(returncode=returncode, stderr=b'ffmpeg: invalid data')
    return AsyncMock(side_effect=_exec)


class TestConvert:

    @pytest.mark.asyncio
    async def test_remux_and_remove_source(self, raw_capture):
        exec_mock = ffmpeg_writing_output()
        with patch('tiktokrecorder.converter.asyncio.create_subprocess_exec', exec_mock):
            output = await VideoConverter().convert_flv_to_mp4(str(raw_capture))

        assert output == str(raw_capture.with_name("TK_alice_2024-05-01_20-15-00.mp4"))
        assert Path(output).read_bytes() == b'MP4'
        assert not raw_capture.exists()

        cmd = exec_mock.await_args.args
        assert cmd[0] == 'ffmpeg'
        assert ('-c', 'copy') == cmd[cmd.index('-c'):cmd.index('-c') + 2]
        assert cmd[cmd.index('-i') + 1] == str(raw_capture)

    @pytest.mark.asyncio
    async def test_failure_keeps_source(self, raw_capture):
        with patch('tiktokrecorder.converter.asyncio.create_subprocess_exec', ffmpeg_writing_output(1)):
            output = await VideoConverter().convert_flv_to_mp4(str(raw_capture))

        assert output is None
        assert raw_capture.exists()

    @pytest.mark.asyncio
    async def test_missing_ffmpeg(self, raw_capture):
        exec_mock = AsyncMock(side_effect=FileNotFoundError('ffmpeg'))
        with patch('tiktokrecorder.converter.asyncio.create_subprocess_exec', exec_mock):
            assert await VideoConverter().convert_flv_to_mp4(str(raw_capture)) is None
        assert raw_capture.exists()

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path):
        assert await VideoConverter().convert_flv_to_mp4(str(tmp_path / "gone_flv.mp4")) is None

    @pytest.mark.asyncio
    async def test_locked_file_is_skipped(self, raw_capture):
        exec_mock = ffmpeg_writing_output()
        converter = VideoConverter(release_timeout=0.1, poll_interval=0.02)
        with patch('tiktokrecorder.converter.open', side_effect=PermissionError('locked'), create=True), \
                patch('tiktokrecorder.converter.asyncio.create_subprocess_exec', exec_mock):
            assert await converter.convert_flv_to_mp4(str(raw_capture)) is None

        exec_mock.assert_not_awaited()
        assert raw_capture.exists()

    def test_output_name_without_marker(self):
        assert VideoConverter.output_path_for('/x/clip.flv') == str(Path('/x/clip_converted.mp4'))


class TestProbe:

    @pytest.mark.asyncio
    async def test_reads_metadata(self):
        payload = json.dumps({
            'streams': [{'width': 720, 'height': 1280}],
            'format': {'duration': '65.4'},
        }).encode()
        exec_mock = AsyncMock(return_value=FakeProcess(stdout=payload))
        with patch('tiktokrecorder.converter.asyncio.create_subprocess_exec', exec_mock):
            metadata = await probe_video('clip.mp4')

        assert metadata == {'duration': 65, 'width': 720, 'height': 1280}

    @pytest.mark.asyncio
    async def test_defaults_on_garbage(self):
        exec_mock = AsyncMock(return_value=FakeProcess(stdout=b'not json'))
        with patch('tiktokrecorder.converter.asyncio.create_subprocess_exec', exec_mock):
            metadata = await probe_video('clip.mp4')

        assert metadata == {'duration': 0, 'width': 1920, 'height': 1080}
