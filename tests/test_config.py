"""Tests for YAML configuration loading, env overrides and validation."""

import pytest
import yaml

from tiktokrecorder.config import (
    Config,
    Mode,
    apply_env_overrides,
    config_from_dict,
    load_config,
    parse_users,
    validate_config,
)
from tiktokrecorder.errors import ConfigError


def write_config(tmp_path, data) -> str:
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(data), encoding='utf-8')
    return str(path)


class TestLoadConfig:

    def test_full_file(self, tmp_path):
        path = write_config(tmp_path, {
            'tiktok': {
                'cookies': {'sessionid_ss': 'abc', 'tt-target-idc': 'eu-ttp2'},
                'proxy': 'http://proxy:8080',
            },
            'target': {'users': ['@alice', 'bob']},
            'recording': {'mode': 'automatic', 'interval': 3, 'duration': 600, 'output_dir': '/rec'},
            'telegram': {
                'enabled': True, 'api_id': '123', 'api_hash': 'h',
                'bot_token': 't', 'chat_id': -100,
            },
            'logging': {'level': 'DEBUG', 'file': None},
        })

        config = load_config(path, env={})

        assert config.tiktok.cookies == {'sessionid_ss': 'abc', 'tt-target-idc': 'eu-ttp2'}
        assert config.tiktok.proxy == 'http://proxy:8080'
        assert config.target.users == ['alice', 'bob']
        assert config.recording.mode == Mode.AUTOMATIC
        assert config.recording.interval == 3
        assert config.recording.duration == 600
        assert config.recording.output_dir == '/rec'
        assert config.telegram.enabled
        assert config.telegram.api_id == 123
        assert config.telegram.chat_id == -100
        assert config.logging.level == 'DEBUG'
        assert config.logging.file is None

    def test_defaults(self, tmp_path):
        config = load_config(write_config(tmp_path, {'target': {'user': 'alice'}}), env={})

        assert config.recording.mode == Mode.MANUAL
        assert config.recording.interval == 5
        assert config.recording.duration is None
        assert config.tiktok.target_idc == 'useast2a'
        assert not config.telegram.enabled

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "nope.yaml"))

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("target: [unclosed", encoding='utf-8')
        with pytest.raises(ConfigError):
            load_config(str(path), env={})

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- a\n- b\n", encoding='utf-8')
        with pytest.raises(ConfigError):
            load_config(str(path), env={})


class TestParsing:

    def test_users_from_comma_string(self):
        assert parse_users("@alice, bob ,,") == ['alice', 'bob']

    def test_bad_mode(self):
        with pytest.raises(ConfigError, match="Incorrect mode value"):
            config_from_dict({'recording': {'mode': 'sometimes'}})

    def test_bad_interval(self):
        with pytest.raises(ConfigError):
            config_from_dict({'recording': {'interval': 'often'}})


class TestValidation:

    def _config(self, **recording):
        config = config_from_dict({'target': {'users': ['alice']}, 'recording': recording})
        return config

    def test_missing_target(self):
        with pytest.raises(ConfigError, match="Missing URL, username, or room ID"):
            validate_config(config_from_dict({}))

    def test_followers_mode_needs_no_target(self):
        validate_config(config_from_dict({'recording': {'mode': 'followers'}}))

    def test_multiple_users_with_room_id(self):
        config = config_from_dict({'target': {'users': ['a', 'b'], 'room_id': 1}})
        with pytest.raises(ConfigError, match="multiple usernames"):
            validate_config(config)

    def test_invalid_url(self):
        config = config_from_dict({'target': {'url': 'https://example.com/live'}})
        with pytest.raises(ConfigError, match="valid TikTok live URL"):
            validate_config(config)

    def test_interval_minimum(self):
        with pytest.raises(ConfigError, match="one minute or more"):
            validate_config(self._config(interval=0))

    def test_duration_positive(self):
        with pytest.raises(ConfigError, match="duration"):
            validate_config(self._config(duration=-5))

    def test_telegram_requires_credentials(self):
        config = self._config()
        config.telegram.enabled = True
        with pytest.raises(ConfigError, match="Telegram"):
            validate_config(config)


class TestEnvOverrides:

    def test_overrides(self):
        config = apply_env_overrides(Config(), env={
            'TIKTOK_SESSION_ID': 'sess',
            'TIKTOK_TARGET_IDC': 'alisg',
            'TIKTOK_PROXY': 'http://p:1',
            'TIKTOK_OUTPUT_DIR': '/data',
        })
        assert config.tiktok.session_id == 'sess'
        assert config.tiktok.target_idc == 'alisg'
        assert config.tiktok.proxy == 'http://p:1'
        assert config.recording.output_dir == '/data'
        assert not config.telegram.enabled

    def test_bot_token_and_chat_enable_upload(self):
        config = apply_env_overrides(Config(), env={
            'TELEGRAM_API_ID': '42',
            'TELEGRAM_API_HASH': 'hash',
            'TELEGRAM_BOT_TOKEN': 'token',
            'TELEGRAM_CHAT_ID': '-1001',
        })
        assert config.telegram.enabled
        assert config.telegram.api_id == 42
        assert config.telegram.chat_id == -1001

    def test_env_applied_by_load(self, tmp_path):
        path = write_config(tmp_path, {'target': {'users': ['alice']}})
        config = load_config(path, env={'TIKTOK_SESSION_ID': 'from-env'})
        assert config.tiktok.cookies['sessionid_ss'] == 'from-env'
