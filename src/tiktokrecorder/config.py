"""
Configuration module for TikTok Live Recorder.
Loads settings from YAML file and provides typed configuration.
"""

import os
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .errors import ConfigError


TIKTOK_URL_RE = re.compile(r'.*www\.tiktok\.com.*|.*vm\.tiktok\.com.*')

DEFAULT_TARGET_IDC = "useast2a"


class Mode(Enum):
    """Recording mode."""
    MANUAL = "manual"          # Record once if live, then exit
    AUTOMATIC = "automatic"    # Poll one user until stopped
    FOLLOWERS = "followers"    # Record every live account the session follows


@dataclass
class TikTokConfig:
    """TikTok session settings."""
    session_id: str = ""                    # sessionid_ss cookie
    target_idc: str = DEFAULT_TARGET_IDC    # tt-target-idc cookie
    proxy: Optional[str] = None

    @property
    def cookies(self) -> Dict[str, str]:
        return {
            'sessionid_ss': self.session_id,
            'tt-target-idc': self.target_idc,
        }


@dataclass
class TargetConfig:
    """What to record. Exactly one of users/url/room_id for manual and automatic modes."""
    users: List[str] = field(default_factory=list)
    url: Optional[str] = None
    room_id: Optional[str] = None


@dataclass
class RecordingConfig:
    """Recording settings."""
    mode: Mode = Mode.MANUAL
    interval: int = 5                   # minutes between checks (automatic/followers)
    duration: Optional[int] = None      # seconds, None = until the live ends
    output_dir: str = "./recordings"


@dataclass
class TelegramConfig:
    """Telegram upload settings."""
    enabled: bool = False
    api_id: int = 0
    api_hash: str = ""
    bot_token: str = ""
    chat_id: int = 0
    session_name: str = "tiktok_recorder"


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    file: Optional[str] = "./logs/recorder.log"
    max_size_mb: int = 10
    backup_count: int = 5


@dataclass
class Config:
    """Main configuration container."""
    tiktok: TikTokConfig = field(default_factory=TikTokConfig)
    target: TargetConfig = field(default_factory=TargetConfig)
    recording: RecordingConfig = field(default_factory=RecordingConfig)
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def as_bool(value: Any, default: bool) -> bool:
    """Parse bool from YAML value with safe fallbacks."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ("1", "true", "yes", "y", "on"):
            return True
        if text in ("0", "false", "no", "n", "off"):
            return False
    return default


def as_int(value: Any, field_name: str) -> Optional[int]:
    """Parse an optional int, rejecting garbage instead of guessing."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ConfigError(f"Invalid value for {field_name}: {value!r}")
    try:
        return int(str(value).strip())
    except ValueError:
        raise ConfigError(f"Invalid value for {field_name}: {value!r}") from None


def parse_users(value: Any) -> List[str]:
    """Normalize users from a list or a comma-separated string, dropping '@'."""
    if not value:
        return []
    if isinstance(value, str):
        value = value.split(',')
    users = []
    for item in value:
        name = str(item).replace('@', '').strip()
        if name:
            users.append(name)
    return users


def parse_mode(value: Any) -> Mode:
    if isinstance(value, Mode):
        return value
    try:
        return Mode(str(value or 'manual').strip().lower())
    except ValueError:
        raise ConfigError(
            "Incorrect mode value. Choose between 'manual', 'automatic' or 'followers'."
        ) from None


def apply_env_overrides(config: Config, env: Optional[Dict[str, str]] = None) -> Config:
    """
    Override config values from environment variables.

    TIKTOK_SESSION_ID, TIKTOK_TARGET_IDC, TIKTOK_PROXY, TIKTOK_OUTPUT_DIR and
    TELEGRAM_API_ID, TELEGRAM_API_HASH, TELEGRAM_BOT_TOKEN, TELEGRAM_CHAT_ID.
    Setting both TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID enables upload.
    """
    env = os.environ if env is None else env

    if env.get('TIKTOK_SESSION_ID'):
        config.tiktok.session_id = env['TIKTOK_SESSION_ID']
    if env.get('TIKTOK_TARGET_IDC'):
        config.tiktok.target_idc = env['TIKTOK_TARGET_IDC']
    if env.get('TIKTOK_PROXY'):
        config.tiktok.proxy = env['TIKTOK_PROXY']
    if env.get('TIKTOK_OUTPUT_DIR'):
        config.recording.output_dir = env['TIKTOK_OUTPUT_DIR']

    if env.get('TELEGRAM_API_ID'):
        config.telegram.api_id = as_int(env['TELEGRAM_API_ID'], 'TELEGRAM_API_ID')
    if env.get('TELEGRAM_API_HASH'):
        config.telegram.api_hash = env['TELEGRAM_API_HASH']
    if env.get('TELEGRAM_BOT_TOKEN') and env.get('TELEGRAM_CHAT_ID'):
        config.telegram.bot_token = env['TELEGRAM_BOT_TOKEN']
        config.telegram.chat_id = as_int(env['TELEGRAM_CHAT_ID'], 'TELEGRAM_CHAT_ID')
        config.telegram.enabled = True

    return config


def validate_config(config: Config) -> Config:
    """
    Check configuration consistency.

    Raises:
        ConfigError: On the first invalid value.
    """
    target = config.target
    recording = config.recording

    if recording.mode in (Mode.MANUAL, Mode.AUTOMATIC):
        if not target.users and not target.room_id and not target.url:
            raise ConfigError(
                "Missing URL, username, or room ID. Please provide one of these parameters."
            )

    if len(target.users) > 1 and (target.room_id or target.url):
        raise ConfigError("When using multiple usernames, do not provide room_id or url.")

    if target.url and not TIKTOK_URL_RE.match(target.url):
        raise ConfigError("The provided URL does not appear to be a valid TikTok live URL.")

    if recording.interval < 1:
        raise ConfigError("Incorrect automatic_interval value. Must be one minute or more.")

    if recording.duration is not None and recording.duration <= 0:
        raise ConfigError("Incorrect duration value. Must be a positive number of seconds.")

    if config.telegram.enabled:
        tg = config.telegram
        if not (tg.api_id and tg.api_hash and tg.bot_token and tg.chat_id):
            raise ConfigError(
                "Telegram upload enabled but api_id, api_hash, bot_token or chat_id is missing."
            )

    return config


def config_from_dict(data: Optional[dict]) -> Config:
    """Build a Config from parsed YAML data (no env overrides, no validation)."""
    data = data or {}

    tiktok_data = data.get('tiktok') or {}
    cookies = tiktok_data.get('cookies') or {}
    tiktok_config = TikTokConfig(
        session_id=str(cookies.get('sessionid_ss', '') or ''),
        target_idc=str(cookies.get('tt-target-idc', DEFAULT_TARGET_IDC) or DEFAULT_TARGET_IDC),
        proxy=tiktok_data.get('proxy') or None
    )

    target_data = data.get('target') or {}
    room_id = target_data.get('room_id')
    target_config = TargetConfig(
        users=parse_users(target_data.get('users', target_data.get('user'))),
        url=target_data.get('url') or None,
        room_id=str(room_id) if room_id else None
    )

    recording_data = data.get('recording') or {}
    interval = as_int(recording_data.get('interval'), 'recording.interval')
    recording_config = RecordingConfig(
        mode=parse_mode(recording_data.get('mode')),
        interval=5 if interval is None else interval,
        duration=as_int(recording_data.get('duration'), 'recording.duration'),
        output_dir=recording_data.get('output_dir') or './recordings'
    )

    telegram_data = data.get('telegram') or {}
    telegram_config = TelegramConfig(
        enabled=as_bool(telegram_data.get('enabled'), False),
        api_id=as_int(telegram_data.get('api_id'), 'telegram.api_id') or 0,
        api_hash=str(telegram_data.get('api_hash', '') or ''),
        bot_token=str(telegram_data.get('bot_token', '') or ''),
        chat_id=as_int(telegram_data.get('chat_id'), 'telegram.chat_id') or 0,
        session_name=telegram_data.get('session_name') or 'tiktok_recorder'
    )

    logging_data = data.get('logging') or {}
    logging_config = LoggingConfig(
        level=logging_data.get('level', 'INFO'),
        file=logging_data.get('file', './logs/recorder.log'),
        max_size_mb=logging_data.get('max_size_mb', 10),
        backup_count=logging_data.get('backup_count', 5)
    )

    return Config(
        tiktok=tiktok_config,
        target=target_config,
        recording=recording_config,
        telegram=telegram_config,
        logging=logging_config
    )


def load_config(config_path: str = "config.yaml", env: Optional[Dict[str, str]] = None) -> Config:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to YAML configuration file.
        env: Environment mapping for overrides (default: os.environ).

    Returns:
        Validated Config object.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        ConfigError: If a value is invalid.
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path}\n"
            f"Please create a config.yaml file. See config.example.yaml for reference."
        )

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

    if data is not None and not isinstance(data, dict):
        raise ConfigError("Configuration file must contain a mapping")

    config = apply_env_overrides(config_from_dict(data), env)
    return validate_config(config)
