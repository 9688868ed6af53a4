"""
TikTok Live Recorder - entry point.

Loads the configuration, builds one recorder per configured user and runs
them until they finish or a shutdown signal arrives.
"""

import argparse
import asyncio
import signal
import sys
from typing import List, Optional

from .config import Config, Mode, load_config
from .coordinator import TikTokRecorder
from .errors import ConfigError, TikTokRecorderError
from .logger import get_logger, setup_logging


def build_recorders(config: Config) -> List[TikTokRecorder]:
    """One recorder per user, or a single one for url/room_id/followers."""
    common = dict(
        mode=config.recording.mode,
        interval=config.recording.interval,
        duration=config.recording.duration,
        cookies=config.tiktok.cookies,
        proxy=config.tiktok.proxy,
        output_dir=config.recording.output_dir,
        upload_enabled=config.telegram.enabled,
        telegram_config=config.telegram
    )

    target = config.target
    if config.recording.mode == Mode.FOLLOWERS:
        return [TikTokRecorder(**common)]
    if target.url or target.room_id:
        user = target.users[0] if target.users else None
        return [TikTokRecorder(url=target.url, user=user, room_id=target.room_id, **common)]
    return [TikTokRecorder(user=user, **common) for user in target.users]


def install_signal_handlers(recorders: List[TikTokRecorder]) -> None:
    """Route SIGINT/SIGTERM to a graceful stop of every recorder."""
    loop = asyncio.get_running_loop()

    def _stop_all():
        for recorder in recorders:
            recorder.stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _stop_all)
        except (NotImplementedError, RuntimeError):
            # Windows: fall back to KeyboardInterrupt
            pass


async def run_recorders(recorders: List[TikTokRecorder]) -> int:
    """
    Run all recorders concurrently.

    Returns:
        Process exit code: 0 if every recorder finished cleanly.
    """
    logger = get_logger('app')
    install_signal_handlers(recorders)

    results = await asyncio.gather(
        *(recorder.run() for recorder in recorders),
        return_exceptions=True
    )

    exit_code = 0
    for recorder, result in zip(recorders, results):
        if isinstance(result, TikTokRecorderError):
            logger.error(f"{recorder.label}: {result}")
            exit_code = 1
        elif isinstance(result, BaseException):
            logger.error(f"{recorder.label}: unexpected error", exc_info=result)
            exit_code = 1
    return exit_code


async def main(config_path: str = "config.yaml") -> int:
    """Main entry point."""
    try:
        config = load_config(config_path)
    except FileNotFoundError as e:
        print(f"Error: {e}")
        return 1
    except ConfigError as e:
        print(f"Configuration error: {e}")
        return 1

    setup_logging(
        level=config.logging.level,
        log_file=config.logging.file,
        max_size_mb=config.logging.max_size_mb,
        backup_count=config.logging.backup_count
    )

    logger = get_logger('app')
    recorders = build_recorders(config)
    logger.info(
        f"Starting TikTok Live Recorder: mode {config.recording.mode.value}, "
        f"{len(recorders)} recorder(s)"
    )

    return await run_recorders(recorders)


def cli(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(
        prog='tiktok-recorder',
        description='Record TikTok live streams.'
    )
    parser.add_argument(
        '-c', '--config',
        default='config.yaml',
        help='Path to the YAML configuration file (default: config.yaml)'
    )
    args = parser.parse_args(argv)

    try:
        sys.exit(asyncio.run(main(args.config)))
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == '__main__':
    cli()
