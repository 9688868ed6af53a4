"""Tests for log formatting and handler setup."""

import logging

from tiktokrecorder.logger import (
    LOGGER_NAME,
    ConsoleFormatter,
    FileFormatter,
    get_logger,
    get_user_logger,
    setup_logging,
)


def make_record(name=f'{LOGGER_NAME}.coordinator', user=None, msg="Recording started"):
    record = logging.LogRecord(name, logging.INFO, __file__, 1, msg, None, None)
    if user:
        record.user = user
    return record


class TestFormatters:

    def test_console_without_color(self):
        line = ConsoleFormatter(use_color=False).format(make_record(user='alice'))
        assert '\033[' not in line
        assert 'INFO' in line
        assert line.endswith('[@alice] Recording started')

    def test_console_with_color(self):
        line = ConsoleFormatter(use_color=True).format(make_record())
        assert '\033[92m' in line

    def test_file_line_has_component_and_user(self):
        line = FileFormatter().format(make_record(user='alice'))
        parts = [part.strip() for part in line.split('|')]
        assert parts[1:] == ['INFO', 'coordinator', 'alice', 'Recording started']

    def test_file_line_without_user(self):
        line = FileFormatter().format(make_record(name=LOGGER_NAME))
        parts = [part.strip() for part in line.split('|')]
        assert parts[2:4] == ['-', '-']


class TestSetup:

    def test_idempotent_with_file(self, tmp_path):
        log_file = tmp_path / "logs" / "recorder.log"
        setup_logging("DEBUG", str(log_file))
        logger = setup_logging("DEBUG", str(log_file))

        assert len(logger.handlers) == 2
        assert logger.level == logging.DEBUG

        get_user_logger('alice').info("hello")
        for handler in logger.handlers:
            handler.flush()
        assert 'alice' in log_file.read_text(encoding='utf-8')

        setup_logging("INFO")

    def test_unknown_level_defaults_to_info(self):
        assert setup_logging("LOUD").level == logging.INFO

    def test_child_names(self):
        assert get_logger().name == LOGGER_NAME
        assert get_logger('uploader').name == f'{LOGGER_NAME}.uploader'
