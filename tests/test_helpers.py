"""
Tests for helpers.py: size/time formatting, filename hygiene, logging setup.
"""

import logging

import pytest

from mixshare.helpers import format_size, init_logging, safe_filename, time_ago


class TestFormatSize:
    def test_bytes(self):
        assert format_size(0) == "0.0 B"
        assert format_size(512) == "512.0 B"
        assert format_size(1023) == "1023.0 B"

    def test_kilobytes(self):
        assert format_size(1024) == "1.0 KB"
        assert format_size(2048) == "2.0 KB"

    def test_megabytes(self):
        assert format_size(1024 * 1024) == "1.0 MB"
        assert format_size(int(1.5 * 1024 * 1024)) == "1.5 MB"

    def test_gigabytes(self):
        assert format_size(1024**3) == "1.0 GB"

    def test_terabytes(self):
        assert format_size(1024**4) == "1.0 TB"


class TestTimeAgo:
    def test_seconds(self):
        assert time_ago(100.0, now=105.0) == "5 seconds ago"

    def test_minutes(self):
        assert time_ago(0.0, now=125.0) == "2 minutes ago"

    def test_hours(self):
        assert time_ago(0.0, now=3 * 3600 + 10) == "3 hours ago"

    def test_days(self):
        assert time_ago(0.0, now=2 * 86400) == "2 days ago"

    def test_future_instant_clamps_to_zero(self):
        assert time_ago(10.0, now=5.0) == "0 seconds ago"


class TestSafeFilename:
    def test_plain_name(self):
        assert safe_filename("report.pdf") == "report.pdf"

    def test_strips_directories(self):
        assert safe_filename("../../etc/passwd") == "passwd"
        assert safe_filename("/abs/path/a.txt") == "a.txt"

    def test_strips_windows_separators(self):
        assert safe_filename("..\\..\\boot.ini") == "boot.ini"

    def test_strips_null_bytes(self):
        assert safe_filename("a\x00b.txt") == "ab.txt"

    @pytest.mark.parametrize("name", ["", ".", "..", "dir/", "\x00"])
    def test_unusable_names(self, name):
        assert safe_filename(name) is None

    @pytest.mark.parametrize("name", ["CON", "con.txt", "NUL", "com1.log", "LPT9"])
    def test_windows_reserved_names(self, name):
        assert safe_filename(name) is None

    def test_reserved_prefix_is_fine(self):
        assert safe_filename("console.txt") == "console.txt"


class TestInitLogging:
    @pytest.fixture
    def clean_logger(self):
        logger = logging.getLogger("mixshare")
        before = list(logger.handlers)
        level = logger.level
        yield logger
        for handler in logger.handlers:
            if handler not in before:
                handler.close()
        logger.handlers = before
        logger.setLevel(level)

    def test_writes_to_file(self, tmp_path, clean_logger):
        log_file = tmp_path / "debug.log"
        init_logging(str(log_file))
        logging.getLogger("mixshare.test").info("hello from the test")
        for handler in clean_logger.handlers:
            handler.flush()
        assert "hello from the test" in log_file.read_text()

    def test_debug_level(self, tmp_path, clean_logger):
        init_logging(str(tmp_path / "debug.log"), debug=True)
        assert clean_logger.level == logging.DEBUG

    def test_console_is_opt_in(self, tmp_path, clean_logger):
        before = len(clean_logger.handlers)
        init_logging(str(tmp_path / "a.log"))
        assert len(clean_logger.handlers) == before + 1
        init_logging(str(tmp_path / "b.log"), console=True)
        assert len(clean_logger.handlers) == before + 3
