# tests/test_logging_config.py

"""Tests for the per-run logging configuration."""

import logging
import shutil
import tempfile
import unittest
from pathlib import Path

from src.config.logging_config import ROOT_LOGGER_NAME, setup_logging


class TestLoggingConfig(unittest.TestCase):
    """Verify logging setup behaviour."""

    def setUp(self) -> None:
        """Detach price_engine handlers and use a temp logs dir."""
        self.root_logger = logging.getLogger(ROOT_LOGGER_NAME)
        self._clear_handlers()
        self.tmp_dir = Path(tempfile.mkdtemp()) / "logs"

    def tearDown(self) -> None:
        self._clear_handlers()
        shutil.rmtree(self.tmp_dir.parent, ignore_errors=True)

    def _clear_handlers(self) -> None:
        for handler in list(self.root_logger.handlers):
            handler.close()
            self.root_logger.removeHandler(handler)

    def test_setup_creates_log_file(self) -> None:
        """setup_logging returns a path that exists on disk."""
        log_path = setup_logging(self.tmp_dir)
        self.assertTrue(log_path.exists())

    def test_log_file_naming_convention(self) -> None:
        """Log file name matches run_YYYYMMDD_HHMMSS.log format."""
        log_path = setup_logging(self.tmp_dir)
        self.assertRegex(log_path.name, r"^run_\d{8}_\d{6}\.log$")

    def test_log_file_inside_logs_dir(self) -> None:
        log_path = setup_logging(self.tmp_dir)
        self.assertEqual(log_path.parent, self.tmp_dir)

    def test_root_logger_has_handlers(self) -> None:
        """After setup, the price_engine logger has file + console."""
        setup_logging(self.tmp_dir)
        self.assertGreaterEqual(len(self.root_logger.handlers), 2)

    def test_file_handler_level_debug(self) -> None:
        setup_logging(self.tmp_dir)
        file_handlers = [
            h
            for h in self.root_logger.handlers
            if isinstance(h, logging.FileHandler)
        ]
        self.assertTrue(len(file_handlers) >= 1)
        self.assertEqual(file_handlers[0].level, logging.DEBUG)

    def test_console_handler_level_configurable(self) -> None:
        """The console level follows the console_level argument."""
        setup_logging(self.tmp_dir, console_level=logging.INFO)
        stream_handlers: list[logging.Handler] = [
            h
            for h in self.root_logger.handlers
            if isinstance(h, logging.StreamHandler)
            and not isinstance(h, logging.FileHandler)
        ]
        self.assertTrue(len(stream_handlers) >= 1)
        self.assertEqual(stream_handlers[0].level, logging.INFO)

    def test_repeated_calls_no_duplicate_handlers(self) -> None:
        setup_logging(self.tmp_dir)
        count_before = len(self.root_logger.handlers)
        setup_logging(self.tmp_dir)
        self.assertEqual(count_before, len(self.root_logger.handlers))

    def test_child_loggers_reach_log_file(self) -> None:
        """Records from price_engine.* children land in the run log."""
        log_path = setup_logging(self.tmp_dir)
        logging.getLogger("price_engine.engine").info("fan-out done")
        for handler in self.root_logger.handlers:
            handler.flush()
        self.assertIn(
            "fan-out done", log_path.read_text(encoding="utf-8")
        )

    def test_noisy_loggers_capped(self) -> None:
        setup_logging(self.tmp_dir)
        self.assertEqual(
            logging.getLogger("curl_cffi").level, logging.WARNING
        )


if __name__ == "__main__":
    unittest.main()
