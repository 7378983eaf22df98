import logging
import tempfile
import unittest
from logging.handlers import RotatingFileHandler
from pathlib import Path

from zntracker.logging import LOGGER_NAME, parse_level, setup_logging


class ParseLevelTests(unittest.TestCase):
    def test_known_names(self) -> None:
        self.assertEqual(parse_level("debug"), logging.DEBUG)
        self.assertEqual(parse_level(" WARNING "), logging.WARNING)
        self.assertEqual(parse_level("critical"), logging.CRITICAL)

    def test_unknown_name(self) -> None:
        with self.assertRaises(ValueError):
            parse_level("verbose")


class SetupLoggingTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.log_file = Path(self.tmpdir.name) / "logs" / "tracker.log"

    def tearDown(self) -> None:
        logger = logging.getLogger(LOGGER_NAME)
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
        self.tmpdir.cleanup()

    def test_writes_to_rotating_file(self) -> None:
        logger = setup_logging(self.log_file, level="info")
        self.assertEqual(logger.level, logging.INFO)
        self.assertFalse(logger.propagate)
        logger.info("peer directory ready")
        for handler in logger.handlers:
            handler.flush()
        self.assertIn("peer directory ready", self.log_file.read_text(encoding="utf-8"))
        self.assertTrue(any(isinstance(h, RotatingFileHandler) for h in logger.handlers))

    def test_repeated_setup_replaces_handlers(self) -> None:
        setup_logging(self.log_file)
        logger = setup_logging(self.log_file, level=logging.DEBUG)
        self.assertEqual(len(logger.handlers), 2)
        logger = setup_logging(None)
        self.assertEqual(len(logger.handlers), 1)
        self.assertNotIsInstance(logger.handlers[0], RotatingFileHandler)

    def test_unknown_level_name(self) -> None:
        with self.assertRaises(ValueError):
            setup_logging(None, level="loud")


if __name__ == "__main__":
    unittest.main()
