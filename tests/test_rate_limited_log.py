"""
Tests for rate-limited logging of repeated polling errors.
"""
import logging
import threading
from unittest.mock import MagicMock, patch

from cachetools import TTLCache

from bundle_rescue.relay._rate_limited_log import rate_limited_log


def make_logger(name="bundle_rescue.test"):
    mock_logger = MagicMock()
    mock_logger.name = name
    return mock_logger


class TestRateLimitedLog:
    """Tests for the rate-limited logging implementation."""

    def test_repeat_suppressed(self):
        mock_logger = make_logger()

        assert rate_limited_log("Head query failed", logger_instance=mock_logger)
        mock_logger.warning.assert_called_once_with("Head query failed")

        mock_logger.reset_mock()
        assert not rate_limited_log("Head query failed", logger_instance=mock_logger)
        mock_logger.warning.assert_not_called()

    def test_level_and_message_are_separate_keys(self):
        mock_logger = make_logger()

        rate_limited_log("Test message", level="warning", logger_instance=mock_logger)
        rate_limited_log("Test message", level="error", logger_instance=mock_logger)
        rate_limited_log("Other message", level="warning", logger_instance=mock_logger)

        mock_logger.error.assert_called_once_with("Test message")
        assert mock_logger.warning.call_count == 2

    def test_loggers_are_separate_keys(self):
        first, second = make_logger("a"), make_logger("b")
        rate_limited_log("same", logger_instance=first)
        rate_limited_log("same", logger_instance=second)
        first.warning.assert_called_once_with("same")
        second.warning.assert_called_once_with("same")

    def test_unknown_level_falls_back_to_warning(self):
        logger = logging.getLogger("bundle_rescue.test.levels")
        with patch.object(logger, "warning") as warning:
            rate_limited_log("odd level", level="nonsense", logger_instance=logger)
        warning.assert_called_once_with("odd level")

    def test_default_logger(self, caplog):
        with caplog.at_level(logging.WARNING):
            rate_limited_log("default logger message")
        assert "default logger message" in caplog.text

    def test_entry_expires(self):
        """After the interval passes, the same message is logged again"""
        now = [0.0]
        caches = {60: TTLCache(maxsize=100, ttl=60, timer=lambda: now[0])}
        mock_logger = make_logger()

        with patch("bundle_rescue.relay._rate_limited_log._log_caches", caches):
            rate_limited_log("expiring", logger_instance=mock_logger)
            now[0] = 30.0
            rate_limited_log("expiring", logger_instance=mock_logger)
            assert mock_logger.warning.call_count == 1

            now[0] = 61.0
            rate_limited_log("expiring", logger_instance=mock_logger)
            assert mock_logger.warning.call_count == 2

    def test_intervals_use_separate_caches(self):
        caches = {}
        with patch("bundle_rescue.relay._rate_limited_log._log_caches", caches):
            rate_limited_log("a", interval=10, logger_instance=make_logger())
            rate_limited_log("b", interval=60, logger_instance=make_logger())
        assert set(caches) == {10, 60}
        assert caches[10].ttl == 10

    def test_concurrent_callers_log_once(self):
        mock_logger = make_logger()
        threads = [
            threading.Thread(target=rate_limited_log, args=("race",), kwargs={"logger_instance": mock_logger})
            for _ in range(20)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        mock_logger.warning.assert_called_once_with("race")
