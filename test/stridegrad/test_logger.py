import logging
import os
from unittest import TestCase
from unittest.mock import patch

from stridegrad import logger as logger_module
from stridegrad.logger import ColorFormatter, setup_logger, timed


class TestLogger(TestCase):
    def test_setup_logger_adds_one_handler(self):
        log = setup_logger("stridegrad.test_setup")
        setup_logger("stridegrad.test_setup")
        color_handlers = [
            h for h in log.handlers if isinstance(h.formatter, ColorFormatter)
        ]
        assert len(color_handlers) == 1

    @patch.dict(os.environ, {"DEBUG": "1"})
    def test_setup_logger_debug_from_env(self):
        assert setup_logger("stridegrad.test_env").level == logging.DEBUG

    def test_setup_logger_defaults_to_info(self):
        with patch.dict(os.environ):
            os.environ.pop("DEBUG", None)
            assert setup_logger("stridegrad.test_env").level == logging.INFO

    def test_color_formatter(self):
        record = logging.LogRecord("x", logging.ERROR, __file__, 1, "boom", None, None)
        formatted = ColorFormatter().format(record)
        assert formatted.startswith(ColorFormatter.red)
        assert "boom" in formatted
        assert formatted.endswith(ColorFormatter.reset)


class TestTimed(TestCase):
    def test_disabled_returns_function_unchanged(self):
        def f(x):
            return x + 1

        if not logger_module.TIMING_ENABLED:
            assert timed()(f) is f

    def test_always_logs_duration(self):
        @timed(always=True)
        def double(x):
            return 2 * x

        with self.assertLogs("stridegrad.logger", level="DEBUG") as captured:
            assert double(4) == 8
        assert len(captured.output) == 1
        assert "double" in captured.output[0]
        assert "ms" in captured.output[0]
        assert double.__name__ == "double"
