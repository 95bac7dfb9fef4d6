import functools
import logging
import os
import sys
import time
from typing import Any, Callable, TypeVar

F = TypeVar("F", bound=Callable[..., Any])

logger = logging.getLogger(__name__)

# Checked once at import time, so undecorated methods pay nothing when it's off
TIMING_ENABLED = bool(os.getenv("STRIDEGRAD_TIMING"))


class ColorFormatter(logging.Formatter):
    """
    A logging formatter that adds ANSI color codes to log messages based on their severity level.

    Examples:
        >>> import logging
        >>> from stridegrad.logger import ColorFormatter
        >>> logger = logging.getLogger("example")
        >>> handler = logging.StreamHandler()
        >>> handler.setFormatter(ColorFormatter())
        >>> logger.addHandler(handler)
        >>> logger.setLevel(logging.DEBUG)
        >>> logger.info("This is an info message.")
        # Each message will appear in a color corresponding to its log level.
    """

    grey = "\x1b[38;20m"
    yellow = "\x1b[33;20m"
    red = "\x1b[31;20m"
    bold_red = "\x1b[31;1m"
    cyan = "\x1b[36;20m"
    green = "\x1b[32;20m"
    magenta = "\x1b[35;20m"
    reset = "\x1b[0m"

    FORMATS = {
        logging.DEBUG: cyan,
        logging.INFO: green,
        logging.WARNING: yellow,
        logging.ERROR: red,
        logging.CRITICAL: bold_red,
    }

    def format(self, record):
        """
        Format the specified record as a colored log message.

        Args:
            record (logging.LogRecord): The log record to be formatted.

        Returns:
            str: The formatted log message with ANSI color codes.
        """
        color = self.FORMATS.get(record.levelno, self.grey)
        formatter = logging.Formatter(
            f"{color}%(asctime)s - %(levelname)s - %(message)s{self.reset}"
        )
        return formatter.format(record)


def setup_logger(name=None):
    """
    Set up and configure a logger with colored console output.

    The level is DEBUG if the environment variable DEBUG is set, otherwise INFO.
    Calling it twice for the same name does not attach a second handler.

    Args:
        name (str, optional): The name of the logger. Defaults to None.

    Returns:
        logging.Logger: The configured logger instance.

    Examples:
        >>> import os
        >>> os.environ["DEBUG"] = "1"
        >>> from stridegrad.logger import setup_logger
        >>> logger = setup_logger("stridegrad")
        >>> logger.debug("This is a debug message.")
    """
    logger = logging.getLogger(name)
    level = logging.DEBUG if os.getenv("DEBUG") else logging.INFO
    logger.setLevel(level)

    if not any(isinstance(h.formatter, ColorFormatter) for h in logger.handlers):
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(ColorFormatter())
        logger.addHandler(console_handler)

    return logger


def timed(always: bool = False) -> Callable[[F], F]:
    """
    Decorator that logs how long each call of a method takes.

    The wrapper is only installed when ``always`` is True or the
    ``STRIDEGRAD_TIMING`` environment variable was set when this module was
    imported; otherwise the function is returned untouched. Timings are logged
    at DEBUG level as ``[Class.method] 1.234 ms``.

    Args:
        always (bool, optional): Time this function regardless of the environment.
            Defaults to False.

    Returns:
        Callable: The decorator.

    Examples:
        >>> class Model:
        ...     @timed(always=True)
        ...     def forward(self, x):
        ...         return x
    """

    def decorator(fn: F) -> F:
        if not (always or TIMING_ENABLED):
            return fn

        label = f"[{fn.__qualname__}]"

        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            start = time.perf_counter()
            result = fn(*args, **kwargs)
            elapsed_ms = (time.perf_counter() - start) * 1000.0
            logger.debug(
                f"{ColorFormatter.magenta}{label}{ColorFormatter.reset} "
                f"{ColorFormatter.green}{elapsed_ms:.3f} ms{ColorFormatter.reset}"
            )
            return result

        return wrapper  # type: ignore[return-value]

    return decorator
