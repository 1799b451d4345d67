import logging
import sys
from typing import Any

from loguru import logger

from emailsleuth.config import get_settings

# Stdlib loggers routed into loguru, with the lowest level kept from each
# outside of verbose mode.
LIBRARY_LEVELS: dict[str, int] = {
    "aiohttp": logging.WARNING,
    "asyncio": logging.WARNING,
    "playwright": logging.WARNING,
    "openai": logging.WARNING,
    "dns": logging.ERROR,
}

CONSOLE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} | {message}"
VERBOSE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level> {extra}"
)


class InterceptHandler(logging.Handler):
    """Intercept stdlib logging and redirect to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk past the logging module so loguru reports the library's caller
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back  # type: ignore[assignment]
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _library_threshold(name: str) -> int:
    for prefix, level in LIBRARY_LEVELS.items():
        if name == prefix or name.startswith(prefix + "."):
            return level
    return 0


def _quiet_libraries(record: dict[str, Any]) -> bool:
    return bool(record["level"].no >= _library_threshold(record.get("name") or ""))


def setup_logging(verbose: bool = False, json_logs: bool | None = None) -> None:
    """
    Send loguru output to stderr, leaving stdout for command results.

    ``verbose`` (or ``DEBUG=true``) logs at DEBUG with bound context shown.
    ``json_logs`` (or ``LOG_JSON=true``) writes one JSON object per record,
    which suits long batch runs piped into other tooling.
    """
    settings = get_settings()
    verbose = verbose or settings.debug
    if json_logs is None:
        json_logs = settings.log_json

    logger.remove()
    sink_options: dict[str, Any] = {
        "level": "DEBUG" if verbose else "INFO",
        "backtrace": verbose,
        "diagnose": verbose,
    }
    if not verbose:
        sink_options["filter"] = _quiet_libraries

    if json_logs:
        logger.add(sys.stderr, serialize=True, **sink_options)
    else:
        logger.add(sys.stderr, format=VERBOSE_FORMAT if verbose else CONSOLE_FORMAT, **sink_options)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in LIBRARY_LEVELS:
        logging.getLogger(name).handlers = [InterceptHandler()]


def get_logger(name: str) -> Any:
    """Loguru logger with ``name`` bound into its extra context."""
    return logger.bind(name=name)
