import os
import sys

from loguru import logger

_logger_initialized = False
_sink_ids: list[int] = []

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level} | {extra[component]} | {message}"


def setup_logger(log_level: str = "INFO", log_path: str = "logs/sitesearch.log", component: str = "sitesearch"):
    """Install file and console sinks once per process and return a bound logger."""
    global _logger_initialized, _sink_ids

    if not _logger_initialized:
        log_dir = os.path.dirname(log_path)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)

        logger.remove()
        logger.configure(extra={"component": component})

        file_sink = logger.add(
            log_path,
            rotation="10 MB",
            retention="7 days",
            level=log_level,
            format=LOG_FORMAT,
            enqueue=True,
        )
        console_sink = logger.add(
            sys.stderr,
            colorize=True,
            level=log_level,
            format=LOG_FORMAT,
        )

        _sink_ids = [file_sink, console_sink]
        _logger_initialized = True

    return logger.bind(component=component)
