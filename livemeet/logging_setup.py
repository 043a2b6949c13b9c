import logging
import os
from logging.handlers import RotatingFileHandler

from livemeet.config import Settings

_FORMAT = "[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s"


def _build_file_handler(log_path: str) -> RotatingFileHandler:
    file_handler = RotatingFileHandler(log_path, maxBytes=5_000_000, backupCount=3)
    file_handler.setFormatter(logging.Formatter(_FORMAT, "%H:%M:%S"))
    file_handler.setLevel(logging.DEBUG)
    file_handler.name = "livemeet_file"
    return file_handler


def _build_stream_handler(level: int) -> logging.StreamHandler:
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(logging.Formatter(_FORMAT, "%H:%M:%S"))
    stream_handler.setLevel(level)
    stream_handler.name = "livemeet_stream"
    return stream_handler


def _replace_handlers(logger: logging.Logger, handlers: list[logging.Handler]) -> None:
    logger.handlers = []
    for handler in handlers:
        logger.addHandler(handler)
    logger.propagate = False


def configure_logging(settings: Settings) -> str | None:
    """Install console (and optional rotating file) handlers. Returns the log file path, if any."""
    level = logging.getLevelName((settings.LOG_LEVEL or "INFO").upper())
    if not isinstance(level, int):
        level = logging.INFO

    handlers: list[logging.Handler] = [_build_stream_handler(level)]
    log_path = (settings.LOG_FILE or "").strip() or None
    if log_path:
        log_dir = os.path.dirname(log_path)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(_build_file_handler(log_path))

    root_logger = logging.getLogger()
    root_logger.setLevel(min(level, logging.DEBUG) if log_path else level)
    _replace_handlers(root_logger, handlers)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uv_logger = logging.getLogger(name)
        uv_logger.setLevel(logging.INFO)
        _replace_handlers(uv_logger, handlers)

    root_logger.info("Logging initialized (level=%s, file=%s)", settings.LOG_LEVEL, log_path or "-")
    return log_path
