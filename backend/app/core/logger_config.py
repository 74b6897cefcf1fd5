"""Centralized loguru configuration."""

import logging
import sys

from loguru import logger as loguru_logger

from backend.app.core.config import settings


log_format = ' | '.join(
    (
        '<lk>{time:YYYY-MM-DD HH:mm:ss.SSS}</>',
        '<lvl>{level:<8}</>',
        '<c>{file}::{function}:{line}</>',
        '{message}',
    )
)


class InterceptHandler(logging.Handler):
    """Redirect standard logging records (uvicorn, sqlalchemy) into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = loguru_logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        loguru_logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


loguru_logger.remove()  # drop the default stderr sink, we install our own format
custom_logger = loguru_logger
custom_logger.add(sys.stdout, format=log_format, level=settings.LOG_LEVEL.upper())

logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
