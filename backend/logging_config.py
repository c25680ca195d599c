"""Routes all application and library logs through loguru."""
import logging
import sys

from loguru import logger

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {message}"


class InterceptHandler(logging.Handler):
    """Forwards standard logging records (werkzeug, botocore) to loguru."""

    def emit(self, record: logging.LogRecord) -> None:  # pragma: no cover - plumbing
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def configure_logging(level: str = "INFO", serialize: bool = False) -> None:
    intercept_handler = InterceptHandler()
    logging.basicConfig(handlers=[intercept_handler], level=0, force=True)

    # botocore is very chatty at DEBUG
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("werkzeug").handlers = [intercept_handler]
    logging.getLogger("werkzeug").propagate = False

    logger.remove()
    logger.add(
        sys.stdout,
        level=level,
        format="{message}" if serialize else LOG_FORMAT,
        serialize=serialize,
    )
