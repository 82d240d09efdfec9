import inspect
import logging
import sys

from loguru import logger


class InterceptHandler(logging.Handler):
    """Route records from stdlib loggers (uvicorn, kubernetes, nats) into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = inspect.currentframe(), 0
        while frame and (depth == 0 or frame.f_code.co_filename == logging.__file__):
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def configure_logging(debug: bool = False, json_logs: bool = False) -> None:
    level = "DEBUG" if debug else "INFO"

    logger.remove()
    logger.add(sys.stderr, level=level, serialize=json_logs)

    logging.basicConfig(handlers=[InterceptHandler()], level=level, force=True)
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).handlers = [InterceptHandler()]
        logging.getLogger(name).propagate = False

    if debug:
        logger.debug("Debug mode enabled")
