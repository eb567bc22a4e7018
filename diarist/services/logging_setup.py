import logging
import os
from datetime import datetime
from logging.handlers import RotatingFileHandler

LOG_FORMAT = "[%(asctime)s] [%(name)s] %(message)s"
FILE_HANDLER_NAME = "diarist_file"
STREAM_HANDLER_NAME = "diarist_stream"
# uvicorn installs its own handlers; route them through ours instead.
SERVER_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


def _named(handler: logging.Handler, name: str, level: int) -> logging.Handler:
    handler.setFormatter(logging.Formatter(LOG_FORMAT, "%H:%M:%S"))
    handler.setLevel(level)
    handler.name = name
    return handler


def _install(logger: logging.Logger, handlers: list[logging.Handler], level: int) -> None:
    for old in list(logger.handlers):
        logger.removeHandler(old)
        # Files from an earlier create_app() stay open otherwise.
        if old.name == FILE_HANDLER_NAME and old not in handlers:
            old.close()
    for handler in handlers:
        logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False


def configure_logging(logs_dir: str, console_level: int = logging.INFO) -> str:
    """Send diarist and uvicorn logs to a per-boot rotating file and the console.

    Returns the path of the new log file.
    """
    os.makedirs(logs_dir, exist_ok=True)
    stamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    log_path = os.path.join(logs_dir, f"server_{stamp}.log")

    handlers = [
        _named(
            RotatingFileHandler(log_path, maxBytes=5_000_000, backupCount=3, encoding="utf-8"),
            FILE_HANDLER_NAME,
            logging.DEBUG,
        ),
        _named(logging.StreamHandler(), STREAM_HANDLER_NAME, console_level),
    ]

    _install(logging.getLogger(), handlers, logging.DEBUG)
    for name in SERVER_LOGGERS:
        _install(logging.getLogger(name), handlers, logging.INFO)

    logging.getLogger("diarist.boot").info("Logging initialized: %s", log_path)
    return log_path
