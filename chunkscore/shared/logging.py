import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Optional

EVENTS_LEVEL_NUM = 38
EVENTS_LOGGER_NAME = "chunkscore.events"
DEFAULT_LOG_BACKUP_COUNT = 10
DEFAULT_EVENTS_RETENTION_BYTES = 10 * 1024 * 1024

_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


def _event(self, message, *args, **kws):
    if self.isEnabledFor(EVENTS_LEVEL_NUM):
        self._log(EVENTS_LEVEL_NUM, message, args, **kws)


logging.addLevelName(EVENTS_LEVEL_NUM, "EVENT")
logging.Logger.event = _event

# Silent unless the application configures handlers.
logging.getLogger("chunkscore").addHandler(logging.NullHandler())


def setup_events_logger(full_path, events_retention_size=DEFAULT_EVENTS_RETENTION_BYTES):
    """Attach a rotating ``events.log`` under ``full_path`` to the events logger."""
    logger = logging.getLogger(EVENTS_LOGGER_NAME)
    logger.setLevel(EVENTS_LEVEL_NUM)

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(message)s",
        datefmt=_DATEFMT,
    )

    os.makedirs(full_path, exist_ok=True)
    events_path = os.path.join(full_path, "events.log")
    for handler in logger.handlers:
        if isinstance(handler, RotatingFileHandler) and handler.baseFilename == os.path.abspath(events_path):
            return logger

    file_handler = RotatingFileHandler(
        events_path,
        maxBytes=events_retention_size,
        backupCount=DEFAULT_LOG_BACKUP_COUNT,
    )
    file_handler.setFormatter(formatter)
    file_handler.setLevel(EVENTS_LEVEL_NUM)
    logger.addHandler(file_handler)

    return logger


def configure_logging(
    level: str = "INFO",
    directory: Optional[str] = None,
    retention_bytes: int = DEFAULT_EVENTS_RETENTION_BYTES,
) -> None:
    """Console logging for the ``chunkscore`` tree, plus an events file when ``directory`` is set."""
    root = logging.getLogger("chunkscore")
    root.setLevel(level.upper())
    if not any(isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
               for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATEFMT))
        root.addHandler(handler)

    events = logging.getLogger(EVENTS_LOGGER_NAME)
    events.setLevel(min(EVENTS_LEVEL_NUM, root.level))
    if directory:
        setup_events_logger(directory, retention_bytes)


def log_event(payload: Dict[str, Any]) -> None:
    """Record a chunk lifecycle event."""
    logging.getLogger(EVENTS_LOGGER_NAME).event(payload)
