"""Logging setup for processes embedding edgeml."""

import logging
import logging.handlers
from typing import Optional

from .config import LoggingConfig, get_config

_HANDLER_MARK = "_edgeml_handler"


def configure_logging(config: Optional[LoggingConfig] = None) -> logging.Logger:
    """
    Attach handlers to the ``edgeml`` logger according to ``config``.

    Calling it again replaces the handlers installed by a previous call.
    """
    config = config or get_config().logging
    logger = logging.getLogger("edgeml")
    logger.setLevel(getattr(logging, config.level.value.upper()))

    for handler in list(logger.handlers):
        if getattr(handler, _HANDLER_MARK, False):
            logger.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(config.format)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    setattr(stream_handler, _HANDLER_MARK, True)
    logger.addHandler(stream_handler)

    if config.file_path:
        file_handler = logging.handlers.RotatingFileHandler(
            config.file_path,
            maxBytes=config.max_file_size_mb * 1024 * 1024,
            backupCount=config.backup_count,
        )
        file_handler.setFormatter(formatter)
        setattr(file_handler, _HANDLER_MARK, True)
        logger.addHandler(file_handler)

    return logger
