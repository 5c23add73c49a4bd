"""
Logging configuration for the avatar pipeline.

Every record carries the source and identifier being processed, taken from
loguru's bound context:

    with logger.contextualize(source="twitter", identifier="alice"):
        ...

Records logged outside such a block show "-" for both.
"""

import os
import sys
from pathlib import Path

from loguru import logger

from avatarmap.config import settings

# Values used when a record has no source/identifier bound
DEFAULT_CONTEXT = {"source": "-", "identifier": "-"}

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<magenta>{extra[source]}</magenta>:<magenta>{extra[identifier]}</magenta> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)

FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {thread.name} | "
    "{extra[source]}:{extra[identifier]} | {name}:{function}:{line} - {message}"
)


def setup_logging(
    level: str | None = None,
    log_file: Path | None = None,
    rotation: str = "10 MB",
    retention: str = "1 week",
    serialize: bool = False,
) -> None:
    """
    Configure logging for the pipeline.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional file path for logging to file
        rotation: Log rotation setting (e.g., "10 MB", "1 day")
        retention: Log retention setting (e.g., "1 week", "10 files")
        serialize: Write the file as JSON lines instead of text
    """
    level = level or settings.pipeline.log_level

    logger.remove()
    logger.configure(extra=DEFAULT_CONTEXT)

    logger.add(sys.stderr, level=level, format=CONSOLE_FORMAT, colorize=True)

    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)

        logger.add(
            log_file,
            level=level,
            format=FILE_FORMAT,
            rotation=rotation,
            retention=retention,
            compression="gz",
            serialize=serialize,
        )

    logger.debug(f"Logging configured: level={level}, file={log_file or '-'}")


if os.environ.get("DISABLE_LOGGING") != "1":
    setup_logging()
