# src/logs.py
import sys
from pathlib import Path
from typing import Optional, Union

from loguru import logger

from .config import LOG_LEVEL

LOG_FORMAT = "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {name}:{function} - {message}"


def configure_logging(level: str = LOG_LEVEL, log_file: Optional[Union[str, Path]] = None) -> None:
    """Reset loguru sinks: stderr at `level`, plus an optional log file."""
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=LOG_FORMAT)
    if log_file is not None:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(str(log_file), level="DEBUG", rotation="5 MB")
