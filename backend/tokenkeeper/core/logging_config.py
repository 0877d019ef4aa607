"""Process-wide logging setup."""

import logging
from pathlib import Path

from tokenkeeper.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(log_file: str = "") -> None:
    """
    Log to stderr and to a file, creating the log directory if needed.

    Args:
        log_file: Target file, defaults to the configured LOG_FILE
    """
    path = Path(log_file or settings.get_log_file())
    path.parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[logging.FileHandler(path), logging.StreamHandler()],
    )
    # Access logs would otherwise repeat every request line.
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
