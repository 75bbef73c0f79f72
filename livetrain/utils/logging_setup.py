"""
Logging configuration for the LiveTrain package.
"""

import logging
import os
import sys
from pathlib import Path
from typing import Optional, Union


def get_log_dir() -> Path:
    """Get the platform log directory for LiveTrain."""
    if sys.platform == "darwin":  # macOS
        return Path.home() / "Library" / "Logs" / "LiveTrain"
    if sys.platform == "win32":  # Windows
        return Path(os.environ.get("APPDATA", Path.home())) / "LiveTrain" / "logs"
    return Path.home() / ".local" / "share" / "livetrain" / "logs"


def setup_logging(
    level: Union[int, str] = logging.WARNING,
    log_file: Optional[Union[str, Path]] = None,
    to_file: bool = True,
) -> Optional[Path]:
    """
    Setup logging with file and console output.

    Args:
        level: Level for the LiveTrain loggers
        log_file: Log file path (defaults to the platform log directory)
        to_file: Set to False for console-only logging

    Returns:
        The log file path, or None when logging to the console only
    """
    handlers: list = [logging.StreamHandler()]
    log_path: Optional[Path] = None
    if to_file:
        log_path = Path(log_file) if log_file else get_log_dir() / "livetrain.log"
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.insert(0, logging.FileHandler(str(log_path)))

    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
        force=True,
    )

    # Set specific log levels for different modules
    for name in (
        "livetrain.api",
        "livetrain.managers",
        "livetrain.ui",
        "livetrain.cache",
        "livetrain.monitor",
    ):
        logging.getLogger(name).setLevel(level)
    logging.getLogger("aiohttp").setLevel(logging.WARNING)

    return log_path
