import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from ladder_bot.config import Config

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def setup_logger(name: str, log_dir: Optional[str] = None) -> logging.Logger:
    """Setup a logger with console output and an optional daily log file.

    Loggers are configured once; later calls with the same name return the
    existing logger untouched. An empty ``LOG_DIR`` disables the file handler.
    """
    logger = logging.getLogger(name)

    if logger.handlers:
        return logger

    log_level = logging.DEBUG if Config.DEBUG else logging.INFO
    logger.setLevel(logging.DEBUG)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    directory = Config.LOG_DIR if log_dir is None else log_dir
    if directory:
        path = Path(directory)
        path.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(
            path / f'ladder_bot_{datetime.now().strftime("%Y%m%d")}.log',
            encoding='utf-8'
        )
        # File keeps DEBUG so expiry events can be traced after the fact
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger
