import logging
import sys
from pathlib import Path
from logging.handlers import RotatingFileHandler

from colorama import Fore, Style, init

init(autoreset=True)

PACKAGE_LOGGER = "fastml"
CONSOLE_FORMAT = '[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s'
FILE_FORMAT = '[%(asctime)s] [%(levelname)s] [%(name)s] [%(funcName)s] %(message)s'


class ColoredFormatter(logging.Formatter):
    """Custom formatter with color support for console output."""
    COLORS = {
        'DEBUG': Fore.WHITE + Style.DIM,
        'INFO': Fore.CYAN,
        'WARNING': Fore.YELLOW,
        'ERROR': Fore.RED,
        'CRITICAL': Fore.RED + Style.BRIGHT
    }
    RESET = Style.RESET_ALL

    def format(self, record):
        # Work on a copy so file handlers never see the escape codes
        record = logging.makeLogRecord(record.__dict__)
        levelname = record.levelname
        if levelname in self.COLORS:
            record.levelname = f"{self.COLORS[levelname]}{levelname}{self.RESET}"
        return super().format(record)


class LoggingConfigurator:
    """
    Configures the ``fastml`` logger hierarchy.

    Handlers are attached to the package logger only, so applications that import
    fastml keep control of the root logger.
    """

    def __init__(self, config: dict):
        self.config = config.get('logging', {})
        verbose = config.get('execution', {}).get('verbose', False)
        level_name = self.config.get('level') or ('INFO' if verbose else 'WARNING')
        self.log_level = getattr(logging, level_name.upper())
        self.log_dir = Path(self.config.get('log_dir', 'logs'))

    def setup(self) -> logging.Logger:
        """Setup the package logger and its handlers."""
        logger = logging.getLogger(PACKAGE_LOGGER)
        logger.setLevel(self.log_level)
        logger.propagate = False
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()

        if self.config.get('log_to_console', True):
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(self.log_level)

            if self.config.get('colorful_console', True):
                formatter = ColoredFormatter(CONSOLE_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')
            else:
                formatter = logging.Formatter(CONSOLE_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')

            console_handler.setFormatter(formatter)
            logger.addHandler(console_handler)

        if self.config.get('log_to_file', False):
            self.log_dir.mkdir(parents=True, exist_ok=True)
            self._add_file_handler(logger, "fastml.log")

        return logger

    def _add_file_handler(self, logger: logging.Logger, filename: str):
        file_path = self.log_dir / filename
        handler = RotatingFileHandler(
            file_path,
            maxBytes=10*1024*1024,
            backupCount=5,
            encoding='utf-8'
        )
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(FILE_FORMAT))
        logger.addHandler(handler)
        # The file always records DEBUG detail
        logger.setLevel(logging.DEBUG)

    def get_logger(self, name: str) -> logging.Logger:
        return logging.getLogger(f"{PACKAGE_LOGGER}.{name}")
