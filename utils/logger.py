"""
Logging configuration for Script Asset Mirror
Console output plus optional rotating log file
"""
import logging
import sys
from pathlib import Path
from logging.handlers import RotatingFileHandler
from typing import Optional

from core.config import config


class SafeStreamHandler(logging.StreamHandler):
    """Stream handler that never fails on characters the console cannot encode"""

    def emit(self, record):
        try:
            msg = self.format(record)
            stream = self.stream
            encoding = getattr(stream, 'encoding', None) or 'utf-8'
            try:
                msg.encode(encoding)
            except UnicodeEncodeError:
                msg = msg.encode(encoding, errors='replace').decode(encoding)
            stream.write(msg + self.terminator)
            self.flush()
        except Exception:
            self.handleError(record)


def setup_logger(name: str = "asset_mirror", level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """
    Set up a named logger

    Args:
        name: Logger name
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional log file path

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    level_map = {
        'DEBUG': logging.DEBUG,
        'INFO': logging.INFO,
        'WARNING': logging.WARNING,
        'ERROR': logging.ERROR,
        'CRITICAL': logging.CRITICAL
    }
    logger.setLevel(level_map.get(str(level).upper(), logging.INFO))

    # Avoid duplicate handlers
    if logger.handlers:
        return logger

    formatter = logging.Formatter(
        fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # stdout is reserved for the NDJSON progress stream
    console_handler = SafeStreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        try:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)

            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=10*1024*1024,  # 10MB
                backupCount=5,
                encoding='utf-8'
            )
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

        except OSError as e:
            logger.warning(f"File logging disabled, cannot open {log_file}: {e}")

    return logger


def get_logger(component: str) -> logging.Logger:
    """Child of the package logger, inherits its handlers and level"""
    return logging.getLogger(f"asset_mirror.{component}")


# Global logger instance
logger = setup_logger("asset_mirror", config.log_level, config.log_file)
