import logging
from logging.handlers import RotatingFileHandler

import config

RESET = "\x1b[0m"
COLORS = {
    "DEBUG": "\x1b[36m",    # Cyan
    "INFO": "\x1b[32m",     # Green
    "WARNING": "\x1b[33m",  # Yellow
    "ERROR": "\x1b[31m",    # Red
    "CRITICAL": "\x1b[41m", # Red background
}

LOG_FORMAT = "[%(asctime)s] [%(name)s:%(funcName)s:%(lineno)d] [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class ColorFormatter(logging.Formatter):
    def format(self, record):
        log_color = COLORS.get(record.levelname, RESET)
        message = super().format(record)
        return f"{log_color}{message}{RESET}"


def setup_logger(name: str = __name__, level=None):
    logger = logging.getLogger(name)
    level = level or getattr(logging, config.LOG_LEVEL, logging.INFO)
    logger.setLevel(level)
    # Ngăn log record truyền lên logger cha gây ghi trùng
    logger.propagate = False

    # Logger đã được cấu hình trước đó, không thêm handler mới
    if logger.handlers:
        return logger

    ch = logging.StreamHandler()
    ch.setLevel(level)
    ch.setFormatter(ColorFormatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(ch)

    if config.LOG_FILE:
        # File handler không màu, giữ 1 bản backup
        fh = RotatingFileHandler(
            config.LOG_FILE, maxBytes=config.LOG_MAX_BYTES, backupCount=1, encoding="utf-8"
        )
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(fh)

    return logger
