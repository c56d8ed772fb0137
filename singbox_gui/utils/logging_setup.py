"""
日志配置 - 控制台输出和滚动日志文件
"""
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

from ..core.events import LogRecord

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_FILE_NAME = "singbox-manager.log"
MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUP_COUNT = 5

ENGINE_LOGGER_NAME = "singbox_gui.engine"

ENGINE_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
}


def setup_logging(level: str = "INFO", log_dir: Optional[str] = "logs") -> logging.Logger:
    """
    配置根日志器

    Args:
        level: 日志级别名称
        log_dir: 日志目录，None 表示只输出到控制台

    Returns:
        根日志器
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))

    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, LOG_FILE_NAME),
            maxBytes=MAX_LOG_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    return root


def log_engine_record(record: LogRecord) -> None:
    """把引擎日志记录转发到 Python 日志系统"""
    logging.getLogger(ENGINE_LOGGER_NAME).log(
        ENGINE_LEVELS.get(record.level, logging.INFO),
        f"[{record.source}] {record.message}"
    )
