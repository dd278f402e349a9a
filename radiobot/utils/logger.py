"""日志系统设置"""
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logger(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    max_size: int = 10485760,
    backup_count: int = 5
) -> logging.Logger:
    """
    配置根日志记录器

    radiobot 和 discord.py 的日志都会传播到根记录器，
    统一输出到控制台，配置了文件时同时写入滚动日志文件。

    Args:
        log_level: 日志级别名称
        log_file: 日志文件路径，None 表示只输出到控制台
        max_size: 单个日志文件的最大字节数
        backup_count: 保留的备份文件数量

    Returns:
        radiobot 日志记录器
    """
    level = getattr(logging, str(log_level).upper(), logging.INFO)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_size,
            backupCount=backup_count,
            encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    # discord.py 的网关心跳日志过于频繁
    logging.getLogger("discord.gateway").setLevel(max(level, logging.INFO))

    return logging.getLogger("radiobot")
