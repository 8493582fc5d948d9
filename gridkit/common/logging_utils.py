#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
gridkit 日志工具。

统一的日志配置入口，所有模块都通过 get_logger() 获取 logger，
不要直接调用 logging.basicConfig。

用法示例:
    from gridkit.common.logging_utils import get_logger, setup_logging

    # 应用入口处初始化一次
    setup_logging(log_level="DEBUG", log_to_file=True)

    logger = get_logger(__name__)
    logger.info("信息日志")
"""

import logging
import os
import sys
from datetime import datetime
from typing import Any, Dict, Optional, Sequence, Union

DEFAULT_LOG_LEVEL = logging.INFO
DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_LOG_DIR = "logs"

# 环境变量可覆盖默认日志级别
LOG_LEVEL_ENV = "GRIDKIT_LOG_LEVEL"

# SQL 日志中单个参数的最大显示长度
MAX_PARAM_REPR = 200

_logging_initialized = False
_log_config: Dict[str, Any] = {
    "level": DEFAULT_LOG_LEVEL,
    "format": DEFAULT_LOG_FORMAT,
    "date_format": DEFAULT_DATE_FORMAT,
    "log_to_file": False,
    "log_dir": DEFAULT_LOG_DIR,
}


def _resolve_level(log_level: Union[int, str, None]) -> int:
    if log_level is None:
        log_level = os.environ.get(LOG_LEVEL_ENV, DEFAULT_LOG_LEVEL)
    if isinstance(log_level, str):
        return getattr(logging, log_level.upper(), DEFAULT_LOG_LEVEL)
    return log_level


def setup_logging(
    log_level: Union[int, str, None] = None,
    log_format: str = DEFAULT_LOG_FORMAT,
    date_format: str = DEFAULT_DATE_FORMAT,
    log_to_file: bool = False,
    log_dir: str = DEFAULT_LOG_DIR,
    log_filename: Optional[str] = None,
    reset: bool = False,
) -> None:
    """
    配置全局日志，应用启动时调用一次。

    Args:
        log_level: 日志级别，字符串或 logging 常量；为 None 时读取 GRIDKIT_LOG_LEVEL
        log_format: 日志格式
        date_format: 日期格式
        log_to_file: 是否同时写入文件
        log_dir: 日志文件目录
        log_filename: 日志文件名，默认 gridkit_{当前日期}.log
        reset: 已初始化时是否强制重新配置
    """
    global _logging_initialized

    if _logging_initialized and not reset:
        logging.getLogger(__name__).debug("日志系统已初始化，跳过重复配置")
        return

    level = _resolve_level(log_level)
    _log_config.update(
        {
            "level": level,
            "format": log_format,
            "date_format": date_format,
            "log_to_file": log_to_file,
            "log_dir": log_dir,
        }
    )

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    root_logger.setLevel(level)

    formatter = logging.Formatter(log_format, date_format)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_to_file:
        os.makedirs(log_dir, exist_ok=True)
        if log_filename is None:
            log_filename = f"gridkit_{datetime.now().strftime('%Y%m%d')}.log"
        log_file_path = os.path.join(log_dir, log_filename)
        file_handler = logging.FileHandler(log_file_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)
        root_logger.info(f"日志将同时写入文件: {log_file_path}")

    _logging_initialized = True
    root_logger.debug(f"日志系统初始化完成，级别: {logging.getLevelName(level)}")


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    获取 logger，未初始化时自动使用默认配置。

    Args:
        name: logger 名称，推荐传入 __name__

    Returns:
        logging.Logger: 日志记录器实例
    """
    if not _logging_initialized:
        setup_logging()

    return logging.getLogger(name)


def describe_params(params: Union[Sequence[Any], Dict[str, Any], None]) -> str:
    """把绑定参数压缩成适合写日志的字符串，过长的值会被截断"""
    if not params:
        return "[]"

    def _short(value: Any) -> str:
        text = repr(value)
        if len(text) > MAX_PARAM_REPR:
            return text[:MAX_PARAM_REPR] + "...'"
        return text

    if isinstance(params, dict):
        return "{" + ", ".join(f"{k}: {_short(v)}" for k, v in params.items()) + "}"
    return "[" + ", ".join(_short(v) for v in params) + "]"
