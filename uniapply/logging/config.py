"""
日志配置模块
提供结构化日志记录的统一配置和工具
"""

import os
import sys
import json
import socket
import logging
import logging.config
from typing import Dict, Any, Optional
from datetime import datetime, timezone
from pythonjsonlogger.json import JsonFormatter

from .context import LogContext


class UniApplyFormatter(JsonFormatter):
    """
    UniApply专用JSON格式化器
    添加服务标识和请求上下文字段
    """

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]):
        super().add_fields(log_record, record, message_dict)

        log_record['timestamp'] = datetime.now(timezone.utc).isoformat()

        # 服务标识
        log_record['service'] = os.getenv('SERVICE_NAME', 'uniapply_auth')
        log_record['version'] = os.getenv('SERVICE_VERSION', '1.0.0')
        log_record['hostname'] = os.getenv('HOSTNAME') or socket.gethostname()

        log_record['level'] = record.levelname
        log_record['module'] = record.module
        log_record['function'] = record.funcName
        log_record['line'] = record.lineno
        log_record['process_id'] = record.process
        log_record['thread_name'] = record.threadName

        # 请求上下文
        for key, value in LogContext.get_context().items():
            log_record.setdefault(key, value)

        if record.exc_info:
            log_record['exception'] = self.formatException(record.exc_info)


def get_logging_config(
    service_name: str,
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    enable_console: bool = True,
    enable_file: bool = False,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5
) -> Dict[str, Any]:
    """
    获取日志配置字典

    Args:
        service_name: 服务名称
        log_level: 日志级别
        log_file: 日志文件路径
        enable_console: 是否启用控制台输出
        enable_file: 是否启用JSON文件输出
        max_bytes: 日志文件最大大小
        backup_count: 保留的备份文件数量

    Returns:
        logging配置字典
    """
    os.environ['SERVICE_NAME'] = service_name

    if enable_file and log_file is None:
        log_dir = os.getenv('LOG_DIR', 'logs')
        os.makedirs(log_dir, exist_ok=True)
        log_file = os.path.join(log_dir, f"{service_name}.log")

    formatters = {
        'json': {
            '()': UniApplyFormatter,
            'format': '%(timestamp)s %(level)s %(name)s %(message)s'
        },
        'console': {
            'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            'datefmt': '%Y-%m-%d %H:%M:%S'
        }
    }

    handlers = {}
    root_handlers = []

    if enable_console:
        handlers['console'] = {
            'class': 'logging.StreamHandler',
            'level': log_level,
            'formatter': 'console',
            'stream': 'ext://sys.stdout'
        }
        root_handlers.append('console')

    if enable_file:
        handlers['file'] = {
            'class': 'logging.handlers.RotatingFileHandler',
            'level': log_level,
            'formatter': 'json',
            'filename': log_file,
            'maxBytes': max_bytes,
            'backupCount': backup_count,
            'encoding': 'utf8'
        }
        root_handlers.append('file')

    return {
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': formatters,
        'handlers': handlers,
        'root': {
            'level': log_level,
            'handlers': root_handlers
        },
        'loggers': {
            'pymongo': {
                'level': 'WARNING',
                'propagate': True
            },
            'fastapi': {
                'level': 'INFO',
                'propagate': True
            },
            'uvicorn': {
                'level': 'INFO',
                'propagate': True
            }
        }
    }


def setup_logging(
    service_name: str,
    log_level: str = None,
    log_file: str = None,
    enable_file: bool = None,
    config_file: str = None
) -> logging.Logger:
    """
    设置日志记录

    Args:
        service_name: 服务名称
        log_level: 日志级别，默认从环境变量获取
        log_file: 日志文件路径
        enable_file: 是否写JSON日志文件，默认从LOG_FILE_ENABLED获取
        config_file: 外部JSON配置文件路径

    Returns:
        配置好的logger实例
    """
    if log_level is None:
        log_level = os.getenv('LOG_LEVEL', 'INFO').upper()
    if enable_file is None:
        enable_file = os.getenv('LOG_FILE_ENABLED', 'false').lower() in ('1', 'true', 'yes')

    if config_file and os.path.exists(config_file):
        with open(config_file, 'r') as f:
            config = json.load(f)
    else:
        config = get_logging_config(
            service_name=service_name,
            log_level=log_level,
            log_file=log_file,
            enable_file=enable_file
        )

    logging.config.dictConfig(config)

    logger = logging.getLogger(service_name)
    logger.info(
        f"Logging initialized for {service_name}",
        extra={
            'event': 'logging_initialized',
            'service': service_name,
            'log_level': log_level,
            'file_logging': enable_file
        }
    )

    return logger


def get_logger(name: str = None) -> logging.Logger:
    """
    获取logger实例

    Args:
        name: logger名称，默认使用调用模块名

    Returns:
        logger实例
    """
    if name is None:
        frame = sys._getframe(1)
        name = frame.f_globals.get('__name__', 'unknown')

    return logging.getLogger(name)
