"""
日志记录包
提供结构化日志记录功能
"""

from .config import setup_logging, get_logger, UniApplyFormatter
from .context import LogContext

__all__ = [
    'setup_logging',
    'get_logger',
    'UniApplyFormatter',
    'LogContext'
]
