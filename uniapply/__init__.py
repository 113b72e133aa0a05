"""
UniApply Hub 认证核心
"""

__version__ = "1.0.0"
