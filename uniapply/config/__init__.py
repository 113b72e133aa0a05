"""
配置模块
"""

from .settings import (
    Settings, MongoSettings, SMTPSettings, LogSettings,
    get_settings, load_settings, reload_settings, parse_duration
)

__all__ = [
    'Settings',
    'MongoSettings',
    'SMTPSettings',
    'LogSettings',
    'get_settings',
    'load_settings',
    'reload_settings',
    'parse_duration'
]
