"""
系统配置管理
所有配置在启动时读取一次，组件通过构造参数获得配置
"""
import re
from typing import Optional, Union

from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..auth.exceptions import InvalidConfigurationError
from ..logging import get_logger


logger = get_logger(__name__)

_DURATION_PATTERN = re.compile(r'^\s*(\d+)\s*([smhd]?)\s*$')
_DURATION_UNITS = {'': 1, 's': 1, 'm': 60, 'h': 60 * 60, 'd': 24 * 60 * 60}


def parse_duration(value: Union[str, int]) -> int:
    """
    将时长字符串转换为秒数

    Args:
        value: "15m"、"7d"、"1h"、"30s" 或纯秒数

    Returns:
        秒数

    Raises:
        ValueError: 格式无法识别或不为正数
    """
    if isinstance(value, bool):
        raise ValueError(f"无效的时长: {value!r}")
    if isinstance(value, int):
        seconds = value
    else:
        match = _DURATION_PATTERN.match(str(value))
        if not match:
            raise ValueError(f"无效的时长: {value!r}")
        seconds = int(match.group(1)) * _DURATION_UNITS[match.group(2)]

    if seconds <= 0:
        raise ValueError(f"时长必须为正数: {value!r}")
    return seconds


class MongoSettings(BaseSettings):
    """MongoDB配置"""
    url: str = "mongodb://localhost:27017"
    database: str = "uniapply_hub"

    model_config = SettingsConfigDict(env_prefix="MONGO_", env_file=".env", extra="ignore")


class SMTPSettings(BaseSettings):
    """邮件发送配置"""
    host: Optional[str] = None
    port: int = 587
    user: Optional[str] = None
    password: Optional[str] = None
    from_address: Optional[str] = Field(default=None, validation_alias="SMTP_FROM")
    from_name: str = "UniApply Hub"
    use_tls: bool = True
    timeout: float = 10.0

    model_config = SettingsConfigDict(
        env_prefix="SMTP_", env_file=".env", extra="ignore", populate_by_name=True
    )

    @property
    def is_configured(self) -> bool:
        return bool(self.host and (self.from_address or self.user))


class LogSettings(BaseSettings):
    """日志配置"""
    level: str = "INFO"
    dir: str = "logs"
    file_enabled: bool = False

    model_config = SettingsConfigDict(env_prefix="LOG_", env_file=".env", extra="ignore")


class Settings(BaseSettings):
    """主配置类"""
    environment: str = "development"
    service_name: str = "uniapply_auth"
    frontend_url: str = "http://localhost:3000"

    # 签名密钥，缺失时启动失败
    access_secret: str
    refresh_secret: str

    # 令牌有效期（秒），支持 "15m" / "7d" 形式
    access_ttl: int = 15 * 60
    refresh_ttl: int = 7 * 24 * 60 * 60
    refresh_ttl_remember: int = 30 * 24 * 60 * 60
    reset_ttl: int = 60 * 60
    verification_ttl: int = 24 * 60 * 60
    api_key_ttl: int = 365 * 24 * 60 * 60
    token_issuer: str = "uniapply-hub"

    # bcrypt
    hash_cost: int = Field(default=12, ge=4, le=31)
    password_hash_workers: int = Field(default=4, ge=1)

    mongo: MongoSettings = Field(default_factory=MongoSettings)
    smtp: SMTPSettings = Field(default_factory=SMTPSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @field_validator('access_secret', 'refresh_secret')
    @classmethod
    def _secret_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("签名密钥不能为空")
        return value

    @field_validator(
        'access_ttl', 'refresh_ttl', 'refresh_ttl_remember', 'reset_ttl', 'verification_ttl',
        'api_key_ttl', mode='before'
    )
    @classmethod
    def _parse_ttl(cls, value):
        return parse_duration(value)

    @model_validator(mode='after')
    def _warn_shared_secret(self) -> 'Settings':
        if self.access_secret == self.refresh_secret:
            logger.warning("访问令牌和刷新令牌使用了相同的签名密钥", extra={
                'event': 'shared_signing_secret'
            })
        return self


def load_settings(**overrides) -> Settings:
    """
    读取配置

    Args:
        overrides: 覆盖环境变量的配置项

    Returns:
        配置实例

    Raises:
        InvalidConfigurationError: 缺少必需配置或配置值无效
    """
    try:
        return Settings(**overrides)
    except ValidationError as e:
        # 只输出字段名和原因，不输出配置值
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
            for err in e.errors()
        )
        raise InvalidConfigurationError(f"配置无效: {problems}") from e


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """获取配置实例"""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reload_settings() -> Settings:
    """重新加载配置"""
    global _settings
    _settings = load_settings()
    return _settings
