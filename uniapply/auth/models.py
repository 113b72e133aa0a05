"""
认证相关数据模型
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field


def utcnow() -> datetime:
    """当前UTC时间（带时区）"""
    return datetime.now(timezone.utc)


def normalize_email(email: str) -> str:
    """邮箱统一为去除首尾空白的小写形式"""
    return (email or "").strip().lower()


def redact_email(email: str) -> str:
    """日志中使用的脱敏邮箱"""
    if not email or "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(value)
    # MongoDB返回的时间不带时区
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class Account:
    """用户账户凭据记录"""
    email: str
    password_hash: str = ""
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    session_id: Optional[str] = None
    first_name: str = ""
    last_name: str = ""
    email_verified: bool = False
    last_login_at: Optional[datetime] = None
    last_password_change_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        self.email = normalize_email(self.email)

    def has_active_session(self) -> bool:
        """是否存在有效会话"""
        return bool(self.session_id)

    def password_context(self) -> Dict[str, str]:
        """密码强度检查使用的上下文"""
        return {
            'email': self.email,
            'first_name': self.first_name,
            'last_name': self.last_name
        }

    def to_dict(self, include_sensitive: bool = False) -> Dict[str, Any]:
        """转换为字典"""
        data = {
            'id': self.id,
            'email': self.email,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'email_verified': self.email_verified,
            'last_login_at': self.last_login_at.isoformat() if self.last_login_at else None,
            'last_password_change_at': (
                self.last_password_change_at.isoformat() if self.last_password_change_at else None
            ),
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat()
        }

        if include_sensitive:
            data['password_hash'] = self.password_hash
            data['session_id'] = self.session_id

        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Account':
        """从字典创建账户"""
        return cls(
            id=str(data.get('id') or data['_id']),
            email=data['email'],
            password_hash=data.get('password_hash', ''),
            session_id=data.get('session_id'),
            first_name=data.get('first_name', ''),
            last_name=data.get('last_name', ''),
            email_verified=data.get('email_verified', False),
            last_login_at=_parse_datetime(data.get('last_login_at')),
            last_password_change_at=_parse_datetime(data.get('last_password_change_at')),
            created_at=_parse_datetime(data.get('created_at')) or utcnow(),
            updated_at=_parse_datetime(data.get('updated_at')) or utcnow()
        )


@dataclass
class PasswordStrength:
    """密码强度评估结果"""
    valid: bool = False
    score: int = 0  # 0-100分
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'valid': self.valid,
            'score': self.score,
            'errors': self.errors,
            'warnings': self.warnings,
            'suggestions': self.suggestions
        }


@dataclass
class LoginResult:
    """登录/注册结果"""
    account: Account
    tokens: 'TokenPair'


@dataclass
class TokenPair:
    """令牌对"""
    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int = 900  # 秒

    def to_dict(self) -> Dict[str, Any]:
        return {
            'access_token': self.access_token,
            'refresh_token': self.refresh_token,
            'token_type': self.token_type,
            'expires_in': self.expires_in
        }
