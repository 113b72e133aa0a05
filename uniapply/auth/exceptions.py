"""
认证和会话异常类
所有调用方只会看到这里定义的异常，底层JWT/bcrypt异常在边界处被转换
"""

from typing import Any, Dict, List, Optional


class AuthError(Exception):
    """认证基础异常类"""

    default_message = "认证错误"
    default_code = "AUTH_ERROR"

    def __init__(self, message: str = None, error_code: str = None):
        message = message or self.default_message
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_code

    def to_dict(self) -> Dict[str, Any]:
        """转换为API错误结构"""
        return {
            'code': self.error_code,
            'message': self.message
        }


class InvalidInputError(AuthError):
    """调用参数无效"""

    default_message = "输入参数无效"
    default_code = "INVALID_INPUT"


class WeakPasswordError(InvalidInputError):
    """密码强度不足，携带评分明细供界面展示"""

    default_message = "密码强度不符合要求"
    default_code = "WEAK_PASSWORD"

    def __init__(
        self,
        errors: Optional[List[str]] = None,
        warnings: Optional[List[str]] = None,
        suggestions: Optional[List[str]] = None,
        message: str = None
    ):
        super().__init__(message)
        self.errors = list(errors or [])
        self.warnings = list(warnings or [])
        self.suggestions = list(suggestions or [])

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['details'] = self.errors
        data['warnings'] = self.warnings
        data['suggestions'] = self.suggestions
        return data


class AccountExistsError(AuthError):
    """账户已存在"""

    default_message = "该邮箱已被注册"
    default_code = "USER_EXISTS"


class InvalidConfigurationError(AuthError):
    """配置无效，启动阶段即终止"""

    default_message = "配置无效"
    default_code = "INVALID_CONFIGURATION"


class AuthenticationError(AuthError):
    """身份认证失败"""

    default_message = "身份认证失败"
    default_code = "AUTH_FAILED"


class InvalidCredentialsError(AuthenticationError):
    """登录凭据无效（不区分邮箱不存在和密码错误）"""

    default_message = "邮箱或密码错误"
    default_code = "INVALID_CREDENTIALS"


class UnauthenticatedError(AuthenticationError):
    """缺少认证令牌或Authorization头格式错误"""

    default_message = "需要认证令牌"
    default_code = "UNAUTHORIZED"


class TokenExpiredError(AuthenticationError):
    """令牌过期"""

    default_message = "令牌已过期"
    default_code = "TOKEN_EXPIRED"


class InvalidTokenError(AuthenticationError):
    """令牌无效"""

    default_message = "令牌无效"
    default_code = "INVALID_TOKEN"


class SessionInvalidError(AuthenticationError):
    """会话已被注销或轮换"""

    default_message = "会话已失效"
    default_code = "SESSION_INVALID"


class AccountNotFoundError(AuthenticationError):
    """账户不存在"""

    default_message = "用户不存在"
    default_code = "USER_NOT_FOUND"
