"""
用户认证和会话系统
提供密码哈希、JWT令牌、单活动会话控制和请求认证
"""

from .auth_manager import AuthManager
from .jwt_auth import JWTAuthenticator
from .password_manager import PasswordManager
from .session_store import SessionStore
from .user_store import UserStore, InMemoryUserStore, MongoUserStore
from .middleware import AuthMiddleware, RequestGate, AuthenticatedAccount, get_current_account, OptionalAccount
from .notifications import EmailSink, LoggingEmailSink, SMTPEmailSink, build_email_sink
from .models import Account, LoginResult, PasswordStrength, TokenPair
from .exceptions import (
    AuthError, AuthenticationError, InvalidInputError, WeakPasswordError, AccountExistsError,
    InvalidConfigurationError, InvalidCredentialsError, UnauthenticatedError, TokenExpiredError,
    InvalidTokenError, SessionInvalidError, AccountNotFoundError
)

__all__ = [
    'AuthManager',
    'JWTAuthenticator',
    'PasswordManager',
    'SessionStore',
    'UserStore',
    'InMemoryUserStore',
    'MongoUserStore',
    'AuthMiddleware',
    'RequestGate',
    'AuthenticatedAccount',
    'get_current_account',
    'OptionalAccount',
    'EmailSink',
    'LoggingEmailSink',
    'SMTPEmailSink',
    'build_email_sink',
    'Account',
    'LoginResult',
    'PasswordStrength',
    'TokenPair',
    'AuthError',
    'AuthenticationError',
    'InvalidInputError',
    'WeakPasswordError',
    'AccountExistsError',
    'InvalidConfigurationError',
    'InvalidCredentialsError',
    'UnauthenticatedError',
    'TokenExpiredError',
    'InvalidTokenError',
    'SessionInvalidError',
    'AccountNotFoundError'
]
