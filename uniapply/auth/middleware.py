"""
认证中间件
为FastAPI应用提供基于会话ID的JWT认证
"""

import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from fastapi import HTTPException, Request, status
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

from .exceptions import (
    AccountNotFoundError, AuthenticationError, SessionInvalidError, UnauthenticatedError
)
from .jwt_auth import JWTAuthenticator
from .models import Account
from .session_store import SessionStore
from ..logging import get_logger, LogContext


logger = get_logger(__name__)

DEFAULT_PUBLIC_PATHS = [
    '/docs',
    '/redoc',
    '/openapi.json',
    '/health',
    '/favicon.ico',
    '/api/auth/login',
    '/api/auth/register',
    '/api/auth/refresh',
    '/api/auth/forgot-password',
    '/api/auth/reset-password',
    '/api/auth/verify-email',
    '/api/auth/status'
]


@dataclass
class AuthenticatedAccount:
    """通过认证的请求主体"""
    account: Account
    payload: Dict[str, Any]


class RequestGate:
    """请求认证门：令牌有效且会话ID仍是账户当前会话"""

    def __init__(self, jwt_authenticator: JWTAuthenticator, session_store: SessionStore):
        self.jwt_auth = jwt_authenticator
        self.session_store = session_store

    @staticmethod
    def extract_bearer_token(authorization_header: Optional[str]) -> str:
        """
        从Authorization头提取Bearer令牌

        Raises:
            UnauthenticatedError: 缺少头或格式错误
        """
        if not authorization_header:
            raise UnauthenticatedError("缺少Authorization头")

        parts = authorization_header.split()
        if len(parts) != 2 or parts[0].lower() != 'bearer':
            raise UnauthenticatedError("Authorization头格式错误，应为 Bearer <token>")

        return parts[1]

    async def authenticate(self, authorization_header: Optional[str]) -> AuthenticatedAccount:
        """
        认证请求

        Args:
            authorization_header: Authorization头的值

        Returns:
            认证通过的账户和令牌payload

        Raises:
            UnauthenticatedError: 缺少令牌
            InvalidTokenError: 令牌无效
            TokenExpiredError: 令牌过期
            AccountNotFoundError: 账户不存在
            SessionInvalidError: 会话已注销或已轮换
        """
        token = self.extract_bearer_token(authorization_header)
        payload = self.jwt_auth.verify_access_token(token)

        account = await self.session_store.load_account(payload['sub'])
        if account is None:
            raise AccountNotFoundError()

        if not self.session_store.is_current(account, payload.get('session_id')):
            raise SessionInvalidError()

        return AuthenticatedAccount(account=account, payload=payload)

    async def authenticate_optional(self, authorization_header: Optional[str]) -> Optional[AuthenticatedAccount]:
        """可选认证，任何失败都返回None"""
        if not authorization_header:
            return None

        try:
            return await self.authenticate(authorization_header)
        except Exception as e:
            logger.debug("可选认证未通过", extra={
                'event': 'optional_auth_failed',
                'error_type': type(e).__name__
            })
            return None


class AuthMiddleware(BaseHTTPMiddleware):
    """认证中间件"""

    def __init__(
        self,
        app,
        gate: RequestGate,
        excluded_paths: List[str] = None,
        public_paths: List[str] = None
    ):
        """
        初始化认证中间件

        Args:
            app: FastAPI应用
            gate: 请求认证门
            excluded_paths: 排除的路径（精确或前缀匹配）
            public_paths: 公开路径（使用正则表达式）
        """
        super().__init__(app)
        self.gate = gate
        self.excluded_paths = excluded_paths if excluded_paths is not None else list(DEFAULT_PUBLIC_PATHS)

        self.public_patterns = []
        for path in (public_paths or []):
            try:
                self.public_patterns.append(re.compile(path))
            except re.error:
                logger.warning(f"无效的路径正则表达式: {path}")

    def _is_public_path(self, path: str) -> bool:
        """检查路径是否为公开路径"""
        for excluded_path in self.excluded_paths:
            if path == excluded_path or path.startswith(excluded_path.rstrip('/') + '/'):
                return True

        for pattern in self.public_patterns:
            if pattern.match(path):
                return True

        return False

    @staticmethod
    def _unauthorized(error: AuthenticationError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={
                "success": False,
                "error": error.to_dict(),
                "request_id": LogContext.get_request_id()
            },
            headers={"WWW-Authenticate": "Bearer"}
        )

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path

        if request.method == "OPTIONS" or self._is_public_path(path):
            return await call_next(request)

        try:
            authenticated = await self.gate.authenticate(request.headers.get("Authorization"))
        except AuthenticationError as e:
            logger.warning("请求认证失败", extra={
                'event': 'request_rejected',
                'error_code': e.error_code,
                'path': path,
                'method': request.method
            })
            return self._unauthorized(e)

        request.state.current_account = authenticated.account
        request.state.token_payload = authenticated.payload
        LogContext.set_user_id(authenticated.account.id)

        logger.debug("请求通过认证", extra={
            'event': 'request_authenticated',
            'account_id': authenticated.account.id,
            'path': path,
            'method': request.method
        })

        return await call_next(request)


def get_current_account(request: Request) -> Account:
    """
    FastAPI依赖函数：获取当前认证账户

    Raises:
        HTTPException: 请求未经过认证中间件
    """
    account = getattr(request.state, 'current_account', None)
    if account is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=UnauthenticatedError().to_dict(),
            headers={"WWW-Authenticate": "Bearer"}
        )
    return account


class OptionalAccount:
    """FastAPI依赖：公开路由上的可选认证"""

    def __init__(self, gate: RequestGate):
        self.gate = gate

    async def __call__(self, request: Request) -> Optional[AuthenticatedAccount]:
        return await self.gate.authenticate_optional(request.headers.get("Authorization"))
