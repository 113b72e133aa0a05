"""
认证服务主程序
提供注册、登录、令牌刷新、注销、密码重置和邮箱验证的REST API
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from motor.motor_asyncio import AsyncIOMotorClient
from pydantic import BaseModel, EmailStr

from uniapply.auth import (
    Account, AuthManager, AuthMiddleware, AuthenticatedAccount, EmailSink, JWTAuthenticator,
    MongoUserStore, OptionalAccount, PasswordManager, RequestGate, SessionStore, UserStore,
    build_email_sink, get_current_account
)
from uniapply.auth.exceptions import (
    AccountExistsError, AuthError, AuthenticationError, InvalidConfigurationError, InvalidInputError
)
from uniapply.config import Settings, get_settings
from uniapply.logging import get_logger, setup_logging, LogContext
from uniapply.logging.middleware import RequestLoggingMiddleware


logger = get_logger(__name__)


# 请求模型
class RegisterRequest(BaseModel):
    email: EmailStr
    password: str
    first_name: str = ""
    last_name: str = ""


class LoginRequest(BaseModel):
    email: EmailStr
    password: str
    remember_me: bool = False


class RefreshRequest(BaseModel):
    refresh_token: str


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str
    new_password: str


class VerifyEmailRequest(BaseModel):
    token: str


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str


def error_status(exc: AuthError) -> int:
    """异常对应的HTTP状态码"""
    if isinstance(exc, AuthenticationError):
        return status.HTTP_401_UNAUTHORIZED
    if isinstance(exc, AccountExistsError):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, InvalidConfigurationError):
        return status.HTTP_500_INTERNAL_SERVER_ERROR
    return status.HTTP_400_BAD_REQUEST


def create_app(
    settings: Optional[Settings] = None,
    user_store: Optional[UserStore] = None,
    email_sink: Optional[EmailSink] = None
) -> FastAPI:
    """
    组装认证服务

    Args:
        settings: 配置，默认读取环境变量
        user_store: 账户存储，默认使用MongoDB
        email_sink: 邮件发送出口，默认按SMTP配置选择

    Returns:
        FastAPI应用
    """
    if settings is None:
        settings = get_settings()

        # 每次哈希时读取，reload_settings()后立即生效
        def rounds() -> int:
            return get_settings().hash_cost
    else:
        rounds = settings.hash_cost

    db_client = None
    if user_store is None:
        db_client = AsyncIOMotorClient(settings.mongo.url)
        user_store = MongoUserStore(db_client[settings.mongo.database])

    owned_sink = None
    if email_sink is None:
        owned_sink = email_sink = build_email_sink(settings)

    password_manager = PasswordManager(rounds=rounds, max_workers=settings.password_hash_workers)
    jwt_authenticator = JWTAuthenticator.from_settings(settings)
    session_store = SessionStore(user_store)
    auth_manager = AuthManager(
        password_manager,
        jwt_authenticator,
        session_store,
        email_sink,
        settings.frontend_url
    )
    gate = RequestGate(jwt_authenticator, session_store)
    optional_account = OptionalAccount(gate)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("认证服务启动", extra={'event': 'auth_service_startup'})

        if isinstance(user_store, MongoUserStore):
            try:
                await user_store.ensure_indexes()
            except Exception as e:
                logger.error("创建数据库索引失败", extra={
                    'event': 'auth_service_init_failed',
                    'error_type': type(e).__name__
                }, exc_info=True)
                raise

        yield

        logger.info("认证服务关闭", extra={'event': 'auth_service_shutdown'})
        password_manager.shutdown()
        if owned_sink is not None:
            owned_sink.shutdown()
        if db_client is not None:
            db_client.close()

    app = FastAPI(
        title="UniApply Hub Auth Service",
        description="UniApply Hub 账户认证和会话服务",
        version="1.0.0",
        lifespan=lifespan
    )

    app.state.settings = settings
    app.state.auth_manager = auth_manager
    app.state.gate = gate

    # 后添加的中间件在外层：先分配请求ID，再做认证
    app.add_middleware(AuthMiddleware, gate=gate)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(AuthError)
    async def auth_exception_handler(request: Request, exc: AuthError):
        """认证异常处理器"""
        status_code = error_status(exc)
        logger.warning("请求处理失败", extra={
            'event': 'auth_exception',
            'error_code': exc.error_code,
            'status_code': status_code,
            'path': request.url.path
        })
        return JSONResponse(
            status_code=status_code,
            content={
                'success': False,
                'error': exc.to_dict(),
                'request_id': LogContext.get_request_id()
            }
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """请求参数校验失败统一返回400"""
        error = InvalidInputError()
        content = error.to_dict()
        content['details'] = [
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                'success': False,
                'error': content,
                'request_id': LogContext.get_request_id()
            }
        )

    @app.get("/health")
    async def health_check():
        """健康检查"""
        return {
            'status': 'healthy',
            'service': settings.service_name,
            'timestamp': datetime.now(timezone.utc).isoformat()
        }

    @app.post("/api/auth/register", status_code=status.HTTP_201_CREATED)
    async def register(request: RegisterRequest):
        """用户注册"""
        with LogContext(operation="account_registration"):
            result = await auth_manager.register(
                request.email, request.password, request.first_name, request.last_name
            )
            return {
                'success': True,
                'data': {'user': result.account.to_dict(), **result.tokens.to_dict()}
            }

    @app.post("/api/auth/login")
    async def login(request: LoginRequest):
        """用户登录"""
        with LogContext(operation="account_login"):
            result = await auth_manager.login(request.email, request.password, request.remember_me)
            return {
                'success': True,
                'data': {'user': result.account.to_dict(), **result.tokens.to_dict()}
            }

    @app.post("/api/auth/refresh")
    async def refresh_token(request: RefreshRequest):
        """刷新令牌"""
        with LogContext(operation="token_refresh"):
            tokens = await auth_manager.refresh(request.refresh_token)
            return {'success': True, 'data': tokens.to_dict()}

    @app.post("/api/auth/logout")
    async def logout(current_account: Account = Depends(get_current_account)):
        """用户注销"""
        with LogContext(operation="account_logout", user_id=current_account.id):
            await auth_manager.logout(current_account.id)
            return {'success': True, 'message': '注销成功'}

    @app.post("/api/auth/forgot-password")
    async def forgot_password(request: ForgotPasswordRequest):
        """请求密码重置，不透露邮箱是否存在"""
        with LogContext(operation="password_reset_request"):
            await auth_manager.request_password_reset(request.email)
            return {'success': True, 'message': '如果该邮箱已注册，重置链接已发送'}

    @app.post("/api/auth/reset-password")
    async def reset_password(request: ResetPasswordRequest):
        """使用重置令牌设置新密码"""
        with LogContext(operation="password_reset"):
            await auth_manager.reset_password(request.token, request.new_password)
            return {'success': True, 'message': '密码已重置，请重新登录'}

    @app.post("/api/auth/verify-email")
    async def verify_email(request: VerifyEmailRequest):
        """验证邮箱"""
        with LogContext(operation="email_verification"):
            account = await auth_manager.verify_email(request.token)
            return {'success': True, 'data': {'user': account.to_dict()}}

    @app.post("/api/auth/resend-verification")
    async def resend_verification(current_account: Account = Depends(get_current_account)):
        """重新发送邮箱验证邮件"""
        with LogContext(operation="email_verification_request", user_id=current_account.id):
            await auth_manager.request_email_verification(current_account.id)
            return {'success': True, 'message': '验证邮件已发送'}

    @app.post("/api/auth/change-password")
    async def change_password(
        request: ChangePasswordRequest,
        current_account: Account = Depends(get_current_account)
    ):
        """修改密码"""
        with LogContext(operation="change_password", user_id=current_account.id):
            await auth_manager.change_password(
                current_account.id, request.current_password, request.new_password
            )
            return {'success': True, 'message': '密码修改成功，请重新登录'}

    @app.get("/api/auth/me")
    async def get_current_account_info(current_account: Account = Depends(get_current_account)):
        """获取当前账户信息"""
        return {'success': True, 'data': {'user': current_account.to_dict()}}

    @app.get("/api/auth/status")
    async def auth_status(authenticated: Optional[AuthenticatedAccount] = Depends(optional_account)):
        """当前请求的登录状态"""
        if authenticated is None:
            return {'success': True, 'data': {'authenticated': False}}
        return {
            'success': True,
            'data': {'authenticated': True, 'user': authenticated.account.to_dict()}
        }

    return app


def main():
    """启动认证服务"""
    import uvicorn

    settings = get_settings()
    setup_logging(
        settings.service_name,
        log_level=settings.log.level,
        enable_file=settings.log.file_enabled
    )

    with LogContext(service_name=settings.service_name, operation="service_startup"):
        logger.info("启动认证服务", extra={
            'event': 'auth_service_startup_initiated',
            'host': '0.0.0.0',
            'port': 8006
        })

    uvicorn.run(create_app(), host="0.0.0.0", port=8006, log_level="info")


if __name__ == "__main__":
    main()
