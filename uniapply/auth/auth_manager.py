"""
认证管理器
编排登录、刷新、注销、密码重置、注册、修改密码和邮箱验证流程
"""

import secrets
from typing import Optional

from .exceptions import (
    AccountExistsError, AccountNotFoundError, InvalidCredentialsError,
    InvalidInputError, InvalidTokenError, SessionInvalidError, WeakPasswordError
)
from .jwt_auth import JWTAuthenticator
from .models import Account, LoginResult, TokenPair, normalize_email, redact_email, utcnow
from .notifications import (
    EmailSink, LoggingEmailSink,
    TEMPLATE_EMAIL_VERIFICATION, TEMPLATE_PASSWORD_RESET, TEMPLATE_WELCOME
)
from .password_manager import PasswordManager
from .session_store import SessionStore
from ..logging import get_logger


logger = get_logger(__name__)


class AuthManager:
    """认证流程编排，所有底层异常在这里转换为认证异常"""

    def __init__(
        self,
        password_manager: PasswordManager,
        jwt_authenticator: JWTAuthenticator,
        session_store: SessionStore,
        email_sink: Optional[EmailSink] = None,
        frontend_url: str = "http://localhost:3000"
    ):
        """
        初始化认证管理器

        Args:
            password_manager: 密码管理器
            jwt_authenticator: JWT认证器
            session_store: 会话存储
            email_sink: 邮件发送出口
            frontend_url: 前端地址，用于生成邮件中的链接
        """
        self.password_manager = password_manager
        self.jwt_auth = jwt_authenticator
        self.session_store = session_store
        self.email_sink = email_sink or LoggingEmailSink()
        self.frontend_url = frontend_url.rstrip('/')
        self._dummy_hash: Optional[str] = None

    async def _burn_verification(self, password: str) -> None:
        """邮箱不存在时执行一次等价的bcrypt验证，使响应时间一致"""
        if self._dummy_hash is None:
            self._dummy_hash = await self.password_manager.hash_password_async(
                secrets.token_urlsafe(16)
            )
        await self.password_manager.verify_password_async(password or "", self._dummy_hash)

    def _notify(self, template_id: str, account: Account, data: dict) -> None:
        """发送邮件，失败只记录日志"""
        try:
            self.email_sink.send(template_id, account.email, data)
        except Exception as e:
            logger.error("邮件投递请求失败", extra={
                'event': 'email_dispatch_failed',
                'template_id': template_id,
                'account_id': account.id,
                'error_type': type(e).__name__
            })

    def _check_strength(self, password: str, account: Account) -> None:
        result = self.password_manager.check_password_strength(password, account.password_context())
        if not result.valid:
            raise WeakPasswordError(result.errors, result.warnings, result.suggestions)

    async def login(self, email: str, password: str, remember_me: bool = False) -> LoginResult:
        """
        用户登录，开启新会话（之前的会话全部失效）

        Args:
            email: 邮箱（不区分大小写）
            password: 密码
            remember_me: 是否延长刷新令牌有效期

        Returns:
            登录结果（账户和令牌对）

        Raises:
            InvalidCredentialsError: 邮箱不存在或密码错误
        """
        account = await self.session_store.find_by_email(normalize_email(email))

        if account is None:
            await self._burn_verification(password)
            logger.warning("登录失败", extra={
                'event': 'login_failed',
                'email': redact_email(normalize_email(email)),
                'reason': 'unknown_account'
            })
            raise InvalidCredentialsError()

        if not await self.password_manager.verify_password_async(password, account.password_hash):
            logger.warning("登录失败", extra={
                'event': 'login_failed',
                'account_id': account.id,
                'reason': 'wrong_password'
            })
            raise InvalidCredentialsError()

        account.last_login_at = utcnow()
        await self.session_store.open_session(account)
        tokens = self.jwt_auth.create_token_pair(account, remember_me)

        logger.info("用户登录成功", extra={
            'event': 'login_succeeded',
            'account_id': account.id,
            'remember_me': bool(remember_me)
        })
        return LoginResult(account=account, tokens=tokens)

    async def refresh(self, refresh_token: str) -> TokenPair:
        """
        使用刷新令牌换取新令牌对，同时轮换会话ID

        Args:
            refresh_token: 刷新令牌

        Returns:
            新令牌对

        Raises:
            TokenExpiredError: 刷新令牌过期
            InvalidTokenError: 刷新令牌无效
            SessionInvalidError: 会话已注销或已轮换
        """
        payload = self.jwt_auth.verify_refresh_token(refresh_token)

        account = await self.session_store.load_account(payload['sub'])
        if account is None:
            logger.warning("刷新失败，账户不存在", extra={
                'event': 'refresh_rejected',
                'account_id': payload['sub'],
                'reason': 'account_missing'
            })
            raise SessionInvalidError()

        if not self.session_store.is_current(account, payload.get('session_id')):
            logger.warning("刷新失败，会话已失效", extra={
                'event': 'refresh_rejected',
                'account_id': account.id,
                'reason': 'session_mismatch'
            })
            raise SessionInvalidError()

        await self.session_store.open_session(account)
        tokens = self.jwt_auth.create_token_pair(account)

        logger.info("令牌已刷新", extra={
            'event': 'token_refreshed',
            'account_id': account.id
        })
        return tokens

    async def logout(self, account_id: str) -> None:
        """注销，清除当前会话，重复调用无副作用"""
        cleared = await self.session_store.clear_session(account_id)
        logger.info("用户注销", extra={
            'event': 'logout',
            'account_id': account_id,
            'session_cleared': cleared
        })

    async def request_password_reset(self, email: str) -> None:
        """
        请求密码重置，无论邮箱是否存在都正常返回

        Args:
            email: 邮箱
        """
        account = await self.session_store.find_by_email(normalize_email(email))
        if account is None:
            logger.info("密码重置请求的邮箱不存在", extra={
                'event': 'password_reset_requested',
                'email': redact_email(normalize_email(email)),
                'account_found': False
            })
            return

        token = self.jwt_auth.create_reset_token(account)
        self._notify(TEMPLATE_PASSWORD_RESET, account, {
            'token': token,
            'reset_url': f"{self.frontend_url}/reset-password?token={token}"
        })

        logger.info("已发送密码重置邮件", extra={
            'event': 'password_reset_requested',
            'account_id': account.id,
            'account_found': True
        })

    async def reset_password(self, reset_token: str, new_password: str) -> None:
        """
        使用重置令牌设置新密码，并轮换会话

        Args:
            reset_token: 密码重置令牌
            new_password: 新密码

        Raises:
            TokenExpiredError: 令牌过期
            InvalidTokenError: 令牌无效或账户不存在
            WeakPasswordError: 新密码强度不足
        """
        payload = self.jwt_auth.verify_reset_token(reset_token)

        account = await self.session_store.load_account(payload['sub'])
        if account is None:
            raise InvalidTokenError("无效的密码重置令牌")

        self._check_strength(new_password, account)

        account.password_hash = await self.password_manager.hash_password_async(new_password)
        account.last_password_change_at = utcnow()
        await self.session_store.open_session(account)

        logger.info("密码已重置", extra={
            'event': 'password_reset_completed',
            'account_id': account.id
        })

    async def register(
        self,
        email: str,
        password: str,
        first_name: str = "",
        last_name: str = ""
    ) -> LoginResult:
        """
        注册新账户并直接登录

        Args:
            email: 邮箱
            password: 密码
            first_name: 名
            last_name: 姓

        Returns:
            登录结果

        Raises:
            InvalidInputError: 缺少必填字段
            AccountExistsError: 邮箱已被注册
            WeakPasswordError: 密码强度不足
        """
        email = normalize_email(email)
        if not email or not password:
            raise InvalidInputError("邮箱和密码不能为空")

        if await self.session_store.find_by_email(email):
            raise AccountExistsError()

        account = Account(
            email=email,
            first_name=(first_name or "").strip(),
            last_name=(last_name or "").strip()
        )
        self._check_strength(password, account)

        account.password_hash = await self.password_manager.hash_password_async(password)
        account.session_id = self.session_store.new_session_id()
        account.last_login_at = utcnow()
        account.last_password_change_at = account.last_login_at
        await self.session_store.user_store.create(account)

        tokens = self.jwt_auth.create_token_pair(account)
        verification_token = self.jwt_auth.create_verification_token(account)
        self._notify(TEMPLATE_WELCOME, account, {
            'first_name': account.first_name,
            'token': verification_token,
            'verify_url': f"{self.frontend_url}/verify-email?token={verification_token}"
        })

        logger.info("新账户注册成功", extra={
            'event': 'account_registered',
            'account_id': account.id,
            'email': redact_email(account.email)
        })
        return LoginResult(account=account, tokens=tokens)

    async def change_password(self, account_id: str, current_password: str, new_password: str) -> None:
        """
        修改密码，所有设备需要重新登录

        Raises:
            AccountNotFoundError: 账户不存在
            InvalidCredentialsError: 当前密码错误
            InvalidInputError: 新密码与当前密码相同
            WeakPasswordError: 新密码强度不足
        """
        account = await self.session_store.load_account(account_id)
        if account is None:
            raise AccountNotFoundError()

        if not await self.password_manager.verify_password_async(current_password, account.password_hash):
            logger.warning("修改密码失败，当前密码错误", extra={
                'event': 'password_change_failed',
                'account_id': account_id
            })
            raise InvalidCredentialsError("当前密码错误")

        if new_password == current_password:
            raise InvalidInputError("新密码不能与当前密码相同")

        self._check_strength(new_password, account)

        account.password_hash = await self.password_manager.hash_password_async(new_password)
        account.last_password_change_at = utcnow()
        await self.session_store.open_session(account)

        logger.info("密码已修改", extra={
            'event': 'password_changed',
            'account_id': account_id
        })

    async def request_email_verification(self, account_id: str) -> None:
        """重新发送邮箱验证邮件，已验证的账户不再发送"""
        account = await self.session_store.load_account(account_id)
        if account is None:
            raise AccountNotFoundError()
        if account.email_verified:
            return

        token = self.jwt_auth.create_verification_token(account)
        self._notify(TEMPLATE_EMAIL_VERIFICATION, account, {
            'token': token,
            'verify_url': f"{self.frontend_url}/verify-email?token={token}"
        })

        logger.info("已发送邮箱验证邮件", extra={
            'event': 'email_verification_requested',
            'account_id': account_id
        })

    async def verify_email(self, token: str) -> Account:
        """
        验证邮箱

        Raises:
            TokenExpiredError: 令牌过期
            InvalidTokenError: 令牌无效、账户不存在或邮箱已变更
        """
        payload = self.jwt_auth.verify_verification_token(token)

        account = await self.session_store.load_account(payload['sub'])
        if account is None or account.email != payload.get('email'):
            raise InvalidTokenError("无效的邮箱验证令牌")

        if not account.email_verified:
            account.email_verified = True
            await self.session_store.user_store.save(account)
            logger.info("邮箱验证成功", extra={
                'event': 'email_verified',
                'account_id': account.id
            })

        return account
