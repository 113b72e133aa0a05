"""
JWT令牌管理器
提供访问、刷新、密码重置、邮箱验证令牌和API密钥的签发与验证
"""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt

from .exceptions import InvalidConfigurationError, InvalidInputError, InvalidTokenError, TokenExpiredError
from .models import Account, TokenPair


PURPOSE_ACCESS = 'access'
PURPOSE_REFRESH = 'refresh'
PURPOSE_PASSWORD_RESET = 'password_reset'
PURPOSE_EMAIL_VERIFICATION = 'email_verification'
PURPOSE_API_KEY = 'api_key'

DEFAULT_ISSUER = 'uniapply-hub'
AUDIENCE_USERS = 'uniapply-hub-users'
AUDIENCE_RESET = 'uniapply-hub-reset'
AUDIENCE_VERIFY = 'uniapply-hub-verify'
AUDIENCE_API = 'uniapply-hub-api'


class JWTAuthenticator:
    """JWT令牌签发和验证"""

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        access_ttl: int = 15 * 60,
        refresh_ttl: int = 7 * 24 * 60 * 60,
        refresh_ttl_remember: int = 30 * 24 * 60 * 60,
        reset_ttl: int = 60 * 60,
        verification_ttl: int = 24 * 60 * 60,
        api_key_ttl: int = 365 * 24 * 60 * 60,
        issuer: str = DEFAULT_ISSUER,
        algorithm: str = "HS256"
    ):
        """
        初始化JWT认证器

        Args:
            access_secret: 访问令牌签名密钥（重置和验证令牌也使用它）
            refresh_secret: 刷新令牌签名密钥
            access_ttl: 访问令牌有效期（秒）
            refresh_ttl: 刷新令牌有效期（秒）
            refresh_ttl_remember: "记住我"时刷新令牌有效期（秒）
            reset_ttl: 密码重置令牌有效期（秒）
            verification_ttl: 邮箱验证令牌有效期（秒）
            api_key_ttl: API密钥有效期（秒）
            issuer: 令牌发行者
            algorithm: 签名算法

        Raises:
            InvalidConfigurationError: 缺少签名密钥
        """
        if not access_secret or not refresh_secret:
            raise InvalidConfigurationError("必须配置访问令牌和刷新令牌的签名密钥")

        self._access_secret = access_secret
        self._refresh_secret = refresh_secret
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self.refresh_ttl_remember = refresh_ttl_remember
        self.reset_ttl = reset_ttl
        self.verification_ttl = verification_ttl
        self.api_key_ttl = api_key_ttl
        self.issuer = issuer
        self.algorithm = algorithm

    @classmethod
    def from_settings(cls, settings) -> 'JWTAuthenticator':
        """从配置对象创建"""
        return cls(
            access_secret=settings.access_secret,
            refresh_secret=settings.refresh_secret,
            access_ttl=settings.access_ttl,
            refresh_ttl=settings.refresh_ttl,
            refresh_ttl_remember=settings.refresh_ttl_remember,
            reset_ttl=settings.reset_ttl,
            verification_ttl=settings.verification_ttl,
            api_key_ttl=settings.api_key_ttl,
            issuer=settings.token_issuer
        )

    def _encode(
        self,
        claims: Dict[str, Any],
        secret: str,
        audience: str,
        ttl_seconds: int
    ) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            **claims,
            'iat': now,
            'exp': now + timedelta(seconds=ttl_seconds),
            'iss': self.issuer,
            'aud': audience
        }
        return jwt.encode(payload, secret, algorithm=self.algorithm)

    def _decode(self, token: str, secret: str, audience: str) -> Dict[str, Any]:
        """
        验证签名、发行者、受众和过期时间

        Raises:
            TokenExpiredError: 令牌过期
            InvalidTokenError: 令牌无效
        """
        if not isinstance(token, str) or not token:
            raise InvalidTokenError("令牌格式无效")

        try:
            return jwt.decode(
                token,
                secret,
                algorithms=[self.algorithm],
                audience=audience,
                issuer=self.issuer,
                options={'require': ['exp', 'iat', 'sub']}
            )
        except jwt.ExpiredSignatureError:
            raise TokenExpiredError()
        except jwt.PyJWTError as e:
            raise InvalidTokenError(f"令牌无效: {type(e).__name__}")

    @staticmethod
    def _session_claims(account: Account) -> Dict[str, Any]:
        if not account.session_id:
            raise InvalidInputError("账户没有有效会话，无法签发令牌")
        return {
            'sub': account.id,
            'email': account.email,
            'session_id': account.session_id
        }

    def create_access_token(self, account: Account) -> str:
        """
        创建访问令牌

        Args:
            account: 已开启会话的账户

        Returns:
            JWT访问令牌
        """
        claims = self._session_claims(account)
        claims['purpose'] = PURPOSE_ACCESS
        return self._encode(claims, self._access_secret, AUDIENCE_USERS, self.access_ttl)

    def create_refresh_token(self, account: Account, remember_me: bool = False) -> str:
        """
        创建刷新令牌

        Args:
            account: 已开启会话的账户
            remember_me: 是否使用延长的有效期

        Returns:
            JWT刷新令牌
        """
        claims = self._session_claims(account)
        claims.update({
            'purpose': PURPOSE_REFRESH,
            'token_type': 'refresh',
            'remember_me': bool(remember_me),
            'jti': secrets.token_hex(16)
        })
        ttl = self.refresh_ttl_remember if remember_me else self.refresh_ttl
        return self._encode(claims, self._refresh_secret, AUDIENCE_USERS, ttl)

    def create_token_pair(self, account: Account, remember_me: bool = False) -> TokenPair:
        """
        创建令牌对，两个令牌都绑定账户当前的会话ID

        Args:
            account: 已开启会话的账户
            remember_me: 是否延长刷新令牌有效期

        Returns:
            令牌对
        """
        return TokenPair(
            access_token=self.create_access_token(account),
            refresh_token=self.create_refresh_token(account, remember_me),
            expires_in=int(self.access_ttl)
        )

    def verify_access_token(self, token: str) -> Dict[str, Any]:
        """验证访问令牌并返回payload"""
        payload = self._decode(token, self._access_secret, AUDIENCE_USERS)
        if payload.get('purpose') != PURPOSE_ACCESS:
            raise InvalidTokenError("令牌用途不匹配")
        return payload

    def verify_refresh_token(self, token: str) -> Dict[str, Any]:
        """验证刷新令牌，访问令牌不能被当作刷新令牌使用"""
        payload = self._decode(token, self._refresh_secret, AUDIENCE_USERS)
        if payload.get('token_type') != 'refresh' or payload.get('purpose') != PURPOSE_REFRESH:
            raise InvalidTokenError("无效的刷新令牌类型")
        return payload

    def create_reset_token(self, account: Account) -> str:
        """创建密码重置令牌（不携带会话ID）"""
        claims = {
            'sub': account.id,
            'email': account.email,
            'purpose': PURPOSE_PASSWORD_RESET
        }
        return self._encode(claims, self._access_secret, AUDIENCE_RESET, self.reset_ttl)

    def verify_reset_token(self, token: str) -> Dict[str, Any]:
        """验证密码重置令牌"""
        payload = self._decode(token, self._access_secret, AUDIENCE_RESET)
        if payload.get('purpose') != PURPOSE_PASSWORD_RESET:
            raise InvalidTokenError("无效的密码重置令牌")
        return payload

    def create_verification_token(self, account: Account) -> str:
        """创建邮箱验证令牌（不携带会话ID）"""
        claims = {
            'sub': account.id,
            'email': account.email,
            'purpose': PURPOSE_EMAIL_VERIFICATION
        }
        return self._encode(claims, self._access_secret, AUDIENCE_VERIFY, self.verification_ttl)

    def verify_verification_token(self, token: str) -> Dict[str, Any]:
        """验证邮箱验证令牌"""
        payload = self._decode(token, self._access_secret, AUDIENCE_VERIFY)
        if payload.get('purpose') != PURPOSE_EMAIL_VERIFICATION:
            raise InvalidTokenError("无效的邮箱验证令牌")
        return payload

    def create_api_key(self, account: Account, purpose: str = 'general') -> str:
        """
        创建API密钥，长期有效且不绑定会话

        Args:
            account: 账户
            purpose: 密钥用途说明

        Returns:
            JWT形式的API密钥
        """
        claims = {
            'sub': account.id,
            'email': account.email,
            'purpose': PURPOSE_API_KEY,
            'key_purpose': purpose,
            'timestamp': int(datetime.now(timezone.utc).timestamp()),
            'nonce': secrets.token_hex(16)
        }
        return self._encode(claims, self._access_secret, AUDIENCE_API, self.api_key_ttl)

    def verify_api_key(self, token: str) -> Dict[str, Any]:
        """验证API密钥，访问令牌不能当作API密钥使用"""
        payload = self._decode(token, self._access_secret, AUDIENCE_API)
        if payload.get('purpose') != PURPOSE_API_KEY:
            raise InvalidTokenError("无效的API密钥")
        return payload

    @staticmethod
    def decode_unverified(token: str) -> Optional[Dict[str, Any]]:
        """
        不验证签名的情况下解码令牌（用于调试和客户端提前刷新）

        Returns:
            payload，解码失败返回None
        """
        try:
            return jwt.decode(token, options={'verify_signature': False})
        except (jwt.PyJWTError, TypeError, ValueError):
            return None

    def is_token_near_expiry(self, token: str, buffer_minutes: int = 5) -> bool:
        """
        检查令牌是否即将过期（不验证签名），无法解码时视为即将过期

        Args:
            token: JWT令牌
            buffer_minutes: 提前量（分钟）

        Returns:
            是否应该刷新
        """
        payload = self.decode_unverified(token)
        if not payload or not isinstance(payload.get('exp'), (int, float)):
            return True

        remaining = payload['exp'] - datetime.now(timezone.utc).timestamp()
        return remaining <= buffer_minutes * 60
