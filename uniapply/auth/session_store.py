"""
会话存储适配器
读写账户记录上唯一的"当前会话ID"字段
"""

import hmac
import secrets
from typing import Optional

from .models import Account
from .user_store import UserStore
from ..logging import get_logger


logger = get_logger(__name__)


class SessionStore:
    """单活动会话模型：每个账户同一时间最多一个有效会话ID"""

    def __init__(self, user_store: UserStore):
        self.user_store = user_store

    @staticmethod
    def new_session_id() -> str:
        """生成随机会话ID（32字节，十六进制）"""
        return secrets.token_hex(32)

    async def load_account(self, account_id: str) -> Optional[Account]:
        """按ID加载账户"""
        if not account_id:
            return None
        return await self.user_store.find_by_id(account_id)

    async def find_by_email(self, email: str) -> Optional[Account]:
        """按邮箱加载账户"""
        if not email:
            return None
        return await self.user_store.find_by_email(email)

    async def open_session(self, account: Account) -> str:
        """
        为账户生成新的会话ID并保存，之前签发的令牌全部失效

        Args:
            account: 账户对象

        Returns:
            新的会话ID
        """
        previous = account.session_id
        account.session_id = self.new_session_id()
        await self.user_store.save(account)

        logger.info("会话已开启", extra={
            'event': 'session_rotated' if previous else 'session_opened',
            'account_id': account.id
        })
        return account.session_id

    async def clear_session(self, account_id: str) -> bool:
        """
        清除账户会话（注销），重复调用无副作用

        Args:
            account_id: 账户ID

        Returns:
            是否实际清除了会话
        """
        account = await self.load_account(account_id)
        if account is None or account.session_id is None:
            return False

        account.session_id = None
        await self.user_store.save(account)

        logger.info("会话已清除", extra={
            'event': 'session_cleared',
            'account_id': account_id
        })
        return True

    @staticmethod
    def is_current(account: Account, session_id: Optional[str]) -> bool:
        """令牌中的会话ID是否仍是账户当前会话"""
        if not account.session_id or not isinstance(session_id, str) or not session_id:
            return False
        return hmac.compare_digest(account.session_id.encode('utf-8'), session_id.encode('utf-8'))
