"""
pytest配置文件
提供通用的fixtures和测试配置
"""
import os
import sys
from typing import Any, Dict, List, Tuple

import pytest
import pytest_asyncio

# 添加项目路径
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from uniapply.auth import (
    Account, AuthManager, InMemoryUserStore, JWTAuthenticator, PasswordManager, SessionStore
)
from uniapply.config import load_settings


TEST_ACCESS_SECRET = "test-access-secret-0123456789abcdef0123456789abcdef"
TEST_REFRESH_SECRET = "test-refresh-secret-0123456789abcdef0123456789abcdef"
STRONG_PASSWORD = "Tr0ub4dor&3xyz"
NEW_STRONG_PASSWORD = "Fresh#Start2024"


class RecordingEmailSink:
    """记录所有发送请求的邮件出口"""

    def __init__(self):
        self.sent: List[Tuple[str, str, Dict[str, Any]]] = []

    def send(self, template_id: str, recipient: str, data: Dict[str, Any]) -> None:
        self.sent.append((template_id, recipient, dict(data)))

    def last(self, template_id: str) -> Dict[str, Any]:
        for sent_template, _, data in reversed(self.sent):
            if sent_template == template_id:
                return data
        raise AssertionError(f"没有发送过 {template_id} 邮件")


class FailingEmailSink:
    """发送时总是抛出异常的邮件出口"""

    def send(self, template_id: str, recipient: str, data: Dict[str, Any]) -> None:
        raise ConnectionError("smtp unavailable")


@pytest.fixture
def settings():
    """测试配置（低bcrypt轮数）"""
    return load_settings(
        access_secret=TEST_ACCESS_SECRET,
        refresh_secret=TEST_REFRESH_SECRET,
        hash_cost=4,
        password_hash_workers=2,
        frontend_url="https://app.uniapply.test"
    )


@pytest.fixture
def password_manager():
    manager = PasswordManager(rounds=4, max_workers=2)
    yield manager
    manager.shutdown()


@pytest.fixture
def jwt_auth(settings):
    return JWTAuthenticator.from_settings(settings)


@pytest.fixture
def user_store():
    return InMemoryUserStore()


@pytest.fixture
def session_store(user_store):
    return SessionStore(user_store)


@pytest.fixture
def email_sink():
    return RecordingEmailSink()


@pytest.fixture
def auth_manager(password_manager, jwt_auth, session_store, email_sink, settings):
    return AuthManager(password_manager, jwt_auth, session_store, email_sink, settings.frontend_url)


@pytest_asyncio.fixture
async def registered_account(user_store, password_manager):
    """已注册但未登录的账户"""
    account = Account(
        email="student@example.com",
        password_hash=password_manager.hash_password(STRONG_PASSWORD),
        first_name="Ada",
        last_name="Lovelace"
    )
    await user_store.create(account)
    return account
