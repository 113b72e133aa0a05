"""
会话存储单元测试
"""

import pytest

from uniapply.auth import Account, InMemoryUserStore, SessionStore


class TestSessionStore:
    """单活动会话测试"""

    def setup_method(self):
        self.account = Account(email="student@example.com", password_hash="hash")
        self.user_store = InMemoryUserStore([self.account])
        self.session_store = SessionStore(self.user_store)

    def test_new_session_id(self):
        first = SessionStore.new_session_id()
        second = SessionStore.new_session_id()

        assert len(first) == 64
        assert first != second

    @pytest.mark.asyncio
    async def test_open_session_persists(self):
        account = await self.session_store.load_account(self.account.id)
        session_id = await self.session_store.open_session(account)

        stored = await self.user_store.find_by_id(self.account.id)
        assert stored.session_id == session_id
        assert account.session_id == session_id

    @pytest.mark.asyncio
    async def test_open_session_rotates(self):
        """再次开启会话后旧会话ID不再有效"""
        account = await self.session_store.load_account(self.account.id)
        old_session = await self.session_store.open_session(account)
        new_session = await self.session_store.open_session(account)

        stored = await self.user_store.find_by_id(self.account.id)
        assert old_session != new_session
        assert not SessionStore.is_current(stored, old_session)
        assert SessionStore.is_current(stored, new_session)

    @pytest.mark.asyncio
    async def test_clear_session_idempotent(self):
        account = await self.session_store.load_account(self.account.id)
        await self.session_store.open_session(account)

        assert await self.session_store.clear_session(self.account.id) is True
        assert await self.session_store.clear_session(self.account.id) is False

        stored = await self.user_store.find_by_id(self.account.id)
        assert stored.session_id is None
        assert not stored.has_active_session()

    @pytest.mark.asyncio
    async def test_clear_session_unknown_account(self):
        assert await self.session_store.clear_session("missing") is False

    @pytest.mark.asyncio
    async def test_load_account_empty_id(self):
        assert await self.session_store.load_account("") is None
        assert await self.session_store.find_by_email("") is None

    @pytest.mark.asyncio
    async def test_find_by_email_case_insensitive(self):
        account = await self.session_store.find_by_email("  STUDENT@example.COM ")
        assert account.id == self.account.id

    def test_is_current(self):
        account = Account(email="a@example.com", session_id="abc123")

        assert SessionStore.is_current(account, "abc123")
        assert not SessionStore.is_current(account, "abc124")
        assert not SessionStore.is_current(account, None)
        assert not SessionStore.is_current(account, "")
        assert not SessionStore.is_current(account, 12345)
        assert not SessionStore.is_current(account, "sessão-ünïcode")

    def test_is_current_without_session(self):
        account = Account(email="a@example.com")

        assert not SessionStore.is_current(account, None)
        assert not SessionStore.is_current(account, "abc123")
