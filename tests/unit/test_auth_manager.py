"""
认证管理器单元测试
"""

from unittest.mock import patch

import pytest

from uniapply.auth import AuthManager, LoginResult, TokenPair
from uniapply.auth.exceptions import (
    AccountExistsError, AccountNotFoundError, InvalidCredentialsError, InvalidInputError,
    InvalidTokenError, SessionInvalidError, WeakPasswordError
)


STRONG_PASSWORD = "Tr0ub4dor&3xyz"
NEW_STRONG_PASSWORD = "Fresh#Start2024"


class TestLogin:
    """登录测试"""

    @pytest.mark.asyncio
    async def test_login_success(self, auth_manager, registered_account, user_store, jwt_auth):
        result = await auth_manager.login("student@example.com", STRONG_PASSWORD)

        assert isinstance(result, LoginResult)
        assert isinstance(result.tokens, TokenPair)

        stored = await user_store.find_by_id(registered_account.id)
        payload = jwt_auth.verify_access_token(result.tokens.access_token)
        assert stored.session_id == payload['session_id']
        assert stored.last_login_at is not None

    @pytest.mark.asyncio
    async def test_login_email_case_insensitive(self, auth_manager, registered_account):
        result = await auth_manager.login("  STUDENT@Example.com ", STRONG_PASSWORD)
        assert result.account.id == registered_account.id

    @pytest.mark.asyncio
    async def test_login_wrong_password(self, auth_manager, registered_account, user_store):
        with pytest.raises(InvalidCredentialsError) as exc_info:
            await auth_manager.login("student@example.com", "Wr0ng&Password")

        assert exc_info.value.message == "邮箱或密码错误"
        stored = await user_store.find_by_id(registered_account.id)
        assert stored.session_id is None

    @pytest.mark.asyncio
    async def test_login_unknown_email_same_error(self, auth_manager, password_manager):
        """邮箱不存在时同样执行一次bcrypt验证并返回相同错误"""
        with patch.object(
            password_manager, 'verify_password_async', wraps=password_manager.verify_password_async
        ) as verify:
            with pytest.raises(InvalidCredentialsError) as exc_info:
                await auth_manager.login("ghost@example.com", STRONG_PASSWORD)

        assert exc_info.value.message == "邮箱或密码错误"
        assert verify.await_count == 1

    @pytest.mark.asyncio
    async def test_second_login_revokes_first_session(self, auth_manager, registered_account):
        first = await auth_manager.login("student@example.com", STRONG_PASSWORD)
        await auth_manager.login("student@example.com", STRONG_PASSWORD)

        with pytest.raises(SessionInvalidError):
            await auth_manager.refresh(first.tokens.refresh_token)


class TestRefresh:
    """令牌刷新测试"""

    @pytest.mark.asyncio
    async def test_refresh_rotates_session(self, auth_manager, registered_account, jwt_auth):
        login = await auth_manager.login("student@example.com", STRONG_PASSWORD)
        tokens = await auth_manager.refresh(login.tokens.refresh_token)

        old_session = jwt_auth.verify_access_token(login.tokens.access_token)['session_id']
        new_session = jwt_auth.verify_access_token(tokens.access_token)['session_id']
        assert old_session != new_session

        # 旧刷新令牌不能再次使用
        with pytest.raises(SessionInvalidError):
            await auth_manager.refresh(login.tokens.refresh_token)

        # 新刷新令牌可以继续使用
        assert await auth_manager.refresh(tokens.refresh_token)

    @pytest.mark.asyncio
    async def test_refresh_uses_default_ttl(self, auth_manager, registered_account, jwt_auth):
        """记住我只延长登录时签发的刷新令牌"""
        login = await auth_manager.login("student@example.com", STRONG_PASSWORD, remember_me=True)
        first = jwt_auth.verify_refresh_token(login.tokens.refresh_token)
        assert first['exp'] - first['iat'] == jwt_auth.refresh_ttl_remember

        tokens = await auth_manager.refresh(login.tokens.refresh_token)

        payload = jwt_auth.verify_refresh_token(tokens.refresh_token)
        assert payload['remember_me'] is False
        assert payload['exp'] - payload['iat'] == jwt_auth.refresh_ttl

    @pytest.mark.asyncio
    async def test_refresh_after_logout(self, auth_manager, registered_account):
        login = await auth_manager.login("student@example.com", STRONG_PASSWORD)
        await auth_manager.logout(registered_account.id)

        with pytest.raises(SessionInvalidError):
            await auth_manager.refresh(login.tokens.refresh_token)

    @pytest.mark.asyncio
    async def test_refresh_with_access_token(self, auth_manager, registered_account):
        login = await auth_manager.login("student@example.com", STRONG_PASSWORD)

        with pytest.raises(InvalidTokenError):
            await auth_manager.refresh(login.tokens.access_token)

    @pytest.mark.asyncio
    async def test_refresh_account_deleted(self, auth_manager, registered_account, user_store):
        login = await auth_manager.login("student@example.com", STRONG_PASSWORD)
        user_store._accounts.clear()

        with pytest.raises(SessionInvalidError):
            await auth_manager.refresh(login.tokens.refresh_token)


class TestLogout:
    """注销测试"""

    @pytest.mark.asyncio
    async def test_logout_idempotent(self, auth_manager, registered_account, user_store):
        await auth_manager.login("student@example.com", STRONG_PASSWORD)

        await auth_manager.logout(registered_account.id)
        await auth_manager.logout(registered_account.id)
        await auth_manager.logout("unknown-account")

        stored = await user_store.find_by_id(registered_account.id)
        assert stored.session_id is None


class TestPasswordReset:
    """密码重置测试"""

    @pytest.mark.asyncio
    async def test_unknown_email_sends_nothing(self, auth_manager, email_sink):
        await auth_manager.request_password_reset("ghost@nowhere.test")
        assert email_sink.sent == []

    @pytest.mark.asyncio
    async def test_request_sends_reset_link(self, auth_manager, registered_account, email_sink):
        await auth_manager.request_password_reset("Student@Example.com")

        template_id, recipient, data = email_sink.sent[-1]
        assert template_id == "password_reset"
        assert recipient == "student@example.com"
        assert data['reset_url'] == f"https://app.uniapply.test/reset-password?token={data['token']}"

    @pytest.mark.asyncio
    async def test_sink_failure_not_raised(
        self, password_manager, jwt_auth, session_store, registered_account
    ):
        class BrokenSink:
            def send(self, template_id, recipient, data):
                raise ConnectionError("smtp unavailable")

        manager = AuthManager(password_manager, jwt_auth, session_store, BrokenSink())
        await manager.request_password_reset("student@example.com")

    @pytest.mark.asyncio
    async def test_reset_password(self, auth_manager, registered_account, email_sink, user_store):
        login = await auth_manager.login("student@example.com", STRONG_PASSWORD)
        await auth_manager.request_password_reset("student@example.com")
        token = email_sink.last("password_reset")['token']

        await auth_manager.reset_password(token, NEW_STRONG_PASSWORD)

        stored = await user_store.find_by_id(registered_account.id)
        assert stored.last_password_change_at is not None

        # 重置后之前的会话失效
        with pytest.raises(SessionInvalidError):
            await auth_manager.refresh(login.tokens.refresh_token)

        with pytest.raises(InvalidCredentialsError):
            await auth_manager.login("student@example.com", STRONG_PASSWORD)
        assert await auth_manager.login("student@example.com", NEW_STRONG_PASSWORD)

    @pytest.mark.asyncio
    async def test_reset_password_weak(self, auth_manager, registered_account, jwt_auth, user_store):
        token = jwt_auth.create_reset_token(registered_account)

        with pytest.raises(WeakPasswordError) as exc_info:
            await auth_manager.reset_password(token, "short")

        assert exc_info.value.errors
        assert exc_info.value.suggestions
        assert exc_info.value.to_dict()['code'] == "WEAK_PASSWORD"

        stored = await user_store.find_by_id(registered_account.id)
        assert stored.password_hash == registered_account.password_hash

    @pytest.mark.asyncio
    async def test_reset_password_account_gone(self, auth_manager, registered_account, jwt_auth, user_store):
        token = jwt_auth.create_reset_token(registered_account)
        user_store._accounts.clear()

        with pytest.raises(InvalidTokenError):
            await auth_manager.reset_password(token, NEW_STRONG_PASSWORD)

    @pytest.mark.asyncio
    async def test_reset_password_with_access_token(self, auth_manager, registered_account):
        login = await auth_manager.login("student@example.com", STRONG_PASSWORD)

        with pytest.raises(InvalidTokenError):
            await auth_manager.reset_password(login.tokens.access_token, NEW_STRONG_PASSWORD)


class TestRegister:
    """注册测试"""

    @pytest.mark.asyncio
    async def test_register(self, auth_manager, user_store, email_sink, jwt_auth):
        result = await auth_manager.register("New@Example.com", STRONG_PASSWORD, "Grace", "Hopper")

        assert result.account.email == "new@example.com"
        assert result.account.password_hash != STRONG_PASSWORD
        assert len(user_store) == 1

        payload = jwt_auth.verify_access_token(result.tokens.access_token)
        stored = await user_store.find_by_id(result.account.id)
        assert payload['session_id'] == stored.session_id

        data = email_sink.last("welcome")
        assert jwt_auth.verify_verification_token(data['token'])['sub'] == result.account.id

    @pytest.mark.asyncio
    async def test_register_duplicate(self, auth_manager, registered_account):
        with pytest.raises(AccountExistsError):
            await auth_manager.register("STUDENT@example.com", STRONG_PASSWORD)

    @pytest.mark.asyncio
    async def test_register_weak_password(self, auth_manager, user_store):
        with pytest.raises(WeakPasswordError):
            await auth_manager.register("new@example.com", "Password1")
        assert len(user_store) == 0

    @pytest.mark.asyncio
    async def test_register_password_contains_name(self, auth_manager):
        """姓名上下文参与强度评分"""
        with pytest.raises(WeakPasswordError) as exc_info:
            await auth_manager.register("gracehopper@example.com", "gracehopper1", "Grace", "Hopper")
        assert exc_info.value.warnings

    @pytest.mark.asyncio
    @pytest.mark.parametrize("email,password", [("", STRONG_PASSWORD), ("new@example.com", "")])
    async def test_register_missing_fields(self, auth_manager, email, password):
        with pytest.raises(InvalidInputError):
            await auth_manager.register(email, password)


class TestChangePassword:
    """修改密码测试"""

    @pytest.mark.asyncio
    async def test_change_password(self, auth_manager, registered_account):
        login = await auth_manager.login("student@example.com", STRONG_PASSWORD)

        await auth_manager.change_password(registered_account.id, STRONG_PASSWORD, NEW_STRONG_PASSWORD)

        with pytest.raises(SessionInvalidError):
            await auth_manager.refresh(login.tokens.refresh_token)
        assert await auth_manager.login("student@example.com", NEW_STRONG_PASSWORD)

    @pytest.mark.asyncio
    async def test_wrong_current_password(self, auth_manager, registered_account):
        with pytest.raises(InvalidCredentialsError):
            await auth_manager.change_password(registered_account.id, "Wr0ng&Password", NEW_STRONG_PASSWORD)

    @pytest.mark.asyncio
    async def test_same_password(self, auth_manager, registered_account):
        with pytest.raises(InvalidInputError):
            await auth_manager.change_password(registered_account.id, STRONG_PASSWORD, STRONG_PASSWORD)

    @pytest.mark.asyncio
    async def test_weak_new_password(self, auth_manager, registered_account):
        with pytest.raises(WeakPasswordError):
            await auth_manager.change_password(registered_account.id, STRONG_PASSWORD, "weak")

    @pytest.mark.asyncio
    async def test_unknown_account(self, auth_manager):
        with pytest.raises(AccountNotFoundError):
            await auth_manager.change_password("missing", STRONG_PASSWORD, NEW_STRONG_PASSWORD)


class TestEmailVerification:
    """邮箱验证测试"""

    @pytest.mark.asyncio
    async def test_request_and_verify(self, auth_manager, registered_account, email_sink, user_store):
        await auth_manager.request_email_verification(registered_account.id)
        data = email_sink.last("email_verification")
        assert data['verify_url'].startswith("https://app.uniapply.test/verify-email?token=")

        account = await auth_manager.verify_email(data['token'])

        assert account.email_verified
        assert (await user_store.find_by_id(registered_account.id)).email_verified

    @pytest.mark.asyncio
    async def test_verified_account_not_resent(self, auth_manager, registered_account, email_sink, jwt_auth):
        await auth_manager.verify_email(jwt_auth.create_verification_token(registered_account))
        await auth_manager.request_email_verification(registered_account.id)

        assert email_sink.sent == []

    @pytest.mark.asyncio
    async def test_verify_email_changed(self, auth_manager, registered_account, jwt_auth, user_store):
        token = jwt_auth.create_verification_token(registered_account)
        account = await user_store.find_by_id(registered_account.id)
        account.email = "changed@example.com"
        await user_store.save(account)

        with pytest.raises(InvalidTokenError):
            await auth_manager.verify_email(token)

    @pytest.mark.asyncio
    async def test_verify_with_reset_token(self, auth_manager, registered_account, jwt_auth):
        with pytest.raises(InvalidTokenError):
            await auth_manager.verify_email(jwt_auth.create_reset_token(registered_account))

    @pytest.mark.asyncio
    async def test_request_unknown_account(self, auth_manager):
        with pytest.raises(AccountNotFoundError):
            await auth_manager.request_email_verification("missing")
