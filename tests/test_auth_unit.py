"""Unit tests for the auth service.

Tests for:
- Password hashing and verification
- Registration and duplicate emails
- Login with session eviction
- The bearer token gate
- Logout, logout-all and the session summary
"""

import pytest

from sessionauth.config import Settings
from sessionauth.service.auth import AuthContext, AuthService
from sessionauth.service.errors import (
    AuthenticationError,
    ConflictError,
    InvalidCredentialsError,
    InvalidTokenError,
    SessionNotFoundError,
    SessionRevokedError,
)
from sessionauth.service.sessions import SessionManager
from sessionauth.service.tokens import TokenCodec
from sessionauth.storage.memory import MemoryStore


@pytest.fixture
def settings():
    return Settings(
        jwt_secret="Test-Secret-Key_for-Automation-Only-987654321!",
        default_max_connections=2,
    )


@pytest.fixture
def memory_store(tmp_path):
    return MemoryStore(fs_root=str(tmp_path))


@pytest.fixture
def auth_service(memory_store, settings):
    codec = TokenCodec(
        settings.jwt_secret,
        issuer=settings.jwt_issuer,
        audience=settings.jwt_audience,
    )
    sessions = SessionManager(memory_store, codec)
    return AuthService(memory_store, sessions, settings)


class TestPasswordHashing:
    def test_hash_is_argon2id_and_salted(self, auth_service):
        hash1, algo = auth_service._hash_password("secret")
        hash2, _ = auth_service._hash_password("secret")
        assert algo == "argon2id"
        assert hash1.startswith("$argon2id$")
        assert hash1 != hash2

    def test_verify_password(self, auth_service, memory_store):
        user = memory_store.create_user("pw@example.com", "Pee Double")
        auth_service.save_password(user.id, "secret")
        assert auth_service.verify_password(user.id, "secret") is True
        assert auth_service.verify_password(user.id, "Secret") is False

    def test_verify_password_without_record(self, auth_service, memory_store):
        user = memory_store.create_user("nopw@example.com", "No Password")
        assert auth_service.verify_password(user.id, "anything") is False

    def test_verify_password_rejects_unknown_algo(self, auth_service, memory_store):
        user = memory_store.create_user("algo@example.com", "Algo")
        memory_store.save_password(user.id, "plain", "md5")
        assert auth_service.verify_password(user.id, "plain") is False


class TestRegister:
    async def test_register_creates_user_and_live_session(self, auth_service):
        user, session = await auth_service.register(
            "new@example.com", "secret", "New User", "https://img.example.com/a.png"
        )
        assert user.full_name == "New User"
        assert user.max_connections == 2
        ctx = await auth_service.authenticate(f"Bearer {session.token}")
        assert ctx.user_id == user.id
        assert ctx.session_id == session.id

    async def test_register_duplicate_email_conflicts(self, auth_service):
        await auth_service.register("dup@example.com", "secret", "First")
        with pytest.raises(ConflictError):
            await auth_service.register("DUP@example.com", "secret", "Second")


class TestLogin:
    async def test_unknown_email_and_wrong_password_look_the_same(self, auth_service):
        await auth_service.register("known@example.com", "secret", "Known")

        with pytest.raises(InvalidCredentialsError) as unknown:
            await auth_service.login("unknown@example.com", "secret")
        with pytest.raises(InvalidCredentialsError) as wrong:
            await auth_service.login("known@example.com", "wrong-password")
        assert unknown.value.message == wrong.value.message

    async def test_login_at_capacity_revokes_oldest_token(self, auth_service):
        _, registered = await auth_service.register("cap@example.com", "secret", "Cap")
        _, second = await auth_service.login("cap@example.com", "secret")
        _, third = await auth_service.login("cap@example.com", "secret")

        with pytest.raises(SessionRevokedError):
            await auth_service.authenticate(f"Bearer {registered.token}")
        for live in (second, third):
            ctx = await auth_service.authenticate(f"Bearer {live.token}")
            assert ctx.session_id == live.id


class TestAuthenticate:
    @pytest.mark.parametrize("header", [None, "", "Basic abc", "Bearer", "Bearer   "])
    async def test_missing_or_malformed_header_is_unauthorized(self, auth_service, header):
        with pytest.raises(AuthenticationError):
            await auth_service.authenticate(header)

    async def test_bad_token_is_forbidden(self, auth_service):
        with pytest.raises(InvalidTokenError):
            await auth_service.authenticate("Bearer not-a-token")

    async def test_signed_token_without_session_is_forbidden(self, auth_service):
        user, _ = await auth_service.register("nos@example.com", "secret", "No Session")
        orphan = auth_service.sessions.tokens.issue(user.id)
        with pytest.raises(SessionRevokedError):
            await auth_service.authenticate(f"Bearer {orphan}")

    async def test_scheme_is_case_insensitive(self, auth_service):
        _, session = await auth_service.register("case@example.com", "secret", "Case")
        ctx = await auth_service.authenticate(f"bearer {session.token}")
        assert isinstance(ctx, AuthContext)


class TestLogout:
    async def test_logout_invalidates_token(self, auth_service):
        _, session = await auth_service.register("out@example.com", "secret", "Out")
        ctx = await auth_service.authenticate(f"Bearer {session.token}")

        await auth_service.logout(ctx)

        with pytest.raises(SessionRevokedError):
            await auth_service.authenticate(f"Bearer {session.token}")
        with pytest.raises(SessionNotFoundError):
            await auth_service.logout(ctx)

    async def test_logout_all_and_summary(self, auth_service):
        _, session = await auth_service.register("all@example.com", "secret", "All")
        await auth_service.login("all@example.com", "secret")
        ctx = await auth_service.authenticate(f"Bearer {session.token}")

        assert await auth_service.session_summary(ctx) == {
            "sessions": 2,
            "max_connections": 2,
        }
        user, connections = await auth_service.me(ctx)
        assert user.email == "all@example.com"
        assert connections == 2

        assert await auth_service.logout_all(ctx) == 2
        with pytest.raises(SessionRevokedError):
            await auth_service.authenticate(f"Bearer {session.token}")
