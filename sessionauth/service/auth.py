from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, Tuple

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerifyMismatchError

from sessionauth.config import Settings
from sessionauth.logging import get_logger
from sessionauth.service.errors import (
    AuthenticationError,
    ConflictError,
    ForbiddenError,
    InvalidCredentialsError,
    InvalidTokenError,
    NotFoundError,
    SessionRevokedError,
)
from sessionauth.service.sessions import SessionManager, SessionStore
from sessionauth.storage.errors import ConstraintViolation
from sessionauth.storage.models import Session, User

logger = get_logger(__name__)

_INVALID_CREDENTIALS = "invalid email or password"


class AuthStore(SessionStore, Protocol):
    def create_user(
        self,
        email: str,
        full_name: str,
        *,
        avatar_url: Optional[str] = None,
        max_connections: int = 20,
    ) -> User: ...

    def save_password(
        self, user_id: str, password_hash: str, password_algo: str
    ) -> None: ...

    def get_password_record(self, user_id: str) -> Optional[tuple[str, str]]: ...

    def get_user(self, user_id: str) -> Optional[User]: ...

    def get_user_by_email(self, email: str) -> Optional[User]: ...


@dataclass
class AuthContext:
    user_id: str
    session_id: str
    token: str


class AuthService:
    """Registration, login/logout and the bearer-token gate for protected routes."""

    def __init__(
        self,
        store: AuthStore,
        sessions: SessionManager,
        settings: Settings,
    ) -> None:
        self.store: AuthStore = store
        self.sessions = sessions
        self.settings = settings
        self._pwd_hasher = PasswordHasher(type=Type.ID)
        self.logger = logger

    async def register(
        self,
        email: str,
        password: str,
        full_name: str,
        avatar_url: Optional[str] = None,
        *,
        max_connections: Optional[int] = None,
    ) -> tuple[User, Session]:
        limit = max_connections or self.settings.default_max_connections
        try:
            user = self.store.create_user(
                email,
                full_name,
                avatar_url=avatar_url,
                max_connections=limit,
            )
        except ConstraintViolation as exc:
            if exc.detail.get("field") == "email":
                raise ConflictError(
                    "email already registered", detail={"field": "email"}
                ) from exc
            raise
        self.save_password(user.id, password)
        session = self.sessions.open_session(user)
        self.logger.info("user_registered", user_id=user.id)
        return user, session

    async def login(self, email: str, password: str) -> tuple[User, Session]:
        user = self.store.get_user_by_email(email)
        if not user or not self.verify_password(user.id, password):
            self.logger.info("login_failed", email=email)
            raise InvalidCredentialsError(_INVALID_CREDENTIALS)
        session = self.sessions.open_session(user)
        self.logger.info("login_succeeded", user_id=user.id, session_id=session.id)
        return user, session

    async def logout(self, ctx: AuthContext) -> None:
        self.sessions.close_session(ctx.token, ctx.user_id)

    async def logout_all(self, ctx: AuthContext) -> int:
        return self.sessions.close_all_sessions(ctx.user_id)

    async def me(self, ctx: AuthContext) -> tuple[User, int]:
        user = self.store.get_user(ctx.user_id)
        if not user:
            raise NotFoundError("user not found")
        return user, self.sessions.count_sessions(user.id)

    async def session_summary(self, ctx: AuthContext) -> dict:
        user = self.store.get_user(ctx.user_id)
        if not user:
            raise NotFoundError("user not found")
        return self.sessions.session_summary(user)

    async def authenticate(self, authorization: Optional[str]) -> AuthContext:
        """Resolve an ``Authorization`` header to a live session.

        A missing or non-bearer header is 401. A token that fails signature or
        expiry checks, or that no live session carries (logged out, evicted or
        expired), is 403.
        """

        token = self._extract_bearer(authorization)
        if not token:
            raise AuthenticationError("authorization required")
        try:
            user_id = self.sessions.tokens.verify(token)
        except InvalidTokenError:
            self.logger.info("auth_gate_rejected", reason="invalid_token")
            raise
        session = self.sessions.find_live_session(token)
        if session is None:
            self.logger.info("auth_gate_rejected", reason="no_session", user_id=user_id)
            raise SessionRevokedError("session is no longer active")
        if session.user_id != user_id:
            self.logger.warning(
                "auth_gate_rejected", reason="subject_mismatch", session_id=session.id
            )
            raise ForbiddenError("session does not match token")
        return AuthContext(user_id=user_id, session_id=session.id, token=token)

    def _hash_password(self, password: str) -> Tuple[str, str]:
        algo = "argon2id"
        digest = self._pwd_hasher.hash(password)
        return digest, algo

    def verify_password(self, user_id: str, password: str) -> bool:
        """Verify a user's password against stored hash."""
        record = self.store.get_password_record(user_id)
        if not record:
            self.logger.warning("password_record_missing", user_id=user_id)
            return False
        stored_hash, algo = record
        if algo != "argon2id":
            self.logger.warning("password_algo_mismatch", user_id=user_id, algo=algo)
            return False
        try:
            return self._pwd_hasher.verify(stored_hash, password)
        except (InvalidHash, VerifyMismatchError):
            return False

    def save_password(self, user_id: str, password: str) -> None:
        pwd_hash, algo = self._hash_password(password)
        self.store.save_password(user_id, pwd_hash, algo)

    @staticmethod
    def _extract_bearer(header: Optional[str]) -> Optional[str]:
        if not header:
            return None
        scheme, _, token = header.strip().partition(" ")
        if scheme.lower() != "bearer":
            return None
        return token.strip() or None
