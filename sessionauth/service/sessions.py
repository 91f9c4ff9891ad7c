from __future__ import annotations

from typing import ContextManager, Iterable, List, Optional, Protocol

from sessionauth.logging import get_logger
from sessionauth.service.errors import NotFoundError, SessionNotFoundError
from sessionauth.service.tokens import TokenCodec
from sessionauth.storage.errors import ConstraintViolation
from sessionauth.storage.models import Session, User

logger = get_logger(__name__)


class SessionTransaction(Protocol):
    def list_user_sessions(self, user_id: str) -> List[Session]: ...

    def delete_sessions(self, session_ids: Iterable[str]) -> int: ...

    def insert_session(self, session: Session) -> Session: ...


class SessionStore(Protocol):
    def session_transaction(self, user_id: str) -> ContextManager[SessionTransaction]: ...

    def count_user_sessions(self, user_id: str) -> int: ...

    def get_session_by_token(self, token: str) -> Optional[Session]: ...

    def delete_session_by_token(self, token: str, user_id: Optional[str] = None) -> bool: ...

    def delete_user_sessions(self, user_id: str) -> int: ...


def select_evictions(sessions: List[Session], max_connections: int) -> List[Session]:
    """Return the sessions to drop so one more fits under ``max_connections``.

    Oldest first by ``created_at``; equal timestamps fall back to the lowest id.
    """

    overflow = len(sessions) - max_connections + 1
    if overflow <= 0:
        return []
    ordered = sorted(sessions, key=lambda s: (s.created_at, s.id))
    return ordered[:overflow]


class SessionManager:
    """Owns the session lifecycle and the per-user concurrent session limit."""

    def __init__(
        self,
        store: SessionStore,
        tokens: TokenCodec,
        *,
        session_ttl_days: int = 30,
    ) -> None:
        self.store = store
        self.tokens = tokens
        self.session_ttl_days = session_ttl_days

    def open_session(self, user: User) -> Session:
        """Create a session for ``user``, evicting the oldest ones when at capacity.

        The read, eviction and insert run inside one store transaction scoped
        to the user, so concurrent logins for the same account serialize and
        the live count never exceeds ``user.max_connections``.
        """

        limit = max(1, user.max_connections)
        try:
            with self.store.session_transaction(user.id) as tx:
                live = tx.list_user_sessions(user.id)
                evicted = select_evictions(live, limit)
                if evicted:
                    tx.delete_sessions(s.id for s in evicted)
                    for old in evicted:
                        logger.info(
                            "session_evicted",
                            user_id=user.id,
                            session_id=old.id,
                            created_at=old.created_at.isoformat(),
                            max_connections=limit,
                        )
                session = Session.new(
                    user.id, self.tokens.issue(user.id), ttl_days=self.session_ttl_days
                )
                tx.insert_session(session)
        except ConstraintViolation as exc:
            if "user_id" in exc.detail:
                raise NotFoundError("user not found") from exc
            raise
        logger.info(
            "session_opened",
            user_id=user.id,
            session_id=session.id,
            active=len(live) - len(evicted) + 1,
        )
        return session

    def close_session(self, token: str, user_id: str) -> None:
        if not self.store.delete_session_by_token(token, user_id):
            raise SessionNotFoundError("session not found")
        logger.info("session_closed", user_id=user_id)

    def close_all_sessions(self, user_id: str) -> int:
        removed = self.store.delete_user_sessions(user_id)
        logger.info("sessions_closed", user_id=user_id, count=removed)
        return removed

    def count_sessions(self, user_id: str) -> int:
        return self.store.count_user_sessions(user_id)

    def session_summary(self, user: User) -> dict:
        return {
            "sessions": self.count_sessions(user.id),
            "max_connections": user.max_connections,
        }

    def find_live_session(self, token: str) -> Optional[Session]:
        return self.store.get_session_by_token(token)
