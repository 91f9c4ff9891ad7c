from __future__ import annotations

import contextlib
import json
import uuid
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional

import psycopg
from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from sessionauth.logging import get_logger
from sessionauth.storage.errors import ConstraintViolation, StoreError
from sessionauth.storage.models import (
    MAX_SETTINGS_ENTRIES,
    Session,
    User,
    settings_violation,
    utcnow,
)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS auth_user (
        id TEXT PRIMARY KEY,
        email TEXT NOT NULL UNIQUE,
        full_name TEXT NOT NULL,
        avatar_url TEXT,
        settings JSONB NOT NULL DEFAULT '{}'::jsonb,
        max_connections INTEGER NOT NULL DEFAULT 20 CHECK (max_connections > 0),
        password_hash TEXT,
        password_algo TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS auth_session (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL REFERENCES auth_user(id) ON DELETE CASCADE,
        token TEXT NOT NULL UNIQUE,
        created_at TIMESTAMPTZ NOT NULL,
        expires_at TIMESTAMPTZ NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS auth_session_user_idx ON auth_session (user_id, created_at)",
)


def _row_to_session(row: Dict[str, Any]) -> Session:
    return Session(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        token=row["token"],
        created_at=row["created_at"],
        expires_at=row["expires_at"],
    )


def _row_to_user(row: Dict[str, Any]) -> User:
    settings = row.get("settings") or {}
    if isinstance(settings, str):
        settings = json.loads(settings)
    return User(
        id=str(row["id"]),
        email=row["email"],
        full_name=row["full_name"],
        avatar_url=row.get("avatar_url"),
        settings=dict(settings),
        max_connections=int(row["max_connections"]),
        created_at=row["created_at"],
        updated_at=row.get("updated_at") or row["created_at"],
    )


def _insert_session(conn: psycopg.Connection, session: Session) -> Session:
    try:
        conn.execute(
            """
            INSERT INTO auth_session (id, user_id, token, created_at, expires_at)
            VALUES (%s, %s, %s, %s, %s)
            """,
            (
                session.id,
                session.user_id,
                session.token,
                session.created_at,
                session.expires_at,
            ),
        )
    except errors.UniqueViolation:
        raise ConstraintViolation("session token already exists", {"field": "token"})
    except errors.ForeignKeyViolation:
        raise ConstraintViolation("user does not exist", {"user_id": session.user_id})
    return session


def _live_sessions(conn: psycopg.Connection, user_id: str) -> List[Session]:
    rows = conn.execute(
        """
        SELECT id, user_id, token, created_at, expires_at
        FROM auth_session
        WHERE user_id = %s AND expires_at > now()
        ORDER BY created_at, id
        """,
        (user_id,),
    ).fetchall()
    return [_row_to_session(row) for row in rows]


def _delete_sessions(conn: psycopg.Connection, session_ids: Iterable[str]) -> int:
    ids = list(session_ids)
    if not ids:
        return 0
    cur = conn.execute("DELETE FROM auth_session WHERE id = ANY(%s)", (ids,))
    return cur.rowcount or 0


class _SessionTransaction:
    """Session operations bound to one open transaction holding the user row lock."""

    def __init__(self, conn: psycopg.Connection) -> None:
        self._conn = conn

    def list_user_sessions(self, user_id: str) -> List[Session]:
        return _live_sessions(self._conn, user_id)

    def delete_sessions(self, session_ids: Iterable[str]) -> int:
        return _delete_sessions(self._conn, session_ids)

    def insert_session(self, session: Session) -> Session:
        return _insert_session(self._conn, session)


class PostgresStore:
    """Postgres-backed credential and session store."""

    def __init__(
        self,
        dsn: str,
        *,
        max_settings_entries: int = MAX_SETTINGS_ENTRIES,
        min_size: int = 2,
        max_size: int = 10,
    ) -> None:
        self.dsn = dsn
        self.max_settings_entries = min(max_settings_entries, MAX_SETTINGS_ENTRIES)
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._ensure_schema()

    @contextlib.contextmanager
    def _connect(self) -> Iterator[psycopg.Connection]:
        try:
            with self.pool.connection() as conn:
                yield conn
        except psycopg.OperationalError as exc:
            self.logger.error("postgres_unavailable", error=str(exc))
            raise StoreError("database unavailable") from exc

    def _ensure_schema(self) -> None:
        """Create the ``auth_user`` and ``auth_session`` tables if they are missing."""

        with self._connect() as conn:
            for statement in _SCHEMA:
                conn.execute(statement)

    def close(self) -> None:
        self.pool.close()

    # users
    def create_user(
        self,
        email: str,
        full_name: str,
        *,
        avatar_url: Optional[str] = None,
        max_connections: int = 20,
    ) -> User:
        user_id = str(uuid.uuid4())
        normalized = (email or "").strip().lower()
        now = utcnow()
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO auth_user (id, email, full_name, avatar_url, max_connections, created_at, updated_at)
                    VALUES (%s, %s, %s, %s, %s, %s, %s)
                    """,
                    (user_id, normalized, full_name, avatar_url, max_connections, now, now),
                )
        except errors.UniqueViolation:
            raise ConstraintViolation("email already exists", {"field": "email"})
        return User(
            id=user_id,
            email=normalized,
            full_name=full_name,
            avatar_url=avatar_url,
            max_connections=max_connections,
            created_at=now,
            updated_at=now,
        )

    def get_user(self, user_id: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM auth_user WHERE id = %s", (user_id,)
            ).fetchone()
        return _row_to_user(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        normalized = (email or "").strip().lower()
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM auth_user WHERE email = %s", (normalized,)
            ).fetchone()
        return _row_to_user(row) if row else None

    def set_max_connections(self, user_id: str, max_connections: int) -> Optional[User]:
        if max_connections < 1:
            raise ConstraintViolation(
                "max_connections must be at least 1", {"field": "max_connections"}
            )
        with self._connect() as conn:
            row = conn.execute(
                """
                UPDATE auth_user SET max_connections = %s, updated_at = now()
                WHERE id = %s RETURNING *
                """,
                (max_connections, user_id),
            ).fetchone()
        return _row_to_user(row) if row else None

    def save_password(
        self, user_id: str, password_hash: str, password_algo: str
    ) -> None:
        with self._connect() as conn:
            cur = conn.execute(
                """
                UPDATE auth_user SET password_hash = %s, password_algo = %s, updated_at = now()
                WHERE id = %s
                """,
                (password_hash, password_algo, user_id),
            )
            if not cur.rowcount:
                raise ConstraintViolation(
                    "user not found for credentials", {"user_id": user_id}
                )

    def get_password_record(self, user_id: str) -> Optional[tuple[str, str]]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT password_hash, password_algo FROM auth_user WHERE id = %s",
                (user_id,),
            ).fetchone()
        if not row or not row.get("password_hash"):
            return None
        return row["password_hash"], row.get("password_algo") or ""

    def modify_user_settings(
        self,
        user_id: str,
        mutate: Callable[[Dict[str, Any]], Dict[str, Any]],
    ) -> Optional[User]:
        with self._connect() as conn:
            with conn.transaction():
                row = conn.execute(
                    "SELECT settings FROM auth_user WHERE id = %s FOR UPDATE",
                    (user_id,),
                ).fetchone()
                if not row:
                    return None
                current = row.get("settings") or {}
                if isinstance(current, str):
                    current = json.loads(current)
                updated = mutate(dict(current))
                problem = settings_violation(updated, self.max_settings_entries)
                if problem:
                    raise ConstraintViolation(problem, {"field": "settings"})
                saved = conn.execute(
                    """
                    UPDATE auth_user SET settings = %s::jsonb, updated_at = now()
                    WHERE id = %s RETURNING *
                    """,
                    (json.dumps(updated), user_id),
                ).fetchone()
        return _row_to_user(saved) if saved else None

    # sessions
    @contextlib.contextmanager
    def session_transaction(self, user_id: str) -> Iterator[_SessionTransaction]:
        with self._connect() as conn:
            with conn.transaction():
                row = conn.execute(
                    "SELECT id FROM auth_user WHERE id = %s FOR UPDATE", (user_id,)
                ).fetchone()
                if not row:
                    raise ConstraintViolation("user does not exist", {"user_id": user_id})
                purged = conn.execute(
                    "DELETE FROM auth_session WHERE user_id = %s AND expires_at <= now()",
                    (user_id,),
                )
                if purged.rowcount:
                    self.logger.info(
                        "expired_sessions_purged", user_id=user_id, count=purged.rowcount
                    )
                yield _SessionTransaction(conn)

    def list_user_sessions(self, user_id: str) -> List[Session]:
        with self._connect() as conn:
            return _live_sessions(conn, user_id)

    def count_user_sessions(self, user_id: str) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS c FROM auth_session WHERE user_id = %s AND expires_at > now()",
                (user_id,),
            ).fetchone()
        return int(row["c"]) if row else 0

    def insert_session(self, session: Session) -> Session:
        with self._connect() as conn:
            return _insert_session(conn, session)

    def delete_sessions(self, session_ids: Iterable[str]) -> int:
        with self._connect() as conn:
            return _delete_sessions(conn, session_ids)

    def get_session_by_token(self, token: str) -> Optional[Session]:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT id, user_id, token, created_at, expires_at
                FROM auth_session WHERE token = %s AND expires_at > now()
                """,
                (token,),
            ).fetchone()
        return _row_to_session(row) if row else None

    def delete_session_by_token(self, token: str, user_id: Optional[str] = None) -> bool:
        with self._connect() as conn:
            if user_id is None:
                cur = conn.execute("DELETE FROM auth_session WHERE token = %s", (token,))
            else:
                cur = conn.execute(
                    "DELETE FROM auth_session WHERE token = %s AND user_id = %s",
                    (token, user_id),
                )
        return bool(cur.rowcount)

    def delete_user_sessions(self, user_id: str) -> int:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM auth_session WHERE user_id = %s", (user_id,))
        return cur.rowcount or 0


__all__ = ["PostgresStore"]
