from __future__ import annotations

import contextlib
import json
import threading
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional

from sessionauth.logging import get_logger
from sessionauth.storage.errors import ConstraintViolation, StoreError
from sessionauth.storage.models import (
    MAX_SETTINGS_ENTRIES,
    Session,
    User,
    settings_violation,
    utcnow,
)


def _normalize_email(email: str) -> str:
    return (email or "").strip().lower()


class MemoryStore:
    """In-process credential and session store.

    Every public method takes the data lock, so single-record writes are
    atomic. ``session_transaction`` holds the same (reentrant) lock for the
    duration of a block, which makes read-evict-insert sequences atomic too.
    When ``fs_root`` is given the state is mirrored to a JSON file after each
    write and reloaded on construction.
    """

    def __init__(
        self,
        fs_root: Optional[str] = None,
        *,
        max_settings_entries: int = MAX_SETTINGS_ENTRIES,
    ) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[str, User] = {}
        self.sessions: Dict[str, Session] = {}
        self.credentials: Dict[str, tuple[str, str]] = {}
        self.max_settings_entries = min(max_settings_entries, MAX_SETTINGS_ENTRIES)
        # RLock so a transaction block can call the public methods
        self._data_lock = threading.RLock()
        self.fs_root = Path(fs_root) if fs_root else None
        if self.fs_root is not None:
            self.fs_root.mkdir(parents=True, exist_ok=True)
            self._load_state()

    # users
    def create_user(
        self,
        email: str,
        full_name: str,
        *,
        avatar_url: Optional[str] = None,
        max_connections: int = 20,
    ) -> User:
        normalized = _normalize_email(email)
        with self._data_lock:
            if any(existing.email == normalized for existing in self.users.values()):
                raise ConstraintViolation("email already exists", {"field": "email"})
            now = utcnow()
            user = User(
                id=str(uuid.uuid4()),
                email=normalized,
                full_name=full_name,
                avatar_url=avatar_url,
                max_connections=max_connections,
                created_at=now,
                updated_at=now,
            )
            self.users[user.id] = user
            self._persist_state()
            return user

    def get_user(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            return self.users.get(user_id)

    def get_user_by_email(self, email: str) -> Optional[User]:
        normalized = _normalize_email(email)
        with self._data_lock:
            return next((u for u in self.users.values() if u.email == normalized), None)

    def set_max_connections(self, user_id: str, max_connections: int) -> Optional[User]:
        if max_connections < 1:
            raise ConstraintViolation(
                "max_connections must be at least 1", {"field": "max_connections"}
            )
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            user.max_connections = max_connections
            user.updated_at = utcnow()
            self._persist_state()
            return user

    def save_password(
        self, user_id: str, password_hash: str, password_algo: str
    ) -> None:
        with self._data_lock:
            if user_id not in self.users:
                raise ConstraintViolation(
                    "user not found for credentials", {"user_id": user_id}
                )
            self.credentials[user_id] = (password_hash, password_algo)
            self._persist_state()

    def get_password_record(self, user_id: str) -> Optional[tuple[str, str]]:
        with self._data_lock:
            return self.credentials.get(user_id)

    def modify_user_settings(
        self,
        user_id: str,
        mutate: Callable[[Dict[str, Any]], Dict[str, Any]],
    ) -> Optional[User]:
        """Apply ``mutate`` to a copy of the user's settings and store the result.

        Exceptions raised by ``mutate`` leave the stored map untouched.
        """
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            updated = mutate(dict(user.settings))
            problem = settings_violation(updated, self.max_settings_entries)
            if problem:
                raise ConstraintViolation(problem, {"field": "settings"})
            user.settings = updated
            user.updated_at = utcnow()
            self._persist_state()
            return user

    # sessions
    @contextlib.contextmanager
    def session_transaction(self, user_id: str) -> Iterator["MemoryStore"]:
        with self._data_lock:
            if user_id not in self.users:
                raise ConstraintViolation("user does not exist", {"user_id": user_id})
            self._purge_expired(user_id)
            yield self

    def list_user_sessions(self, user_id: str) -> List[Session]:
        now = utcnow()
        with self._data_lock:
            return [
                s
                for s in self.sessions.values()
                if s.user_id == user_id and not s.is_expired(now)
            ]

    def count_user_sessions(self, user_id: str) -> int:
        return len(self.list_user_sessions(user_id))

    def insert_session(self, session: Session) -> Session:
        with self._data_lock:
            if session.user_id not in self.users:
                raise ConstraintViolation(
                    "user does not exist", {"user_id": session.user_id}
                )
            if any(s.token == session.token for s in self.sessions.values()):
                raise ConstraintViolation("session token already exists", {"field": "token"})
            self.sessions[session.id] = session
            self._persist_state()
            return session

    def delete_sessions(self, session_ids: Iterable[str]) -> int:
        with self._data_lock:
            removed = 0
            for sid in session_ids:
                if self.sessions.pop(sid, None) is not None:
                    removed += 1
            if removed:
                self._persist_state()
            return removed

    def get_session_by_token(self, token: str) -> Optional[Session]:
        with self._data_lock:
            sess = next((s for s in self.sessions.values() if s.token == token), None)
            if sess is None or sess.is_expired():
                return None
            return sess

    def delete_session_by_token(self, token: str, user_id: Optional[str] = None) -> bool:
        with self._data_lock:
            sess = next((s for s in self.sessions.values() if s.token == token), None)
            if sess is None or (user_id is not None and sess.user_id != user_id):
                return False
            self.sessions.pop(sess.id, None)
            self._persist_state()
            return True

    def delete_user_sessions(self, user_id: str) -> int:
        with self._data_lock:
            stale = [sid for sid, sess in self.sessions.items() if sess.user_id == user_id]
            return self.delete_sessions(stale)

    def _purge_expired(self, user_id: Optional[str] = None) -> int:
        now = utcnow()
        expired = [
            sid
            for sid, sess in self.sessions.items()
            if sess.is_expired(now) and (user_id is None or sess.user_id == user_id)
        ]
        return self.delete_sessions(expired)

    # persistence
    def _state_path(self) -> Path:
        assert self.fs_root is not None
        state_dir = self.fs_root / "state"
        state_dir.mkdir(parents=True, exist_ok=True)
        return state_dir / "memory_store.json"

    def _persist_state(self) -> None:
        if self.fs_root is None:
            return
        state = {
            "users": [self._serialize_user(u) for u in self.users.values()],
            "sessions": [self._serialize_session(s) for s in self.sessions.values()],
            "credentials": [
                {
                    "user_id": user_id,
                    "password_hash": creds[0],
                    "password_algo": creds[1],
                }
                for user_id, creds in self.credentials.items()
            ],
        }
        path = self._state_path()
        try:
            path.write_text(json.dumps(state, indent=2))
        except OSError as exc:
            raise StoreError("failed to persist in-memory state") from exc

    def _load_state(self) -> bool:
        path = self._state_path()
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError:
            return False
        self.users = {u["id"]: self._deserialize_user(u) for u in data.get("users", [])}
        self.sessions = {
            s["id"]: self._deserialize_session(s) for s in data.get("sessions", [])
        }
        self.credentials = {
            entry["user_id"]: (entry["password_hash"], entry.get("password_algo", ""))
            for entry in data.get("credentials", [])
        }
        self.logger.info(
            "memory_store_loaded", users=len(self.users), sessions=len(self.sessions)
        )
        return True

    @staticmethod
    def _serialize_user(user: User) -> dict:
        return {
            "id": user.id,
            "email": user.email,
            "full_name": user.full_name,
            "avatar_url": user.avatar_url,
            "settings": user.settings,
            "max_connections": user.max_connections,
            "created_at": user.created_at.isoformat(),
            "updated_at": user.updated_at.isoformat(),
        }

    @staticmethod
    def _deserialize_user(data: dict) -> User:
        return User(
            id=str(data["id"]),
            email=data["email"],
            full_name=data.get("full_name", ""),
            avatar_url=data.get("avatar_url"),
            settings=dict(data.get("settings") or {}),
            max_connections=int(data.get("max_connections", 20)),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data.get("updated_at", data["created_at"])),
        )

    @staticmethod
    def _serialize_session(session: Session) -> dict:
        return {
            "id": session.id,
            "user_id": session.user_id,
            "token": session.token,
            "created_at": session.created_at.isoformat(),
            "expires_at": session.expires_at.isoformat(),
        }

    @staticmethod
    def _deserialize_session(data: dict) -> Session:
        return Session(
            id=data["id"],
            user_id=data["user_id"],
            token=data["token"],
            created_at=datetime.fromisoformat(data["created_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
        )
