from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Union

# A stored setting is always structured: a JSON object or a JSON array.
SettingValue = Union[Dict[str, Any], List[Any]]

MAX_SETTINGS_ENTRIES = 5
MAX_SETTING_KEY_LENGTH = 64


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_setting_key(index: Union[int, str]) -> str:
    """Map an integer or string settings index onto its stored string key."""

    if isinstance(index, bool) or not isinstance(index, (int, str)):
        raise ValueError("settings index must be a string or an integer")
    key = str(index).strip()
    if not key:
        raise ValueError("settings index must not be blank")
    if len(key) > MAX_SETTING_KEY_LENGTH:
        raise ValueError(
            f"settings index must be at most {MAX_SETTING_KEY_LENGTH} characters"
        )
    return key


def is_structured_value(value: Any) -> bool:
    return isinstance(value, (dict, list))


def settings_violation(
    settings: Dict[str, Any], max_entries: int = MAX_SETTINGS_ENTRIES
) -> Optional[str]:
    """Return a description of why ``settings`` breaks the map invariant, if it does."""

    if len(settings) > max_entries:
        return f"settings can contain at most {max_entries} entries"
    for key, value in settings.items():
        if not is_structured_value(value):
            return f"setting {key!r} must be an object or an array"
    return None


@dataclass
class User:
    id: str
    email: str
    full_name: str
    avatar_url: Optional[str] = None
    settings: Dict[str, SettingValue] = field(default_factory=dict)
    max_connections: int = 20
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class Session:
    id: str
    user_id: str
    token: str
    created_at: datetime
    expires_at: datetime

    @classmethod
    def new(
        cls,
        user_id: str,
        token: str,
        ttl_days: int = 30,
        *,
        now: Optional[datetime] = None,
    ) -> "Session":
        created = now or utcnow()
        return cls(
            id=str(uuid.uuid4()),
            user_id=user_id,
            token=token,
            created_at=created,
            expires_at=created + timedelta(days=ttl_days),
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.expires_at <= (now or utcnow())
