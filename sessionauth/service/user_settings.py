from __future__ import annotations

from typing import Any, Callable, Dict, Optional, Protocol, Union

from sessionauth.logging import get_logger
from sessionauth.service.errors import NotFoundError, SettingsFullError, ValidationError
from sessionauth.storage.errors import ConstraintViolation
from sessionauth.storage.models import (
    MAX_SETTINGS_ENTRIES,
    SettingValue,
    User,
    is_structured_value,
    normalize_setting_key,
)

logger = get_logger(__name__)

SettingIndex = Union[int, str]


class SettingsStore(Protocol):
    def get_user(self, user_id: str) -> Optional[User]: ...

    def modify_user_settings(
        self,
        user_id: str,
        mutate: Callable[[Dict[str, Any]], Dict[str, Any]],
    ) -> Optional[User]: ...


def _key(index: SettingIndex) -> str:
    try:
        return normalize_setting_key(index)
    except ValueError as exc:
        raise ValidationError(str(exc), detail={"field": "index"}) from exc


class UserSettingsService:
    """Bounded per-user settings map keyed by a short string index."""

    def __init__(
        self, store: SettingsStore, *, max_entries: int = MAX_SETTINGS_ENTRIES
    ) -> None:
        self.store = store
        self.max_entries = min(max_entries, MAX_SETTINGS_ENTRIES)

    def get(
        self, user_id: str, index: Optional[SettingIndex] = None
    ) -> Union[Dict[str, SettingValue], SettingValue]:
        user = self._require_user(user_id)
        if index is None:
            return dict(user.settings)
        key = _key(index)
        if key not in user.settings:
            raise NotFoundError("setting not found", detail={"index": key})
        return user.settings[key]

    def set(self, user_id: str, index: SettingIndex, value: Any) -> Dict[str, SettingValue]:
        key = _key(index)
        if not is_structured_value(value):
            raise ValidationError(
                "setting value must be an object or an array",
                detail={"field": "updatedSetting"},
            )

        def _apply(settings: Dict[str, Any]) -> Dict[str, Any]:
            # overwriting an existing key never counts against capacity
            if key not in settings and len(settings) >= self.max_entries:
                raise SettingsFullError(
                    f"settings can hold at most {self.max_entries} entries",
                    detail={"max_entries": self.max_entries},
                )
            settings[key] = value
            return settings

        user = self._modify(user_id, _apply)
        logger.info("setting_saved", user_id=user_id, index=key, entries=len(user.settings))
        return dict(user.settings)

    def delete(self, user_id: str, index: SettingIndex) -> Dict[str, SettingValue]:
        key = _key(index)

        def _apply(settings: Dict[str, Any]) -> Dict[str, Any]:
            settings.pop(key, None)
            return settings

        user = self._modify(user_id, _apply)
        logger.info("setting_deleted", user_id=user_id, index=key)
        return dict(user.settings)

    def _modify(self, user_id: str, mutate: Callable[[Dict[str, Any]], Dict[str, Any]]) -> User:
        try:
            user = self.store.modify_user_settings(user_id, mutate)
        except ConstraintViolation as exc:
            raise ValidationError(exc.message, detail=exc.detail) from exc
        if not user:
            raise NotFoundError("user not found")
        return user

    def _require_user(self, user_id: str) -> User:
        user = self.store.get_user(user_id)
        if not user:
            raise NotFoundError("user not found")
        return user
