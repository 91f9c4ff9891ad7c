from __future__ import annotations

import re
import unicodedata
from datetime import datetime
from typing import Any, Dict, List, Optional, Union
from urllib.parse import urlparse
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, field_validator

from sessionauth.storage.models import normalize_setting_key

# Maximum nested JSON depth accepted inside a settings value
MAX_JSON_DEPTH = 20
MAX_ARRAY_ITEMS = 1000


def _validate_json_depth(obj: Any, max_depth: int = MAX_JSON_DEPTH, current_depth: int = 0) -> None:
    """Reject values nested deeper than ``max_depth`` or with oversized arrays.

    Raises:
        ValueError: If depth or array length exceeds the limits
    """
    if current_depth > max_depth:
        raise ValueError(f"JSON nesting depth exceeds maximum of {max_depth}")

    if isinstance(obj, dict):
        for value in obj.values():
            _validate_json_depth(value, max_depth, current_depth + 1)
    elif isinstance(obj, list):
        if len(obj) > MAX_ARRAY_ITEMS:
            raise ValueError(f"Array length {len(obj)} exceeds maximum of {MAX_ARRAY_ITEMS}")
        for item in obj:
            _validate_json_depth(item, max_depth, current_depth + 1)


_VALID_ERROR_CODES = frozenset({
    "unauthorized",
    "forbidden",
    "not_found",
    "validation_error",
    "invalid_credentials",
    "settings_full",
    "conflict",
    "server_error",
})


class ErrorBody(BaseModel):
    """Error envelope body with a stable code value."""

    code: str
    message: str
    details: Optional[Any] = None  # object, array, or null

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: str(uuid4()))


_EMAIL_LOCAL_PART = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+$")
_EMAIL_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")


def _validate_email(value: str) -> str:
    normalized = unicodedata.normalize("NFKC", value.strip().lower())
    if len(normalized) > 254:
        raise ValueError("email address too long")
    local, sep, domain = normalized.partition("@")
    if not sep or not local or not domain:
        raise ValueError("invalid email address")
    if len(local) > 64 or not _EMAIL_LOCAL_PART.match(local):
        raise ValueError("invalid email address format")
    domain_parts = domain.split(".")
    if len(domain_parts) < 2:
        raise ValueError("invalid email address format")
    for label in domain_parts:
        if len(label) > 63 or not _EMAIL_DOMAIN_LABEL.match(label):
            raise ValueError("invalid email address format")
    return normalized


def _validate_avatar_url(value: Optional[str]) -> Optional[str]:
    if value is None or not value.strip():
        return None
    parsed = urlparse(value.strip())
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError("avatarUrl must be an http(s) URL")
    return value.strip()


SettingIndex = Union[StrictInt, StrictStr]


def _validate_index(value: Optional[SettingIndex]) -> Optional[str]:
    if value is None:
        return None
    return normalize_setting_key(value)


class RegisterRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: str
    password: str = Field(..., min_length=5, max_length=128)
    full_name: str = Field(..., alias="fullName", min_length=2, max_length=128)
    avatar_url: Optional[str] = Field(default=None, alias="avatarUrl", max_length=2048)

    @field_validator("email")
    @classmethod
    def _validate_register_email(cls, value: str) -> str:
        return _validate_email(value)

    @field_validator("full_name")
    @classmethod
    def _strip_full_name(cls, value: str) -> str:
        stripped = value.strip()
        if len(stripped) < 2:
            raise ValueError("fullName must be at least 2 characters")
        return stripped

    @field_validator("avatar_url")
    @classmethod
    def _validate_avatar(cls, value: Optional[str]) -> Optional[str]:
        return _validate_avatar_url(value)


class LoginRequest(BaseModel):
    email: str
    password: str = Field(..., min_length=1, max_length=128)

    @field_validator("email")
    @classmethod
    def _validate_login_email(cls, value: str) -> str:
        return _validate_email(value)


class SaveSettingRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    index: SettingIndex
    updated_setting: Union[Dict[str, Any], List[Any]] = Field(..., alias="updatedSetting")

    @field_validator("index")
    @classmethod
    def _normalize_index(cls, value: SettingIndex) -> str:
        return _validate_index(value)

    @field_validator("updated_setting")
    @classmethod
    def _validate_setting_value(cls, value: Union[Dict[str, Any], List[Any]]):
        _validate_json_depth(value)
        return value


class GetSettingsRequest(BaseModel):
    index: Optional[SettingIndex] = None

    @field_validator("index")
    @classmethod
    def _normalize_index(cls, value: Optional[SettingIndex]) -> Optional[str]:
        return _validate_index(value)


class DeleteSettingRequest(BaseModel):
    index: SettingIndex

    @field_validator("index")
    @classmethod
    def _normalize_index(cls, value: SettingIndex) -> str:
        return _validate_index(value)


class UserResponse(BaseModel):
    id: str
    email: str
    full_name: str
    avatar_url: Optional[str] = None
    settings: Dict[str, Any] = Field(default_factory=dict)
    max_connections: int
    connections: Optional[int] = None
    created_at: datetime


class AuthResponse(BaseModel):
    user: UserResponse
    token: str
    session_id: str
    session_expires_at: datetime


class LogoutResponse(BaseModel):
    success: bool = True
    message: str


class LogoutAllResponse(BaseModel):
    revoked: int


class SessionSummaryResponse(BaseModel):
    sessions: int
    max_connections: int


class SettingsOwner(BaseModel):
    id: str
    settings: Dict[str, Any]


class SaveSettingResponse(BaseModel):
    user: SettingsOwner
