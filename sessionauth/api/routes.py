from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException

from sessionauth.api.schemas import (
    AuthResponse,
    DeleteSettingRequest,
    Envelope,
    GetSettingsRequest,
    LoginRequest,
    LogoutAllResponse,
    LogoutResponse,
    RegisterRequest,
    SaveSettingRequest,
    SaveSettingResponse,
    SessionSummaryResponse,
    SettingsOwner,
    UserResponse,
)
from sessionauth.config import get_settings
from sessionauth.logging import get_logger
from sessionauth.service.auth import AuthContext
from sessionauth.service.runtime import get_runtime
from sessionauth.storage.models import Session, User

logger = get_logger(__name__)

router = APIRouter()


def _http_error(
    code: str, message: str, status_code: int, details: Optional[dict | str] = None
) -> HTTPException:
    payload: dict[str, object] = {
        "status": "error",
        "error": {"code": code, "message": message},
    }
    if details is not None:
        payload["error"]["details"] = details  # type: ignore[index]
    return HTTPException(status_code=status_code, detail=payload)


def _user_response(user: User, connections: Optional[int] = None) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        full_name=user.full_name,
        avatar_url=user.avatar_url,
        settings=user.settings,
        max_connections=user.max_connections,
        connections=connections,
        created_at=user.created_at,
    )


def _auth_response(user: User, session: Session) -> AuthResponse:
    return AuthResponse(
        user=_user_response(user),
        token=session.token,
        session_id=session.id,
        session_expires_at=session.expires_at,
    )


async def get_user(authorization: Optional[str] = Header(None)) -> AuthContext:
    runtime = get_runtime()
    return await runtime.auth.authenticate(authorization)


@router.get("/healthz", tags=["ops"])
async def healthz():
    return {"status": "ok"}


@router.post("/auth/register", response_model=Envelope, status_code=201, tags=["auth"])
async def register(body: RegisterRequest):
    """Create an account and open its first session.

    Raises:
        403: If registration is disabled in settings
        409: If the email is already registered
    """
    settings = get_settings()
    if not settings.allow_signup:
        raise _http_error("forbidden", "registration disabled", status_code=403)
    runtime = get_runtime()
    user, session = await runtime.auth.register(
        email=body.email,
        password=body.password,
        full_name=body.full_name,
        avatar_url=body.avatar_url,
    )
    return Envelope(status="ok", data=_auth_response(user, session))


@router.post("/auth/login", response_model=Envelope, tags=["auth"])
async def login(body: LoginRequest):
    """Authenticate with email and password.

    When the account is already at its session limit the oldest session is
    closed to make room, so a correct password always yields a new token.
    """
    runtime = get_runtime()
    user, session = await runtime.auth.login(email=body.email, password=body.password)
    return Envelope(status="ok", data=_auth_response(user, session))


@router.get("/auth/logout", response_model=Envelope, tags=["auth"])
async def logout(principal: AuthContext = Depends(get_user)):
    runtime = get_runtime()
    await runtime.auth.logout(principal)
    return Envelope(
        status="ok",
        data=LogoutResponse(success=True, message="logged out"),
    )


@router.post("/auth/logout-all", response_model=Envelope, tags=["auth"])
async def logout_all(principal: AuthContext = Depends(get_user)):
    runtime = get_runtime()
    revoked = await runtime.auth.logout_all(principal)
    return Envelope(status="ok", data=LogoutAllResponse(revoked=revoked))


@router.get("/auth/sessions", response_model=Envelope, tags=["auth"])
async def session_summary(principal: AuthContext = Depends(get_user)):
    runtime = get_runtime()
    summary = await runtime.auth.session_summary(principal)
    return Envelope(status="ok", data=SessionSummaryResponse(**summary))


@router.get("/auth/me", response_model=Envelope, tags=["auth"])
async def me(principal: AuthContext = Depends(get_user)):
    runtime = get_runtime()
    user, connections = await runtime.auth.me(principal)
    return Envelope(status="ok", data=_user_response(user, connections))


@router.post("/save-settings", response_model=Envelope, tags=["settings"])
async def save_setting(
    body: SaveSettingRequest, principal: AuthContext = Depends(get_user)
):
    runtime = get_runtime()
    settings = runtime.user_settings.set(
        principal.user_id, body.index, body.updated_setting
    )
    return Envelope(
        status="ok",
        data=SaveSettingResponse(
            user=SettingsOwner(id=principal.user_id, settings=settings)
        ),
    )


@router.post("/get-settings", response_model=Envelope, tags=["settings"])
async def get_settings_entry(
    body: Optional[GetSettingsRequest] = Body(default=None),
    principal: AuthContext = Depends(get_user),
):
    """Return the whole settings map, or one entry when ``index`` is given."""
    runtime = get_runtime()
    index = body.index if body else None
    return Envelope(status="ok", data=runtime.user_settings.get(principal.user_id, index))


@router.post("/delete-settings", response_model=Envelope, tags=["settings"])
async def delete_setting(
    body: DeleteSettingRequest, principal: AuthContext = Depends(get_user)
):
    runtime = get_runtime()
    settings = runtime.user_settings.delete(principal.user_id, body.index)
    return Envelope(status="ok", data=settings)
