from __future__ import annotations
import logging
import secrets
import time
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from . import config
from .crud import upsert_user, get_user
from .db import get_session
from .identity import IdentityProvider, IdentityProviderError, generate_pkce_pair, get_identity_provider
from .models_api import LocalLoginRequest
from .session import SESSION_KEY, SessionState

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Authentication"])

_LOGIN_STATE_KEY = "oidc_login"
LOCAL_PROFILE_IMAGE_URL = "https://github.com/shadcn.png"


class Unauthorized(HTTPException):
    def __init__(self, detail: str = "Unauthorized"):
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


class SessionExpired(Unauthorized):
    def __init__(self):
        super().__init__(detail="Session expired")


def admit(
    state: Optional[SessionState],
    provider: Optional[IdentityProvider],
    now: Optional[float] = None,
) -> SessionState:
    """Decide whether a request's principal is let through.

    Returns the state to use for the rest of the request: the same one when
    it is still valid, a new one after a successful refresh. At most one
    refresh is attempted; any failure ends in SessionExpired.
    """
    if state is None:
        raise Unauthorized()

    now = int(time.time()) if now is None else int(now)
    if not state.is_expired(now):
        return state

    if state.refresh_token and provider is not None:
        try:
            tokens = provider.refresh(state.refresh_token)
            refreshed = SessionState.from_tokens(tokens, previous=state)
        except (IdentityProviderError, ValueError) as e:
            logger.warning("Token refresh failed for %s: %s", state.user_id, e)
        else:
            logger.info("Token refreshed for %s, expires_at=%s", refreshed.user_id, refreshed.expires_at)
            return refreshed

    raise SessionExpired()


def require_session(
    request: Request,
    provider: Optional[IdentityProvider] = Depends(get_identity_provider),
) -> SessionState:
    state = SessionState.from_session(request.session)
    admitted = admit(state, provider)
    if admitted is not state:
        admitted.store(request.session)
    request.state.session_state = admitted
    return admitted


def _start_session(request: Request, db: Session, state: SessionState) -> None:
    claims = dict(state.claims)
    claims.setdefault("sub", state.user_id)
    upsert_user(db, claims)
    request.session.clear()
    state.store(request.session)
    logger.info("Login: %s", state.user_id)


@router.get("/login")
def login(request: Request, provider: Optional[IdentityProvider] = Depends(get_identity_provider)):
    if provider is None:
        return {"mode": "local", "message": "POST /api/login with {\"email\", \"password\"}"}

    verifier, challenge = generate_pkce_pair()
    login_state = secrets.token_urlsafe(24)
    request.session[_LOGIN_STATE_KEY] = {"state": login_state, "verifier": verifier}
    redirect_uri = str(request.url_for("callback"))
    try:
        url = provider.authorization_url(redirect_uri, login_state, challenge)
    except IdentityProviderError as e:
        logger.error("OIDC discovery failed: %s", e)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Identity provider unavailable")
    return RedirectResponse(url, status_code=status.HTTP_302_FOUND)


@router.post("/login")
def local_login(
    req: LocalLoginRequest,
    request: Request,
    db: Session = Depends(get_session),
    provider: Optional[IdentityProvider] = Depends(get_identity_provider),
):
    """Development login: any email is accepted when no provider is configured."""
    if provider is not None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")

    email = req.email.strip().lower()
    state = SessionState(
        user_id=email,
        claims={
            "sub": email,
            "email": email,
            "first_name": email.split("@")[0],
            "last_name": "User",
            "profile_image_url": LOCAL_PROFILE_IMAGE_URL,
        },
        expires_at=int(time.time()) + config.LOCAL_SESSION_TTL_SECONDS,
    )
    _start_session(request, db, state)
    return {"userId": state.user_id, "expiresAt": state.expires_at}


@router.get("/callback", name="callback")
def callback(
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    db: Session = Depends(get_session),
    provider: Optional[IdentityProvider] = Depends(get_identity_provider),
):
    if provider is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")

    pending = request.session.pop(_LOGIN_STATE_KEY, None) or {}
    expected = pending.get("state")
    if not code or not state or not expected or not secrets.compare_digest(state, expected):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid login state")

    try:
        tokens = provider.exchange_code(code, str(request.url_for("callback")), pending.get("verifier", ""))
        session_state = SessionState.from_tokens(tokens)
    except (IdentityProviderError, ValueError) as e:
        logger.warning("Code exchange failed: %s", e)
        raise Unauthorized("Login failed")

    _start_session(request, db, session_state)
    return RedirectResponse("/", status_code=status.HTTP_302_FOUND)


@router.get("/logout")
def logout(request: Request, provider: Optional[IdentityProvider] = Depends(get_identity_provider)):
    had_session = SESSION_KEY in request.session
    request.session.clear()
    target = "/"
    if provider is not None and had_session:
        try:
            target = provider.end_session_url(str(request.base_url).rstrip("/")) or "/"
        except IdentityProviderError as e:
            logger.warning("Could not build end-session URL: %s", e)
    return RedirectResponse(target, status_code=status.HTTP_302_FOUND)


@router.get("/auth/user")
def current_user(session: SessionState = Depends(require_session), db: Session = Depends(get_session)):
    user = get_user(db, session.user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return {
        "id": user.id,
        "email": user.email,
        "firstName": user.first_name,
        "lastName": user.last_name,
        "profileImageUrl": user.profile_image_url,
        "createdAt": user.created_at.isoformat() if user.created_at else None,
    }
