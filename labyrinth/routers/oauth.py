# labyrinth/routers/oauth.py
import logging
import secrets
from dataclasses import dataclass
from typing import Annotated, Optional, Tuple
from urllib.parse import urlencode

import httpx
from fastapi import APIRouter, Cookie, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from ..clients import http_link
from ..config import Settings, get_settings
from ..database import get_db
from ..models import Users
from .auth import create_access_token, set_session_cookie

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth/oauth", tags=["auth"])

db_link = Annotated[Session, Depends(get_db)]
settings_link = Annotated[Settings, Depends(get_settings)]

STATE_COOKIE = "oauth_state"
ACCOUNT_EXISTS = "An account with this email already exists. Please sign in with the original provider."


@dataclass(frozen=True)
class OAuthProvider:
    name: str
    authorize_url: str
    token_url: str
    userinfo_url: str
    scope: str
    emails_url: Optional[str] = None
    verified_claim: Optional[str] = None


PROVIDERS = {
    "github": OAuthProvider(
        name="github",
        authorize_url="https://github.com/login/oauth/authorize",
        token_url="https://github.com/login/oauth/access_token",
        userinfo_url="https://api.github.com/user",
        scope="read:user user:email",
        emails_url="https://api.github.com/user/emails",
    ),
    "google": OAuthProvider(
        name="google",
        authorize_url="https://accounts.google.com/o/oauth2/v2/auth",
        token_url="https://oauth2.googleapis.com/token",
        userinfo_url="https://openidconnect.googleapis.com/v1/userinfo",
        scope="openid email profile",
        verified_claim="email_verified",
    ),
}


class OAuthError(RuntimeError):
    pass


def _provider(name: str, settings: Settings) -> Tuple[OAuthProvider, Tuple[str, str]]:
    provider = PROVIDERS.get(name)
    credentials = settings.oauth_credentials(name)
    if provider is None or credentials is None:
        raise HTTPException(status_code=404, detail=f"OAuth provider {name} is not enabled")
    return provider, credentials


def _callback_url(request: Request, provider: str) -> str:
    return str(request.url_for("oauth_callback", provider=provider))


async def exchange_code(http: httpx.AsyncClient, provider: OAuthProvider, credentials: Tuple[str, str],
                        code: str, redirect_uri: str) -> str:
    client_id, client_secret = credentials
    response = await http.post(
        provider.token_url,
        data={
            "client_id": client_id,
            "client_secret": client_secret,
            "code": code,
            "redirect_uri": redirect_uri,
            "grant_type": "authorization_code",
        },
        headers={"Accept": "application/json"},
    )
    response.raise_for_status()
    token = response.json().get("access_token")
    if not token:
        raise OAuthError(f"{provider.name} did not return an access token")
    return token


async def fetch_profile(http: httpx.AsyncClient, provider: OAuthProvider, access_token: str) -> Tuple[str, Optional[str]]:
    """Return (email, display name) for the signed-in provider account."""
    headers = {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}
    response = await http.get(provider.userinfo_url, headers=headers)
    response.raise_for_status()
    profile = response.json()
    email = profile.get("email")
    name = profile.get("name") or profile.get("login")
    if email and provider.verified_claim and profile.get(provider.verified_claim) is not True:
        raise OAuthError(f"{provider.name} email {email} is not verified")

    # GitHub leaves email empty when the address is private
    if not email and provider.emails_url:
        response = await http.get(provider.emails_url, headers=headers)
        response.raise_for_status()
        verified = [e for e in response.json() if e.get("verified")]
        primary = next((e for e in verified if e.get("primary")), verified[0] if verified else None)
        email = primary and primary.get("email")

    if not email:
        raise OAuthError(f"{provider.name} account has no verified email")
    return email.strip().lower(), name


def link_oauth_user(db: Session, email: str, name: Optional[str]) -> Users:
    user = db.query(Users).filter(Users.email == email).first()
    if user is None:
        user = Users(name=name, email=email, hashed_password=None, is_active=True)
        db.add(user)
        db.commit()
        db.refresh(user)
        logger.info("Created OAuth account for %s", email)
        return user
    if user.hashed_password:
        # password accounts are not linked to a provider
        raise HTTPException(status_code=409, detail=ACCOUNT_EXISTS)
    if not user.is_active:
        raise HTTPException(status_code=401, detail="User not found")
    return user


@router.get("/{provider}/login")
def oauth_login(provider: str, request: Request, settings: settings_link):
    oauth, (client_id, _) = _provider(provider, settings)
    state = secrets.token_urlsafe(16)
    query = urlencode({
        "client_id": client_id,
        "redirect_uri": _callback_url(request, provider),
        "response_type": "code",
        "scope": oauth.scope,
        "state": state,
    })
    response = RedirectResponse(f"{oauth.authorize_url}?{query}", status_code=302)
    response.set_cookie(STATE_COOKIE, state, httponly=True, max_age=600, samesite="lax")
    return response


@router.get("/{provider}/callback", name="oauth_callback")
async def oauth_callback(
    provider: str,
    request: Request,
    db: db_link,
    http: http_link,
    settings: settings_link,
    code: Optional[str] = None,
    state: Optional[str] = None,
    expected_state: Annotated[Optional[str], Cookie(alias=STATE_COOKIE)] = None,
):
    oauth, credentials = _provider(provider, settings)
    if not code or not state or not expected_state or not secrets.compare_digest(state, expected_state):
        raise HTTPException(status_code=400, detail="Invalid OAuth state")

    try:
        access_token = await exchange_code(http, oauth, credentials, code, _callback_url(request, provider))
        email, name = await fetch_profile(http, oauth, access_token)
    except (httpx.HTTPError, ValueError, OAuthError) as e:
        logger.error("OAuth sign-in with %s failed: %s", provider, e)
        raise HTTPException(status_code=502, detail="OAuth sign-in failed")

    user = await run_in_threadpool(link_oauth_user, db, email, name)
    token = create_access_token(settings, email=user.email, user_id=user.id)

    response = RedirectResponse(settings.app_base_url, status_code=303)
    set_session_cookie(response, token, settings)
    response.delete_cookie(STATE_COOKIE)
    return response
