# conversai/routers/social_connect.py
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlencode

import anyio.from_thread
import httpx
import structlog
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse
from jose import JWTError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from conversai.api_utils import api_success
from conversai.auth.oidc import decode_linkedin_id_token
from conversai.auth.security import create_oauth_state, read_oauth_state
from conversai.config import settings
from conversai.db import crud_accounts
from conversai.db.models import User
from conversai.deps import get_current_user, get_db
from conversai.routers.social_accounts import ensure_account_capacity
from conversai.services import facebook_api, instagram_api, linkedin_api, twitter_api, youtube_api
from conversai.services.platform_errors import PlatformError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/social", tags=["social-connect"])


def _configured(platform: str) -> bool:
    return {
        "twitter": bool(settings.twitter_client_id and settings.twitter_client_secret),
        "linkedin": bool(settings.linkedin_client_id and settings.linkedin_client_secret),
        "instagram": bool(settings.instagram_client_id and settings.instagram_client_secret),
        "youtube": bool(settings.google_client_id and settings.google_client_secret),
        "facebook": bool(settings.facebook_app_id and settings.facebook_app_secret),
    }[platform]


# --- per-platform code exchange: each returns the accounts to store ---

def _twitter_accounts(code: str, claims: Dict[str, Any]) -> List[Dict[str, Any]]:
    verifier = claims.get("cv")
    if not verifier:
        raise PlatformError("Missing PKCE verifier in OAuth state")
    token = twitter_api.exchange_code_for_token(code, verifier)
    user = twitter_api.get_user(token["access_token"])
    return [{
        "platform": "TWITTER",
        "account_id": str(user["id"]),
        "account_name": user.get("name") or user.get("username"),
        "username": user.get("username"),
        "access_token": token["access_token"],
        "refresh_token": token.get("refresh_token"),
        "expires_in": token.get("expires_in"),
        "permissions": (token.get("scope") or twitter_api.SCOPES).split(),
        "metadata": {"profileImageUrl": user.get("profile_image_url")},
    }]


def _linkedin_accounts(code: str, claims: Dict[str, Any]) -> List[Dict[str, Any]]:
    token = linkedin_api.exchange_code_for_token(code)
    access_token = token["access_token"]
    userinfo = linkedin_api.get_userinfo(access_token)

    member_id = userinfo.get("sub", "")
    id_token = token.get("id_token")
    if id_token:
        # callback runs in a worker thread; the verifier is async
        verified = anyio.from_thread.run(decode_linkedin_id_token, id_token, settings.linkedin_client_id)
        member_id = verified.get("sub") or member_id
    if not member_id:
        raise PlatformError("LinkedIn did not return a member id")

    return [{
        "platform": "LINKEDIN",
        "account_id": member_id,
        "account_name": userinfo.get("name") or userinfo.get("email") or member_id,
        "username": userinfo.get("email"),
        "access_token": access_token,
        "refresh_token": token.get("refresh_token"),
        "expires_in": token.get("expires_in"),
        "permissions": (token.get("scope") or settings.linkedin_scopes).replace(",", " ").split(),
        "metadata": {"picture": userinfo.get("picture")},
    }]


def _instagram_accounts(code: str, claims: Dict[str, Any]) -> List[Dict[str, Any]]:
    token = instagram_api.exchange_code_for_token(code)
    profile = instagram_api.get_user(token["access_token"])
    return [{
        "platform": "INSTAGRAM",
        "account_id": str(profile.get("id") or token.get("user_id")),
        "account_name": profile.get("username"),
        "username": profile.get("username"),
        "account_type": profile.get("account_type") or "BUSINESS",
        "access_token": token["access_token"],
        "expires_in": token.get("expires_in"),
        "permissions": instagram_api.SCOPES.split(","),
        "metadata": {"mediaCount": profile.get("media_count")},
    }]


def _youtube_accounts(code: str, claims: Dict[str, Any]) -> List[Dict[str, Any]]:
    token = youtube_api.exchange_code_for_token(code)
    channel = youtube_api.get_channel(token["access_token"])
    snippet = channel.get("snippet", {})
    return [{
        "platform": "YOUTUBE",
        "account_id": channel["id"],
        "account_name": snippet.get("title") or channel["id"],
        "username": snippet.get("customUrl"),
        "account_type": "BUSINESS",
        "access_token": token["access_token"],
        "refresh_token": token.get("refresh_token"),
        "expires_in": token.get("expires_in"),
        "permissions": youtube_api.SCOPES.split(),
    }]


def _facebook_accounts(code: str, claims: Dict[str, Any]) -> List[Dict[str, Any]]:
    # the first managed Page becomes a BUSINESS account holding its page token
    token = facebook_api.exchange_code_for_token(code)
    pages = [p for p in facebook_api.get_pages(token["access_token"]) if p.get("access_token")]
    if not pages:
        raise PlatformError("No Facebook Pages found. A Page you manage is required for publishing.")
    page = pages[0]
    return [{
        "platform": "FACEBOOK",
        "account_id": str(page["id"]),
        "account_name": page.get("name") or str(page["id"]),
        "account_type": "BUSINESS",
        "access_token": page["access_token"],
        "permissions": page.get("tasks") or [],
        "metadata": {"category": page.get("category"), "availablePages": len(pages)},
    }]


CONNECTORS: Dict[str, Callable[[str, Dict[str, Any]], List[Dict[str, Any]]]] = {
    "twitter": _twitter_accounts,
    "linkedin": _linkedin_accounts,
    "instagram": _instagram_accounts,
    "youtube": _youtube_accounts,
    "facebook": _facebook_accounts,
}


def _integrations_redirect(**params: str) -> RedirectResponse:
    return RedirectResponse(f"{settings.app_url.rstrip('/')}/integrations?{urlencode(params)}", status_code=302)


def constraint_message(exc: IntegrityError, account_id: Optional[str]) -> str:
    text = str(exc.orig).upper()
    if "UNIQUE" in text or "DUPLICATE" in text:
        return f"Account with ID {account_id} already exists for this user"
    if "FOREIGN KEY" in text:
        return "Invalid user ID or database constraint violation"
    return "Database constraint violation"


def _platform_key(platform: str) -> str:
    key = platform.lower()
    if key not in CONNECTORS:
        raise HTTPException(404, f"Unsupported platform: {platform}")
    return key


@router.get("/{platform}/connect")
def connect(platform: str, user: User = Depends(get_current_user)):
    key = _platform_key(platform)
    if not _configured(key):
        raise HTTPException(500, f"{key.capitalize()} OAuth is not configured")

    if key == "twitter":
        verifier = twitter_api.new_code_verifier()
        url = twitter_api.auth_url(create_oauth_state(user.id, key.upper(), verifier), verifier)
    else:
        state = create_oauth_state(user.id, key.upper())
        url = {
            "linkedin": linkedin_api.auth_url,
            "instagram": instagram_api.auth_url,
            "youtube": youtube_api.auth_url,
            "facebook": facebook_api.auth_url,
        }[key](state)
    logger.info("oauth_connect_started", platform=key, user_id=user.id)
    return api_success({"authUrl": url})


@router.get("/{platform}/callback")
def callback(
    platform: str,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    error_description: Optional[str] = None,
    db: Session = Depends(get_db),
):
    key = _platform_key(platform)
    if error:
        logger.warning("oauth_provider_error", platform=key, error=error, description=error_description)
        return _integrations_redirect(error=f"{key}_oauth_failed")
    if not code or not state:
        return _integrations_redirect(error="missing_code")
    try:
        claims = read_oauth_state(state, key.upper())
        user_id = int(claims["sub"])
    except (JWTError, KeyError, ValueError):
        return _integrations_redirect(error="invalid_state")

    current_id: Optional[str] = None
    try:
        profiles = CONNECTORS[key](code, claims)

        new_ones = 0
        for profile in profiles:
            existing = crud_accounts.find_account(db, user_id, profile["platform"], profile["account_id"])
            if not (existing and existing.is_active):
                new_ones += 1
        if new_ones and not ensure_account_capacity(db, user_id, needed=new_ones):
            return _integrations_redirect(error="account_limit_reached")

        for profile in profiles:
            current_id = profile["account_id"]
            crud_accounts.upsert_social_account(db, user_id=user_id, **profile)
    except IntegrityError as e:
        db.rollback()
        message = constraint_message(e, current_id)
        logger.error("oauth_account_save_failed", platform=key, user_id=user_id, error=message)
        return _integrations_redirect(error=f"{key}_connection_failed", message=message)
    except (PlatformError, httpx.HTTPError, JWTError, KeyError, ValueError) as e:
        logger.error("oauth_callback_failed", platform=key, user_id=user_id, error=str(e))
        return _integrations_redirect(error=f"{key}_connection_failed")

    logger.info("oauth_account_connected", platform=key, user_id=user_id, accounts=len(profiles))
    return _integrations_redirect(success=f"{key}_connected")
