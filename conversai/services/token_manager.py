# conversai/services/token_manager.py
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
import structlog
from cryptography.fernet import InvalidToken
from sqlalchemy.orm import Session

from conversai.db import crud_accounts
from conversai.db.models import SocialAccount
from conversai.services import instagram_api, linkedin_api, twitter_api, youtube_api
from conversai.services.platform_errors import PlatformError

logger = structlog.get_logger(__name__)

REFRESH_ERRORS = (PlatformError, httpx.HTTPError, InvalidToken, KeyError, ValueError)


@dataclass
class TokenValidation:
    is_valid: bool
    access_token: Optional[str] = None
    error: Optional[str] = None
    needs_reconnection: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"isValid": self.is_valid, "error": self.error, "needsReconnection": self.needs_reconnection}


def _refresh_credential(account: SocialAccount) -> Optional[str]:
    # Instagram long-lived tokens refresh themselves; there is no separate refresh token
    if account.platform == "INSTAGRAM":
        return crud_accounts.get_access_token(account)
    return crud_accounts.get_refresh_token(account)


def refresh_platform_token(platform: str, credential: str) -> Dict[str, Any]:
    if platform == "TWITTER":
        return twitter_api.refresh_access_token(credential)
    if platform == "LINKEDIN":
        return linkedin_api.exchange_refresh_for_token(credential)
    if platform == "YOUTUBE":
        return youtube_api.refresh_access_token(credential)
    if platform == "INSTAGRAM":
        return instagram_api.refresh_access_token(credential)
    raise PlatformError(f"Token refresh is not supported for {platform}")


def validate_and_refresh(db: Session, account: Optional[SocialAccount], force_refresh: bool = False) -> TokenValidation:
    """Return a usable access token for the account, refreshing it when it has expired."""
    if account is None or not account.is_active:
        return TokenValidation(False, error="Account not found or inactive", needs_reconnection=True)

    if not force_refresh and not crud_accounts.is_token_expired(account):
        try:
            return TokenValidation(True, access_token=crud_accounts.get_access_token(account))
        except InvalidToken:
            return TokenValidation(False, error="Stored token could not be decrypted", needs_reconnection=True)

    try:
        credential = _refresh_credential(account)
    except InvalidToken:
        credential = None
    if not credential:
        crud_accounts.deactivate_account(db, account)
        logger.warning("token_expired_no_refresh", account_id=account.id, platform=account.platform)
        return TokenValidation(False, error="Token expired and no refresh token available", needs_reconnection=True)

    try:
        data = refresh_platform_token(account.platform, credential)
        crud_accounts.update_tokens(
            db, account,
            access_token=data["access_token"],
            expires_in=data.get("expires_in"),
            refresh_token=data.get("refresh_token"),
        )
    except REFRESH_ERRORS as e:
        crud_accounts.deactivate_account(db, account)
        logger.warning("token_refresh_failed", account_id=account.id, platform=account.platform, error=str(e))
        return TokenValidation(False, error=f"Token refresh failed: {e}", needs_reconnection=True)

    logger.info("token_refreshed", account_id=account.id, platform=account.platform)
    return TokenValidation(True, access_token=data["access_token"])


def get_valid_token(db: Session, account_id: int) -> Optional[str]:
    result = validate_and_refresh(db, crud_accounts.get_account(db, account_id))
    return result.access_token if result.is_valid else None


def validate_all_user_tokens(db: Session, user_id: int) -> List[Dict[str, Any]]:
    results = []
    for account in crud_accounts.list_accounts(db, user_id):
        if not account.is_active:
            continue
        result = validate_and_refresh(db, account)
        results.append({
            "accountId": account.id,
            "platform": account.platform,
            "accountName": account.account_name,
            **result.to_dict(),
        })
    return results
