from datetime import datetime
from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from conversai.api_utils import api_success, format_social_account
from conversai.db import crud, crud_accounts
from conversai.db.models import PLATFORMS, SocialAccount, User
from conversai.deps import get_current_user, get_db

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/social/accounts", tags=["social-accounts"])


class AccountBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    platform: Optional[str] = None
    account_id: Optional[str] = Field(None, alias="accountId")
    account_name: Optional[str] = Field(None, alias="accountName")
    display_name: Optional[str] = Field(None, alias="displayName")
    username: Optional[str] = None
    account_type: str = Field("PERSONAL", alias="accountType")
    access_token: Optional[str] = Field(None, alias="accessToken")
    refresh_token: Optional[str] = Field(None, alias="refreshToken")
    expires_at: Optional[datetime] = Field(None, alias="expiresAt")
    permissions: List[str] = Field(default_factory=list)


class AccountUpdateBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    is_active: bool = Field(alias="isActive")


def _owned_account(db: Session, account_id: int, user: User) -> SocialAccount:
    account = crud_accounts.get_account(db, account_id, user_id=user.id)
    if not account:
        raise HTTPException(404, "Social account not found")
    return account


def ensure_account_capacity(db: Session, user_id: int, needed: int = 1) -> bool:
    limit = crud.get_subscription_limits(crud.get_user_tier(db, user_id))["accounts"]
    return limit == -1 or crud_accounts.count_active_accounts(db, user_id) + needed <= limit


@router.get("")
def list_accounts(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    accounts = crud_accounts.list_accounts(db, user.id)
    return api_success({"accounts": [format_social_account(a) for a in accounts]})


@router.post("")
def connect_account(body: AccountBody, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    if not (body.platform and body.account_id and body.account_name and body.access_token):
        raise HTTPException(400, "Missing required fields")
    platform = body.platform.upper()
    if platform not in PLATFORMS:
        raise HTTPException(400, f"Unsupported platform: {body.platform}")

    existing = crud_accounts.find_account(db, user.id, platform, body.account_id)
    # reconnecting an active account does not consume a slot
    if not (existing and existing.is_active) and not ensure_account_capacity(db, user.id):
        raise HTTPException(403, "Account limit reached for your subscription tier")

    expires_in = None
    if body.expires_at:
        expires_in = max(int((body.expires_at.replace(tzinfo=None) - datetime.utcnow()).total_seconds()), 1)
    account = crud_accounts.upsert_social_account(
        db,
        user_id=user.id,
        platform=platform,
        account_id=body.account_id,
        account_name=body.account_name,
        access_token=body.access_token,
        refresh_token=body.refresh_token,
        expires_in=expires_in,
        display_name=body.display_name,
        username=body.username,
        account_type=body.account_type,
        permissions=body.permissions,
    )
    logger.info("social_account_saved", account_id=account.id, platform=platform)
    return api_success({"account": format_social_account(account)})


@router.get("/{account_id}")
def get_account(account_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return api_success({"account": format_social_account(_owned_account(db, account_id, user))})


@router.put("/{account_id}")
def update_account(account_id: int, body: AccountUpdateBody, user: User = Depends(get_current_user),
                   db: Session = Depends(get_db)):
    account = _owned_account(db, account_id, user)
    if body.is_active and not account.is_active and not ensure_account_capacity(db, user.id):
        raise HTTPException(403, "Account limit reached for your subscription tier")
    account = crud_accounts.set_active(db, account, body.is_active)
    return api_success({"account": format_social_account(account)})


@router.delete("/{account_id}")
def delete_account(account_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    account = _owned_account(db, account_id, user)
    crud_accounts.delete_account(db, account)
    logger.info("social_account_deleted", account_id=account_id)
    return api_success({"message": "Social account disconnected successfully"})
