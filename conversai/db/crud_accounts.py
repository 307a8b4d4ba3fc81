# conversai/db/crud_accounts.py
import json
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from conversai.db import token_crypto
from conversai.db.crud import parse_json_object
from conversai.db.models import SocialAccount


def list_accounts(db: Session, user_id: int) -> list[SocialAccount]:
    return (
        db.query(SocialAccount)
        .filter(SocialAccount.user_id == user_id)
        .order_by(SocialAccount.platform.asc(), SocialAccount.created_at.desc(), SocialAccount.id.desc())
        .all()
    )


def get_account(db: Session, account_id: int, user_id: Optional[int] = None) -> Optional[SocialAccount]:
    q = db.query(SocialAccount).filter(SocialAccount.id == account_id)
    if user_id is not None:
        q = q.filter(SocialAccount.user_id == user_id)
    return q.first()


def get_active_accounts_by_ids(db: Session, user_id: int, account_ids: list[int]) -> list[SocialAccount]:
    return (
        db.query(SocialAccount)
        .filter(
            SocialAccount.id.in_(account_ids),
            SocialAccount.user_id == user_id,
            SocialAccount.is_active.is_(True),
        )
        .all()
    )


def count_active_accounts(db: Session, user_id: int) -> int:
    return (
        db.query(SocialAccount)
        .filter(SocialAccount.user_id == user_id, SocialAccount.is_active.is_(True))
        .count()
    )


def find_account(db: Session, user_id: int, platform: str, account_id: str) -> Optional[SocialAccount]:
    return (
        db.query(SocialAccount)
        .filter(
            SocialAccount.user_id == user_id,
            SocialAccount.platform == platform,
            SocialAccount.account_id == account_id,
        )
        .first()
    )


def _expiry(expires_in: Optional[int]) -> Optional[datetime]:
    if not expires_in:
        return None
    return datetime.utcnow() + timedelta(seconds=int(expires_in))


def upsert_social_account(
    db: Session,
    user_id: int,
    platform: str,
    account_id: str,
    account_name: str,
    access_token: str,
    refresh_token: Optional[str] = None,
    expires_in: Optional[int] = None,
    display_name: Optional[str] = None,
    username: Optional[str] = None,
    account_type: str = "PERSONAL",
    permissions: Optional[list] = None,
    metadata: Optional[dict] = None,
) -> SocialAccount:
    """Create or refresh the (user, platform, account_id) row; tokens are stored encrypted."""
    row = find_account(db, user_id, platform, account_id)
    if row is None:
        row = SocialAccount(user_id=user_id, platform=platform, account_id=account_id)
        db.add(row)
    row.account_name = account_name
    row.display_name = display_name or account_name
    row.username = username
    row.account_type = account_type
    row.access_token_encrypted = token_crypto.encrypt_token(access_token)
    if refresh_token:
        row.refresh_token_encrypted = token_crypto.encrypt_token(refresh_token)
    row.expires_at = _expiry(expires_in)
    if permissions is not None:
        row.permissions = json.dumps(permissions)
    if metadata is not None:
        merged = parse_json_object(row.metadata_json)
        merged.update(metadata)
        row.metadata_json = json.dumps(merged)
    row.is_active = True
    row.is_connected = True
    db.commit()
    db.refresh(row)
    return row


def is_token_expired(account: SocialAccount, seconds: int = 0) -> bool:
    return bool(account.expires_at and (account.expires_at - datetime.utcnow()).total_seconds() < seconds)


def get_access_token(account: SocialAccount) -> str:
    return token_crypto.decrypt_token(account.access_token_encrypted)


def get_refresh_token(account: SocialAccount) -> Optional[str]:
    if not account.refresh_token_encrypted:
        return None
    return token_crypto.decrypt_token(account.refresh_token_encrypted)


def account_metadata(account: SocialAccount) -> dict:
    return parse_json_object(account.metadata_json)


def update_tokens(
    db: Session,
    account: SocialAccount,
    access_token: str,
    expires_in: Optional[int] = None,
    refresh_token: Optional[str] = None,
) -> SocialAccount:
    account.access_token_encrypted = token_crypto.encrypt_token(access_token)
    if refresh_token:
        account.refresh_token_encrypted = token_crypto.encrypt_token(refresh_token)
    account.expires_at = _expiry(expires_in)
    account.is_active = True
    db.add(account)
    db.commit()
    db.refresh(account)
    return account


def deactivate_account(db: Session, account: SocialAccount) -> None:
    account.is_active = False
    db.add(account)
    db.commit()


def set_active(db: Session, account: SocialAccount, is_active: bool) -> SocialAccount:
    account.is_active = is_active
    db.add(account)
    db.commit()
    db.refresh(account)
    return account


def delete_account(db: Session, account: SocialAccount) -> None:
    db.delete(account)
    db.commit()
