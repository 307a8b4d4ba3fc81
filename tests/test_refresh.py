from datetime import datetime, timedelta
from unittest.mock import patch

import httpx

from conversai.db import crud_accounts
from conversai.services import token_manager
from conversai.services.platform_errors import PlatformError


def _expire(db, account):
    account.expires_at = datetime.utcnow() - timedelta(minutes=5)
    db.commit()


def test_valid_token_is_returned_without_refresh(db, user, make_account):
    account = make_account(user, "TWITTER", expires_in=3600)
    with patch("conversai.services.twitter_api.refresh_access_token") as mock_refresh:
        result = token_manager.validate_and_refresh(db, account)
    assert result.is_valid
    assert result.access_token == "twitter-access"
    mock_refresh.assert_not_called()


def test_missing_account_needs_reconnection(db):
    result = token_manager.validate_and_refresh(db, None)
    assert result.to_dict() == {
        "isValid": False,
        "error": "Account not found or inactive",
        "needsReconnection": True,
    }


@patch("conversai.services.linkedin_api.exchange_refresh_for_token")
def test_refresh_happy_path(mock_exchange, db, user, make_account):
    account = make_account(user, "LINKEDIN", refresh_token="li-refresh", expires_in=60)
    _expire(db, account)
    mock_exchange.return_value = {
        "access_token": "new_access",
        "expires_in": 3600,
        "refresh_token": "new_refresh",
    }

    result = token_manager.validate_and_refresh(db, account)

    assert result.is_valid
    assert result.access_token == "new_access"
    mock_exchange.assert_called_once_with("li-refresh")
    assert crud_accounts.get_access_token(account) == "new_access"
    assert crud_accounts.get_refresh_token(account) == "new_refresh"
    assert account.expires_at > datetime.utcnow()


def test_expired_without_refresh_token_deactivates(db, user, make_account):
    account = make_account(user, "TWITTER", expires_in=60)
    _expire(db, account)

    result = token_manager.validate_and_refresh(db, account)

    assert not result.is_valid
    assert result.error == "Token expired and no refresh token available"
    assert result.needs_reconnection
    db.refresh(account)
    assert account.is_active is False


@patch("conversai.services.youtube_api.refresh_access_token", side_effect=PlatformError("invalid_grant"))
def test_refresh_failure_is_reported(mock_refresh, db, user, make_account):
    account = make_account(user, "YOUTUBE", refresh_token="yt-refresh", expires_in=60)
    _expire(db, account)

    result = token_manager.validate_and_refresh(db, account)

    assert result.error == "Token refresh failed: invalid_grant"
    assert result.needs_reconnection
    db.refresh(account)
    assert account.is_active is False


@patch("conversai.services.twitter_api.refresh_access_token", side_effect=httpx.ConnectError("boom"))
def test_refresh_transport_error_is_reported(mock_refresh, db, user, make_account):
    account = make_account(user, "TWITTER", refresh_token="tw-refresh", expires_in=60)
    _expire(db, account)
    result = token_manager.validate_and_refresh(db, account)
    assert result.error.startswith("Token refresh failed:")


@patch("conversai.services.instagram_api.refresh_access_token")
def test_instagram_refreshes_with_its_access_token(mock_refresh, db, user, make_account):
    account = make_account(user, "INSTAGRAM", access_token="ig-long-lived", expires_in=60)
    _expire(db, account)
    mock_refresh.return_value = {"access_token": "ig-renewed", "expires_in": 5184000}

    result = token_manager.validate_and_refresh(db, account)

    assert result.access_token == "ig-renewed"
    mock_refresh.assert_called_once_with("ig-long-lived")


def test_force_refresh_ignores_expiry(db, user, make_account):
    account = make_account(user, "TWITTER", refresh_token="tw-refresh", expires_in=3600)
    with patch("conversai.services.twitter_api.refresh_access_token",
               return_value={"access_token": "forced", "expires_in": 7200}):
        result = token_manager.validate_and_refresh(db, account, force_refresh=True)
    assert result.access_token == "forced"


def test_facebook_tokens_cannot_be_refreshed(db, user, make_account):
    account = make_account(user, "FACEBOOK", refresh_token="fb", expires_in=60)
    _expire(db, account)
    result = token_manager.validate_and_refresh(db, account)
    assert result.error == "Token refresh failed: Token refresh is not supported for FACEBOOK"


def test_validate_all_user_tokens_skips_inactive(db, user, make_account):
    make_account(user, "TWITTER", expires_in=3600)
    inactive = make_account(user, "LINKEDIN")
    crud_accounts.deactivate_account(db, inactive)

    results = token_manager.validate_all_user_tokens(db, user.id)
    assert [r["platform"] for r in results] == ["TWITTER"]
    assert results[0]["isValid"] is True


def test_get_valid_token_by_account_id(db, user, make_account):
    account = make_account(user, "YOUTUBE", expires_in=3600)
    assert token_manager.get_valid_token(db, account.id) == "youtube-access"
    assert token_manager.get_valid_token(db, 9999) is None
