from conversai.db import crud_accounts
from conversai.db.models import SocialAccount


def test_list_accounts_never_returns_tokens(client, user, auth_headers, make_account):
    make_account(user, "TWITTER", refresh_token="secret-refresh")
    make_account(user, "LINKEDIN")

    resp = client.get("/api/social/accounts", headers=auth_headers)

    assert resp.status_code == 200
    accounts = resp.json()["data"]["accounts"]
    assert [a["platform"] for a in accounts] == ["LINKEDIN", "TWITTER"]
    assert all(a["hasValidTokens"] for a in accounts)
    assert "twitter-access" not in resp.text
    assert "secret-refresh" not in resp.text


def test_manual_upsert_requires_fields(client, auth_headers):
    resp = client.post("/api/social/accounts", headers=auth_headers, json={"platform": "TWITTER"})
    assert resp.status_code == 400
    assert resp.json()["error"]["message"] == "Missing required fields"


def test_manual_upsert_encrypts_and_updates(client, db, user, auth_headers):
    body = {"platform": "twitter", "accountId": "42", "accountName": "@alice", "accessToken": "tok-1"}
    first = client.post("/api/social/accounts", headers=auth_headers, json=body)
    assert first.status_code == 200
    second = client.post("/api/social/accounts", headers=auth_headers, json={**body, "accessToken": "tok-2"})
    assert second.json()["data"]["account"]["id"] == first.json()["data"]["account"]["id"]

    row = db.query(SocialAccount).one()
    assert row.platform == "TWITTER"
    assert row.access_token_encrypted != "tok-2"
    assert crud_accounts.get_access_token(row) == "tok-2"


def test_account_limit_reached(client, user, auth_headers, make_account):
    for platform in ("TWITTER", "LINKEDIN", "INSTAGRAM"):
        make_account(user, platform)
    resp = client.post("/api/social/accounts", headers=auth_headers, json={
        "platform": "YOUTUBE", "accountId": "UC1", "accountName": "Channel", "accessToken": "t",
    })
    assert resp.status_code == 403
    assert resp.json()["error"]["message"] == "Account limit reached for your subscription tier"


def test_toggle_and_disconnect(client, db, user, auth_headers, make_account):
    account = make_account(user, "TWITTER")

    resp = client.put(f"/api/social/accounts/{account.id}", headers=auth_headers, json={"isActive": False})
    assert resp.json()["data"]["account"]["isActive"] is False

    resp = client.delete(f"/api/social/accounts/{account.id}", headers=auth_headers)
    assert resp.json()["data"]["message"] == "Social account disconnected successfully"

    resp = client.get(f"/api/social/accounts/{account.id}", headers=auth_headers)
    assert resp.status_code == 404
    assert resp.json()["error"]["message"] == "Social account not found"
