from datetime import datetime, timedelta
from unittest.mock import patch

from conversai.db import crud
from conversai.db.models import Post, UsageTracking
from conversai.services.platform_errors import PlatformError


def test_create_post_requires_an_account(client, auth_headers):
    resp = client.post("/api/posts", json={"content": "hi", "socialAccountIds": []}, headers=auth_headers)
    assert resp.status_code == 400
    assert "At least one social account must be selected" in resp.json()["error"]["message"]


def test_create_post_requires_content_or_media(client, user, auth_headers, make_account):
    account = make_account(user, "TWITTER")
    resp = client.post("/api/posts", json={"content": "  ", "socialAccountIds": [account.id]}, headers=auth_headers)
    assert resp.status_code == 400
    assert "Post must have either text content, video, or image" in resp.json()["error"]["message"]


def test_create_draft_post(client, db, user, auth_headers, make_account):
    twitter = make_account(user, "TWITTER")
    linkedin = make_account(user, "LINKEDIN")
    resp = client.post("/api/posts", headers=auth_headers, json={
        "content": "Launch day",
        "hashtags": ["#launch"],
        "images": ["https://cdn.example.com/a.png", "https://cdn.example.com/b.png"],
        "socialAccountIds": [twitter.id, linkedin.id],
    })
    assert resp.status_code == 201
    post = resp.json()["data"]["post"]
    assert post["status"] == "DRAFT"
    assert post["imageUrl"] == "https://cdn.example.com/a.png"
    assert post["hashtags"] == ["#launch"]
    assert [p["status"] for p in post["publications"]] == ["PENDING", "PENDING"]

    now = datetime.utcnow()
    assert crud.get_usage(db, user.id, now.month, now.year).posts_used == 1


def test_create_scheduled_post(client, user, auth_headers, make_account):
    account = make_account(user, "TWITTER")
    when = (datetime.utcnow() + timedelta(hours=2)).isoformat() + "Z"
    resp = client.post("/api/posts", headers=auth_headers,
                       json={"content": "Later", "socialAccountIds": [account.id], "scheduledAt": when})
    assert resp.status_code == 201
    assert resp.json()["data"]["post"]["status"] == "SCHEDULED"

    upcoming = client.get("/api/posts/scheduled", headers=auth_headers)
    assert upcoming.status_code == 200
    assert len(upcoming.json()["data"]["posts"]) == 1


def test_create_post_rejects_foreign_account(client, db, auth_headers, make_account):
    other = crud.create_user(db, "mallory@example.com", "Mallory", "x")
    foreign = make_account(other, "TWITTER")
    resp = client.post("/api/posts", headers=auth_headers, json={"content": "hi", "socialAccountIds": [foreign.id]})
    assert resp.status_code == 400
    assert resp.json()["error"]["message"] == "One or more selected social accounts are invalid or inactive"


def test_create_post_monthly_limit(client, db, user, auth_headers, make_account):
    account = make_account(user, "TWITTER")
    now = datetime.utcnow()
    db.add(UsageTracking(user_id=user.id, month=now.month, year=now.year, posts_used=50))
    db.commit()
    resp = client.post("/api/posts", headers=auth_headers, json={"content": "hi", "socialAccountIds": [account.id]})
    assert resp.status_code == 403
    assert resp.json()["error"]["message"] == "Monthly post limit reached. Please upgrade your subscription."


def test_list_posts_paginates(client, user, auth_headers, make_account, make_post):
    account = make_account(user, "TWITTER")
    for i in range(3):
        make_post(user, [account], content=f"post {i}")
    resp = client.get("/api/posts?page=2&limit=2", headers=auth_headers)
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["pagination"] == {"page": 2, "limit": 2, "total": 3, "pages": 2}
    assert len(data["posts"]) == 1


def test_get_post_not_found_and_foreign(client, db, user, auth_headers, make_account, make_post):
    assert client.get("/api/posts/999", headers=auth_headers).json()["error"]["message"] == "Post not found"

    other = crud.create_user(db, "eve@example.com", "Eve", "x")
    post = make_post(other, [make_account(other, "TWITTER")])
    for method, path, body in [
        ("GET", f"/api/posts/{post.id}", None),
        ("PUT", f"/api/posts/{post.id}", {"content": "Hijacked"}),
        ("DELETE", f"/api/posts/{post.id}", None),
        ("POST", f"/api/posts/{post.id}/publish", None),
        ("POST", f"/api/posts/{post.id}/schedule", {"scheduledAt": "2099-01-01T10:00:00Z"}),
        ("DELETE", f"/api/posts/{post.id}/schedule", None),
    ]:
        resp = client.request(method, path, headers=auth_headers, json=body)
        assert resp.status_code == 404, (method, path)
        assert resp.json()["error"]["message"] == "Post not found"

    db.refresh(post)
    assert post.content == "Hello world"


def test_update_and_delete_post(client, db, user, auth_headers, make_account, make_post):
    twitter = make_account(user, "TWITTER")
    linkedin = make_account(user, "LINKEDIN")
    post = make_post(user, [twitter])

    resp = client.put(f"/api/posts/{post.id}", headers=auth_headers,
                      json={"content": "Edited", "socialAccountIds": [linkedin.id]})
    assert resp.status_code == 200
    updated = resp.json()["data"]["post"]
    assert updated["content"] == "Edited"
    assert [p["socialAccount"]["platform"] for p in updated["publications"]] == ["LINKEDIN"]

    resp = client.delete(f"/api/posts/{post.id}", headers=auth_headers)
    assert resp.json()["data"]["message"] == "Post deleted successfully"
    db.expire_all()
    assert db.query(Post).count() == 0


@patch("conversai.services.linkedin_api.post_to_linkedin", return_value="urn:li:share:1")
@patch("conversai.services.twitter_api.post_tweet", return_value="1790")
def test_publish_all_platforms(mock_tweet, mock_linkedin, client, user, auth_headers, make_account, make_post):
    post = make_post(user, [make_account(user, "TWITTER"), make_account(user, "LINKEDIN")],
                     hashtags='["#a", "#b"]')
    resp = client.post(f"/api/posts/{post.id}/publish", headers=auth_headers)
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["message"] == "Post published successfully to all 2 platforms"
    assert data["post"]["status"] == "PUBLISHED"
    assert mock_tweet.call_args.args[1] == "Hello world\n\n#a #b"

    again = client.post(f"/api/posts/{post.id}/publish", headers=auth_headers)
    assert again.status_code == 400
    assert again.json()["error"]["message"] == "Post is already published"


@patch("conversai.services.linkedin_api.post_to_linkedin", side_effect=PlatformError("LinkedIn is down"))
@patch("conversai.services.twitter_api.post_tweet", return_value="1790")
def test_publish_partial_failure(mock_tweet, mock_linkedin, client, user, auth_headers, make_account, make_post):
    post = make_post(user, [make_account(user, "TWITTER"), make_account(user, "LINKEDIN")])
    resp = client.post(f"/api/posts/{post.id}/publish", headers=auth_headers)
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["message"] == "Post published with errors: 1/2 platforms succeeded"
    assert data["hasWarnings"] is True
    assert data["needsReconnection"] is False
    failed = [p for p in data["post"]["publications"] if p["status"] == "FAILED"]
    assert failed[0]["errorMessage"] == "LinkedIn is down"


def test_publish_all_failed_hints_reconnection(client, db, user, auth_headers, make_account, make_post):
    account = make_account(user, "TWITTER")
    account.expires_at = datetime.utcnow() - timedelta(hours=1)
    db.commit()
    post = make_post(user, [account])

    resp = client.post(f"/api/posts/{post.id}/publish", headers=auth_headers)
    assert resp.status_code == 400
    error = resp.json()["error"]
    assert error["code"] == "PUBLISH_FAILED"
    assert error["message"] == ("Post publishing failed on all platforms. "
                                "The following platforms need reconnection: TWITTER")
    assert error["details"]["successCount"] == 0


def test_schedule_and_cancel(client, user, auth_headers, make_account, make_post):
    post = make_post(user, [make_account(user, "TWITTER")])

    past = (datetime.utcnow() - timedelta(minutes=5)).isoformat()
    resp = client.post(f"/api/posts/{post.id}/schedule", headers=auth_headers, json={"scheduledAt": past})
    assert resp.status_code == 400
    assert resp.json()["error"]["message"] == "Scheduled time must be in the future"

    future = (datetime.utcnow() + timedelta(days=1)).isoformat()
    resp = client.post(f"/api/posts/{post.id}/schedule", headers=auth_headers, json={"scheduledAt": future})
    assert resp.status_code == 200
    assert resp.json()["data"]["post"]["status"] == "SCHEDULED"

    resp = client.delete(f"/api/posts/{post.id}/schedule", headers=auth_headers)
    assert resp.status_code == 200
    assert resp.json()["data"]["post"]["status"] == "DRAFT"
    assert resp.json()["data"]["post"]["scheduledAt"] is None


def test_cannot_schedule_published_post(client, user, auth_headers, make_account, make_post):
    post = make_post(user, [make_account(user, "TWITTER")], status="PUBLISHED")
    future = (datetime.utcnow() + timedelta(days=1)).isoformat()
    resp = client.post(f"/api/posts/{post.id}/schedule", headers=auth_headers, json={"scheduledAt": future})
    assert resp.status_code == 400
    assert resp.json()["error"]["message"] == "Cannot schedule an already published post"
