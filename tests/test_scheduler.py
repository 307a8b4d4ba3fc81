from datetime import datetime, timedelta
from unittest.mock import patch

from conversai.db.models import Post
from conversai.services import scheduler


def _due(db, post):
    post.status = "SCHEDULED"
    post.scheduled_at = datetime.utcnow() - timedelta(minutes=1)
    db.commit()


def test_no_due_posts(db):
    assert scheduler.process_scheduled_posts() == {"status": "no-due-posts", "processed": 0}


def test_due_post_is_published(db, user, make_account, make_post, monkeypatch):
    post = make_post(user, [make_account(user, "TWITTER")])
    _due(db, post)
    monkeypatch.setattr("conversai.services.twitter_api.post_tweet", lambda *a, **kw: "tweet-9")

    result = scheduler.process_scheduled_posts()

    assert result["status"] == "processed"
    assert result["posts"] == [{"post_id": post.id, "status": "PUBLISHED", "succeeded": 1, "total": 1}]
    db.expire_all()
    stored = db.get(Post, post.id)
    assert stored.status == "PUBLISHED"
    assert stored.publications[0].platform_post_id == "tweet-9"


def test_future_post_is_left_alone(db, user, make_account, make_post):
    post = make_post(user, [make_account(user, "TWITTER")], status="SCHEDULED",
                     scheduled_at=datetime.utcnow() + timedelta(hours=1))
    assert scheduler.process_scheduled_posts()["processed"] == 0
    db.expire_all()
    assert db.get(Post, post.id).status == "SCHEDULED"


def test_unexpected_error_marks_post_failed(db, user, make_account, make_post):
    post = make_post(user, [make_account(user, "TWITTER")])
    _due(db, post)

    with patch("conversai.services.publisher.publish_post", side_effect=RuntimeError("db went away")):
        result = scheduler.process_scheduled_posts()

    assert result["posts"][0]["status"] == "FAILED"
    assert result["posts"][0]["error"] == "db went away"
    db.expire_all()
    assert db.get(Post, post.id).status == "FAILED"


def test_cleanup_removes_old_published_posts(db, user, make_account, make_post):
    account = make_account(user, "TWITTER")
    old = make_post(user, [account], status="PUBLISHED", published_at=datetime.utcnow() - timedelta(days=45))
    recent = make_post(user, [account], status="PUBLISHED", published_at=datetime.utcnow() - timedelta(days=2))

    old_id, recent_id = old.id, recent.id

    assert scheduler.cleanup_old_posts()["deleted"] == 1
    db.expire_all()
    assert db.query(Post).filter_by(id=old_id).first() is None
    assert db.query(Post).filter_by(id=recent_id).first() is not None


def test_start_and_stop_scheduler():
    try:
        assert scheduler.start_scheduler()["status"] == "started"
        assert scheduler.start_scheduler()["status"] == "already-running"
        status = scheduler.scheduler_status()
        assert status["running"] is True
        assert {j["id"] for j in status["jobs"]} == {
            "process_scheduled_posts", "cleanup_old_posts", "refresh_all_analytics",
        }
    finally:
        assert scheduler.stop_scheduler()["status"] == "stopped"
    assert scheduler.scheduler_status() == {"running": False, "jobs": []}


def test_scheduler_api_is_owner_only(client, auth_headers, owner_headers):
    resp = client.get("/api/scheduler/status", headers=auth_headers)
    assert resp.status_code == 403
    assert resp.json()["error"] == {"message": "App owner access required", "code": "APP_OWNER_ACCESS_REQUIRED"}

    resp = client.post("/api/scheduler/run", headers=owner_headers)
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "no-due-posts"
