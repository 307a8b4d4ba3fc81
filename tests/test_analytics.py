from datetime import datetime, timedelta

import pytest

from conversai.db import crud
from conversai.services import analytics


def _published(db, user, make_account, make_post, platform="TWITTER", platform_post_id="t-1", days_ago=1):
    account = make_account(user, platform)
    when = datetime.utcnow() - timedelta(days=days_ago)
    post = make_post(user, [account], status="PUBLISHED", published_at=when)
    pub = post.publications[0]
    pub.status = "PUBLISHED"
    pub.platform_post_id = platform_post_id
    pub.published_at = when
    db.commit()
    return post


def test_engagement_rate_is_zero_without_impressions():
    assert analytics.calculate_engagement_rate(5, 2, 1, 0) == 0.0
    assert analytics.calculate_engagement_rate(5, 3, 2, 200) == pytest.approx(5.0)


def test_fetch_all_user_analytics_stores_metrics(db, user, make_account, make_post, monkeypatch):
    post = _published(db, user, make_account, make_post)
    monkeypatch.setitem(analytics.METRIC_FETCHERS, "TWITTER",
                        lambda token, pid: {"impressions": 100, "likes": 7, "comments": 2, "shares": 1})

    rows = analytics.fetch_all_user_analytics(db, user.id)

    assert len(rows) == 1
    row = rows[0]
    assert row.post_id == post.id
    assert row.reach == 100
    assert row.engagement_rate == pytest.approx(10.0)


def test_fetch_skips_platforms_without_metrics(db, user, make_account, make_post):
    _published(db, user, make_account, make_post, platform="FACEBOOK", platform_post_id="p_1")
    assert analytics.fetch_all_user_analytics(db, user.id) == []


def test_refresh_endpoint(client, db, user, auth_headers, make_account, make_post, monkeypatch):
    _published(db, user, make_account, make_post)
    monkeypatch.setitem(analytics.METRIC_FETCHERS, "TWITTER",
                        lambda token, pid: {"impressions": 0, "likes": 3, "comments": 0, "shares": 0})

    resp = client.post("/api/analytics/refresh", headers=auth_headers)

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["message"] == "Analytics refreshed successfully"
    assert data["analyticsCount"] == 1
    assert data["analytics"][0]["engagementRate"] == 0.0


def test_overview_totals(client, db, user, auth_headers, make_account, make_post):
    post = _published(db, user, make_account, make_post)
    crud.upsert_post_analytics(db, post.id, "TWITTER", {
        "impressions": 200, "likes": 10, "comments": 6, "shares": 4, "engagement_rate": 10.0,
    })

    resp = client.get("/api/analytics/overview?period=7", headers=auth_headers)

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["overview"]["totalPosts"] == 1
    assert data["overview"]["totalImpressions"] == 200
    assert data["overview"]["engagementRate"] == "10.00"
    assert len(data["dailyAnalytics"]) == 7
    assert data["postsByPlatform"] == [{"platform": "TWITTER", "username": "Twitter account", "count": 1}]


def test_overview_ignores_posts_outside_period(db, user, make_account, make_post):
    _published(db, user, make_account, make_post, days_ago=40)
    data = analytics.get_overview(db, user.id, period=30)
    assert data["overview"]["totalPosts"] == 0
    assert data["overview"]["engagementRate"] == "0.00"


def test_platform_analytics_rejects_unknown_platform(client, auth_headers):
    resp = client.get("/api/analytics/platform/myspace", headers=auth_headers)
    assert resp.status_code == 400


def test_platform_analytics(client, db, user, auth_headers, make_account, make_post):
    post = _published(db, user, make_account, make_post, platform="LINKEDIN", platform_post_id="urn:li:share:1")
    crud.upsert_post_analytics(db, post.id, "LINKEDIN", {"impressions": 50, "likes": 5})

    resp = client.get("/api/analytics/platform/linkedin", headers=auth_headers)

    data = resp.json()["data"]
    assert data["platform"] == "LINKEDIN"
    assert data["metrics"]["totalPosts"] == 1
    assert data["metrics"]["engagementRate"] == "10.00"


def test_fetch_skips_publication_with_unexpected_error(db, user, make_account, make_post, monkeypatch):
    _published(db, user, make_account, make_post, platform="TWITTER", platform_post_id="t-1")
    linkedin_post = _published(db, user, make_account, make_post, platform="LINKEDIN",
                               platform_post_id="urn:li:share:2")

    def odd_payload(token, pid):
        raise TypeError("unexpected payload shape")

    monkeypatch.setitem(analytics.METRIC_FETCHERS, "TWITTER", odd_payload)
    monkeypatch.setitem(analytics.METRIC_FETCHERS, "LINKEDIN",
                        lambda token, pid: {"impressions": 40, "likes": 4})

    rows = analytics.fetch_all_user_analytics(db, user.id)

    assert [r.post_id for r in rows] == [linkedin_post.id]


def test_custom_range_daily_series_includes_both_ends(db, user, make_account, make_post):
    account = make_account(user, "TWITTER")
    make_post(user, [account], status="PUBLISHED", published_at=datetime(2026, 1, 1, 9, 30))
    make_post(user, [account], status="PUBLISHED", published_at=datetime(2026, 1, 3, 18, 0))

    data = analytics.get_overview(db, user.id, start_date=datetime(2026, 1, 1), end_date=datetime(2026, 1, 3))

    daily = data["dailyAnalytics"]
    assert [d["date"] for d in daily] == ["2026-01-01", "2026-01-02", "2026-01-03"]
    assert [d["posts"] for d in daily] == [1, 0, 1]
    assert data["overview"]["totalPosts"] == 2
