# conversai/services/analytics.py
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import structlog
from sqlalchemy.orm import Session

from conversai.db import crud, crud_accounts
from conversai.db.models import Post, PostAnalytics, PostPublication, SocialAccount
from conversai.services import instagram_api, linkedin_api, token_manager, twitter_api, youtube_api
from conversai.services.platform_errors import PlatformError

logger = structlog.get_logger(__name__)

LOOKBACK_DAYS = 30
TOP_POSTS = 5

METRIC_FETCHERS: Dict[str, Callable[[str, str], Dict[str, Any]]] = {
    "TWITTER": lambda token, pid: twitter_api.get_tweet_metrics(token, pid),
    "LINKEDIN": lambda token, pid: linkedin_api.get_social_actions(token, pid),
    "INSTAGRAM": lambda token, pid: instagram_api.get_media_metrics(token, pid),
    "YOUTUBE": lambda token, pid: youtube_api.get_video_metrics(token, pid),
}


def calculate_engagement_rate(likes: int, comments: int, shares: int, impressions: int) -> float:
    """(likes + comments + shares) / impressions as a percentage; 0 when nothing was seen."""
    if not impressions:
        return 0.0
    return (likes + comments + shares) / impressions * 100


def format_analytics(row: PostAnalytics) -> Dict[str, Any]:
    return {
        "id": row.id,
        "postId": row.post_id,
        "platform": row.platform,
        "impressions": row.impressions,
        "likes": row.likes,
        "comments": row.comments,
        "shares": row.shares,
        "clicks": row.clicks,
        "saves": row.saves,
        "reach": row.reach,
        "engagementRate": round(row.engagement_rate or 0.0, 2),
        "updatedAt": row.updated_at.isoformat() if row.updated_at else None,
    }


# --- fetching ---

def fetch_publication_analytics(db: Session, pub: PostPublication) -> Optional[PostAnalytics]:
    account = pub.social_account
    fetcher = METRIC_FETCHERS.get(account.platform) if account else None
    if fetcher is None or not pub.platform_post_id:
        return None
    validation = token_manager.validate_and_refresh(db, account)
    if not validation.is_valid:
        raise PlatformError(f"Account needs reconnection: {validation.error}")

    metrics = fetcher(validation.access_token, pub.platform_post_id)
    if "engagement_rate" not in metrics:
        metrics["engagement_rate"] = calculate_engagement_rate(
            metrics.get("likes", 0), metrics.get("comments", 0),
            metrics.get("shares", 0), metrics.get("impressions", 0),
        )
    return crud.upsert_post_analytics(db, pub.post_id, account.platform, metrics)


def fetch_all_user_analytics(db: Session, user_id: int, now: Optional[datetime] = None) -> List[PostAnalytics]:
    since = (now or datetime.utcnow()) - timedelta(days=LOOKBACK_DAYS)
    publications = (
        db.query(PostPublication)
        .join(Post, PostPublication.post_id == Post.id)
        .filter(
            Post.user_id == user_id,
            PostPublication.status == "PUBLISHED",
            PostPublication.platform_post_id.isnot(None),
            PostPublication.published_at >= since,
        )
        .all()
    )
    rows: List[PostAnalytics] = []
    for pub in publications:
        try:
            row = fetch_publication_analytics(db, pub)
        except Exception as e:  # a failing publication is skipped, the rest still refresh
            db.rollback()
            logger.warning("analytics_fetch_failed", publication_id=pub.id, error=str(e) or type(e).__name__)
            continue
        if row is not None:
            rows.append(row)
    logger.info("user_analytics_fetched", user_id=user_id, publications=len(publications), stored=len(rows))
    return rows


def refresh_all_analytics(db: Session) -> Dict[str, Any]:
    users = crud.active_account_user_ids(db)
    stored, failed = 0, 0
    for user_id in users:
        try:
            stored += len(fetch_all_user_analytics(db, user_id))
        except Exception as e:  # one user's failure must not stop the batch
            db.rollback()
            failed += 1
            logger.exception("user_analytics_refresh_failed", user_id=user_id, error=str(e))
    return {"status": "ok", "users": len(users), "analytics": stored, "failedUsers": failed}


# --- dashboards ---

def resolve_range(period: int = 30, start_date: Optional[datetime] = None,
                  end_date: Optional[datetime] = None, now: Optional[datetime] = None) -> tuple[datetime, datetime]:
    now = now or datetime.utcnow()
    if start_date and end_date:
        end = end_date.replace(hour=23, minute=59, second=59, microsecond=999999)
        return start_date, end
    return now - timedelta(days=period), now


def _published_posts(db: Session, user_id: int, start: datetime, end: datetime,
                     platform: Optional[str] = None) -> List[Post]:
    q = db.query(Post).filter(
        Post.user_id == user_id,
        Post.published_at.isnot(None),
        Post.published_at >= start,
        Post.published_at <= end,
    )
    if platform:
        q = q.filter(Post.publications.any(
            PostPublication.social_account.has(SocialAccount.platform == platform)))
    return q.order_by(Post.published_at.desc()).all()


def _rows_for(posts: List[Post], platform: Optional[str] = None) -> List[PostAnalytics]:
    return [a for p in posts for a in p.analytics if platform is None or a.platform == platform]


def _totals(rows: List[PostAnalytics]) -> Dict[str, int]:
    totals = defaultdict(int)
    for r in rows:
        totals["impressions"] += r.impressions or 0
        totals["likes"] += r.likes or 0
        totals["comments"] += r.comments or 0
        totals["shares"] += r.shares or 0
        totals["clicks"] += r.clicks or 0
        totals["saves"] += r.saves or 0
        totals["reach"] += r.reach or 0
    return totals


def _post_summary(post: Post, platform: Optional[str] = None) -> Dict[str, Any]:
    totals = _totals(_rows_for([post], platform))
    return {
        "id": post.id,
        "content": post.content or "",
        "publishedAt": post.published_at.isoformat() if post.published_at else None,
        "platforms": sorted({pub.social_account.platform for pub in post.publications if pub.social_account}),
        "metrics": {
            "impressions": totals["impressions"],
            "likes": totals["likes"],
            "comments": totals["comments"],
            "shares": totals["shares"],
            "clicks": totals["clicks"],
            "engagementRate": round(calculate_engagement_rate(
                totals["likes"], totals["comments"], totals["shares"], totals["impressions"]), 2),
        },
    }


def get_overview(db: Session, user_id: int, period: int = 30, start_date: Optional[datetime] = None,
                 end_date: Optional[datetime] = None, platform: Optional[str] = None,
                 now: Optional[datetime] = None) -> Dict[str, Any]:
    start, end = resolve_range(period, start_date, end_date, now)
    days = max(1, (end.date() - start.date()).days + 1) if start_date and end_date else period
    accounts = [a for a in crud_accounts.list_accounts(db, user_id) if a.is_active]
    if platform:
        accounts = [a for a in accounts if a.platform == platform]

    posts = _published_posts(db, user_id, start, end, platform)
    rows = _rows_for(posts, platform)
    totals = _totals(rows)
    rate = calculate_engagement_rate(totals["likes"], totals["comments"], totals["shares"], totals["impressions"])

    by_platform: Dict[str, int] = defaultdict(int)
    for post in posts:
        for name in {pub.social_account.platform for pub in post.publications
                     if pub.status == "PUBLISHED" and pub.social_account}:
            by_platform[name] += 1

    daily = []
    last_day = end.date()
    for offset in range(days - 1, -1, -1):
        day = last_day - timedelta(days=offset)
        day_posts = [p for p in posts if p.published_at.date() == day]
        day_totals = _totals(_rows_for(day_posts, platform))
        daily.append({
            "date": day.isoformat(),
            "posts": len(day_posts),
            "impressions": day_totals["impressions"],
            "engagement": day_totals["likes"] + day_totals["comments"] + day_totals["shares"],
        })

    performance = []
    for account in accounts:
        account_rows = _rows_for(posts, account.platform)
        account_totals = _totals(account_rows)
        performance.append({
            "platform": account.platform,
            "username": account.account_name,
            "posts": by_platform.get(account.platform, 0),
            "avgEngagement": f"{calculate_engagement_rate(account_totals['likes'], account_totals['comments'], account_totals['shares'], account_totals['impressions']):.2f}",
            "totalReach": account_totals["reach"],
            "isConnected": account.is_connected,
        })

    return {
        "overview": {
            "totalPosts": len(posts),
            "totalImpressions": totals["impressions"],
            "totalLikes": totals["likes"],
            "totalComments": totals["comments"],
            "totalShares": totals["shares"],
            "totalClicks": totals["clicks"],
            "totalSaves": totals["saves"],
            "totalReach": totals["reach"],
            "engagementRate": f"{rate:.2f}",
            "period": period,
            "startDate": start.isoformat(),
            "endDate": end.isoformat(),
        },
        "postsByPlatform": [
            {"platform": a.platform, "username": a.account_name, "count": by_platform.get(a.platform, 0)}
            for a in accounts
        ],
        "topPosts": [_post_summary(p, platform) for p in posts[:TOP_POSTS]],
        "dailyAnalytics": daily,
        "platformPerformance": performance,
    }


def get_platform_analytics(db: Session, user_id: int, platform: str, period: int = 30,
                           now: Optional[datetime] = None) -> Dict[str, Any]:
    start, end = resolve_range(period, now=now)
    posts = _published_posts(db, user_id, start, end, platform)
    totals = _totals(_rows_for(posts, platform))
    accounts = [a for a in crud_accounts.list_accounts(db, user_id) if a.platform == platform and a.is_active]
    return {
        "platform": platform,
        "period": period,
        "accounts": [{"id": a.id, "accountName": a.account_name, "username": a.username} for a in accounts],
        "metrics": {
            "totalPosts": len(posts),
            "impressions": totals["impressions"],
            "likes": totals["likes"],
            "comments": totals["comments"],
            "shares": totals["shares"],
            "clicks": totals["clicks"],
            "saves": totals["saves"],
            "reach": totals["reach"],
            "engagementRate": f"{calculate_engagement_rate(totals['likes'], totals['comments'], totals['shares'], totals['impressions']):.2f}",
        },
        "posts": [_post_summary(p, platform) for p in posts],
    }
