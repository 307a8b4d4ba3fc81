# conversai/services/app_owner.py
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from conversai.db.crud import month_start
from conversai.db.models import Post, PostPublication, SocialAccount, Subscription, UsageTracking, User

ACTIVE_WINDOW_DAYS = 30
RECENT_ACTIVITY = 15
RECENT_SIGNUPS = 5


def health_from_success_rate(rate: float) -> str:
    if rate >= 0.95:
        return "excellent"
    if rate >= 0.85:
        return "good"
    if rate >= 0.7:
        return "warning"
    return "critical"


def _grouped(db: Session, column, *filters) -> Dict[str, int]:
    q = db.query(column, func.count()).filter(*filters).group_by(column)
    return {key: count for key, count in q.all() if key is not None}


def _platform_breakdown(db: Session) -> List[Dict[str, Any]]:
    accounts = _grouped(db, SocialAccount.platform, SocialAccount.is_connected.is_(True))
    posts = _grouped(db, Post.platform)
    published = _grouped(db, Post.platform, Post.status == "PUBLISHED")
    failed = _grouped(db, Post.platform, Post.status == "FAILED")
    names = set(accounts) | set(posts) | set(published) | set(failed)
    rows = [
        {
            "platform": name,
            "posts": posts.get(name, 0),
            "published": published.get(name, 0),
            "failed": failed.get(name, 0),
            "accounts": accounts.get(name, 0),
        }
        for name in names
    ]
    return sorted(rows, key=lambda r: (-r["posts"], r["platform"]))


def _publication_activity(pub: PostPublication) -> Dict[str, Any]:
    when = pub.published_at or pub.created_at
    platform = pub.social_account.platform if pub.social_account else "Unknown"
    account = pub.social_account.account_name if pub.social_account else ""
    if pub.status == "PUBLISHED":
        kind, severity = "post_published", "success"
        message = f"Post published to {platform}" + (f" ({account})" if account else "")
    elif pub.status == "FAILED":
        kind, severity = "post_failed", "error"
        message = f"Failed to publish to {platform}" + (f": {pub.error_message}" if pub.error_message else "")
    else:
        kind, severity = "system_alert", "info"
        message = f"Publication status: {pub.status}"
    return {"id": f"pub_{pub.id}", "type": kind, "message": message, "timestamp": when, "severity": severity}


def _recent_activity(db: Session) -> List[Dict[str, Any]]:
    users = db.query(User).order_by(User.created_at.desc(), User.id.desc()).limit(RECENT_SIGNUPS).all()
    pubs = (
        db.query(PostPublication)
        .order_by(func.coalesce(PostPublication.published_at, PostPublication.created_at).desc(),
                  PostPublication.id.desc())
        .limit(RECENT_ACTIVITY)
        .all()
    )
    items = [_publication_activity(p) for p in pubs] + [
        {
            "id": f"user_{u.id}",
            "type": "user_signup",
            "message": f"New user registered: {u.email}",
            "timestamp": u.created_at,
            "severity": "success",
        }
        for u in users
    ]
    items.sort(key=lambda a: a["timestamp"] or datetime.min, reverse=True)
    for item in items:
        item["timestamp"] = item["timestamp"].isoformat() if item["timestamp"] else None
    return items[:RECENT_ACTIVITY]


def get_overview(db: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or datetime.utcnow()
    start = month_start(now)

    published_pubs = db.query(PostPublication).filter(PostPublication.status == "PUBLISHED").count()
    failed_pubs = db.query(PostPublication).filter(PostPublication.status == "FAILED").count()
    total_pubs = published_pubs + failed_pubs
    success_rate = published_pubs / total_pubs if total_pubs > 0 else 1.0

    subs = _grouped(db, Subscription.status)
    usage = (
        db.query(func.coalesce(func.sum(UsageTracking.posts_used), 0))
        .filter(UsageTracking.month == now.month, UsageTracking.year == now.year)
        .scalar()
    )
    active_users = (
        db.query(func.count(func.distinct(Post.user_id)))
        .filter(Post.created_at >= now - timedelta(days=ACTIVE_WINDOW_DAYS))
        .scalar()
    )

    return {
        "totalUsers": db.query(User).count(),
        "activeUsers": active_users or 0,
        "totalPosts": db.query(Post).count(),
        "scheduledPosts": db.query(Post).filter(Post.status == "SCHEDULED").count(),
        "publishedPosts": db.query(Post).filter(Post.status == "PUBLISHED").count(),
        "failedPosts": db.query(Post).filter(Post.status == "FAILED").count(),
        "publishedPublications": published_pubs,
        "failedPublications": failed_pubs,
        "postsThisMonth": db.query(Post).filter(Post.created_at >= start).count(),
        "newUsersThisMonth": db.query(User).filter(User.created_at >= start).count(),
        "usageThisMonth": int(usage or 0),
        "totalSubscriptions": sum(subs.values()),
        "activeSubscriptions": subs.get("ACTIVE", 0),
        "trialingSubscriptions": subs.get("TRIALING", 0),
        "canceledSubscriptions": subs.get("CANCELED", 0),
        "platformBreakdown": _platform_breakdown(db),
        "recentActivity": _recent_activity(db),
        "successRate": round(success_rate, 4),
        "systemHealth": health_from_success_rate(success_rate),
        "lastUpdatedAt": now.isoformat(),
    }
