# conversai/db/crud.py
import json
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from conversai.db.models import (
    Post, PostAnalytics, PostPublication, SocialAccount, Subscription, UsageTracking, User,
)

TRIAL_DAYS = 14

# accounts / posts per month; -1 means unlimited
TIER_LIMITS = {
    "STARTER": {"accounts": 3, "posts": 50},
    "GROWTH": {"accounts": 10, "posts": 200},
    "BUSINESS": {"accounts": 25, "posts": -1},
    "AGENCY": {"accounts": 100, "posts": -1},
}


def parse_json_list(raw: Optional[str]) -> list:
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        return []
    return value if isinstance(value, list) else []


def parse_json_object(raw: Optional[str]) -> dict:
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        return {}
    return value if isinstance(value, dict) else {}


# --- users & subscriptions ---

def get_user(db: Session, user_id: int) -> Optional[User]:
    return db.query(User).filter(User.id == user_id).first()


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.query(User).filter(func.lower(User.email) == email.lower()).first()


def create_user(db: Session, email: str, name: str, password_hash: str) -> User:
    # every new account starts on a STARTER trial
    now = datetime.utcnow()
    user = User(email=email.lower(), name=name, password_hash=password_hash)
    user.subscription = Subscription(
        tier="STARTER",
        status="TRIALING",
        current_period_start=now,
        current_period_end=now + timedelta(days=TRIAL_DAYS),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def get_user_tier(db: Session, user_id: int) -> str:
    sub = db.query(Subscription).filter(Subscription.user_id == user_id).first()
    if not sub or sub.tier not in TIER_LIMITS:
        return "STARTER"
    return sub.tier


def get_subscription_limits(tier: str) -> dict:
    return dict(TIER_LIMITS.get(tier, TIER_LIMITS["STARTER"]))


# --- usage ---

def get_usage(db: Session, user_id: int, month: int, year: int) -> Optional[UsageTracking]:
    return (
        db.query(UsageTracking)
        .filter(UsageTracking.user_id == user_id, UsageTracking.month == month, UsageTracking.year == year)
        .first()
    )


def check_usage_limit(db: Session, user_id: int, now: Optional[datetime] = None) -> bool:
    now = now or datetime.utcnow()
    limit = get_subscription_limits(get_user_tier(db, user_id))["posts"]
    if limit == -1:
        return True
    usage = get_usage(db, user_id, now.month, now.year)
    return usage is None or usage.posts_used < limit


def increment_usage(db: Session, user_id: int, now: Optional[datetime] = None) -> UsageTracking:
    now = now or datetime.utcnow()
    usage = get_usage(db, user_id, now.month, now.year)
    if usage is None:
        usage = UsageTracking(user_id=user_id, month=now.month, year=now.year, posts_used=0)
        db.add(usage)
    usage.posts_used += 1
    db.commit()
    db.refresh(usage)
    return usage


def month_start(now: Optional[datetime] = None) -> datetime:
    now = now or datetime.utcnow()
    return datetime(now.year, now.month, 1)


def count_posts_since(db: Session, user_id: int, since: datetime) -> int:
    return db.query(Post).filter(Post.user_id == user_id, Post.created_at >= since).count()


# --- posts ---

def get_post(db: Session, post_id: int, user_id: Optional[int] = None) -> Optional[Post]:
    q = db.query(Post).filter(Post.id == post_id)
    if user_id is not None:
        q = q.filter(Post.user_id == user_id)
    return q.first()


def list_posts(db: Session, user_id: int, page: int = 1, limit: int = 10,
               status: Optional[str] = None) -> tuple[list[Post], int]:
    q = db.query(Post).filter(Post.user_id == user_id)
    if status:
        q = q.filter(Post.status == status)
    total = q.count()
    posts = (
        q.order_by(Post.created_at.desc(), Post.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return posts, total


def create_post(db: Session, user_id: int, social_account_ids: list[int], **fields) -> Post:
    post = Post(user_id=user_id, **fields)
    for account_id in social_account_ids:
        post.publications.append(PostPublication(social_account_id=account_id, status="PENDING"))
    db.add(post)
    db.commit()
    db.refresh(post)
    return post


def replace_publications(db: Session, post: Post, social_account_ids: list[int]) -> None:
    keep = set(social_account_ids)
    for pub in list(post.publications):
        if pub.social_account_id not in keep:
            post.publications.remove(pub)
    existing = {pub.social_account_id for pub in post.publications}
    for account_id in social_account_ids:
        if account_id not in existing:
            post.publications.append(PostPublication(social_account_id=account_id, status="PENDING"))


def delete_post(db: Session, post: Post) -> None:
    db.delete(post)
    db.commit()


# --- analytics ---

def upsert_post_analytics(db: Session, post_id: int, platform: str, metrics: dict) -> PostAnalytics:
    row = (
        db.query(PostAnalytics)
        .filter(PostAnalytics.post_id == post_id, PostAnalytics.platform == platform)
        .first()
    )
    if row is None:
        row = PostAnalytics(post_id=post_id, platform=platform)
        db.add(row)
    impressions = int(metrics.get("impressions") or 0)
    row.impressions = impressions
    row.likes = int(metrics.get("likes") or 0)
    row.comments = int(metrics.get("comments") or 0)
    row.shares = int(metrics.get("shares") or 0)
    row.clicks = int(metrics.get("clicks") or 0)
    row.saves = int(metrics.get("saves") or 0)
    row.reach = int(metrics.get("reach") or impressions)
    row.engagement_rate = float(metrics.get("engagement_rate") or 0.0)
    row.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(row)
    return row


def active_account_user_ids(db: Session) -> list[int]:
    rows = (
        db.query(SocialAccount.user_id)
        .filter(SocialAccount.is_active.is_(True))
        .distinct()
        .all()
    )
    return [r[0] for r in rows]
