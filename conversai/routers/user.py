from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from conversai.api_utils import api_success, format_user
from conversai.db import crud, crud_accounts
from conversai.db.models import Post, User
from conversai.deps import get_current_user, get_db

router = APIRouter(prefix="/api/user", tags=["user"])


@router.get("/profile")
def profile(user: User = Depends(get_current_user)):
    return api_success({"user": format_user(user)})


@router.get("/usage")
def usage(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    now = datetime.utcnow()
    row = crud.get_usage(db, user.id, now.month, now.year)
    posts_used = row.posts_used if row else crud.count_posts_since(db, user.id, crud.month_start(now))
    tier = crud.get_user_tier(db, user.id)
    return api_success({
        "postsUsed": posts_used,
        "accountsConnected": crud_accounts.count_active_accounts(db, user.id),
        "totalPosts": db.query(Post).filter(Post.user_id == user.id).count(),
        "currentMonth": now.month,
        "currentYear": now.year,
        "tier": tier,
        "limits": crud.get_subscription_limits(tier),
    })
