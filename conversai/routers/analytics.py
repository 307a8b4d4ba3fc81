from datetime import datetime
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from conversai.api_utils import api_success, as_naive_utc
from conversai.db.models import PLATFORMS, User
from conversai.deps import get_current_user, get_db
from conversai.services import analytics

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/analytics", tags=["analytics"])


def _platform(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    platform = value.upper()
    if platform not in PLATFORMS:
        raise HTTPException(400, f"Unsupported platform: {value}")
    return platform


@router.get("/overview")
def overview(
    period: int = Query(30, ge=1, le=365),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    platform: Optional[str] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    data = analytics.get_overview(
        db, user.id,
        period=period,
        start_date=as_naive_utc(start_date),
        end_date=as_naive_utc(end_date),
        platform=_platform(platform),
    )
    return api_success(data)


@router.get("/platform/{platform}")
def platform_analytics(
    platform: str,
    period: int = Query(30, ge=1, le=365),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return api_success(analytics.get_platform_analytics(db, user.id, _platform(platform), period=period))


@router.post("/refresh")
def refresh(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    try:
        rows = analytics.fetch_all_user_analytics(db, user.id)
    except Exception as e:  # surfaced as a 500 envelope
        db.rollback()
        logger.exception("analytics_refresh_failed", user_id=user.id, error=str(e))
        raise HTTPException(500, "Failed to refresh analytics")
    return api_success({
        "message": "Analytics refreshed successfully",
        "analyticsCount": len(rows),
        "analytics": [analytics.format_analytics(r) for r in rows[:10]],
    })
