# conversai/routers/posts.py
import json
from datetime import datetime
from math import ceil
from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from sqlalchemy.orm import Session

from conversai.api_utils import api_success, as_naive_utc, error_detail, format_post, format_posts
from conversai.db import crud, crud_accounts
from conversai.db.models import POST_STATUSES, Post, User
from conversai.deps import get_current_user, get_db
from conversai.services import publisher, scheduler

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/posts", tags=["posts"])


class CreatePostBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    content: Optional[str] = Field(None, max_length=2000)
    hashtags: List[str] = Field(default_factory=list)
    image_url: Optional[str] = Field(None, alias="imageUrl")
    images: List[str] = Field(default_factory=list)
    video_url: Optional[str] = Field(None, alias="videoUrl")
    videos: List[str] = Field(default_factory=list)
    platform: Optional[str] = None
    social_account_ids: List[int] = Field(default_factory=list, alias="socialAccountIds", validate_default=True)
    scheduled_at: Optional[datetime] = Field(None, alias="scheduledAt")
    title: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = Field(None, max_length=5000)

    @field_validator("social_account_ids")
    @classmethod
    def at_least_one_account(cls, v: List[int]) -> List[int]:
        if not v:
            raise ValueError("At least one social account must be selected")
        return v

    @model_validator(mode="after")
    def has_something_to_post(self):
        has_text = bool(self.content and self.content.strip())
        has_video = bool(self.video_url or self.videos)
        has_image = bool(self.image_url or self.images)
        if not (has_text or has_video or has_image):
            raise ValueError("Post must have either text content, video, or image")
        return self


class UpdatePostBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    content: str = Field(min_length=1, max_length=2000)
    hashtags: Optional[List[str]] = None
    image_url: Optional[str] = Field(None, alias="imageUrl")
    images: Optional[List[str]] = None
    video_url: Optional[str] = Field(None, alias="videoUrl")
    videos: Optional[List[str]] = None
    social_account_ids: Optional[List[int]] = Field(None, alias="socialAccountIds")
    scheduled_at: Optional[datetime] = Field(None, alias="scheduledAt")
    title: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = Field(None, max_length=5000)


class ScheduleBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    scheduled_at: datetime = Field(alias="scheduledAt")


def _owned_post(db: Session, post_id: int, user: User) -> Post:
    # scoped to the caller: someone else's post reads as missing
    post = crud.get_post(db, post_id, user_id=user.id)
    if not post:
        raise HTTPException(404, "Post not found")
    return post


def _check_accounts(db: Session, user: User, account_ids: List[int]) -> None:
    wanted = set(account_ids)
    found = crud_accounts.get_active_accounts_by_ids(db, user.id, list(wanted))
    if len(found) != len(wanted):
        raise HTTPException(400, "One or more selected social accounts are invalid or inactive")


@router.get("")
def list_posts(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    status: Optional[str] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    limit = min(limit, 100)
    if status and status not in POST_STATUSES:
        raise HTTPException(400, f"Invalid status. Must be one of: {', '.join(POST_STATUSES)}")
    posts, total = crud.list_posts(db, user.id, page=page, limit=limit, status=status)
    return api_success({
        "posts": format_posts(posts),
        "pagination": {"page": page, "limit": limit, "total": total, "pages": ceil(total / limit)},
    })


@router.post("", status_code=201)
def create_post(body: CreatePostBody, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    if not crud.check_usage_limit(db, user.id):
        raise HTTPException(403, "Monthly post limit reached. Please upgrade your subscription.")
    _check_accounts(db, user, body.social_account_ids)

    scheduled_at = as_naive_utc(body.scheduled_at)
    post = crud.create_post(
        db,
        user_id=user.id,
        social_account_ids=list(dict.fromkeys(body.social_account_ids)),
        content=body.content,
        hashtags=json.dumps(body.hashtags),
        image_url=body.image_url or (body.images[0] if body.images else None),
        images=json.dumps(body.images),
        video_url=body.video_url or (body.videos[0] if body.videos else None),
        videos=json.dumps(body.videos),
        title=body.title,
        description=body.description,
        platform=body.platform,
        status="SCHEDULED" if scheduled_at else "DRAFT",
        scheduled_at=scheduled_at,
    )
    crud.increment_usage(db, user.id)
    logger.info("post_created", post_id=post.id, status=post.status, accounts=len(post.publications))
    return api_success({"post": format_post(post)})


@router.get("/scheduled")
def upcoming_posts(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return api_success({"posts": format_posts(scheduler.get_scheduled_posts(db, user.id))})


@router.get("/{post_id}")
def get_post(post_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return api_success({"post": format_post(_owned_post(db, post_id, user))})


@router.put("/{post_id}")
def update_post(post_id: int, body: UpdatePostBody, user: User = Depends(get_current_user),
                db: Session = Depends(get_db)):
    post = _owned_post(db, post_id, user)
    fields = body.model_fields_set

    post.content = body.content
    if body.hashtags is not None:
        post.hashtags = json.dumps(body.hashtags)
    if body.images is not None:
        post.images = json.dumps(body.images)
    if body.videos is not None:
        post.videos = json.dumps(body.videos)
    if "image_url" in fields:
        post.image_url = body.image_url
    if "video_url" in fields:
        post.video_url = body.video_url
    if "title" in fields:
        post.title = body.title
    if "description" in fields:
        post.description = body.description
    if body.social_account_ids is not None:
        if not body.social_account_ids:
            raise HTTPException(400, "At least one social account must be selected")
        _check_accounts(db, user, body.social_account_ids)
        crud.replace_publications(db, post, list(dict.fromkeys(body.social_account_ids)))
    if "scheduled_at" in fields and post.status != "PUBLISHED":
        post.scheduled_at = as_naive_utc(body.scheduled_at)
        post.status = "SCHEDULED" if post.scheduled_at else "DRAFT"

    db.add(post)
    db.commit()
    db.refresh(post)
    return api_success({"post": format_post(post)})


@router.delete("/{post_id}")
def delete_post(post_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    post = _owned_post(db, post_id, user)
    crud.delete_post(db, post)
    logger.info("post_deleted", post_id=post_id)
    return api_success({"message": "Post deleted successfully"})


@router.post("/{post_id}/publish")
def publish_post(post_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    post = _owned_post(db, post_id, user)
    if post.status == "PUBLISHED":
        raise HTTPException(400, "Post is already published")
    if not post.publications:
        raise HTTPException(400, "No social accounts selected for this post. "
                                 "Please select at least one social account before publishing.")

    try:
        outcome = publisher.publish_post(db, post)
    except Exception as e:  # surfaced as a 500 envelope
        db.rollback()
        logger.exception("publish_endpoint_failed", post_id=post_id, error=str(e))
        raise HTTPException(500, "Failed to publish post")

    db.refresh(post)
    results = [r.to_dict() for r in outcome.results]
    success, total = outcome.success_count, outcome.total_count
    reconnect = outcome.reconnection_platforms

    if success == 0:
        message = "Post publishing failed on all platforms"
        if reconnect:
            message += f". The following platforms need reconnection: {', '.join(reconnect)}"
        raise HTTPException(400, error_detail(message, "PUBLISH_FAILED", publishResults=results,
                                              successCount=success, totalCount=total))

    data = {
        "post": format_post(post),
        "publishResults": results,
        "successCount": success,
        "totalCount": total,
    }
    if success < total:
        data.update({
            "message": f"Post published with errors: {success}/{total} platforms succeeded",
            "hasWarnings": True,
            "needsReconnection": bool(reconnect),
            "reconnectionPlatforms": reconnect,
        })
    else:
        data["message"] = f"Post published successfully to all {total} platforms"
    return api_success(data)


@router.post("/{post_id}/schedule")
def schedule_post(post_id: int, body: ScheduleBody, user: User = Depends(get_current_user),
                  db: Session = Depends(get_db)):
    post = _owned_post(db, post_id, user)
    scheduled_at = as_naive_utc(body.scheduled_at)
    if scheduled_at <= datetime.utcnow():
        raise HTTPException(400, "Scheduled time must be in the future")
    if post.status == "PUBLISHED":
        raise HTTPException(400, "Cannot schedule an already published post")
    post = scheduler.schedule_post(db, post, scheduled_at)
    return api_success({
        "post": format_post(post),
        "message": f"Post scheduled successfully for {scheduled_at.isoformat()}Z",
    })


@router.delete("/{post_id}/schedule")
def cancel_schedule(post_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    post = _owned_post(db, post_id, user)
    if post.status != "SCHEDULED":
        raise HTTPException(400, "Post is not scheduled")
    post = scheduler.cancel_scheduled_post(db, post)
    return api_success({"post": format_post(post), "message": "Post schedule cancelled successfully"})
