# conversai/services/scheduler.py
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import structlog
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import Session

from conversai.db import models
from conversai.db.base import SessionLocal
from conversai.services import analytics, publisher

logger = structlog.get_logger(__name__)

PUBLISH_CRON = "* * * * *"
CLEANUP_CRON = "0 * * * *"
ANALYTICS_CRON = "0 */4 * * *"
RETENTION_DAYS = 30

scheduler: Optional[BackgroundScheduler] = None


def due_posts(db: Session, now: Optional[datetime] = None) -> List[models.Post]:
    now = now or datetime.utcnow()
    return (
        db.query(models.Post)
        .filter(models.Post.status == "SCHEDULED", models.Post.scheduled_at <= now)
        .order_by(models.Post.scheduled_at.asc())
        .all()
    )


def process_scheduled_posts(now: Optional[datetime] = None) -> Dict[str, Any]:
    # each job run gets its own session
    db = SessionLocal()
    processed: List[Dict[str, Any]] = []
    try:
        posts = due_posts(db, now)
        if not posts:
            return {"status": "no-due-posts", "processed": 0}
        logger.info("scheduled_posts_due", count=len(posts))
        for post in posts:
            try:
                outcome = publisher.publish_post(db, post)
                processed.append({"post_id": post.id, "status": post.status,
                                  "succeeded": outcome.success_count, "total": outcome.total_count})
            except Exception as e:  # keep the loop going for the remaining posts
                db.rollback()
                logger.exception("scheduled_post_failed", post_id=post.id, error=str(e))
                post.status = "FAILED"
                db.add(post)
                db.commit()
                processed.append({"post_id": post.id, "status": "FAILED", "error": str(e)})
        return {"status": "processed", "processed": len(processed), "posts": processed}
    finally:
        db.close()


def cleanup_old_posts(now: Optional[datetime] = None) -> Dict[str, Any]:
    db = SessionLocal()
    try:
        cutoff = (now or datetime.utcnow()) - timedelta(days=RETENTION_DAYS)
        old = (
            db.query(models.Post)
            .filter(models.Post.status == "PUBLISHED", models.Post.published_at < cutoff)
            .all()
        )
        for post in old:
            db.delete(post)
        db.commit()
        if old:
            logger.info("old_posts_deleted", count=len(old), cutoff=cutoff.isoformat())
        return {"status": "ok", "deleted": len(old)}
    finally:
        db.close()


def refresh_analytics_job() -> Dict[str, Any]:
    db = SessionLocal()
    try:
        return analytics.refresh_all_analytics(db)
    finally:
        db.close()


def schedule_post(db: Session, post: models.Post, scheduled_at: datetime) -> models.Post:
    post.status = "SCHEDULED"
    post.scheduled_at = scheduled_at
    for pub in post.publications:
        pub.status = "PENDING"
        pub.error_message = None
    db.add(post)
    db.commit()
    db.refresh(post)
    logger.info("post_scheduled", post_id=post.id, scheduled_at=scheduled_at.isoformat())
    return post


def cancel_scheduled_post(db: Session, post: models.Post) -> models.Post:
    post.status = "DRAFT"
    post.scheduled_at = None
    db.add(post)
    db.commit()
    db.refresh(post)
    logger.info("post_schedule_cancelled", post_id=post.id)
    return post


def get_scheduled_posts(db: Session, user_id: int, now: Optional[datetime] = None) -> List[models.Post]:
    now = now or datetime.utcnow()
    return (
        db.query(models.Post)
        .filter(
            models.Post.user_id == user_id,
            models.Post.status == "SCHEDULED",
            models.Post.scheduled_at > now,
        )
        .order_by(models.Post.scheduled_at.asc())
        .all()
    )


# --- background scheduler ---

def start_scheduler(publish_cron: str = PUBLISH_CRON) -> Dict[str, Any]:
    global scheduler
    if scheduler and scheduler.running:
        return {"status": "already-running"}

    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.add_job(process_scheduled_posts, CronTrigger.from_crontab(publish_cron),
                      id="process_scheduled_posts", replace_existing=True, max_instances=1, coalesce=True)
    scheduler.add_job(cleanup_old_posts, CronTrigger.from_crontab(CLEANUP_CRON),
                      id="cleanup_old_posts", replace_existing=True, max_instances=1, coalesce=True)
    scheduler.add_job(refresh_analytics_job, CronTrigger.from_crontab(ANALYTICS_CRON),
                      id="refresh_all_analytics", replace_existing=True, max_instances=1, coalesce=True)
    scheduler.start()
    logger.info("scheduler_started", cron=publish_cron)
    return {"status": "started", "cron": publish_cron}


def stop_scheduler() -> Dict[str, Any]:
    global scheduler
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("scheduler_stopped")
        return {"status": "stopped"}
    return {"status": "not-running"}


def scheduler_status() -> Dict[str, Any]:
    running = bool(scheduler and scheduler.running)
    jobs = []
    if running:
        for job in scheduler.get_jobs():
            jobs.append({
                "id": job.id,
                "nextRunAt": job.next_run_time.isoformat() if job.next_run_time else None,
            })
    return {"running": running, "jobs": jobs}
