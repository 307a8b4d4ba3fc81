from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException

from conversai.api_utils import api_success
from conversai.db.models import User
from conversai.deps import require_app_owner
from conversai.services import scheduler

router = APIRouter(prefix="/api/scheduler", tags=["scheduler"])


@router.post("/run")
def run_now(owner: User = Depends(require_app_owner)) -> Dict[str, Any]:
    return api_success(scheduler.process_scheduled_posts())


@router.post("/start")
def start(cron: str = scheduler.PUBLISH_CRON, owner: User = Depends(require_app_owner)) -> Dict[str, Any]:
    # standard 5-field cron: m h dom mon dow
    try:
        return api_success(scheduler.start_scheduler(cron))
    except ValueError as e:
        raise HTTPException(400, f"Invalid cron expression: {e}")


@router.post("/stop")
def stop(owner: User = Depends(require_app_owner)) -> Dict[str, Any]:
    return api_success(scheduler.stop_scheduler())


@router.get("/status")
def status(owner: User = Depends(require_app_owner)) -> Dict[str, Any]:
    return api_success(scheduler.scheduler_status())
