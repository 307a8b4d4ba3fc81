# conversai/routers/ai.py
from typing import Optional

import httpx
import structlog
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from conversai.api_utils import api_success
from conversai.db.models import User
from conversai.deps import get_current_user, get_db
from conversai.services import ai_content
from conversai.services.ai_client import AIServiceError, is_ai_configured

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/ai", tags=["ai"])


class GenerateBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    prompt: str = Field(min_length=1, max_length=4000)
    platform: Optional[str] = None
    tone: str = "professional"
    length: str = "medium"
    include_hashtags: bool = Field(True, alias="includeHashtags")
    include_emojis: bool = Field(True, alias="includeEmojis")


class HashtagsBody(BaseModel):
    content: str = Field(min_length=1, max_length=4000)
    platform: str = "GENERAL"


def _require_ai() -> None:
    if not is_ai_configured():
        raise HTTPException(503, "AI service is not configured")


@router.post("/generate")
def generate(body: GenerateBody, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    _require_ai()
    platform = body.platform.upper() if body.platform else None
    try:
        content = ai_content.generate_content(
            db, body.prompt,
            platform=platform,
            tone=body.tone,
            length=body.length,
            include_hashtags=body.include_hashtags,
            include_emojis=body.include_emojis,
        )
    except AIServiceError as e:
        logger.warning("ai_generate_failed", user_id=user.id, error=str(e), status_code=e.status_code)
        if e.status_code in (402, 429):
            raise HTTPException(429, "AI service rate limit exceeded. Please try again in a few minutes.")
        raise HTTPException(500, "Failed to generate content")
    except httpx.HTTPError as e:
        logger.warning("ai_generate_unreachable", user_id=user.id, error=str(e))
        raise HTTPException(502, "AI service is unavailable")

    logger.info("ai_content_generated", user_id=user.id, platform=platform, chars=len(content))
    return api_success({"content": content, "platform": platform})


@router.post("/hashtags")
def hashtags(body: HashtagsBody, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    _require_ai()
    platform = body.platform.upper()
    try:
        tags = ai_content.generate_hashtags(db, body.content, platform=platform)
    except httpx.HTTPError as e:
        logger.warning("ai_hashtags_unreachable", user_id=user.id, error=str(e))
        tags = list(ai_content.FALLBACK_HASHTAGS)
    return api_success({"hashtags": tags, "platform": platform})
