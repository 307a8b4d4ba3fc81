from typing import Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from conversai.api_utils import api_success
from conversai.db.models import User
from conversai.deps import get_db, require_app_owner
from conversai.services import ai_content, app_owner

router = APIRouter(prefix="/api/app-owner", tags=["app-owner"])


class AIModelBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    provider: Optional[str] = None
    model: Optional[str] = None
    purpose: Optional[str] = None
    max_tokens: Optional[int] = Field(None, alias="maxTokens", ge=1)
    temperature: Optional[float] = Field(None, ge=0, le=2)
    cost_per_1k_tokens: Optional[float] = Field(None, alias="costPer1kTokens", ge=0)
    is_active: bool = Field(True, alias="isActive")
    is_default: bool = Field(False, alias="isDefault")
    performance: Optional[Dict[str, int]] = None


@router.get("/overview")
def overview(owner: User = Depends(require_app_owner), db: Session = Depends(get_db)):
    return api_success(app_owner.get_overview(db))


@router.get("/ai-models")
def ai_models(owner: User = Depends(require_app_owner), db: Session = Depends(get_db)):
    return api_success({"models": [ai_content.format_model(m) for m in ai_content.list_models(db)]})


@router.post("/ai-models", status_code=201)
def add_ai_model(body: AIModelBody, owner: User = Depends(require_app_owner), db: Session = Depends(get_db)):
    if not (body.name and body.provider and body.model and body.purpose):
        raise HTTPException(400, "Missing required fields: name, provider, model, purpose")
    if body.purpose not in ai_content.VALID_PURPOSES:
        raise HTTPException(400, f"Invalid purpose. Must be one of: {', '.join(ai_content.VALID_PURPOSES)}")
    if body.provider not in ai_content.VALID_PROVIDERS:
        raise HTTPException(400, f"Invalid provider. Must be one of: {', '.join(ai_content.VALID_PROVIDERS)}")

    row = ai_content.add_model(
        db,
        name=body.name,
        provider=body.provider,
        model=body.model,
        purpose=body.purpose,
        max_tokens=body.max_tokens,
        temperature=body.temperature,
        cost_per_1k_tokens=body.cost_per_1k_tokens,
        is_active=body.is_active,
        is_default=body.is_default,
        performance=body.performance,
    )
    return api_success({"model": ai_content.format_model(row), "message": "AI model added successfully"})
