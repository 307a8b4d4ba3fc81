# conversai/services/ai_content.py
import json
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy.orm import Session

from conversai.db.crud import parse_json_object
from conversai.db.models import AIModel
from conversai.services.ai_client import AIServiceError, ChatClient

logger = structlog.get_logger(__name__)

VALID_PURPOSES = ("content_generation", "hashtag_generation", "image_generation", "chat")
VALID_PROVIDERS = ("openrouter", "openai", "anthropic")
DEFAULT_PERFORMANCE = {"accuracy": 80, "speed": 80, "reliability": 80}
FALLBACK_HASHTAGS = ["#social", "#content", "#marketing"]
MAX_HASHTAGS = 10

PLATFORM_GUIDELINES = {
    "TWITTER": "Maximum 280 characters. Use engaging hooks, conversational tone, relevant hashtags. Include emojis for engagement.",
    "LINKEDIN": "Professional tone, 1300-3000 characters optimal. Focus on insights, value, thought leadership. Use line breaks for readability.",
    "INSTAGRAM": "Visual-first captions, 125-150 characters for optimal engagement. Use emojis, storytelling, strategic hashtags.",
    "YOUTUBE": "Compelling titles (60 chars max), descriptions with keywords, clear call-to-actions. SEO-optimized.",
    "FACEBOOK": "Conversational, 40-80 characters performs best. Ask questions to drive comments.",
}

HASHTAG_RULES = {
    "TWITTER": "Maximum 2-3 hashtags for optimal engagement. Focus on trending, relevant tags.",
    "LINKEDIN": "Maximum 3-5 hashtags. Use professional, industry-specific tags.",
    "INSTAGRAM": "Maximum 5-10 hashtags. Mix popular and niche tags for reach.",
    "YOUTUBE": "Maximum 3-5 hashtags. Use searchable, keyword-rich tags.",
}


# --- model registry ---

def performance_of(model: AIModel) -> Dict[str, int]:
    return {**DEFAULT_PERFORMANCE, **parse_json_object(model.performance)}


def performance_score(model: AIModel) -> int:
    perf = performance_of(model)
    return perf["accuracy"] + perf["speed"] + perf["reliability"]


def format_model(model: AIModel) -> Dict[str, Any]:
    return {
        "id": model.id,
        "name": model.name,
        "provider": model.provider,
        "model": model.model,
        "purpose": model.purpose,
        "maxTokens": model.max_tokens,
        "temperature": model.temperature,
        "costPer1kTokens": model.cost_per_1k_tokens,
        "isActive": model.is_active,
        "isDefault": model.is_default,
        "performance": performance_of(model),
        "createdAt": model.created_at.isoformat() if model.created_at else None,
    }


def list_models(db: Session) -> List[AIModel]:
    return db.query(AIModel).order_by(AIModel.purpose.asc(), AIModel.id.asc()).all()


def models_for_purpose(db: Session, purpose: str) -> List[AIModel]:
    models = db.query(AIModel).filter(AIModel.purpose == purpose, AIModel.is_active.is_(True)).all()
    return sorted(models, key=lambda m: (not m.is_default, -performance_score(m), m.id))


def get_model_for_purpose(db: Session, purpose: str) -> AIModel:
    """The active default model for the purpose, else the best-scoring active one."""
    models = models_for_purpose(db, purpose)
    if not models:
        raise AIServiceError(f"No active models available for purpose: {purpose}")
    return models[0]


def add_model(db: Session, name: str, provider: str, model: str, purpose: str,
              max_tokens: Optional[int] = None, temperature: Optional[float] = None,
              cost_per_1k_tokens: Optional[float] = None, is_active: bool = True,
              is_default: bool = False, performance: Optional[Dict[str, int]] = None) -> AIModel:
    if is_default:
        db.query(AIModel).filter(AIModel.purpose == purpose).update({AIModel.is_default: False})
    row = AIModel(
        name=name,
        provider=provider,
        model=model,
        purpose=purpose,
        max_tokens=max_tokens or 1000,
        temperature=temperature if temperature is not None else 0.7,
        cost_per_1k_tokens=cost_per_1k_tokens or 0.0,
        is_active=is_active,
        is_default=is_default,
        performance=json.dumps(performance or DEFAULT_PERFORMANCE),
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    logger.info("ai_model_added", model_id=row.id, purpose=purpose, provider=provider)
    return row


# --- generation ---

def _system_prompt(platform: Optional[str], tone: str, length: str,
                   include_hashtags: bool, include_emojis: bool) -> str:
    rules = PLATFORM_GUIDELINES.get(platform or "", "Follow general social media best practices")
    return (
        "Generate publication-ready social media content. Return ONLY the post content without any "
        "prefixes, explanations, or formatting markers.\n\n"
        f"PLATFORM: {platform or 'General'}\n"
        f"RULES: {rules}\n"
        f"TONE: {tone}\n"
        f"LENGTH: {length}\n\n"
        "REQUIREMENTS:\n"
        "- Return content ready for immediate publishing\n"
        "- Follow exact character limits for the platform\n"
        f"- Include hashtags only if requested: {str(include_hashtags).lower()}\n"
        f"- Include emojis only if requested: {str(include_emojis).lower()}\n"
        "- No prefixes like \"Here's your post:\" or explanatory text\n"
        "- No markdown formatting or quotes around content"
    )


def generate_content(db: Session, prompt: str, platform: Optional[str] = None, tone: str = "professional",
                     length: str = "medium", include_hashtags: bool = True, include_emojis: bool = True,
                     client: Optional[ChatClient] = None) -> str:
    client = client or ChatClient()
    messages = [
        {"role": "system", "content": _system_prompt(platform, tone, length, include_hashtags, include_emojis)},
        {"role": "user", "content": prompt},
    ]
    candidates = models_for_purpose(db, "content_generation")
    if not candidates:
        raise AIServiceError("No active models available for purpose: content_generation")

    last_error: Optional[AIServiceError] = None
    for model in candidates:
        try:
            return client.complete(model.model, messages, model.max_tokens, model.temperature)
        except AIServiceError as e:
            last_error = e
            # rate limits and exhausted credits fall through to the next model
            if e.status_code not in (402, 429):
                raise
            logger.warning("ai_model_fallback", model=model.model, status_code=e.status_code)
    raise AIServiceError("AI service rate limit exceeded. Please try again in a few minutes.",
                         last_error.status_code if last_error else None)


def parse_hashtags(text: str) -> List[str]:
    tags = [line.strip() for line in text.splitlines() if line.strip().startswith("#")]
    return tags[:MAX_HASHTAGS]


def generate_hashtags(db: Session, content: str, platform: str = "GENERAL",
                      client: Optional[ChatClient] = None) -> List[str]:
    name = "X" if platform == "TWITTER" else platform
    prompt = (
        f"Generate hashtags for {name}. Return ONLY hashtags, one per line, starting with #.\n\n"
        f"PLATFORM RULES: {HASHTAG_RULES.get(platform, 'Use 3-5 relevant hashtags')}\n"
        f"CONTENT: \"{content}\"\n\n"
        "Requirements:\n- No explanatory text\n- No numbering or bullets\n"
        "- Each hashtag on a new line\n- Start each line with #"
    )
    try:
        model = get_model_for_purpose(db, "hashtag_generation")
        client = client or ChatClient()
        reply = client.complete(model.model, [{"role": "user", "content": prompt}],
                                model.max_tokens, model.temperature)
    except AIServiceError as e:
        logger.warning("hashtag_generation_failed", error=str(e))
        return list(FALLBACK_HASHTAGS)
    return parse_hashtags(reply) or list(FALLBACK_HASHTAGS)
