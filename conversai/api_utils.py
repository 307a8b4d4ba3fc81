# conversai/api_utils.py
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from conversai.db.crud import parse_json_list, parse_json_object
from conversai.db.crud_accounts import is_token_expired
from conversai.db.models import Post, PostPublication, SocialAccount, User


def api_success(data: Any = None) -> Dict[str, Any]:
    return {"success": True, "data": data}


def api_error(message: str, status_code: int = 400, code: Optional[str] = None,
              details: Any = None) -> JSONResponse:
    error: Dict[str, Any] = {"message": message, "code": code}
    if details is not None:
        error["details"] = details
    return JSONResponse(status_code=status_code, content=jsonable_encoder({"success": False, "error": error}))


def error_detail(message: str, code: Optional[str] = None, **details: Any) -> Dict[str, Any]:
    """HTTPException detail carrying a machine-readable code."""
    out: Dict[str, Any] = {"message": message, "code": code}
    if details:
        out["details"] = details
    return out


# --- exception handlers (registered in main) ---

async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if isinstance(exc.detail, dict):
        return api_error(exc.detail.get("message", "Error"), exc.status_code,
                         exc.detail.get("code"), exc.detail.get("details"))
    return api_error(str(exc.detail), exc.status_code)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    parts = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        msg = str(err.get("msg", "invalid")).removeprefix("Value error, ")
        parts.append(f"{'.'.join(loc) or 'root'}: {msg}")
    return api_error(f"Validation error: {', '.join(parts)}", 400, "VALIDATION_ERROR")


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    return api_error("Internal server error", 500, "INTERNAL_ERROR")


# --- datetimes ---

def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() + "Z" if value else None


# --- formatters ---

def format_user(user: User) -> Dict[str, Any]:
    sub = user.subscription
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "createdAt": iso(user.created_at),
        "subscription": {
            "tier": sub.tier,
            "status": sub.status,
            "currentPeriodStart": iso(sub.current_period_start),
            "currentPeriodEnd": iso(sub.current_period_end),
        } if sub else None,
    }


def format_social_account(account: SocialAccount) -> Dict[str, Any]:
    """Public view of an account; tokens never leave the server."""
    return {
        "id": account.id,
        "platform": account.platform,
        "accountId": account.account_id,
        "accountName": account.account_name,
        "displayName": account.display_name,
        "username": account.username,
        "accountType": account.account_type,
        "permissions": parse_json_list(account.permissions),
        "metadata": parse_json_object(account.metadata_json),
        "isActive": account.is_active,
        "isConnected": account.is_connected,
        "expiresAt": iso(account.expires_at),
        "hasValidTokens": bool(account.access_token_encrypted) and not is_token_expired(account),
        "createdAt": iso(account.created_at),
        "updatedAt": iso(account.updated_at),
    }


def format_publication(pub: PostPublication) -> Dict[str, Any]:
    account = pub.social_account
    return {
        "id": pub.id,
        "status": pub.status,
        "platformPostId": pub.platform_post_id,
        "errorMessage": pub.error_message,
        "publishedAt": iso(pub.published_at),
        "socialAccount": {
            "id": account.id,
            "platform": account.platform,
            "accountName": account.account_name,
            "username": account.username,
        } if account else None,
    }


def format_post(post: Post) -> Dict[str, Any]:
    return {
        "id": post.id,
        "content": post.content,
        "hashtags": parse_json_list(post.hashtags),
        "imageUrl": post.image_url,
        "images": parse_json_list(post.images),
        "videoUrl": post.video_url,
        "videos": parse_json_list(post.videos),
        "title": post.title,
        "description": post.description,
        "platform": post.platform,
        "status": post.status,
        "scheduledAt": iso(post.scheduled_at),
        "publishedAt": iso(post.published_at),
        "createdAt": iso(post.created_at),
        "updatedAt": iso(post.updated_at),
        "publications": [format_publication(p) for p in post.publications],
    }


def format_posts(posts: List[Post]) -> List[Dict[str, Any]]:
    return [format_post(p) for p in posts]
