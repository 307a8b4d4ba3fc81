# conversai/services/instagram_api.py
import time
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import structlog

from conversai.config import settings
from conversai.services.http_client import request_with_retry
from conversai.services.platform_errors import PlatformError, raise_for_platform

logger = structlog.get_logger(__name__)

AUTH_URL = "https://api.instagram.com/oauth/authorize"
SHORT_TOKEN_URL = "https://api.instagram.com/oauth/access_token"
GRAPH_URL = "https://graph.instagram.com"

SCOPES = "instagram_business_basic,instagram_business_content_publish,instagram_business_manage_insights"
VIDEO_EXTENSIONS = (".mp4", ".mov", ".m4v")
IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".webp")
CAROUSEL_MIN, CAROUSEL_MAX = 2, 10
STATUS_CHECKS = 12
STATUS_INTERVAL_SECONDS = 10

VIDEO_FAILED_MESSAGE = (
    "Instagram video processing failed. Check video format: MP4, H.264, max 100MB, max 60s for Reels"
)


def get_media_type(url: str) -> str:
    """'video', 'image' or 'unknown', judged by the URL's extension."""
    path = url.split("?")[0].lower()
    if path.endswith(VIDEO_EXTENSIONS) or path.startswith("data:video/"):
        return "video"
    if path.endswith(IMAGE_EXTENSIONS) or path.startswith("data:image/"):
        return "image"
    return "unknown"


def validate_video_url(url: str) -> None:
    if get_media_type(url) != "video":
        raise PlatformError("Instagram video must be an .mp4, .mov or .m4v file")


# --- OAuth ---

def auth_url(state: str) -> str:
    params = {
        "client_id": settings.instagram_client_id,
        "redirect_uri": settings.instagram_redirect_uri,
        "scope": SCOPES,
        "response_type": "code",
        "state": state,
    }
    return f"{AUTH_URL}?{urlencode(params)}"


def exchange_code_for_token(code: str) -> Dict[str, Any]:
    """Code -> short-lived token -> long-lived (60 day) token."""
    resp = request_with_retry("POST", SHORT_TOKEN_URL, service="instagram", data={
        "client_id": settings.instagram_client_id,
        "client_secret": settings.instagram_client_secret,
        "grant_type": "authorization_code",
        "redirect_uri": settings.instagram_redirect_uri,
        "code": code,
    })
    raise_for_platform(resp, "Instagram", "code exchange")
    short = resp.json()

    resp = request_with_retry("GET", f"{GRAPH_URL}/access_token", service="instagram", params={
        "grant_type": "ig_exchange_token",
        "client_secret": settings.instagram_client_secret,
        "access_token": short["access_token"],
    })
    raise_for_platform(resp, "Instagram", "long-lived token exchange")
    long_lived = resp.json()
    long_lived.setdefault("user_id", short.get("user_id"))
    return long_lived


def refresh_access_token(long_lived_token: str) -> Dict[str, Any]:
    resp = request_with_retry("GET", f"{GRAPH_URL}/refresh_access_token", service="instagram", params={
        "grant_type": "ig_refresh_token",
        "access_token": long_lived_token,
    })
    raise_for_platform(resp, "Instagram", "token refresh")
    return resp.json()


def get_user(access_token: str) -> Dict[str, Any]:
    resp = request_with_retry("GET", f"{GRAPH_URL}/me", service="instagram", params={
        "fields": "id,username,account_type,media_count",
        "access_token": access_token,
    })
    raise_for_platform(resp, "Instagram", "profile lookup")
    return resp.json()


# --- publishing ---

def _create_container(access_token: str, fields: Dict[str, str]) -> str:
    resp = request_with_retry("POST", f"{GRAPH_URL}/me/media", service="instagram",
                              data={**fields, "access_token": access_token})
    raise_for_platform(resp, "Instagram", "media container creation")
    container_id = resp.json().get("id")
    if not container_id:
        raise PlatformError(f"Instagram returned no container id: {resp.text[:300]}")
    return str(container_id)


def _publish_container(access_token: str, creation_id: str) -> str:
    resp = request_with_retry("POST", f"{GRAPH_URL}/me/media_publish", service="instagram", idempotent=False,
                              data={"creation_id": creation_id, "access_token": access_token})
    raise_for_platform(resp, "Instagram", "media publish")
    return str(resp.json()["id"])


def wait_for_container(access_token: str, container_id: str) -> None:
    for attempt in range(1, STATUS_CHECKS + 1):
        resp = request_with_retry("GET", f"{GRAPH_URL}/{container_id}", service="instagram",
                                  params={"fields": "status_code,status", "access_token": access_token})
        raise_for_platform(resp, "Instagram", "container status")
        status_code = resp.json().get("status_code")
        if status_code == "FINISHED":
            return
        if status_code == "ERROR":
            raise PlatformError(VIDEO_FAILED_MESSAGE)
        logger.debug("instagram_container_pending", container_id=container_id, attempt=attempt,
                     status_code=status_code)
        time.sleep(STATUS_INTERVAL_SECONDS)
    raise PlatformError("Instagram video processing timed out")


def post_image(access_token: str, caption: str, image_url: str) -> str:
    container = _create_container(access_token, {"image_url": image_url, "caption": caption})
    return _publish_container(access_token, container)


def post_video(access_token: str, caption: str, video_url: str) -> str:
    validate_video_url(video_url)
    container = _create_container(access_token, {
        "video_url": video_url,
        "caption": caption,
        "media_type": "REELS",
    })
    wait_for_container(access_token, container)
    return _publish_container(access_token, container)


def post_carousel(access_token: str, caption: str, image_urls: List[str]) -> str:
    if not CAROUSEL_MIN <= len(image_urls) <= CAROUSEL_MAX:
        raise PlatformError("Instagram carousel requires 2-10 images")
    children: List[str] = []
    for url in image_urls:
        try:
            children.append(_create_container(access_token, {"image_url": url, "is_carousel_item": "true"}))
        except PlatformError as e:
            logger.warning("instagram_carousel_item_failed", url=url, error=str(e))
    if len(children) < CAROUSEL_MIN:
        raise PlatformError("Instagram carousel requires at least 2 successfully uploaded images")
    parent = _create_container(access_token, {
        "media_type": "CAROUSEL",
        "children": ",".join(children),
        "caption": caption,
    })
    return _publish_container(access_token, parent)


def post_to_instagram(access_token: str, caption: str, image_urls: Optional[List[str]] = None,
                      video_urls: Optional[List[str]] = None) -> str:
    """Publish a reel, a single image or a carousel; returns the media id."""
    if video_urls:
        return post_video(access_token, caption, video_urls[0])
    if not image_urls:
        raise PlatformError("Instagram posts require either an image or video")
    if len(image_urls) == 1:
        return post_image(access_token, caption, image_urls[0])
    try:
        return post_carousel(access_token, caption, image_urls[:CAROUSEL_MAX])
    except PlatformError as e:
        logger.warning("instagram_carousel_fallback", error=str(e))
        return post_image(access_token, caption, image_urls[0])


# --- analytics ---

def get_media_metrics(access_token: str, media_id: str) -> Dict[str, int]:
    resp = request_with_retry("GET", f"{GRAPH_URL}/{media_id}", service="instagram",
                              params={"fields": "like_count,comments_count", "access_token": access_token})
    raise_for_platform(resp, "Instagram", "media lookup")
    media = resp.json()
    metrics = {
        "likes": media.get("like_count", 0),
        "comments": media.get("comments_count", 0),
        "impressions": 0,
        "reach": 0,
        "saves": 0,
        "shares": 0,
    }
    resp = request_with_retry("GET", f"{GRAPH_URL}/{media_id}/insights", service="instagram",
                              params={"metric": "impressions,reach,saved,shares", "access_token": access_token})
    if resp.is_success:
        for item in resp.json().get("data", []):
            values = item.get("values") or [{}]
            value = values[0].get("value", 0) or 0
            name = item.get("name")
            if name == "impressions":
                metrics["impressions"] = value
            elif name == "reach":
                metrics["reach"] = value
            elif name == "saved":
                metrics["saves"] = value
            elif name == "shares":
                metrics["shares"] = value
    else:
        # insights are unavailable for some media types; counts still stand
        logger.info("instagram_insights_unavailable", media_id=media_id, status_code=resp.status_code)
    return metrics
