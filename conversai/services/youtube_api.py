# conversai/services/youtube_api.py
import json
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx
import structlog

from conversai.config import settings
from conversai.services.http_client import MEDIA_TIMEOUT, download_media, request_with_retry
from conversai.services.platform_errors import PlatformError, raise_for_platform

logger = structlog.get_logger(__name__)

AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
API_URL = "https://www.googleapis.com/youtube/v3"
UPLOAD_URL = "https://www.googleapis.com/upload/youtube/v3/videos"
THUMBNAIL_URL = "https://www.googleapis.com/upload/youtube/v3/thumbnails/set"

SCOPES = " ".join([
    "https://www.googleapis.com/auth/youtube.readonly",
    "https://www.googleapis.com/auth/youtube.upload",
    "https://www.googleapis.com/auth/yt-analytics.readonly",
])
CATEGORY_PEOPLE_BLOGS = "22"


def auth_url(state: str) -> str:
    params = {
        "client_id": settings.google_client_id,
        "redirect_uri": settings.youtube_redirect_uri,
        "response_type": "code",
        "scope": SCOPES,
        "access_type": "offline",
        "prompt": "consent",
        "state": state,
    }
    return f"{AUTH_URL}?{urlencode(params)}"


def _token_request(data: Dict[str, str]) -> Dict[str, Any]:
    resp = request_with_retry("POST", TOKEN_URL, service="youtube", data={
        **data,
        "client_id": settings.google_client_id,
        "client_secret": settings.google_client_secret,
    })
    raise_for_platform(resp, "YouTube", "token request")
    return resp.json()


def exchange_code_for_token(code: str) -> Dict[str, Any]:
    return _token_request({
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": settings.youtube_redirect_uri,
    })


def refresh_access_token(refresh_token: str) -> Dict[str, Any]:
    return _token_request({"grant_type": "refresh_token", "refresh_token": refresh_token})


def _auth(access_token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {access_token}"}


def get_channel(access_token: str) -> Dict[str, Any]:
    resp = request_with_retry("GET", f"{API_URL}/channels", service="youtube",
                              headers=_auth(access_token), params={"part": "snippet", "mine": "true"})
    raise_for_platform(resp, "YouTube", "channel lookup")
    items = resp.json().get("items") or []
    if not items:
        raise PlatformError("No YouTube channel found for this Google account")
    return items[0]


def build_metadata(title: str, description: str) -> Dict[str, Any]:
    return {
        "snippet": {
            "title": title[:100],
            "description": description,
            "categoryId": CATEGORY_PEOPLE_BLOGS,
            "defaultLanguage": "en",
        },
        "status": {"privacyStatus": "public", "embeddable": True},
    }


def upload_video(access_token: str, video_url: str, title: str, description: str,
                 thumbnail_url: Optional[str] = None) -> str:
    """Resumable upload of the video at video_url; returns the YouTube video id."""
    content, content_type = download_media(video_url)
    init = request_with_retry(
        "POST", UPLOAD_URL, service="youtube",
        params={"uploadType": "resumable", "part": "snippet,status"},
        headers={
            **_auth(access_token),
            "Content-Type": "application/json; charset=UTF-8",
            "X-Upload-Content-Type": content_type if content_type.startswith("video/") else "video/*",
            "X-Upload-Content-Length": str(len(content)),
        },
        content=json.dumps(build_metadata(title, description)),
    )
    raise_for_platform(init, "YouTube", "upload session")
    location = init.headers.get("location")
    if not location:
        raise PlatformError("YouTube did not return an upload location")

    resp = request_with_retry("PUT", location, service="youtube", timeout=MEDIA_TIMEOUT, idempotent=False,
                              headers={**_auth(access_token), "Content-Type": content_type or "video/*"},
                              content=content)
    raise_for_platform(resp, "YouTube", "video upload")
    video_id = resp.json().get("id")
    if not video_id:
        raise PlatformError(f"YouTube returned no video id: {resp.text[:300]}")

    if thumbnail_url:
        set_thumbnail(access_token, video_id, thumbnail_url)
    logger.info("youtube_video_uploaded", video_id=video_id, bytes=len(content))
    return str(video_id)


def set_thumbnail(access_token: str, video_id: str, thumbnail_url: str) -> bool:
    """Set a custom thumbnail; failures are logged and reported as False."""
    try:
        image, content_type = download_media(thumbnail_url)
        resp = request_with_retry("POST", THUMBNAIL_URL, service="youtube", params={"videoId": video_id},
                                  headers={**_auth(access_token), "Content-Type": content_type or "image/jpeg"},
                                  content=image)
    except (PlatformError, httpx.HTTPError) as e:
        logger.warning("youtube_thumbnail_failed", video_id=video_id, error=str(e))
        return False
    if not resp.is_success:
        logger.warning("youtube_thumbnail_failed", video_id=video_id, status_code=resp.status_code)
        return False
    return True


def get_video_metrics(access_token: str, video_id: str) -> Dict[str, Any]:
    resp = request_with_retry("GET", f"{API_URL}/videos", service="youtube", headers=_auth(access_token),
                              params={"part": "statistics,contentDetails", "id": video_id})
    raise_for_platform(resp, "YouTube", "video statistics")
    items = resp.json().get("items") or []
    stats = items[0].get("statistics", {}) if items else {}
    views = int(stats.get("viewCount", 0))
    likes = int(stats.get("likeCount", 0))
    comments = int(stats.get("commentCount", 0))
    return {
        "impressions": views,
        "likes": likes,
        "comments": comments,
        "shares": 0,
        "clicks": views,
        "saves": 0,
        "reach": views,
        "engagement_rate": (likes + comments) / views * 100 if views > 0 else 0.0,
    }
