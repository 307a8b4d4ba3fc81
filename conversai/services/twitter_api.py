# conversai/services/twitter_api.py
import base64
import hashlib
import secrets
import time
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx
import structlog

from conversai.config import settings
from conversai.services.http_client import MEDIA_TIMEOUT, download_media, request_with_retry
from conversai.services.platform_errors import PlatformError, raise_for_platform

logger = structlog.get_logger(__name__)

AUTH_URL = "https://x.com/i/oauth2/authorize"
TOKEN_URL = "https://api.x.com/2/oauth2/token"
USERS_ME_URL = "https://api.twitter.com/2/users/me"
TWEETS_URL = "https://api.twitter.com/2/tweets"
MEDIA_ENDPOINT_URL = "https://api.x.com/2/media/upload"

SCOPES = "tweet.read tweet.write users.read media.write offline.access"
CHUNK_SIZE = 4 * 1024 * 1024
MAX_IMAGES = 4
MAX_STATUS_CHECKS = 60


# --- OAuth 2.0 (PKCE) ---

def new_code_verifier() -> str:
    return base64.urlsafe_b64encode(secrets.token_bytes(32)).rstrip(b"=").decode()


def code_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode()).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode()


def auth_url(state: str, code_verifier: str) -> str:
    params = {
        "response_type": "code",
        "client_id": settings.twitter_client_id,
        "redirect_uri": settings.twitter_redirect_uri,
        "scope": SCOPES,
        "state": state,
        "code_challenge": code_challenge(code_verifier),
        "code_challenge_method": "S256",
    }
    return f"{AUTH_URL}?{urlencode(params)}"


def _token_request(data: Dict[str, str]) -> Dict[str, Any]:
    resp = request_with_retry(
        "POST", TOKEN_URL, service="twitter",
        data=data,
        auth=(settings.twitter_client_id, settings.twitter_client_secret),
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    raise_for_platform(resp, "Twitter", "token request")
    return resp.json()


def exchange_code_for_token(code: str, code_verifier: str) -> Dict[str, Any]:
    return _token_request({
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": settings.twitter_redirect_uri,
        "code_verifier": code_verifier,
        "client_id": settings.twitter_client_id,
    })


def refresh_access_token(refresh_token: str) -> Dict[str, Any]:
    return _token_request({
        "grant_type": "refresh_token",
        "refresh_token": refresh_token,
        "client_id": settings.twitter_client_id,
    })


def _auth_headers(access_token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {access_token}"}


def get_user(access_token: str) -> Dict[str, Any]:
    resp = request_with_retry(
        "GET", USERS_ME_URL, service="twitter",
        headers=_auth_headers(access_token),
        params={"user.fields": "profile_image_url,username,name"},
    )
    raise_for_platform(resp, "Twitter", "user lookup")
    return resp.json().get("data", {})


# --- chunked media upload: INIT -> APPEND* -> FINALIZE -> STATUS* ---

def _media_call(method: str, access_token: str, **kwargs) -> httpx.Response:
    return request_with_retry(method, MEDIA_ENDPOINT_URL, service="twitter",
                              headers=_auth_headers(access_token), timeout=MEDIA_TIMEOUT, **kwargs)


def upload_media_init(access_token: str, media_type: str, total_bytes: int, is_video: bool) -> str:
    params = {
        "command": "INIT",
        "media_type": media_type,
        "total_bytes": total_bytes,
        "media_category": "tweet_video" if is_video else "tweet_image",
    }
    resp = _media_call("POST", access_token, params=params)
    raise_for_platform(resp, "Twitter", "media INIT")
    media_id = resp.json().get("data", {}).get("id")
    if not media_id:
        raise PlatformError(f"Twitter media INIT returned no media id: {resp.text[:300]}")
    return str(media_id)


def upload_append(access_token: str, media_id: str, content: bytes) -> int:
    segment_index = 0
    for offset in range(0, len(content), CHUNK_SIZE):
        chunk = content[offset:offset + CHUNK_SIZE]
        resp = _media_call(
            "POST", access_token,
            data={"command": "APPEND", "media_id": media_id, "segment_index": str(segment_index)},
            files={"media": ("chunk", chunk, "application/octet-stream")},
        )
        raise_for_platform(resp, "Twitter", f"media APPEND segment {segment_index}")
        segment_index += 1
    return segment_index


def upload_finalize(access_token: str, media_id: str) -> Optional[Dict[str, Any]]:
    resp = _media_call("POST", access_token, params={"command": "FINALIZE", "media_id": media_id})
    raise_for_platform(resp, "Twitter", "media FINALIZE")
    return resp.json().get("data", {}).get("processing_info")


def wait_for_processing(access_token: str, media_id: str, processing_info: Optional[Dict[str, Any]]) -> None:
    checks = 0
    while processing_info:
        state = processing_info.get("state")
        if state == "succeeded":
            return
        if state == "failed":
            error = processing_info.get("error", {})
            raise PlatformError(f"Twitter media processing failed: {error.get('message') or error or 'unknown'}")
        checks += 1
        if checks > MAX_STATUS_CHECKS:
            raise PlatformError("Twitter media processing timed out")
        time.sleep(processing_info.get("check_after_secs", 5))
        resp = _media_call("GET", access_token, params={"command": "STATUS", "media_id": media_id})
        raise_for_platform(resp, "Twitter", "media STATUS")
        processing_info = resp.json().get("data", {}).get("processing_info")


def upload_media(access_token: str, content: bytes, media_type: str, is_video: bool) -> str:
    media_id = upload_media_init(access_token, media_type, len(content), is_video)
    segments = upload_append(access_token, media_id, content)
    processing_info = upload_finalize(access_token, media_id)
    wait_for_processing(access_token, media_id, processing_info)
    logger.info("twitter_media_uploaded", media_id=media_id, segments=segments, is_video=is_video)
    return media_id


def upload_from_url(access_token: str, url: str, is_video: bool) -> str:
    content, media_type = download_media(url)
    if is_video and not media_type.startswith("video/"):
        media_type = "video/mp4"
    return upload_media(access_token, content, media_type, is_video)


# --- publishing ---

def create_tweet(access_token: str, text: str, media_ids: Optional[List[str]] = None) -> str:
    payload: Dict[str, Any] = {"text": text}
    if media_ids:
        payload["media"] = {"media_ids": media_ids}
    resp = request_with_retry(
        "POST", TWEETS_URL, service="twitter", idempotent=False,
        headers={**_auth_headers(access_token), "Content-Type": "application/json"},
        json=payload,
    )
    raise_for_platform(resp, "Twitter", "tweet creation")
    tweet_id = resp.json().get("data", {}).get("id")
    if not tweet_id:
        raise PlatformError(f"Twitter returned no tweet id: {resp.text[:300]}")
    return str(tweet_id)


def post_tweet(access_token: str, text: str, image_urls: Optional[List[str]] = None,
               video_url: Optional[str] = None) -> str:
    """Publish a tweet with an optional video (preferred) or up to four images; returns the tweet id."""
    media_ids: List[str] = []
    if video_url:
        media_ids.append(upload_from_url(access_token, video_url, is_video=True))
    elif image_urls:
        for url in image_urls[:MAX_IMAGES]:
            media_ids.append(upload_from_url(access_token, url, is_video=False))
    tweet_id = create_tweet(access_token, text, media_ids)
    logger.info("tweet_created", tweet_id=tweet_id, media_count=len(media_ids))
    return tweet_id


# --- analytics ---

def get_tweet_metrics(access_token: str, tweet_id: str) -> Dict[str, int]:
    resp = request_with_retry(
        "GET", f"{TWEETS_URL}/{tweet_id}", service="twitter",
        headers=_auth_headers(access_token),
        params={"tweet.fields": "public_metrics,non_public_metrics,organic_metrics"},
    )
    raise_for_platform(resp, "Twitter", "metrics lookup")
    data = resp.json().get("data", {})
    public = data.get("public_metrics", {})
    non_public = data.get("non_public_metrics", {})
    organic = data.get("organic_metrics", {})
    impressions = organic.get("impression_count") or public.get("impression_count") or 0
    return {
        "impressions": impressions,
        "likes": public.get("like_count", 0),
        "comments": public.get("reply_count", 0),
        "shares": public.get("retweet_count", 0) + public.get("quote_count", 0),
        "clicks": non_public.get("url_link_clicks", 0),
        "saves": public.get("bookmark_count", 0),
        "reach": impressions,
    }
