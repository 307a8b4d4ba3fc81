# conversai/services/linkedin_api.py
import base64
import json
from typing import Any, Dict, List, Optional
from urllib.parse import quote, urlencode

import httpx
import structlog

from conversai.config import settings
from conversai.services.http_client import MEDIA_TIMEOUT, download_media, request_with_retry
from conversai.services.platform_errors import PlatformError, raise_for_platform

logger = structlog.get_logger(__name__)

AUTH_URL = "https://www.linkedin.com/oauth/v2/authorization"
TOKEN_URL = "https://www.linkedin.com/oauth/v2/accessToken"
USERINFO_URL = "https://api.linkedin.com/v2/userinfo"
REGISTER_UPLOAD_URL = "https://api.linkedin.com/v2/assets?action=registerUpload"
UGC_URL = "https://api.linkedin.com/v2/ugcPosts"
SOCIAL_ACTIONS_URL = "https://api.linkedin.com/v2/socialActions"

IMAGE_RECIPE = "urn:li:digitalmediaRecipe:feedshare-image"
VIDEO_RECIPE = "urn:li:digitalmediaRecipe:feedshare-video"
REST_HEADERS = {"X-Restli-Protocol-Version": "2.0.0", "LinkedIn-Version": "202405"}


def log_request_id(resp: httpx.Response) -> None:
    req_id = resp.headers.get("x-restli-request-id")
    if req_id:
        logger.debug("linkedin_request_id", request_id=req_id, status_code=resp.status_code)


def _call(method: str, url: str, **kwargs) -> httpx.Response:
    resp = request_with_retry(method, url, service="linkedin", **kwargs)
    log_request_id(resp)
    return resp


def author_urn(member_id: str) -> str:
    return f"urn:li:person:{member_id}"


# --- OAuth / OpenID ---

def auth_url(state: str, scopes: Optional[str] = None) -> str:
    """Return the authorization url. If scopes is provided use that, otherwise use settings.linkedin_scopes."""
    params = {
        "response_type": "code",
        "client_id": settings.linkedin_client_id,
        "redirect_uri": settings.linkedin_redirect_uri,
        "scope": scopes or settings.linkedin_scopes,
        "state": state,
    }
    qs = urlencode(params, quote_via=quote, safe=":/")
    return f"{AUTH_URL}?{qs}"


def _token_request(data: Dict[str, str]) -> Dict[str, Any]:
    resp = _call("POST", TOKEN_URL, data=data,
                 headers={"Content-Type": "application/x-www-form-urlencoded"})
    raise_for_platform(resp, "LinkedIn", "token request")
    return resp.json()


def exchange_code_for_token(code: str) -> Dict[str, Any]:
    return _token_request({
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": settings.linkedin_redirect_uri,
        "client_id": settings.linkedin_client_id,
        "client_secret": settings.linkedin_client_secret,
    })


def exchange_refresh_for_token(refresh_token: str) -> Dict[str, Any]:
    return _token_request({
        "grant_type": "refresh_token",
        "refresh_token": refresh_token,
        "client_id": settings.linkedin_client_id,
        "client_secret": settings.linkedin_client_secret,
    })


def get_userinfo(access_token: str) -> Dict[str, Any]:
    """OpenID userinfo: sub, name, email, picture."""
    resp = _call("GET", USERINFO_URL, headers={"Authorization": f"Bearer {access_token}"})
    raise_for_platform(resp, "LinkedIn", "userinfo")
    return resp.json()


def _b64url_decode(part: str) -> bytes:
    pad = "=" * (-len(part) % 4)
    return base64.urlsafe_b64decode(part + pad)


def extract_sub_from_id_token(id_token: str) -> str:
    """Unverified read of the id_token 'sub' claim; '' when the token is malformed."""
    parts = id_token.split(".")
    if len(parts) < 2:
        return ""
    try:
        claims = json.loads(_b64url_decode(parts[1]).decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        return ""
    return claims.get("sub", "")


# --- media assets ---

def register_upload(access_token: str, owner_urn: str, recipe: str) -> Dict[str, str]:
    """Register an asset upload; returns {"asset": urn, "upload_url": url}."""
    payload = {
        "registerUploadRequest": {
            "owner": owner_urn,
            "recipes": [recipe],
            "serviceRelationships": [{
                "relationshipType": "OWNER",
                "identifier": "urn:li:userGeneratedContent",
            }],
        }
    }
    resp = _call("POST", REGISTER_UPLOAD_URL,
                 headers={"Authorization": f"Bearer {access_token}", "Content-Type": "application/json"},
                 json=payload)
    raise_for_platform(resp, "LinkedIn", "upload registration")
    value = resp.json().get("value", {})
    mechanism = value.get("uploadMechanism", {}).get(
        "com.linkedin.digitalmedia.uploading.MediaUploadHttpRequest", {})
    upload_url = mechanism.get("uploadUrl")
    asset = value.get("asset")
    if not upload_url or not asset:
        raise PlatformError(f"LinkedIn upload registration returned no upload url: {resp.text[:300]}")
    return {"asset": asset, "upload_url": upload_url}


def upload_asset(access_token: str, upload_url: str, content: bytes, content_type: str, is_video: bool) -> None:
    # images go up with PUT, videos with POST
    method = "POST" if is_video else "PUT"
    resp = request_with_retry(method, upload_url, service="linkedin", timeout=MEDIA_TIMEOUT,
                              headers={"Authorization": f"Bearer {access_token}",
                                       "Content-Type": content_type or "application/octet-stream"},
                              content=content)
    log_request_id(resp)
    raise_for_platform(resp, "LinkedIn", "asset upload")


def upload_media_asset(access_token: str, owner_urn: str, url: str, is_video: bool) -> str:
    registration = register_upload(access_token, owner_urn, VIDEO_RECIPE if is_video else IMAGE_RECIPE)
    content, content_type = download_media(url)
    upload_asset(access_token, registration["upload_url"], content, content_type, is_video)
    return registration["asset"]


# --- ugcPosts ---

def build_ugc_payload(owner_urn: str, text: str, category: str = "NONE",
                      assets: Optional[List[str]] = None, title: str = "") -> Dict[str, Any]:
    share: Dict[str, Any] = {
        "shareCommentary": {"text": text},
        "shareMediaCategory": category,
    }
    if assets:
        share["media"] = [
            {
                "status": "READY",
                "description": {"text": text[:200]},
                "media": asset,
                "title": {"text": title or "Media"},
            }
            for asset in assets
        ]
    return {
        "author": owner_urn,
        "lifecycleState": "PUBLISHED",
        "specificContent": {"com.linkedin.ugc.ShareContent": share},
        "visibility": {"com.linkedin.ugc.MemberNetworkVisibility": "PUBLIC"},
    }


def create_ugc_post(access_token: str, payload: Dict[str, Any]) -> str:
    resp = _call("POST", UGC_URL, idempotent=False,
                 headers={"Authorization": f"Bearer {access_token}", "Content-Type": "application/json",
                          **REST_HEADERS},
                 json=payload)
    raise_for_platform(resp, "LinkedIn", "post creation")
    post_id = resp.headers.get("x-restli-id")
    if not post_id and resp.content:
        post_id = resp.json().get("id")
    if not post_id:
        raise PlatformError("LinkedIn returned no post id")
    return str(post_id)


def post_to_linkedin(access_token: str, member_id: str, text: str,
                     image_urls: Optional[List[str]] = None, video_urls: Optional[List[str]] = None) -> str:
    """Share text with a video (preferred) or images as the member; returns the ugcPost urn."""
    owner = author_urn(member_id)
    if video_urls:
        asset = upload_media_asset(access_token, owner, video_urls[0], is_video=True)
        payload = build_ugc_payload(owner, text, "VIDEO", [asset], title="Video")
    elif image_urls:
        assets = [upload_media_asset(access_token, owner, url, is_video=False) for url in image_urls]
        payload = build_ugc_payload(owner, text, "IMAGE", assets, title="Image")
    else:
        payload = build_ugc_payload(owner, text)
    post_id = create_ugc_post(access_token, payload)
    logger.info("linkedin_post_created", post_id=post_id, category=payload["specificContent"]
                ["com.linkedin.ugc.ShareContent"]["shareMediaCategory"])
    return post_id


# --- analytics ---

def get_social_actions(access_token: str, post_urn: str) -> Dict[str, int]:
    resp = _call("GET", f"{SOCIAL_ACTIONS_URL}/{quote(post_urn, safe='')}",
                 headers={"Authorization": f"Bearer {access_token}", **REST_HEADERS})
    raise_for_platform(resp, "LinkedIn", "social actions lookup")
    data = resp.json()
    likes = data.get("likesSummary", {}).get("totalLikes", data.get("numLikes", 0))
    comments = data.get("commentsSummary", {}).get("aggregatedTotalComments", data.get("numComments", 0))
    impressions = data.get("numViews", 0)
    return {
        "impressions": impressions,
        "likes": likes,
        "comments": comments,
        "shares": data.get("numShares", 0),
        "clicks": data.get("numClicks", 0),
        "reach": impressions,
    }
