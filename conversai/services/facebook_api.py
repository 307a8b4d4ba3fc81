# conversai/services/facebook_api.py
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import structlog

from conversai.config import settings
from conversai.services.http_client import request_with_retry
from conversai.services.platform_errors import PlatformError, raise_for_platform

logger = structlog.get_logger(__name__)

SCOPES = "pages_show_list,pages_read_engagement,pages_manage_posts"


def graph_url(path: str = "") -> str:
    return f"https://graph.facebook.com/{settings.facebook_graph_version}/{path.lstrip('/')}"


def auth_url(state: str) -> str:
    params = {
        "client_id": settings.facebook_app_id,
        "redirect_uri": settings.facebook_redirect_uri,
        "scope": SCOPES,
        "response_type": "code",
        "state": state,
    }
    return f"https://www.facebook.com/{settings.facebook_graph_version}/dialog/oauth?{urlencode(params)}"


def exchange_code_for_token(code: str) -> Dict[str, Any]:
    """Code -> user token -> long-lived user token."""
    resp = request_with_retry("GET", graph_url("oauth/access_token"), service="facebook", params={
        "client_id": settings.facebook_app_id,
        "client_secret": settings.facebook_app_secret,
        "redirect_uri": settings.facebook_redirect_uri,
        "code": code,
    })
    raise_for_platform(resp, "Facebook", "code exchange")
    short = resp.json()
    return exchange_long_lived(short["access_token"])


def exchange_long_lived(access_token: str) -> Dict[str, Any]:
    resp = request_with_retry("GET", graph_url("oauth/access_token"), service="facebook", params={
        "grant_type": "fb_exchange_token",
        "client_id": settings.facebook_app_id,
        "client_secret": settings.facebook_app_secret,
        "fb_exchange_token": access_token,
    })
    raise_for_platform(resp, "Facebook", "long-lived token exchange")
    return resp.json()


def get_pages(user_access_token: str) -> List[Dict[str, Any]]:
    """Pages the user manages, each with its own page access token."""
    resp = request_with_retry("GET", graph_url("me/accounts"), service="facebook", params={
        "fields": "id,name,access_token,category,tasks",
        "access_token": user_access_token,
    })
    raise_for_platform(resp, "Facebook", "page listing")
    return resp.json().get("data", [])


def post_to_page(page_id: str, page_access_token: str, message: str,
                 image_url: Optional[str] = None, link: Optional[str] = None) -> str:
    """Photo post when an image is given, feed post otherwise; returns the post id."""
    if image_url:
        resp = request_with_retry("POST", graph_url(f"{page_id}/photos"), service="facebook",
                                  idempotent=False, data={
            "url": image_url,
            "caption": message,
            "access_token": page_access_token,
        })
        raise_for_platform(resp, "Facebook", "photo post")
        data = resp.json()
        post_id = data.get("post_id") or data.get("id")
    else:
        payload = {"message": message, "access_token": page_access_token}
        if link:
            payload["link"] = link
        resp = request_with_retry("POST", graph_url(f"{page_id}/feed"), service="facebook", idempotent=False,
                                  data=payload)
        raise_for_platform(resp, "Facebook", "feed post")
        post_id = resp.json().get("id")
    if not post_id:
        raise PlatformError("Facebook returned no post id")
    logger.info("facebook_post_created", page_id=page_id, post_id=post_id, has_image=bool(image_url))
    return str(post_id)
