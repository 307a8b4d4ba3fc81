# conversai/services/http_client.py
import base64
import mimetypes
import time
from typing import Optional, Tuple

import httpx
import structlog

from conversai.services.platform_errors import PlatformError

logger = structlog.get_logger(__name__)

DEFAULT_TIMEOUT = httpx.Timeout(30, connect=5)
MEDIA_TIMEOUT = httpx.Timeout(300, connect=10)
RETRY_STATUSES = (429, 500, 502, 503, 504)
# a create call is only replayed when the platform never accepted it
UNACCEPTED_STATUSES = (429,)
UNSENT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout)


def request_with_retry(method: str, url: str, *, service: str = "http",
                       max_attempts: int = 4, backoff: int = 2, idempotent: bool = True,
                       timeout: Optional[httpx.Timeout] = None, **kwargs) -> httpx.Response:
    """
    Send a request, retrying 429/5xx responses and transport errors with linear backoff.

    Pass idempotent=False for calls that create something on the platform (a tweet, a
    share, a page post). Those are retried only on 429 and on connection failures, since
    a 5xx or a read timeout may come after the post was already created.
    """
    retry_statuses = RETRY_STATUSES if idempotent else UNACCEPTED_STATUSES
    retry_errors = httpx.RequestError if idempotent else UNSENT_ERRORS
    for attempt in range(1, max_attempts + 1):
        try:
            with httpx.Client(timeout=timeout or DEFAULT_TIMEOUT) as c:
                resp = c.request(method, url, **kwargs)
            if resp.status_code in retry_statuses and attempt < max_attempts:
                logger.warning("http_retry", service=service, url=url, attempt=attempt, status_code=resp.status_code)
                time.sleep(backoff * attempt)
                continue
            return resp
        except retry_errors as e:
            logger.warning("http_request_error", service=service, url=url, attempt=attempt, error=str(e))
            if attempt < max_attempts:
                time.sleep(backoff * attempt)
                continue
            raise
    raise PlatformError(f"{service} API failed after {max_attempts} attempts")


def _decode_data_url(url: str) -> Tuple[bytes, str]:
    header, _, payload = url.partition(",")
    mime = header[len("data:"):].split(";")[0] or "application/octet-stream"
    if ";base64" in header:
        return base64.b64decode(payload), mime
    return payload.encode(), mime


def download_media(url: str) -> Tuple[bytes, str]:
    """Fetch media bytes and content type from an http(s) or data: URL."""
    if url.startswith("data:"):
        return _decode_data_url(url)
    resp = request_with_retry("GET", url, service="media", timeout=MEDIA_TIMEOUT, follow_redirects=True)
    if not resp.is_success:
        raise PlatformError(f"Failed to download media from {url}: {resp.status_code}", resp.status_code)
    content_type = resp.headers.get("content-type", "").split(";")[0].strip()
    if not content_type or content_type == "application/octet-stream":
        content_type = mimetypes.guess_type(url.split("?")[0])[0] or "application/octet-stream"
    return resp.content, content_type
