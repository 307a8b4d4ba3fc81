from typing import Optional

import httpx


class PlatformError(RuntimeError):
    """A platform API call failed; the message is what gets stored on the publication."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class PlatformAuthError(PlatformError):
    """The platform rejected the access token (HTTP 401)."""


def raise_for_platform(resp: httpx.Response, platform: str, action: str) -> None:
    if resp.is_success:
        return
    detail = resp.text[:500]
    message = f"{platform} {action} failed ({resp.status_code}): {detail}"
    if resp.status_code == 401:
        raise PlatformAuthError(message, resp.status_code)
    raise PlatformError(message, resp.status_code)
