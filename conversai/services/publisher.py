# conversai/services/publisher.py
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import structlog
from sqlalchemy.orm import Session

from conversai.db import crud_accounts
from conversai.db.crud import parse_json_list
from conversai.db.models import Post, PostPublication, SocialAccount
from conversai.services import (
    facebook_api, instagram_api, linkedin_api, token_manager, twitter_api, youtube_api,
)
from conversai.services.platform_errors import PlatformAuthError, PlatformError

logger = structlog.get_logger(__name__)

RECONNECT_MARKERS = ("needs reconnection", "permission", "access_denied")
NO_FACEBOOK_PAGE = "No Facebook Page selected. Connect a Facebook Page or select one before publishing."


@dataclass
class PublishResult:
    publication_id: int
    platform: str
    account_name: str
    success: bool
    platform_post_id: Optional[str] = None
    error: Optional[str] = None
    needs_reconnection: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "publicationId": self.publication_id,
            "platform": self.platform,
            "accountName": self.account_name,
            "success": self.success,
            "platformPostId": self.platform_post_id,
            "error": self.error,
            "needsReconnection": self.needs_reconnection,
        }


@dataclass
class PublishOutcome:
    post_id: int
    results: List[PublishResult] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def total_count(self) -> int:
        return len(self.results)

    @property
    def reconnection_platforms(self) -> List[str]:
        seen: List[str] = []
        for r in self.results:
            if r.needs_reconnection and r.platform not in seen:
                seen.append(r.platform)
        return seen


def needs_reconnection(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in RECONNECT_MARKERS)


def compose_text(post: Post) -> str:
    content = post.content or ""
    hashtags = [str(h) for h in parse_json_list(post.hashtags) if h]
    if not hashtags:
        return content
    return f"{content}\n\n{' '.join(hashtags)}"


def collect_media(primary: Optional[str], raw_list: Optional[str]) -> List[str]:
    urls: List[str] = []
    for url in [primary, *parse_json_list(raw_list)]:
        if url and url not in urls:
            urls.append(url)
    return urls


def resolve_facebook_page(db: Session, account: SocialAccount, access_token: str) -> Tuple[str, str]:
    """Return (page_id, page_access_token) for a Facebook publication."""
    if account.account_type == "BUSINESS":
        return account.account_id, access_token

    selected = crud_accounts.account_metadata(account).get("selectedPageId")
    if selected:
        for page in facebook_api.get_pages(access_token):
            if str(page.get("id")) == str(selected) and page.get("access_token"):
                return str(page["id"]), page["access_token"]
        raise PlatformError(f"Selected Facebook Page {selected} is no longer accessible; permission may have been revoked")

    pages = [
        a for a in crud_accounts.list_accounts(db, account.user_id)
        if a.platform == "FACEBOOK" and a.account_type == "BUSINESS" and a.is_active
    ]
    if len(pages) == 1:
        page_check = token_manager.validate_and_refresh(db, pages[0])
        if page_check.is_valid:
            return pages[0].account_id, page_check.access_token
    raise PlatformError(NO_FACEBOOK_PAGE)


def dispatch(db: Session, post: Post, account: SocialAccount, access_token: str) -> str:
    """Send the post to the account's platform and return the platform post id."""
    text = compose_text(post)
    images = collect_media(post.image_url, post.images)
    videos = collect_media(post.video_url, post.videos)
    platform = account.platform

    if platform == "TWITTER":
        return twitter_api.post_tweet(access_token, text, image_urls=images, video_url=videos[0] if videos else None)
    if platform == "LINKEDIN":
        return linkedin_api.post_to_linkedin(access_token, account.account_id, text,
                                             image_urls=images, video_urls=videos)
    if platform == "INSTAGRAM":
        return instagram_api.post_to_instagram(access_token, text, image_urls=images, video_urls=videos)
    if platform == "YOUTUBE":
        if not videos:
            raise PlatformError("YouTube posting requires video content")
        title = post.title or (post.content or "")[:100] or "Untitled Video"
        description = post.description or post.content or "No description"
        return youtube_api.upload_video(access_token, videos[0], title, description,
                                        thumbnail_url=images[0] if images else None)
    if platform == "FACEBOOK":
        page_id, page_token = resolve_facebook_page(db, account, access_token)
        return facebook_api.post_to_page(page_id, page_token, text, image_url=images[0] if images else None)
    raise PlatformError(f"Unsupported platform: {platform}")


def _checked_token(db: Session, account: SocialAccount, force_refresh: bool = False) -> str:
    validation = token_manager.validate_and_refresh(db, account, force_refresh=force_refresh)
    if not validation.is_valid:
        if validation.needs_reconnection:
            raise PlatformError(f"Account needs reconnection: {validation.error}")
        raise PlatformError(f"Token validation failed: {validation.error}")
    return validation.access_token


def publish_to_account(db: Session, post: Post, account: SocialAccount) -> str:
    access_token = _checked_token(db, account)
    try:
        return dispatch(db, post, account, access_token)
    except PlatformAuthError as e:
        # token revoked or expired early: refresh once and retry
        logger.info("publish_auth_retry", account_id=account.id, platform=account.platform, error=str(e))
        return dispatch(db, post, account, _checked_token(db, account, force_refresh=True))


def _record_success(db: Session, pub: PostPublication, platform_post_id: str) -> None:
    pub.status = "PUBLISHED"
    pub.platform_post_id = platform_post_id
    pub.error_message = None
    pub.published_at = datetime.utcnow()
    db.add(pub)
    db.commit()


def _record_failure(db: Session, pub: PostPublication, message: str) -> None:
    pub.status = "FAILED"
    pub.error_message = message
    db.add(pub)
    db.commit()


def publish_post(db: Session, post: Post) -> PublishOutcome:
    """
    Publish a post to every one of its publications, one after another.

    Each publication is committed on its own as PUBLISHED (with the platform post id)
    or FAILED (with the error text). The post then becomes PUBLISHED when at least one
    publication succeeded and FAILED otherwise.
    """
    outcome = PublishOutcome(post_id=post.id)
    for pub in list(post.publications):
        account = pub.social_account
        platform = account.platform if account else "UNKNOWN"
        account_name = account.account_name if account else ""
        try:
            platform_post_id = publish_to_account(db, post, account)
        except Exception as e:  # any adapter failure is recorded on the publication
            message = str(e) or "Unknown error"
            _record_failure(db, pub, message)
            logger.warning("publication_failed", post_id=post.id, publication_id=pub.id,
                           platform=platform, error=message)
            outcome.results.append(PublishResult(pub.id, platform, account_name, False,
                                                 error=message, needs_reconnection=needs_reconnection(message)))
            continue
        _record_success(db, pub, platform_post_id)
        logger.info("publication_published", post_id=post.id, publication_id=pub.id,
                    platform=platform, platform_post_id=platform_post_id)
        outcome.results.append(PublishResult(pub.id, platform, account_name, True, platform_post_id=platform_post_id))

    if outcome.success_count > 0:
        post.status = "PUBLISHED"
        post.published_at = datetime.utcnow()
    else:
        post.status = "FAILED"
    db.add(post)
    db.commit()
    logger.info("post_processed", post_id=post.id, status=post.status,
                succeeded=outcome.success_count, total=outcome.total_count)
    return outcome
