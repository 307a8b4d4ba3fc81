from sqlalchemy import (
    Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint, func,
)
from sqlalchemy.orm import relationship
from conversai.db.base import Base

PLATFORMS = ("TWITTER", "LINKEDIN", "INSTAGRAM", "YOUTUBE", "FACEBOOK")
POST_STATUSES = ("DRAFT", "SCHEDULED", "PUBLISHED", "FAILED", "APPROVED")


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(320), unique=True, nullable=False, index=True)
    name = Column(String(256), nullable=True)
    password_hash = Column(String(512), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    subscription = relationship("Subscription", back_populates="user", uselist=False,
                                cascade="all, delete-orphan")
    social_accounts = relationship("SocialAccount", back_populates="user", cascade="all, delete-orphan")
    posts = relationship("Post", back_populates="user", cascade="all, delete-orphan")


class Subscription(Base):
    __tablename__ = "subscriptions"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    tier = Column(String(32), nullable=False, default="STARTER")       # STARTER|GROWTH|BUSINESS|AGENCY
    status = Column(String(32), nullable=False, default="TRIALING")    # TRIALING|ACTIVE|PAST_DUE|CANCELED
    current_period_start = Column(DateTime, nullable=True)
    current_period_end = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    user = relationship("User", back_populates="subscription")


class SocialAccount(Base):
    __tablename__ = "social_accounts"
    __table_args__ = (UniqueConstraint("user_id", "platform", "account_id", name="uq_social_account"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    platform = Column(String(32), nullable=False)
    account_id = Column(String(256), nullable=False)   # platform-side id (LinkedIn: OpenID sub, Facebook: page id)
    account_name = Column(String(256), nullable=False)
    display_name = Column(String(256), nullable=True)
    username = Column(String(256), nullable=True)
    account_type = Column(String(32), nullable=False, default="PERSONAL")  # PERSONAL|BUSINESS|CREATOR
    access_token_encrypted = Column(Text, nullable=False)
    refresh_token_encrypted = Column(Text, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    permissions = Column(Text, nullable=True)      # JSON list
    metadata_json = Column(Text, nullable=True)    # JSON object, e.g. {"selectedPageId": "..."}
    is_active = Column(Boolean, nullable=False, default=True)
    is_connected = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="social_accounts")
    publications = relationship("PostPublication", back_populates="social_account",
                                cascade="all, delete-orphan", passive_deletes=True)


class Post(Base):
    __tablename__ = "posts"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    content = Column(Text, nullable=True)
    hashtags = Column(Text, nullable=True)        # JSON list
    image_url = Column(String(2048), nullable=True)
    images = Column(Text, nullable=True)          # JSON list
    video_url = Column(String(2048), nullable=True)
    videos = Column(Text, nullable=True)          # JSON list
    title = Column(String(100), nullable=True)    # YouTube
    description = Column(Text, nullable=True)     # YouTube
    platform = Column(String(32), nullable=True)
    status = Column(String(32), nullable=False, default="DRAFT", index=True)
    scheduled_at = Column(DateTime, nullable=True, index=True)
    published_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="posts")
    publications = relationship("PostPublication", back_populates="post",
                                cascade="all, delete-orphan", passive_deletes=True,
                                order_by="PostPublication.id")
    analytics = relationship("PostAnalytics", back_populates="post",
                             cascade="all, delete-orphan", passive_deletes=True)


class PostPublication(Base):
    __tablename__ = "post_publications"
    __table_args__ = (UniqueConstraint("post_id", "social_account_id", name="uq_post_publication"),)

    id = Column(Integer, primary_key=True, index=True)
    post_id = Column(Integer, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False, index=True)
    social_account_id = Column(Integer, ForeignKey("social_accounts.id", ondelete="CASCADE"), nullable=False)
    status = Column(String(32), nullable=False, default="PENDING")  # PENDING|PUBLISHED|FAILED
    platform_post_id = Column(String(256), nullable=True)
    error_message = Column(Text, nullable=True)
    published_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    post = relationship("Post", back_populates="publications")
    social_account = relationship("SocialAccount", back_populates="publications")


class PostAnalytics(Base):
    __tablename__ = "post_analytics"
    __table_args__ = (UniqueConstraint("post_id", "platform", name="uq_post_analytics"),)

    id = Column(Integer, primary_key=True, index=True)
    post_id = Column(Integer, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False, index=True)
    platform = Column(String(32), nullable=False)
    impressions = Column(Integer, nullable=False, default=0)
    likes = Column(Integer, nullable=False, default=0)
    comments = Column(Integer, nullable=False, default=0)
    shares = Column(Integer, nullable=False, default=0)
    clicks = Column(Integer, nullable=False, default=0)
    saves = Column(Integer, nullable=False, default=0)
    reach = Column(Integer, nullable=False, default=0)
    engagement_rate = Column(Float, nullable=False, default=0.0)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    post = relationship("Post", back_populates="analytics")


class UsageTracking(Base):
    __tablename__ = "usage_tracking"
    __table_args__ = (UniqueConstraint("user_id", "month", "year", name="uq_usage_period"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    month = Column(Integer, nullable=False)
    year = Column(Integer, nullable=False)
    posts_used = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, server_default=func.now())


class AIModel(Base):
    __tablename__ = "ai_models"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(256), nullable=False)
    provider = Column(String(64), nullable=False)
    model = Column(String(256), nullable=False)
    purpose = Column(String(64), nullable=False, index=True)
    max_tokens = Column(Integer, nullable=False, default=1000)
    temperature = Column(Float, nullable=False, default=0.7)
    cost_per_1k_tokens = Column(Float, nullable=False, default=0.0)
    is_active = Column(Boolean, nullable=False, default=True)
    is_default = Column(Boolean, nullable=False, default=False)
    performance = Column(Text, nullable=True)    # JSON {"accuracy", "speed", "reliability"}
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
