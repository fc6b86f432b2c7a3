"""
Minimal table mapping for the pipeline's read/write contract.

The full schema and its migrations are owned by the dashboard application;
only the columns the pipeline reads or writes are mapped here.
"""
from __future__ import annotations

import uuid
from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class Account(Base):
    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    platform: Mapped[str] = mapped_column(sa.String(32), nullable=False)
    # page id / instagram user id / linkedin org or member id / pinterest board id
    username: Mapped[str | None] = mapped_column(sa.String(255), nullable=True)
    access_token: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    refresh_token: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    token_expires_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    niche_id: Mapped[str | None] = mapped_column(sa.ForeignKey("niches.id", ondelete="SET NULL"), nullable=True)
    tone: Mapped[str] = mapped_column(sa.String(64), nullable=False, server_default="professional")
    custom_instructions: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    posting_schedule: Mapped[dict | None] = mapped_column(sa.JSON(), nullable=True)
    is_active: Mapped[bool] = mapped_column(sa.Boolean(), nullable=False, server_default=sa.true())
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now(), nullable=False
    )


class AutomationProfile(Base):
    __tablename__ = "automation_profiles"

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True, default=_uuid)
    account_id: Mapped[str] = mapped_column(sa.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    is_enabled: Mapped[bool] = mapped_column(sa.Boolean(), nullable=False, server_default=sa.false())
    batch_size: Mapped[int] = mapped_column(sa.Integer(), nullable=False, server_default="1")
    error_handling: Mapped[str] = mapped_column(sa.String(16), nullable=False, server_default="continue")


class Niche(Base):
    __tablename__ = "niches"

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    keywords: Mapped[list] = mapped_column(sa.JSON(), nullable=False, default=list)
    target_audience: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    content_themes: Mapped[list] = mapped_column(sa.JSON(), nullable=False, default=list)
    trend_ttl_hours: Mapped[int | None] = mapped_column(sa.Integer(), nullable=True)


class ViralDefinitionRow(Base):
    __tablename__ = "viral_definitions"

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True, default=_uuid)
    account_id: Mapped[str] = mapped_column(sa.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, unique=True)
    likes_weight: Mapped[float] = mapped_column(sa.Numeric(4, 3), nullable=False)
    shares_weight: Mapped[float] = mapped_column(sa.Numeric(4, 3), nullable=False)
    comments_weight: Mapped[float] = mapped_column(sa.Numeric(4, 3), nullable=False)
    views_weight: Mapped[float] = mapped_column(sa.Numeric(4, 3), nullable=False)
    saves_weight: Mapped[float] = mapped_column(sa.Numeric(4, 3), nullable=False)
    ctr_weight: Mapped[float] = mapped_column(sa.Numeric(4, 3), nullable=False)
    likes_threshold: Mapped[float] = mapped_column(sa.Float(), nullable=False)
    shares_threshold: Mapped[float] = mapped_column(sa.Float(), nullable=False)
    comments_threshold: Mapped[float] = mapped_column(sa.Float(), nullable=False)
    views_threshold: Mapped[float] = mapped_column(sa.Float(), nullable=False)
    saves_threshold: Mapped[float] = mapped_column(sa.Float(), nullable=False)
    ctr_threshold: Mapped[float] = mapped_column(sa.Float(), nullable=False)
    minimum_viral_score: Mapped[float] = mapped_column(sa.Float(), nullable=False, server_default="70")
    timeframe_hours: Mapped[int] = mapped_column(sa.Integer(), nullable=False, server_default="48")
    comparison_method: Mapped[str] = mapped_column(sa.String(32), nullable=False, server_default="account_average")


class Post(Base):
    __tablename__ = "posts"
    __table_args__ = (sa.Index("ix_posts_account_scheduled", "account_id", "scheduled_at"),)

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True, default=_uuid)
    account_id: Mapped[str] = mapped_column(sa.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    platform: Mapped[str] = mapped_column(sa.String(32), nullable=False)
    content: Mapped[str] = mapped_column(sa.Text(), nullable=False)
    hashtags: Mapped[list] = mapped_column(sa.JSON(), nullable=False, default=list)
    media_urls: Mapped[list] = mapped_column(sa.JSON(), nullable=False, default=list)
    trend_topic: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    pattern_id: Mapped[str | None] = mapped_column(sa.String(36), nullable=True)
    predicted_viral_score: Mapped[float | None] = mapped_column(sa.Float(), nullable=True)
    status: Mapped[str] = mapped_column(sa.String(16), nullable=False, server_default="scheduled")
    scheduled_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    posted_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    external_post_id: Mapped[str | None] = mapped_column(sa.String(255), nullable=True)
    post_url: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    error: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )


class PostEngagement(Base):
    __tablename__ = "post_engagement"

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True, default=_uuid)
    post_id: Mapped[str] = mapped_column(sa.ForeignKey("posts.id", ondelete="CASCADE"), nullable=False, index=True)
    checkpoint_hours: Mapped[int] = mapped_column(sa.Integer(), nullable=False)
    likes: Mapped[int] = mapped_column(sa.Integer(), nullable=False, server_default="0")
    shares: Mapped[int] = mapped_column(sa.Integer(), nullable=False, server_default="0")
    comments: Mapped[int] = mapped_column(sa.Integer(), nullable=False, server_default="0")
    views: Mapped[int] = mapped_column(sa.Integer(), nullable=False, server_default="0")
    saves: Mapped[int] = mapped_column(sa.Integer(), nullable=False, server_default="0")
    clicks: Mapped[int | None] = mapped_column(sa.Integer(), nullable=True)
    impressions: Mapped[int | None] = mapped_column(sa.Integer(), nullable=True)
    reach: Mapped[int | None] = mapped_column(sa.Integer(), nullable=True)
    recorded_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )


class ViralPatternRow(Base):
    __tablename__ = "viral_patterns"

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True, default=_uuid)
    platform: Mapped[str] = mapped_column(sa.String(32), nullable=False)
    niche_id: Mapped[str | None] = mapped_column(sa.ForeignKey("niches.id", ondelete="CASCADE"), nullable=True)
    hook_example: Mapped[str] = mapped_column(sa.Text(), nullable=False)
    content_structure: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    emotional_trigger: Mapped[str | None] = mapped_column(sa.String(64), nullable=True)
    success_rate: Mapped[float] = mapped_column(sa.Float(), nullable=False, server_default="0")
    usage_count: Mapped[int] = mapped_column(sa.Integer(), nullable=False, server_default="0")


class TrendingTopic(Base):
    __tablename__ = "trending_topics"

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True, default=_uuid)
    niche_id: Mapped[str | None] = mapped_column(sa.ForeignKey("niches.id", ondelete="CASCADE"), nullable=True)
    topic: Mapped[str] = mapped_column(sa.Text(), nullable=False)
    source_url: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    source_published_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    relevance_score: Mapped[float] = mapped_column(sa.Float(), nullable=False, server_default="0")
    is_current_version: Mapped[bool] = mapped_column(sa.Boolean(), nullable=False, server_default=sa.true())
    expires_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )


class AppSetting(Base):
    __tablename__ = "app_settings"

    key: Mapped[str] = mapped_column(sa.String(128), primary_key=True)
    value: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
