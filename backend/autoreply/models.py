from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship as sa_relationship

from .db import Base


def relationship(*args, **kwargs):
    """Wrap SQLAlchemy relationship to forbid lazy loading by default."""
    kwargs.setdefault("lazy", "raise")
    return sa_relationship(*args, **kwargs)


def _uuid() -> str:
    return str(uuid.uuid4())


class ReviewStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    posted = "posted"
    needs_edit = "needs_edit"
    skipped = "skipped"


class ApprovalMode(str, Enum):
    manual = "manual"
    auto_4_plus = "auto_4_plus"
    auto_except_low = "auto_except_low"


class BrandVoicePreset(str, Enum):
    friendly = "friendly"
    professional = "professional"
    playful = "playful"
    custom = "custom"


class SyncSlot(str, Enum):
    slot_1 = "slot_1"
    slot_2 = "slot_2"


class Severity(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


class ActivityType(str, Enum):
    automation_start = "automation_start"
    automation_skipped = "automation_skipped"
    automation_step_completed = "automation_step_completed"
    automation_completed = "automation_completed"
    automation_failed = "automation_failed"
    automation_recovery = "automation_recovery"
    automation_api_called = "automation_api_called"
    ai_reply_generated = "ai_reply_generated"
    reply_auto_approved = "reply_auto_approved"
    reply_auto_posted = "reply_auto_posted"
    reply_posted = "reply_posted"
    email_notification_sent = "email_notification_sent"


class Business(Base):
    __tablename__ = "businesses"

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(sa.String(36), nullable=False, index=True)
    name: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    industry: Mapped[str | None] = mapped_column(sa.String(128), nullable=True)
    support_email: Mapped[str | None] = mapped_column(sa.String(255), nullable=True)
    support_phone: Mapped[str | None] = mapped_column(sa.String(64), nullable=True)
    owner_email: Mapped[str | None] = mapped_column(sa.String(255), nullable=True)
    google_account_id: Mapped[str | None] = mapped_column(sa.String(255), nullable=True)
    google_location_id: Mapped[str | None] = mapped_column(sa.String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now(), nullable=False
    )

    settings: Mapped["BusinessSettings"] = relationship(
        back_populates="business", cascade="all, delete-orphan", uselist=False
    )
    reviews: Mapped[list["Review"]] = relationship(
        back_populates="business", cascade="all, delete-orphan", passive_deletes=True
    )


class BusinessSettings(Base):
    __tablename__ = "business_settings"
    __table_args__ = (
        sa.Index("ix_business_settings_slot", "auto_sync_slot", "auto_sync_enabled"),
    )

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True, default=_uuid)
    business_id: Mapped[str] = mapped_column(
        sa.ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    brand_voice_preset: Mapped[str] = mapped_column(
        sa.String(32), nullable=False, default=BrandVoicePreset.friendly.value
    )
    formality_level: Mapped[int] = mapped_column(sa.Integer(), nullable=False, default=3)
    warmth_level: Mapped[int] = mapped_column(sa.Integer(), nullable=False, default=4)
    brevity_level: Mapped[int] = mapped_column(sa.Integer(), nullable=False, default=3)
    custom_instruction: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    approval_mode: Mapped[str] = mapped_column(sa.String(32), nullable=False, default=ApprovalMode.manual.value)
    auto_sync_enabled: Mapped[bool] = mapped_column(sa.Boolean(), nullable=False, default=False)
    auto_reply_enabled: Mapped[bool] = mapped_column(sa.Boolean(), nullable=False, default=False)
    auto_post_enabled: Mapped[bool] = mapped_column(sa.Boolean(), nullable=False, default=False)
    email_notifications_enabled: Mapped[bool] = mapped_column(sa.Boolean(), nullable=False, default=True)
    auto_sync_slot: Mapped[str] = mapped_column(sa.String(16), nullable=False, default=SyncSlot.slot_1.value)
    last_automation_run: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    automation_errors: Mapped[list | None] = mapped_column(sa.JSON(), nullable=True, default=list)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now(), nullable=False
    )

    business: Mapped[Business] = relationship(back_populates="settings")


class Review(Base):
    __tablename__ = "reviews"
    __table_args__ = (
        sa.Index("ix_reviews_automation", "business_id", "status", "automated_reply", "automation_failed"),
    )

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True, default=_uuid)
    business_id: Mapped[str] = mapped_column(
        sa.ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True
    )
    google_review_id: Mapped[str | None] = mapped_column(sa.String(255), nullable=True, unique=True)
    customer_name: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    rating: Mapped[int] = mapped_column(sa.Integer(), nullable=False)
    review_text: Mapped[str] = mapped_column(sa.Text(), nullable=False, default="")
    review_date: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(sa.String(32), nullable=False, default=ReviewStatus.pending.value)
    ai_reply: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    final_reply: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    reply_tone: Mapped[str | None] = mapped_column(sa.String(32), nullable=True)
    posted_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    posted_reply: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    automated_reply: Mapped[bool] = mapped_column(sa.Boolean(), nullable=False, default=False)
    automation_failed: Mapped[bool] = mapped_column(sa.Boolean(), nullable=False, default=False)
    automation_error: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    auto_approved: Mapped[bool] = mapped_column(sa.Boolean(), nullable=False, default=False)
    retry_count: Mapped[int] = mapped_column(sa.Integer(), nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now(), nullable=False
    )

    business: Mapped[Business] = relationship(back_populates="reviews")


class Activity(Base):
    """Append-only audit trail. business_id is null for process-wide entries."""

    __tablename__ = "activities"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    business_id: Mapped[str | None] = mapped_column(
        sa.ForeignKey("businesses.id", ondelete="CASCADE"), nullable=True, index=True
    )
    type: Mapped[str] = mapped_column(sa.String(64), nullable=False, index=True)
    description: Mapped[str] = mapped_column(sa.Text(), nullable=False)
    meta: Mapped[dict | None] = mapped_column("metadata", sa.JSON(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False, index=True
    )
