"""create businesses, business_settings, reviews, activities

Revision ID: 0001_review_automation
Revises:
Create Date: 2026-10-19 12:00:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_review_automation"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            onupdate=sa.func.now(),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "businesses",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("industry", sa.String(length=128), nullable=True),
        sa.Column("support_email", sa.String(length=255), nullable=True),
        sa.Column("support_phone", sa.String(length=64), nullable=True),
        sa.Column("owner_email", sa.String(length=255), nullable=True),
        sa.Column("google_account_id", sa.String(length=255), nullable=True),
        sa.Column("google_location_id", sa.String(length=255), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_businesses_user_id", "businesses", ["user_id"])

    op.create_table(
        "business_settings",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "business_id",
            sa.String(length=36),
            sa.ForeignKey("businesses.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("brand_voice_preset", sa.String(length=32), nullable=False, server_default="friendly"),
        sa.Column("formality_level", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("warmth_level", sa.Integer(), nullable=False, server_default="4"),
        sa.Column("brevity_level", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("custom_instruction", sa.Text(), nullable=True),
        sa.Column("approval_mode", sa.String(length=32), nullable=False, server_default="manual"),
        sa.Column("auto_sync_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("auto_reply_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("auto_post_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("email_notifications_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("auto_sync_slot", sa.String(length=16), nullable=False, server_default="slot_1"),
        sa.Column("last_automation_run", sa.DateTime(timezone=True), nullable=True),
        sa.Column("automation_errors", sa.JSON(), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        "ix_business_settings_slot", "business_settings", ["auto_sync_slot", "auto_sync_enabled"]
    )

    op.create_table(
        "reviews",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "business_id",
            sa.String(length=36),
            sa.ForeignKey("businesses.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("google_review_id", sa.String(length=255), nullable=True, unique=True),
        sa.Column("customer_name", sa.String(length=255), nullable=False),
        sa.Column("rating", sa.Integer(), nullable=False),
        sa.Column("review_text", sa.Text(), nullable=False, server_default=""),
        sa.Column("review_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="pending"),
        sa.Column("ai_reply", sa.Text(), nullable=True),
        sa.Column("final_reply", sa.Text(), nullable=True),
        sa.Column("reply_tone", sa.String(length=32), nullable=True),
        sa.Column("posted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("posted_reply", sa.Text(), nullable=True),
        sa.Column("automated_reply", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("automation_failed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("automation_error", sa.Text(), nullable=True),
        sa.Column("auto_approved", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
    )
    op.create_index("ix_reviews_business_id", "reviews", ["business_id"])
    op.create_index(
        "ix_reviews_automation", "reviews", ["business_id", "status", "automated_reply", "automation_failed"]
    )

    op.create_table(
        "activities",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "business_id",
            sa.String(length=36),
            sa.ForeignKey("businesses.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("type", sa.String(length=64), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_activities_business_id", "activities", ["business_id"])
    op.create_index("ix_activities_type", "activities", ["type"])
    op.create_index("ix_activities_created_at", "activities", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_activities_created_at", table_name="activities")
    op.drop_index("ix_activities_type", table_name="activities")
    op.drop_index("ix_activities_business_id", table_name="activities")
    op.drop_table("activities")
    op.drop_index("ix_reviews_automation", table_name="reviews")
    op.drop_index("ix_reviews_business_id", table_name="reviews")
    op.drop_table("reviews")
    op.drop_index("ix_business_settings_slot", table_name="business_settings")
    op.drop_table("business_settings")
    op.drop_index("ix_businesses_user_id", table_name="businesses")
    op.drop_table("businesses")
