from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import ApprovalMode, BrandVoicePreset, ReviewStatus, Severity


def _clamp_scale(value: int) -> int:
    return max(1, min(5, int(value)))


# ── Per-run snapshots ────────────────────────────────────────


class BrandVoice(BaseModel):
    model_config = ConfigDict(frozen=True)

    preset: BrandVoicePreset = BrandVoicePreset.friendly
    formality: int = 3
    warmth: int = 4
    brevity: int = 3
    custom_instruction: str | None = None

    @field_validator("formality", "warmth", "brevity")
    @classmethod
    def clamp_scale(cls, value: int) -> int:
        return _clamp_scale(value)


class BusinessInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    industry: str | None = None
    support_email: str | None = None
    support_phone: str | None = None


class BusinessProfile(BaseModel):
    """Business row as seen by the pipeline (identity + connector coordinates)."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: str
    user_id: str
    name: str
    industry: str | None = None
    support_email: str | None = None
    support_phone: str | None = None
    owner_email: str | None = None
    google_account_id: str | None = None
    google_location_id: str | None = None

    @property
    def info(self) -> BusinessInfo:
        return BusinessInfo(
            name=self.name,
            industry=self.industry,
            support_email=self.support_email,
            support_phone=self.support_phone,
        )


class AutomationError(BaseModel):
    model_config = ConfigDict(frozen=True)

    step: str
    error: str
    timestamp: datetime
    review_id: str | None = None
    severity: Severity = Severity.medium
    retryable: bool = True


class SettingsSnapshot(BaseModel):
    """Immutable view of business_settings for the duration of one run."""

    model_config = ConfigDict(frozen=True)

    business_id: str
    brand_voice: BrandVoice = Field(default_factory=BrandVoice)
    approval_mode: ApprovalMode = ApprovalMode.manual
    auto_sync_enabled: bool = False
    auto_reply_enabled: bool = False
    auto_post_enabled: bool = False
    email_notifications_enabled: bool = True
    auto_sync_slot: str = "slot_1"
    last_automation_run: datetime | None = None
    automation_errors: tuple[AutomationError, ...] = ()

    @classmethod
    def from_row(cls, row) -> "SettingsSnapshot":
        errors = []
        for item in row.automation_errors or []:
            try:
                errors.append(AutomationError.model_validate(item))
            except ValueError:
                # legacy rows may carry partial entries
                continue
        return cls(
            business_id=row.business_id,
            brand_voice=BrandVoice(
                preset=row.brand_voice_preset,
                formality=row.formality_level,
                warmth=row.warmth_level,
                brevity=row.brevity_level,
                custom_instruction=row.custom_instruction,
            ),
            approval_mode=row.approval_mode,
            auto_sync_enabled=row.auto_sync_enabled,
            auto_reply_enabled=row.auto_reply_enabled,
            auto_post_enabled=row.auto_post_enabled,
            email_notifications_enabled=row.email_notifications_enabled,
            auto_sync_slot=row.auto_sync_slot,
            last_automation_run=row.last_automation_run,
            automation_errors=tuple(errors),
        )


class ReviewSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: str
    business_id: str
    google_review_id: str | None = None
    customer_name: str
    rating: int
    review_text: str = ""
    review_date: datetime | None = None
    status: ReviewStatus = ReviewStatus.pending
    ai_reply: str | None = None
    final_reply: str | None = None
    reply_tone: str | None = None
    posted_at: datetime | None = None
    posted_reply: str | None = None
    automated_reply: bool = False
    automation_failed: bool = False
    automation_error: str | None = None
    auto_approved: bool = False
    retry_count: int = 0
    created_at: datetime | None = None

    @property
    def reply_text(self) -> str | None:
        """Final (human-edited) reply wins over the generated draft."""
        return self.final_reply or self.ai_reply


class AutomationContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    business_id: str
    user_id: str
    slot_id: str | None = None
    trigger_type: str = "manual"
    settings: SettingsSnapshot
    business: BusinessProfile
    new_reviews: tuple[ReviewSnapshot, ...] = ()


class ActivityRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int | None = None
    business_id: str | None = None
    type: str
    description: str
    metadata: dict | None = None
    created_at: datetime | None = None


# ── Run results ──────────────────────────────────────────────


class SettingsUpdate(BaseModel):
    """Mutation of business_settings produced by a run; the caller persists it."""

    last_automation_run: datetime
    automation_errors: list[AutomationError] = Field(default_factory=list)


class AutomationResult(BaseModel):
    success: bool = True
    processed: int = 0
    generated: int = 0
    approved: int = 0
    posted: int = 0
    notified: int = 0
    errors: list[AutomationError] = Field(default_factory=list)
    duration_ms: int = 0
    deadline_exceeded: bool = False
    settings_update: SettingsUpdate | None = None


class RecoveryResult(BaseModel):
    success: bool = True
    retried_tasks: int = 0
    resolved_errors: int = 0
    remaining_errors: int = 0
    escalated_errors: int = 0
    skipped: str | None = None


class HealthIssue(BaseModel):
    type: str
    count: int
    last_occurrence: datetime | None = None


class AutomationHealth(BaseModel):
    status: str
    error_count: int
    last_success: datetime | None = None
    issues: list[HealthIssue] = Field(default_factory=list)


# ── HTTP payloads ────────────────────────────────────────────


class ProcessRequest(BaseModel):
    business_id: str
    user_id: str | None = None
    slot_id: str | None = None
    trigger_type: str = "manual"


class RecoveryRequest(BaseModel):
    business_id: str
    action: str


class AutomationStatus(BaseModel):
    business_id: str
    health: AutomationHealth
    recent_activities: list[ActivityRecord]
    settings: SettingsSnapshot
